"""Fee collection ledger: one obligation per (student, fee structure, period) with its payments and reminders."""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import relationship

from app.core.enums import FeeCollectionStatus
from app.db.session import Base


class FeeCollection(Base):
    """
    Ledger record. due_amount always equals max(0, total - discount + late fee - paid)
    and paid_amount equals the sum of the payment rows.
    version is bumped on every write; a stale writer fails its UPDATE and is retried by the ledger store.
    """

    __tablename__ = "fee_collections"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','partial','paid','cancelled')",
            name="chk_fee_collection_status",
        ),
        CheckConstraint(
            "total_amount >= 0 AND discount_amount >= 0 AND late_fee_amount >= 0 "
            "AND paid_amount >= 0 AND due_amount >= 0",
            name="chk_fee_collection_amounts",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_structure_id = Column(Uuid, ForeignKey("fee_structures.id", ondelete="RESTRICT"), nullable=False)
    academic_year = Column(String(20), nullable=False, index=True)
    month = Column(String(30), nullable=True)  # "January 2025"; NULL for non-monthly charges

    total_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    late_fee_amount = Column(Numeric(12, 2), nullable=False, default=0)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    due_amount = Column(Numeric(12, 2), nullable=False)

    due_date = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=FeeCollectionStatus.pending.value, index=True)
    promo_code_id = Column(Uuid, ForeignKey("promo_codes.id", ondelete="SET NULL"), nullable=True)

    remarks = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    student = relationship("Student")
    fee_structure = relationship("FeeStructure")
    payments = relationship(
        "FeeCollectionPayment",
        back_populates="fee_collection",
        order_by="FeeCollectionPayment.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    reminders = relationship(
        "FeeReminder",
        back_populates="fee_collection",
        order_by="FeeReminder.sent_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


# Re-issuing a charge for the same period is only allowed once the earlier record is cancelled.
Index(
    "uq_fee_collection_active_period",
    FeeCollection.tenant_id,
    FeeCollection.student_id,
    FeeCollection.fee_structure_id,
    FeeCollection.academic_year,
    func.coalesce(FeeCollection.month, ""),
    unique=True,
    postgresql_where=text("status <> 'cancelled'"),
    sqlite_where=text("status <> 'cancelled'"),
)


class FeeCollectionPayment(Base):
    """Append-only payment against a ledger record. sequence keeps insertion order."""

    __tablename__ = "fee_collection_payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_fee_collection_payment_amount"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    fee_collection_id = Column(
        Uuid,
        ForeignKey("fee_collections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    payment_method = Column(String(30), nullable=False)  # cash, cheque, online, card, bank_transfer
    transaction_id = Column(String(100), nullable=True)
    remarks = Column(Text, nullable=True)
    collected_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    fee_collection = relationship("FeeCollection", back_populates="payments")


class FeeReminder(Base):
    __tablename__ = "fee_reminders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    fee_collection_id = Column(
        Uuid,
        ForeignKey("fee_collections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reminder_type = Column(String(20), nullable=False)  # email, sms, notification
    status = Column(String(20), nullable=False, default="sent")  # sent, failed
    sent_at = Column(DateTime(timezone=True), nullable=False)
    sent_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    fee_collection = relationship("FeeCollection", back_populates="reminders")
