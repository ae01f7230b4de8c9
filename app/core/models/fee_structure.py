"""Fee structure: per-school fee definition with class scope, frequency, discount and late-fee rules."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.core.enums import AdjustmentType, FeeFrequency, FeeStructureStatus
from app.core.money import ZERO, percent_of, quantize, to_decimal
from app.db.session import Base


class FeeStructure(Base):
    """
    Fee definition a ledger record is issued from. class_id NULL means the fee applies to all classes.
    The ledger never edits a structure; it only reads amount, frequency and the discount/late-fee rules.
    """

    __tablename__ = "fee_structures"
    __table_args__ = (
        CheckConstraint(
            "frequency IN ('monthly','one-time','quarterly','semi-annual','annual','custom')",
            name="chk_fee_structure_frequency",
        ),
        CheckConstraint("amount >= 0", name="chk_fee_structure_amount"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    category = Column(String(100), nullable=False)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=True)
    academic_year = Column(String(20), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    frequency = Column(String(30), nullable=False, default=FeeFrequency.MONTHLY.value)
    due_day = Column(Integer, nullable=False, default=1)  # day of month the fee falls due

    discount_enabled = Column(Boolean, nullable=False, default=False)
    discount_type = Column(String(20), nullable=False, default=AdjustmentType.PERCENTAGE.value)
    discount_value = Column(Numeric(12, 2), nullable=False, default=0)
    discount_description = Column(String(255), nullable=True)

    late_fee_enabled = Column(Boolean, nullable=False, default=False)
    late_fee_type = Column(String(20), nullable=False, default=AdjustmentType.FIXED.value)
    late_fee_value = Column(Numeric(12, 2), nullable=False, default=0)
    grace_period_days = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default=FeeStructureStatus.ACTIVE.value)
    description = Column(Text, nullable=True)
    created_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    school_class = relationship("SchoolClass", foreign_keys=[class_id])

    def applies_to_class(self, class_id) -> bool:
        return self.class_id is None or (class_id is not None and str(self.class_id) == str(class_id))

    def calculate_discount(self) -> Decimal:
        """Discount granted by the structure itself, never more than the fee amount."""
        if not self.discount_enabled:
            return ZERO
        amount = to_decimal(self.amount)
        if self.discount_type == AdjustmentType.PERCENTAGE.value:
            discount = percent_of(amount, self.discount_value)
        else:
            discount = quantize(self.discount_value)
        return min(discount, quantize(amount))

    def calculate_late_fee(self, days_late: int) -> Decimal:
        """Late fee accrued per day once the grace period has passed."""
        if not self.late_fee_enabled or days_late <= (self.grace_period_days or 0):
            return ZERO
        effective_days = days_late - (self.grace_period_days or 0)
        if self.late_fee_type == AdjustmentType.PERCENTAGE.value:
            return quantize(percent_of(self.amount, self.late_fee_value) * effective_days)
        return quantize(to_decimal(self.late_fee_value) * effective_days)
