"""Promo codes and their redemption history. Tenant-scoped; code is unique per tenant and stored upper-case."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.db.session import Base


class PromoCode(Base):
    """Discount rule with target scope, validity window and usage cap. used_count only moves via atomic UPDATE."""

    __tablename__ = "promo_codes"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_promo_code_tenant_code"),
        CheckConstraint("discount_type IN ('percentage','fixed')", name="chk_promo_code_discount_type"),
        CheckConstraint("target_type IN ('all','specific','category')", name="chk_promo_code_target_type"),
        CheckConstraint("used_count >= 0", name="chk_promo_code_used_count"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(20), nullable=False)
    description = Column(Text, nullable=True)
    discount_type = Column(String(20), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False)
    max_discount_amount = Column(Numeric(12, 2), nullable=True)  # NULL = no cap
    minimum_order_amount = Column(Numeric(12, 2), nullable=False, default=0)
    target_type = Column(String(20), nullable=False, default="all")
    # Product ids as strings (specific) / category names (category)
    target_products = Column(JSON, nullable=False, default=list)
    target_categories = Column(JSON, nullable=False, default=list)
    usage_limit = Column(Integer, nullable=True)  # NULL = unlimited
    used_count = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class PromoCodeUsage(Base):
    """One successful redemption: checkout against a product, or a discount on a ledger record."""

    __tablename__ = "promo_code_usages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    promo_code_id = Column(Uuid, ForeignKey("promo_codes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    fee_collection_id = Column(Uuid, ForeignKey("fee_collections.id", ondelete="SET NULL"), nullable=True)
    order_reference = Column(String(100), nullable=True)
    original_price = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    final_price = Column(Numeric(12, 2), nullable=False)
    used_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    promo_code = relationship("PromoCode")
