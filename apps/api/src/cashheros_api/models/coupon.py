"""Coupon catalog and per-user redemption records."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import relationship

from cashheros_api.db.base import Base


class Coupon(Base):
    """Discount code with an optional global usage allowance."""

    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("usage_count >= 0", name="ck_coupons_usage_count_non_negative"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_coupons_usage_within_limit",
        ),
        CheckConstraint("usage_limit IS NULL OR usage_limit > 0", name="ck_coupons_usage_limit_positive"),
        CheckConstraint("discount >= 0 AND discount <= 100", name="ck_coupons_discount_range"),
        Index("ix_coupons_store_active", "store_id", "is_active"),
        Index("ix_coupons_active_expiry", "is_active", "expiry_date"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(20), nullable=False, unique=True, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    store_id = Column(Uuid(as_uuid=True), ForeignKey("stores.id"), nullable=False)
    discount = Column(Numeric(5, 2), nullable=False)
    category = Column(String(64), nullable=True, index=True)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0, server_default="0")
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    store = relationship("Store", lazy="joined")


class CouponRedemption(Base):
    """One row per (user, coupon); the unique pair enforces single use per user."""

    __tablename__ = "coupon_redemptions"
    __table_args__ = (
        UniqueConstraint("user_id", "coupon_id", name="uq_coupon_redemptions_user_coupon"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    coupon_id = Column(Uuid(as_uuid=True), ForeignKey("coupons.id"), nullable=False, index=True)
    redeemed_at = Column(DateTime(timezone=True), nullable=False)

    coupon = relationship("Coupon", lazy="joined")
