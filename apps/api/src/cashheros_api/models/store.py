from uuid import uuid4

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text, Uuid, func

from cashheros_api.db.base import Base


class Store(Base):
    """Retailer participating in coupon and cashback programmes."""

    __tablename__ = "stores"
    __table_args__ = (
        CheckConstraint(
            "cashback_percentage >= 0 AND cashback_percentage <= 100",
            name="ck_stores_cashback_percentage_range",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(120), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    logo_url = Column(String(512), nullable=True)
    website_url = Column(String(512), nullable=True)
    categories = Column(JSON, nullable=False, default=list)
    cashback_percentage = Column(Numeric(5, 2), nullable=False, default=0, server_default="0")
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    is_featured = Column(Boolean, nullable=False, default=False, server_default="false")
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
