"""Cashback offers, ledger transactions, withdrawals and their audit trail."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import relationship

from cashheros_api.db.base import Base


class CashbackStatus(str, Enum):
    """Lifecycle states of a cashback transaction."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    REJECTED = "rejected"


class WithdrawalMethod(str, Enum):
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    STORE_CREDIT = "store_credit"
    GIFT_CARD = "gift_card"
    CRYPTO = "crypto"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class CashbackOffer(Base):
    """Advertised cashback rate for a store."""

    __tablename__ = "cashback_offers"
    __table_args__ = (
        CheckConstraint("rate > 0 AND rate <= 100", name="ck_cashback_offers_rate_range"),
        Index("ix_cashback_offers_store_active", "store_id", "is_active"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    store_id = Column(Uuid(as_uuid=True), ForeignKey("stores.id"), nullable=False)
    rate = Column(Numeric(5, 2), nullable=False)
    category = Column(String(64), nullable=True, index=True)
    terms = Column(Text, nullable=True)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    is_featured = Column(Boolean, nullable=False, default=False, server_default="false")
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    store = relationship("Store", lazy="joined")


class WithdrawalRequest(Base):
    """Payout of a user's available balance, settled by the payment provider."""

    __tablename__ = "withdrawal_requests"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False, default=0)
    method = Column(SqlEnum(WithdrawalMethod, name="withdrawal_method_enum"), nullable=False)
    destination = Column(String(255), nullable=False)
    status = Column(
        SqlEnum(WithdrawalStatus, name="withdrawal_status_enum"),
        nullable=False,
        default=WithdrawalStatus.PENDING,
        server_default=WithdrawalStatus.PENDING.name,
    )
    payment_reference = Column(String(128), nullable=True)
    failure_reason = Column(Text, nullable=True)
    requested_at = Column(DateTime(timezone=True), nullable=False)
    settled_at = Column(DateTime(timezone=True), nullable=True)


class CashbackTransaction(Base):
    """Cashback earned on an attributed purchase.

    ``withdrawal_id`` is set while the transaction is frozen inside an
    in-flight withdrawal and stays set once the withdrawal is paid.
    """

    __tablename__ = "cashback_transactions"
    __table_args__ = (
        CheckConstraint("gross_amount > 0", name="ck_cashback_transactions_gross_positive"),
        CheckConstraint("rate > 0", name="ck_cashback_transactions_rate_positive"),
        CheckConstraint("cashback_amount >= 0", name="ck_cashback_transactions_amount_non_negative"),
        Index("ix_cashback_transactions_user_status", "user_id", "status"),
        Index("ix_cashback_transactions_status_purchase", "status", "purchase_date"),
        UniqueConstraint("store_id", "order_reference", name="uq_cashback_transactions_store_order"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    store_id = Column(Uuid(as_uuid=True), ForeignKey("stores.id"), nullable=False, index=True)
    offer_id = Column(Uuid(as_uuid=True), ForeignKey("cashback_offers.id"), nullable=True, index=True)
    coupon_id = Column(Uuid(as_uuid=True), ForeignKey("coupons.id"), nullable=True, index=True)
    withdrawal_id = Column(Uuid(as_uuid=True), ForeignKey("withdrawal_requests.id"), nullable=True, index=True)
    order_reference = Column(String(128), nullable=True)
    gross_amount = Column(Numeric(14, 2), nullable=False)
    rate = Column(Numeric(5, 2), nullable=False)
    cashback_amount = Column(Numeric(14, 2), nullable=False)
    status = Column(
        SqlEnum(CashbackStatus, name="cashback_status_enum"),
        nullable=False,
        default=CashbackStatus.PENDING,
        server_default=CashbackStatus.PENDING.name,
    )
    purchase_date = Column(DateTime(timezone=True), nullable=False)
    confirmation_date = Column(DateTime(timezone=True), nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    events = relationship(
        "CashbackStatusEvent",
        back_populates="transaction",
        order_by="CashbackStatusEvent.created_at",
        lazy="selectin",
    )


class CashbackStatusEvent(Base):
    """Append-only history of a transaction's status changes."""

    __tablename__ = "cashback_status_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    transaction_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("cashback_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status = Column(SqlEnum(CashbackStatus, name="cashback_status_enum"), nullable=True)
    to_status = Column(SqlEnum(CashbackStatus, name="cashback_status_enum"), nullable=False)
    note = Column(Text, nullable=True)
    actor = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    transaction = relationship("CashbackTransaction", back_populates="events")
