"""Initial schema: users, catalog, redemptions, cashback ledger and job leases.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


cashback_status = postgresql.ENUM(
    "PENDING", "CONFIRMED", "PAID", "REJECTED", name="cashback_status_enum", create_type=False
)
withdrawal_method = postgresql.ENUM(
    "PAYPAL", "BANK_TRANSFER", "STORE_CREDIT", "GIFT_CARD", "CRYPTO", name="withdrawal_method_enum", create_type=False
)
withdrawal_status = postgresql.ENUM("PENDING", "PAID", "FAILED", name="withdrawal_status_enum", create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (cashback_status, withdrawal_method, withdrawal_status):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("password_hash", sa.String(length=128), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("verification_token_hash", sa.String(length=64), nullable=True, unique=True),
        sa.Column("email_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("token_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_login_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("available_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("pending_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_earned", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_redeemed", sa.Numeric(14, 2), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("token_version >= 0", name="ck_users_token_version_non_negative"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "stores",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("logo_url", sa.String(length=512), nullable=True),
        sa.Column("website_url", sa.String(length=512), nullable=True),
        sa.Column("categories", sa.JSON(), nullable=False),
        sa.Column("cashback_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "cashback_percentage >= 0 AND cashback_percentage <= 100",
            name="ck_stores_cashback_percentage_range",
        ),
    )
    op.create_index("ix_stores_name", "stores", ["name"], unique=True)

    op.create_table(
        "coupons",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("store_id", sa.Uuid(), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("discount", sa.Numeric(5, 2), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("usage_count >= 0", name="ck_coupons_usage_count_non_negative"),
        sa.CheckConstraint("usage_limit IS NULL OR usage_count <= usage_limit", name="ck_coupons_usage_within_limit"),
        sa.CheckConstraint("usage_limit IS NULL OR usage_limit > 0", name="ck_coupons_usage_limit_positive"),
        sa.CheckConstraint("discount >= 0 AND discount <= 100", name="ck_coupons_discount_range"),
    )
    op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)
    op.create_index("ix_coupons_category", "coupons", ["category"])
    op.create_index("ix_coupons_store_active", "coupons", ["store_id", "is_active"])
    op.create_index("ix_coupons_active_expiry", "coupons", ["is_active", "expiry_date"])

    op.create_table(
        "coupon_redemptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("coupon_id", sa.Uuid(), sa.ForeignKey("coupons.id"), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "coupon_id", name="uq_coupon_redemptions_user_coupon"),
    )
    op.create_index("ix_coupon_redemptions_user_id", "coupon_redemptions", ["user_id"])
    op.create_index("ix_coupon_redemptions_coupon_id", "coupon_redemptions", ["coupon_id"])

    op.create_table(
        "cashback_offers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("store_id", sa.Uuid(), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("terms", sa.Text(), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("rate > 0 AND rate <= 100", name="ck_cashback_offers_rate_range"),
    )
    op.create_index("ix_cashback_offers_category", "cashback_offers", ["category"])
    op.create_index("ix_cashback_offers_store_active", "cashback_offers", ["store_id", "is_active"])

    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("method", withdrawal_method, nullable=False),
        sa.Column("destination", sa.String(length=255), nullable=False),
        sa.Column("status", withdrawal_status, nullable=False, server_default="PENDING"),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_withdrawal_requests_user_id", "withdrawal_requests", ["user_id"])

    op.create_table(
        "cashback_transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("store_id", sa.Uuid(), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("offer_id", sa.Uuid(), sa.ForeignKey("cashback_offers.id"), nullable=True),
        sa.Column("coupon_id", sa.Uuid(), sa.ForeignKey("coupons.id"), nullable=True),
        sa.Column("withdrawal_id", sa.Uuid(), sa.ForeignKey("withdrawal_requests.id"), nullable=True),
        sa.Column("order_reference", sa.String(length=128), nullable=True),
        sa.Column("gross_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("cashback_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", cashback_status, nullable=False, server_default="PENDING"),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmation_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("gross_amount > 0", name="ck_cashback_transactions_gross_positive"),
        sa.CheckConstraint("rate > 0", name="ck_cashback_transactions_rate_positive"),
        sa.CheckConstraint("cashback_amount >= 0", name="ck_cashback_transactions_amount_non_negative"),
        sa.UniqueConstraint("store_id", "order_reference", name="uq_cashback_transactions_store_order"),
    )
    op.create_index("ix_cashback_transactions_user_status", "cashback_transactions", ["user_id", "status"])
    op.create_index("ix_cashback_transactions_status_purchase", "cashback_transactions", ["status", "purchase_date"])
    op.create_index("ix_cashback_transactions_store_id", "cashback_transactions", ["store_id"])
    op.create_index("ix_cashback_transactions_offer_id", "cashback_transactions", ["offer_id"])
    op.create_index("ix_cashback_transactions_coupon_id", "cashback_transactions", ["coupon_id"])
    op.create_index("ix_cashback_transactions_withdrawal_id", "cashback_transactions", ["withdrawal_id"])

    op.create_table(
        "cashback_status_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.Uuid(),
            sa.ForeignKey("cashback_transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("from_status", cashback_status, nullable=True),
        sa.Column("to_status", cashback_status, nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("actor", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_cashback_status_events_transaction_id", "cashback_status_events", ["transaction_id"])

    op.create_table(
        "job_leases",
        sa.Column("name", sa.String(length=64), primary_key=True),
        sa.Column("holder", sa.String(length=128), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("job_leases")
    op.drop_index("ix_cashback_status_events_transaction_id", table_name="cashback_status_events")
    op.drop_table("cashback_status_events")
    for index in (
        "ix_cashback_transactions_withdrawal_id",
        "ix_cashback_transactions_coupon_id",
        "ix_cashback_transactions_offer_id",
        "ix_cashback_transactions_store_id",
        "ix_cashback_transactions_status_purchase",
        "ix_cashback_transactions_user_status",
    ):
        op.drop_index(index, table_name="cashback_transactions")
    op.drop_table("cashback_transactions")
    op.drop_index("ix_withdrawal_requests_user_id", table_name="withdrawal_requests")
    op.drop_table("withdrawal_requests")
    op.drop_index("ix_cashback_offers_store_active", table_name="cashback_offers")
    op.drop_index("ix_cashback_offers_category", table_name="cashback_offers")
    op.drop_table("cashback_offers")
    op.drop_index("ix_coupon_redemptions_coupon_id", table_name="coupon_redemptions")
    op.drop_index("ix_coupon_redemptions_user_id", table_name="coupon_redemptions")
    op.drop_table("coupon_redemptions")
    for index in ("ix_coupons_active_expiry", "ix_coupons_store_active", "ix_coupons_category", "ix_coupons_code"):
        op.drop_index(index, table_name="coupons")
    op.drop_table("coupons")
    op.drop_index("ix_stores_name", table_name="stores")
    op.drop_table("stores")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (withdrawal_status, withdrawal_method, cashback_status):
        enum_type.drop(bind, checkfirst=True)
