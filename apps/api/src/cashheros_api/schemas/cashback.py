from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from cashheros_api.models.cashback import CashbackStatus, WithdrawalMethod, WithdrawalStatus

from .auth import BalanceSnapshot
from .common import PaginationMeta, UtcDatetime


class PurchaseAttributionRequest(BaseModel):
    """Purchase reported by the affiliate tracker."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    user_id: UUID = Field(..., alias="userId")
    store_id: UUID = Field(..., alias="storeId")
    gross_amount: Decimal = Field(..., alias="grossAmount", gt=0, max_digits=14, decimal_places=2)
    rate: Decimal | None = Field(None, gt=0, le=100, decimal_places=2)
    purchase_date: UtcDatetime | None = Field(None, alias="purchaseDate")
    coupon_id: UUID | None = Field(None, alias="couponUsed")
    offer_id: UUID | None = Field(None, alias="offerId")
    order_reference: str | None = Field(None, alias="orderReference", max_length=128)


class StatusUpdateRequest(BaseModel):
    status: Literal["confirmed", "rejected"]
    note: str | None = Field(None, max_length=1000)


class WithdrawalCreateRequest(BaseModel):
    method: WithdrawalMethod
    destination: str = Field(..., min_length=3, max_length=255)


class SettlementRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    payment_reference: str | None = Field(None, alias="paymentReference", max_length=128)
    failure_reason: str | None = Field(None, alias="failureReason", max_length=1000)


class StatusEventResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    from_status: CashbackStatus | None = Field(None, alias="fromStatus")
    to_status: CashbackStatus = Field(..., alias="toStatus")
    note: str | None = None
    actor: str | None = None
    created_at: UtcDatetime = Field(..., alias="createdAt")


class CashbackTransactionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    user_id: UUID = Field(..., alias="userId")
    store_id: UUID = Field(..., alias="storeId")
    offer_id: UUID | None = Field(None, alias="offerId")
    coupon_id: UUID | None = Field(None, alias="couponUsed")
    withdrawal_id: UUID | None = Field(None, alias="withdrawalId")
    order_reference: str | None = Field(None, alias="orderReference")
    gross_amount: float = Field(..., alias="grossAmount")
    rate: float
    cashback_amount: float = Field(..., alias="cashbackAmount")
    status: CashbackStatus
    purchase_date: UtcDatetime = Field(..., alias="purchaseDate")
    confirmation_date: UtcDatetime | None = Field(None, alias="confirmationDate")
    payment_date: UtcDatetime | None = Field(None, alias="paymentDate")
    rejection_reason: str | None = Field(None, alias="rejectionReason")


class CashbackTransactionDetail(CashbackTransactionResponse):
    history: list[StatusEventResponse] = Field(default_factory=list, validation_alias="events", serialization_alias="history")


class CashbackSummaryResponse(BaseModel):
    balances: BalanceSnapshot
    transactions: list[CashbackTransactionResponse]
    pagination: PaginationMeta


class WithdrawalResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    user_id: UUID = Field(..., alias="userId")
    amount: float
    method: WithdrawalMethod
    destination: str
    status: WithdrawalStatus
    payment_reference: str | None = Field(None, alias="paymentReference")
    failure_reason: str | None = Field(None, alias="failureReason")
    requested_at: UtcDatetime = Field(..., alias="requestedAt")
    settled_at: UtcDatetime | None = Field(None, alias="settledAt")


class BalanceAuditResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(..., alias="userId")
    stored: BalanceSnapshot
    computed: BalanceSnapshot
    in_flight: float = Field(..., alias="inFlight")
    consistent: bool
