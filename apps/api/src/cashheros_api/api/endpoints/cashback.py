"""Cashback balances, transaction history, withdrawals and integration callbacks."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.api.dependencies.auth import get_current_claims, require_admin
from cashheros_api.api.dependencies.security import require_integration_api_key
from cashheros_api.core.errors import NotFoundError
from cashheros_api.db.session import get_session
from cashheros_api.models.cashback import CashbackStatus
from cashheros_api.schemas.auth import BalanceSnapshot
from cashheros_api.schemas.cashback import (
    BalanceAuditResponse,
    CashbackSummaryResponse,
    CashbackTransactionDetail,
    CashbackTransactionResponse,
    PurchaseAttributionRequest,
    SettlementRequest,
    StatusUpdateRequest,
    WithdrawalCreateRequest,
    WithdrawalResponse,
)
from cashheros_api.schemas.common import ApiResponse, PagedResponse, pagination_meta
from cashheros_api.services.auth import AccessClaims
from cashheros_api.services.cashback import CashbackLedger, LedgerBalances, TransactionFilters
from cashheros_api.services.catalog import PageRequest
from cashheros_api.services.notifications import AccountNotifier

router = APIRouter(prefix="/cashback", tags=["Cashback"])


def get_ledger(db: AsyncSession = Depends(get_session)) -> CashbackLedger:
    return CashbackLedger(db, notifier=AccountNotifier())


def _balances(snapshot: LedgerBalances) -> BalanceSnapshot:
    return BalanceSnapshot(
        available=float(snapshot.available),
        pending=float(snapshot.pending),
        total_earned=float(snapshot.total_earned),
        total_redeemed=float(snapshot.total_redeemed),
    )


@router.get("", response_model=ApiResponse[CashbackSummaryResponse])
async def cashback_summary(
    limit: int | None = Query(None, ge=1),
    claims: AccessClaims = Depends(get_current_claims),
    ledger: CashbackLedger = Depends(get_ledger),
) -> ApiResponse[CashbackSummaryResponse]:
    balances = await ledger.get_balances(claims.user_id)
    page = await ledger.list_transactions(claims.user_id, TransactionFilters(limit=limit))
    return ApiResponse(
        data=CashbackSummaryResponse(
            balances=_balances(balances),
            transactions=[CashbackTransactionResponse.model_validate(item) for item in page.items],
            pagination=pagination_meta(page),
        )
    )


@router.get("/transactions", response_model=PagedResponse[CashbackTransactionResponse])
async def list_transactions(
    status: CashbackStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    claims: AccessClaims = Depends(get_current_claims),
    ledger: CashbackLedger = Depends(get_ledger),
) -> PagedResponse[CashbackTransactionResponse]:
    result = await ledger.list_transactions(
        claims.user_id,
        TransactionFilters(page=page, limit=limit, status=status),
    )
    return PagedResponse(
        data=[CashbackTransactionResponse.model_validate(item) for item in result.items],
        pagination=pagination_meta(result),
    )


@router.post(
    "/transactions",
    response_model=ApiResponse[CashbackTransactionDetail],
    status_code=201,
    dependencies=[Depends(require_integration_api_key)],
)
async def record_purchase(
    payload: PurchaseAttributionRequest,
    ledger: CashbackLedger = Depends(get_ledger),
) -> ApiResponse[CashbackTransactionDetail]:
    transaction = await ledger.record_purchase(
        user_id=payload.user_id,
        store_id=payload.store_id,
        gross_amount=payload.gross_amount,
        rate=payload.rate,
        purchase_date=payload.purchase_date,
        coupon_id=payload.coupon_id,
        offer_id=payload.offer_id,
        order_reference=payload.order_reference,
    )
    return ApiResponse(data=CashbackTransactionDetail.model_validate(transaction))


@router.get("/transactions/{transaction_id}", response_model=ApiResponse[CashbackTransactionDetail])
async def get_transaction(
    transaction_id: UUID,
    claims: AccessClaims = Depends(get_current_claims),
    ledger: CashbackLedger = Depends(get_ledger),
) -> ApiResponse[CashbackTransactionDetail]:
    transaction = await ledger.get_transaction(transaction_id)
    if transaction.user_id != claims.user_id and not claims.is_admin:
        # Other users' transactions are indistinguishable from missing ones.
        raise NotFoundError("Cashback transaction not found")
    return ApiResponse(data=CashbackTransactionDetail.model_validate(transaction))


@router.patch("/transactions/{transaction_id}/status", response_model=ApiResponse[CashbackTransactionDetail])
async def update_transaction_status(
    transaction_id: UUID,
    payload: StatusUpdateRequest,
    claims: AccessClaims = Depends(require_admin),
    ledger: CashbackLedger = Depends(get_ledger),
) -> ApiResponse[CashbackTransactionDetail]:
    transaction = await ledger.transition(
        transaction_id,
        CashbackStatus(payload.status),
        note=payload.note,
        actor=f"admin:{claims.user_id}",
    )
    return ApiResponse(data=CashbackTransactionDetail.model_validate(transaction))


@router.post("/withdraw", response_model=ApiResponse[WithdrawalResponse])
async def request_withdrawal(
    payload: WithdrawalCreateRequest,
    claims: AccessClaims = Depends(get_current_claims),
    ledger: CashbackLedger = Depends(get_ledger),
) -> ApiResponse[WithdrawalResponse]:
    withdrawal = await ledger.request_withdrawal(claims.user_id, payload.method, payload.destination)
    return ApiResponse(data=WithdrawalResponse.model_validate(withdrawal))


@router.get("/withdrawals", response_model=PagedResponse[WithdrawalResponse])
async def list_withdrawals(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    claims: AccessClaims = Depends(get_current_claims),
    ledger: CashbackLedger = Depends(get_ledger),
) -> PagedResponse[WithdrawalResponse]:
    result = await ledger.list_withdrawals(claims.user_id, PageRequest(page=page, limit=limit))
    return PagedResponse(
        data=[WithdrawalResponse.model_validate(item) for item in result.items],
        pagination=pagination_meta(result),
    )


@router.post(
    "/withdrawals/{withdrawal_id}/settlement",
    response_model=ApiResponse[WithdrawalResponse],
    dependencies=[Depends(require_integration_api_key)],
)
async def settle_withdrawal(
    withdrawal_id: UUID,
    payload: SettlementRequest,
    ledger: CashbackLedger = Depends(get_ledger),
) -> ApiResponse[WithdrawalResponse]:
    withdrawal = await ledger.settle_withdrawal(
        withdrawal_id,
        success=payload.success,
        payment_reference=payload.payment_reference,
        failure_reason=payload.failure_reason,
    )
    return ApiResponse(data=WithdrawalResponse.model_validate(withdrawal))


@router.get("/balance/recompute", response_model=ApiResponse[BalanceAuditResponse])
async def recompute_balance(
    user_id: UUID = Query(..., alias="userId"),
    claims: AccessClaims = Depends(require_admin),
    ledger: CashbackLedger = Depends(get_ledger),
) -> ApiResponse[BalanceAuditResponse]:
    audit = await ledger.audit_balances(user_id)
    return ApiResponse(
        data=BalanceAuditResponse(
            user_id=audit.user_id,
            stored=_balances(audit.stored),
            computed=_balances(audit.computed),
            in_flight=float(audit.in_flight),
            consistent=audit.consistent,
        )
    )
