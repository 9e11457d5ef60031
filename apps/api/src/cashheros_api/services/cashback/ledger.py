"""Cashback ledger: transactions, status transitions, balances and withdrawals.

Balance columns on ``users`` are projections of the transaction rows:

* ``pending_balance``   = sum of pending amounts
* ``available_balance`` = sum of confirmed amounts not frozen in a withdrawal
* ``total_earned``      = sum of confirmed and paid amounts
* ``total_redeemed``    = sum of paid amounts

Every mutation changes a transaction row with a conditional ``UPDATE`` and
adjusts the projection in the same database transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cashheros_api.core.clock import Clock, ensure_aware, utcnow
from cashheros_api.core.errors import (
    InsufficientFundsError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailure,
)
from cashheros_api.core.settings import Settings, settings as default_settings
from cashheros_api.models.cashback import (
    CashbackOffer,
    CashbackStatus,
    CashbackStatusEvent,
    CashbackTransaction,
    WithdrawalMethod,
    WithdrawalRequest,
    WithdrawalStatus,
)
from cashheros_api.models.coupon import Coupon
from cashheros_api.models.store import Store
from cashheros_api.models.user import User
from cashheros_api.services.catalog.pagination import Page, PageRequest, paginate
from cashheros_api.services.notifications import AccountNotifier

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

_ALLOWED_TRANSITIONS: dict[CashbackStatus, set[CashbackStatus]] = {
    CashbackStatus.PENDING: {CashbackStatus.CONFIRMED, CashbackStatus.REJECTED},
    CashbackStatus.CONFIRMED: {CashbackStatus.PAID, CashbackStatus.REJECTED},
    CashbackStatus.PAID: set(),
    CashbackStatus.REJECTED: set(),
}


def compute_cashback(gross_amount: Decimal, rate: Decimal) -> Decimal:
    """``gross * rate / 100`` rounded half-to-even to cents."""

    return (Decimal(gross_amount) * Decimal(rate) / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_EVEN)


def _money(value: Any) -> Decimal:
    return Decimal(value if value is not None else 0).quantize(CENT, rounding=ROUND_HALF_EVEN)


@dataclass(slots=True, frozen=True)
class LedgerBalances:
    available: Decimal
    pending: Decimal
    total_earned: Decimal
    total_redeemed: Decimal

    @classmethod
    def from_user(cls, user: User) -> "LedgerBalances":
        return cls(
            available=_money(user.available_balance),
            pending=_money(user.pending_balance),
            total_earned=_money(user.total_earned),
            total_redeemed=_money(user.total_redeemed),
        )


@dataclass(slots=True, frozen=True)
class BalanceAudit:
    user_id: UUID
    stored: LedgerBalances
    computed: LedgerBalances
    in_flight: Decimal

    @property
    def consistent(self) -> bool:
        return self.stored == self.computed


@dataclass(slots=True)
class TransactionFilters(PageRequest):
    status: CashbackStatus | None = None


class CashbackLedger:
    """Owns every write to cashback transactions and the balance projections."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        notifier: AccountNotifier | None = None,
        clock: Clock = utcnow,
        config: Settings | None = None,
    ) -> None:
        self._db = db_session
        self._notifier = notifier
        self._clock = clock
        self._config = config or default_settings

    # Recording

    async def record_purchase(
        self,
        *,
        user_id: UUID,
        store_id: UUID,
        gross_amount: Decimal,
        rate: Decimal | None = None,
        purchase_date: datetime | None = None,
        coupon_id: UUID | None = None,
        offer_id: UUID | None = None,
        order_reference: str | None = None,
        actor: str = "affiliate",
    ) -> CashbackTransaction:
        """Append a pending transaction for an attributed purchase.

        Replaying the same ``(store, orderReference)`` returns the existing
        transaction instead of crediting twice.
        """

        now = self._clock()
        if order_reference:
            existing = await self._find_by_order_reference(store_id, order_reference)
            if existing is not None:
                logger.info(
                    "Purchase attribution replayed",
                    transaction_id=str(existing.id),
                    order_reference=order_reference,
                )
                return existing

        if await self._db.get(User, user_id) is None:
            raise NotFoundError("User not found")
        store = await self._db.get(Store, store_id)
        if store is None:
            raise ValidationFailure("storeId", "Unknown store")
        if coupon_id is not None and await self._db.get(Coupon, coupon_id) is None:
            raise ValidationFailure("couponUsed", "Unknown coupon")

        effective_rate = rate
        if offer_id is not None:
            offer = await self._db.get(CashbackOffer, offer_id)
            if offer is None or offer.store_id != store_id:
                raise ValidationFailure("offerId", "Unknown offer for this store")
            if effective_rate is None:
                effective_rate = Decimal(offer.rate)
        if effective_rate is None:
            effective_rate = Decimal(store.cashback_percentage or 0)
        effective_rate = _money(effective_rate)
        if effective_rate <= 0:
            raise ValidationFailure("rate", "Cashback rate must be positive")

        gross = _money(gross_amount)
        if gross <= 0:
            raise ValidationFailure("grossAmount", "Gross amount must be positive")

        purchased_at = ensure_aware(purchase_date) or now
        if purchased_at > now:
            raise ValidationFailure("purchaseDate", "Purchase date cannot be in the future")

        amount = compute_cashback(gross, effective_rate)
        transaction = CashbackTransaction(
            user_id=user_id,
            store_id=store_id,
            offer_id=offer_id,
            coupon_id=coupon_id,
            order_reference=order_reference,
            gross_amount=gross,
            rate=effective_rate,
            cashback_amount=amount,
            status=CashbackStatus.PENDING,
            purchase_date=purchased_at,
        )
        self._db.add(transaction)
        await self._db.flush()
        self._db.add(
            CashbackStatusEvent(
                transaction_id=transaction.id,
                from_status=None,
                to_status=CashbackStatus.PENDING,
                note="Purchase attributed",
                actor=actor,
                created_at=now,
            )
        )
        await self._adjust_balances(user_id, pending=amount)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            if order_reference:
                existing = await self._find_by_order_reference(store_id, order_reference)
                if existing is not None:
                    return existing
            raise ValidationFailure("orderReference", "Purchase could not be recorded") from exc

        logger.info(
            "Cashback transaction recorded",
            transaction_id=str(transaction.id),
            user_id=str(user_id),
            store_id=str(store_id),
            cashback_amount=str(amount),
        )
        return await self.get_transaction(transaction.id)

    # Transitions

    async def confirm_due(self, *, limit: int, now: datetime | None = None) -> list[UUID]:
        """Confirm up to ``limit`` pending transactions past the confirmation window."""

        reference = now or self._clock()
        cutoff = reference - self._config.confirmation_window
        result = await self._db.execute(
            select(CashbackTransaction.id)
            .where(
                CashbackTransaction.status == CashbackStatus.PENDING,
                CashbackTransaction.purchase_date <= cutoff,
            )
            .order_by(CashbackTransaction.purchase_date, CashbackTransaction.id)
            .limit(limit)
        )
        due_ids = list(result.scalars().all())

        confirmed: list[UUID] = []
        for transaction_id in due_ids:
            transaction = await self._confirm(transaction_id, now=reference, actor="sweeper", note="Confirmation window elapsed")
            if transaction is not None:
                confirmed.append(transaction_id)
                await self._notify_confirmed(transaction)
        return confirmed

    async def transition(
        self,
        transaction_id: UUID,
        target: CashbackStatus,
        *,
        note: str | None = None,
        actor: str = "admin",
    ) -> CashbackTransaction:
        """Manual transition; ``paid`` is only reachable through withdrawal settlement."""

        transaction = await self.get_transaction(transaction_id)
        current = transaction.status
        if target not in _ALLOWED_TRANSITIONS[current] or target == CashbackStatus.PAID:
            raise InvalidTransitionError(current.value, target.value)

        if target == CashbackStatus.CONFIRMED:
            changed = await self._confirm(transaction_id, now=self._clock(), actor=actor, note=note)
        else:
            changed = await self._reject(transaction, note=note, actor=actor)
        if changed is None:
            # Lost a race with the sweeper or another admin.
            refreshed = await self.get_transaction(transaction_id)
            raise InvalidTransitionError(refreshed.status.value, target.value)
        if target == CashbackStatus.CONFIRMED:
            await self._notify_confirmed(changed)
        return await self.get_transaction(transaction_id)

    async def _confirm(
        self,
        transaction_id: UUID,
        *,
        now: datetime,
        actor: str,
        note: str | None,
    ) -> CashbackTransaction | None:
        transaction = await self._db.get(CashbackTransaction, transaction_id, populate_existing=True)
        if transaction is None or transaction.status != CashbackStatus.PENDING:
            return None

        confirmed_at = max(now, ensure_aware(transaction.purchase_date))
        result = await self._db.execute(
            update(CashbackTransaction)
            .where(
                CashbackTransaction.id == transaction_id,
                CashbackTransaction.status == CashbackStatus.PENDING,
            )
            .values(status=CashbackStatus.CONFIRMED, confirmation_date=confirmed_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            return None

        amount = _money(transaction.cashback_amount)
        await self._adjust_balances(
            transaction.user_id,
            pending=-amount,
            available=amount,
            total_earned=amount,
        )
        self._record_event(transaction.id, CashbackStatus.PENDING, CashbackStatus.CONFIRMED, note, actor, confirmed_at)
        await self._db.commit()
        logger.info(
            "Cashback transaction confirmed",
            transaction_id=str(transaction_id),
            user_id=str(transaction.user_id),
            cashback_amount=str(amount),
            actor=actor,
        )
        return await self._db.get(CashbackTransaction, transaction_id, populate_existing=True)

    async def _reject(
        self,
        transaction: CashbackTransaction,
        *,
        note: str | None,
        actor: str,
    ) -> CashbackTransaction | None:
        current = transaction.status
        if current == CashbackStatus.CONFIRMED and transaction.withdrawal_id is not None:
            raise InvalidTransitionError("confirmed (withdrawal in flight)", CashbackStatus.REJECTED.value)

        now = self._clock()
        result = await self._db.execute(
            update(CashbackTransaction)
            .where(
                CashbackTransaction.id == transaction.id,
                CashbackTransaction.status == current,
                CashbackTransaction.withdrawal_id.is_(None),
            )
            .values(status=CashbackStatus.REJECTED, rejection_reason=note)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            return None

        amount = _money(transaction.cashback_amount)
        if current == CashbackStatus.PENDING:
            await self._adjust_balances(transaction.user_id, pending=-amount)
        else:
            await self._adjust_balances(transaction.user_id, available=-amount, total_earned=-amount)
        self._record_event(transaction.id, current, CashbackStatus.REJECTED, note, actor, now)
        await self._db.commit()
        logger.info(
            "Cashback transaction rejected",
            transaction_id=str(transaction.id),
            from_status=current.value,
            cashback_amount=str(amount),
            actor=actor,
        )
        return await self._db.get(CashbackTransaction, transaction.id, populate_existing=True)

    # Withdrawals

    async def request_withdrawal(
        self,
        user_id: UUID,
        method: WithdrawalMethod,
        destination: str,
    ) -> WithdrawalRequest:
        """Freeze every confirmed, unfrozen transaction into a pending payout."""

        minimum = self._config.min_withdrawal
        user = await self._db.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFoundError("User not found")
        if _money(user.available_balance) < minimum:
            raise InsufficientFundsError(f"Available balance below {minimum}")

        now = self._clock()
        withdrawal = WithdrawalRequest(
            user_id=user_id,
            amount=ZERO,
            method=method,
            destination=destination.strip(),
            status=WithdrawalStatus.PENDING,
            requested_at=now,
        )
        self._db.add(withdrawal)
        await self._db.flush()

        await self._db.execute(
            update(CashbackTransaction)
            .where(
                CashbackTransaction.user_id == user_id,
                CashbackTransaction.status == CashbackStatus.CONFIRMED,
                CashbackTransaction.withdrawal_id.is_(None),
            )
            .values(withdrawal_id=withdrawal.id)
            .execution_options(synchronize_session=False)
        )
        frozen_total = _money(
            await self._db.scalar(
                select(func.coalesce(func.sum(CashbackTransaction.cashback_amount), 0)).where(
                    CashbackTransaction.withdrawal_id == withdrawal.id
                )
            )
        )
        if frozen_total < minimum:
            # A concurrent request froze the funds first.
            await self._db.rollback()
            raise InsufficientFundsError(f"Available balance below {minimum}")

        withdrawal.amount = frozen_total
        await self._adjust_balances(user_id, available=-frozen_total)
        await self._db.commit()
        await self._db.refresh(withdrawal)
        logger.info(
            "Withdrawal requested",
            withdrawal_id=str(withdrawal.id),
            user_id=str(user_id),
            amount=str(frozen_total),
            method=method.value,
        )
        return withdrawal

    async def settle_withdrawal(
        self,
        withdrawal_id: UUID,
        *,
        success: bool,
        payment_reference: str | None = None,
        failure_reason: str | None = None,
        actor: str = "payments",
    ) -> WithdrawalRequest:
        """Apply the payment provider's verdict to an in-flight withdrawal."""

        withdrawal = await self._db.get(WithdrawalRequest, withdrawal_id, populate_existing=True)
        if withdrawal is None:
            raise NotFoundError("Withdrawal not found")
        target = WithdrawalStatus.PAID if success else WithdrawalStatus.FAILED
        if withdrawal.status != WithdrawalStatus.PENDING:
            raise InvalidTransitionError(withdrawal.status.value, target.value)

        now = self._clock()
        claimed = await self._db.execute(
            update(WithdrawalRequest)
            .where(WithdrawalRequest.id == withdrawal_id, WithdrawalRequest.status == WithdrawalStatus.PENDING)
            .values(
                status=target,
                settled_at=now,
                payment_reference=payment_reference,
                failure_reason=None if success else (failure_reason or "Payment failed"),
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self._db.rollback()
            raise InvalidTransitionError(WithdrawalStatus.PENDING.value, target.value)

        result = await self._db.execute(
            select(CashbackTransaction)
            .where(
                CashbackTransaction.withdrawal_id == withdrawal_id,
                CashbackTransaction.status == CashbackStatus.CONFIRMED,
            )
            .execution_options(populate_existing=True)
        )
        transactions = list(result.scalars().all())
        amount = sum((_money(item.cashback_amount) for item in transactions), ZERO)

        for transaction in transactions:
            if success:
                transaction.status = CashbackStatus.PAID
                transaction.payment_date = max(now, ensure_aware(transaction.confirmation_date) or now)
                self._record_event(
                    transaction.id,
                    CashbackStatus.CONFIRMED,
                    CashbackStatus.PAID,
                    f"Withdrawal {withdrawal_id} paid",
                    actor,
                    now,
                )
            else:
                transaction.withdrawal_id = None

        if success:
            await self._adjust_balances(withdrawal.user_id, total_redeemed=amount)
        else:
            await self._adjust_balances(withdrawal.user_id, available=amount)
        await self._db.commit()

        withdrawal = await self._db.get(WithdrawalRequest, withdrawal_id, populate_existing=True)
        logger.info(
            "Withdrawal settled",
            withdrawal_id=str(withdrawal_id),
            user_id=str(withdrawal.user_id),
            status=target.value,
            amount=str(amount),
            transactions=len(transactions),
        )
        await self._notify_settled(withdrawal)
        return withdrawal

    # Reads

    async def get_balances(self, user_id: UUID) -> LedgerBalances:
        user = await self._db.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFoundError("User not found")
        return LedgerBalances.from_user(user)

    async def audit_balances(self, user_id: UUID) -> BalanceAudit:
        """Recompute the projections from transaction rows and compare."""

        stored = await self.get_balances(user_id)
        amount = CashbackTransaction.cashback_amount
        status = CashbackTransaction.status
        frozen = CashbackTransaction.withdrawal_id.is_not(None)

        def _sum(condition):
            return func.coalesce(func.sum(case((condition, amount), else_=0)), 0)

        row = (
            await self._db.execute(
                select(
                    _sum(and_(status == CashbackStatus.CONFIRMED, CashbackTransaction.withdrawal_id.is_(None))),
                    _sum(status == CashbackStatus.PENDING),
                    _sum(status.in_([CashbackStatus.CONFIRMED, CashbackStatus.PAID])),
                    _sum(status == CashbackStatus.PAID),
                    _sum(and_(status == CashbackStatus.CONFIRMED, frozen)),
                ).where(CashbackTransaction.user_id == user_id)
            )
        ).one()
        computed = LedgerBalances(
            available=_money(row[0]),
            pending=_money(row[1]),
            total_earned=_money(row[2]),
            total_redeemed=_money(row[3]),
        )
        audit = BalanceAudit(user_id=user_id, stored=stored, computed=computed, in_flight=_money(row[4]))
        if not audit.consistent:
            logger.warning(
                "Balance projection drift detected",
                user_id=str(user_id),
                stored=str(stored),
                computed=str(computed),
            )
        return audit

    async def get_transaction(self, transaction_id: UUID) -> CashbackTransaction:
        result = await self._db.execute(
            select(CashbackTransaction)
            .options(selectinload(CashbackTransaction.events))
            .where(CashbackTransaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        transaction = result.scalar_one_or_none()
        if transaction is None:
            raise NotFoundError("Cashback transaction not found")
        return transaction

    async def list_transactions(self, user_id: UUID, filters: TransactionFilters | None = None) -> Page[CashbackTransaction]:
        filters = filters or TransactionFilters()
        stmt = select(CashbackTransaction).where(CashbackTransaction.user_id == user_id)
        if filters.status is not None:
            stmt = stmt.where(CashbackTransaction.status == filters.status)
        stmt = stmt.order_by(CashbackTransaction.purchase_date.desc(), CashbackTransaction.id)
        return await paginate(self._db, stmt, filters)

    async def list_withdrawals(self, user_id: UUID, request: PageRequest | None = None) -> Page[WithdrawalRequest]:
        request = request or PageRequest()
        stmt = (
            select(WithdrawalRequest)
            .where(WithdrawalRequest.user_id == user_id)
            .order_by(WithdrawalRequest.requested_at.desc(), WithdrawalRequest.id)
        )
        return await paginate(self._db, stmt, request)

    # Helpers

    async def _adjust_balances(
        self,
        user_id: UUID,
        *,
        available: Decimal = ZERO,
        pending: Decimal = ZERO,
        total_earned: Decimal = ZERO,
        total_redeemed: Decimal = ZERO,
    ) -> None:
        values: dict[str, Any] = {}
        if available:
            values["available_balance"] = User.available_balance + available
        if pending:
            values["pending_balance"] = User.pending_balance + pending
        if total_earned:
            values["total_earned"] = User.total_earned + total_earned
        if total_redeemed:
            values["total_redeemed"] = User.total_redeemed + total_redeemed
        if not values:
            return
        await self._db.execute(
            update(User).where(User.id == user_id).values(**values).execution_options(synchronize_session=False)
        )

    def _record_event(
        self,
        transaction_id: UUID,
        from_status: CashbackStatus | None,
        to_status: CashbackStatus,
        note: str | None,
        actor: str,
        at: datetime,
    ) -> None:
        self._db.add(
            CashbackStatusEvent(
                transaction_id=transaction_id,
                from_status=from_status,
                to_status=to_status,
                note=note,
                actor=actor,
                created_at=at,
            )
        )

    async def _find_by_order_reference(self, store_id: UUID, order_reference: str) -> CashbackTransaction | None:
        result = await self._db.execute(
            select(CashbackTransaction.id).where(
                CashbackTransaction.store_id == store_id,
                CashbackTransaction.order_reference == order_reference,
            )
        )
        existing_id = result.scalar_one_or_none()
        if existing_id is None:
            return None
        return await self.get_transaction(existing_id)

    async def _notify_confirmed(self, transaction: CashbackTransaction) -> None:
        if self._notifier is None:
            return
        user = await self._db.get(User, transaction.user_id)
        if user is not None:
            await self._notifier.send_cashback_confirmed(user, transaction)

    async def _notify_settled(self, withdrawal: WithdrawalRequest) -> None:
        if self._notifier is None:
            return
        user = await self._db.get(User, withdrawal.user_id)
        if user is not None:
            await self._notifier.send_withdrawal_settled(user, withdrawal)


__all__ = [
    "BalanceAudit",
    "LedgerBalances",
    "CashbackLedger",
    "TransactionFilters",
    "compute_cashback",
]
