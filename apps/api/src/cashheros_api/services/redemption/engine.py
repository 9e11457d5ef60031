"""Atomic coupon redemption.

The usage counter and the per-user redemption row are two separate
conditional commits:

1. ``UPDATE coupons SET usage_count = usage_count + 1`` guarded by the
   usage limit, checked through ``rowcount``.
2. ``INSERT`` into ``coupon_redemptions`` guarded by the unique
   ``(user_id, coupon_id)`` constraint.

When the second commit fails, the first is compensated by decrementing the
counter. A lost race is re-evaluated once from the top so the caller sees
the same error a sequential call would produce.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, TypeVar
from uuid import UUID

from loguru import logger
from sqlalchemy import exists, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.core.clock import Clock, ensure_aware, utcnow
from cashheros_api.core.errors import (
    NotFoundError,
    RedemptionError,
    RedemptionErrorKind,
    UnexpectedError,
)
from cashheros_api.core.settings import settings
from cashheros_api.models.coupon import Coupon, CouponRedemption

T = TypeVar("T")

_MAX_ATTEMPTS = 2


@dataclass(slots=True)
class RedemptionResult:
    coupon: Coupon
    redeemed_at: datetime


class RedemptionEngine:
    """Validates and commits one user's redemption of one coupon."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        clock: Clock = utcnow,
        timeout_seconds: float | None = None,
    ) -> None:
        self._db = db_session
        self._clock = clock
        self._timeout = timeout_seconds or settings.store_call_timeout_seconds

    async def redeem(self, user_id: UUID, coupon_id: UUID) -> RedemptionResult:
        conflict = RedemptionErrorKind.LIMIT_REACHED
        for attempt in range(1, _MAX_ATTEMPTS + 1):
            now = self._clock()
            try:
                coupon = await self._evaluate(user_id, coupon_id, now)
                claimed = await self._claim_usage(coupon_id)
            except (asyncio.TimeoutError, DBAPIError) as exc:
                await self._db.rollback()
                logger.error("Redemption store call failed", coupon_id=str(coupon_id), error=str(exc))
                raise UnexpectedError("Coupon store unavailable") from exc

            if not claimed:
                conflict = RedemptionErrorKind.LIMIT_REACHED
                logger.info(
                    "Redemption lost usage race",
                    coupon_id=str(coupon_id),
                    user_id=str(user_id),
                    attempt=attempt,
                )
                continue

            try:
                inserted = await self._insert_record(user_id, coupon_id, now)
            except (asyncio.TimeoutError, DBAPIError) as exc:
                await self._compensate(user_id, coupon_id, cause=exc)
                raise UnexpectedError("Redemption could not be recorded") from exc

            if inserted:
                await self._call(self._db.refresh(coupon))
                logger.info(
                    "Coupon redeemed",
                    coupon_id=str(coupon_id),
                    user_id=str(user_id),
                    usage_count=coupon.usage_count,
                    attempt=attempt,
                )
                return RedemptionResult(coupon=coupon, redeemed_at=now)

            await self._compensate(user_id, coupon_id, cause=None)
            conflict = RedemptionErrorKind.ALREADY_REDEEMED
            logger.info(
                "Redemption lost record race",
                coupon_id=str(coupon_id),
                user_id=str(user_id),
                attempt=attempt,
            )

        raise RedemptionError(conflict)

    async def _evaluate(self, user_id: UUID, coupon_id: UUID, now: datetime) -> Coupon:
        """Apply the validity predicates in their fixed, observable order."""

        coupon = await self._call(self._db.get(Coupon, coupon_id, populate_existing=True))
        if coupon is None:
            raise NotFoundError("Coupon not found")
        if not coupon.is_active:
            raise RedemptionError(RedemptionErrorKind.INACTIVE)
        expiry = ensure_aware(coupon.expiry_date)
        if expiry is not None and now >= expiry:
            raise RedemptionError(RedemptionErrorKind.EXPIRED)
        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            raise RedemptionError(RedemptionErrorKind.LIMIT_REACHED)

        already = await self._call(
            self._db.scalar(
                select(
                    exists().where(
                        CouponRedemption.user_id == user_id,
                        CouponRedemption.coupon_id == coupon_id,
                    )
                )
            )
        )
        if already:
            raise RedemptionError(RedemptionErrorKind.ALREADY_REDEEMED)
        return coupon

    async def _claim_usage(self, coupon_id: UUID) -> bool:
        stmt = (
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .values(usage_count=Coupon.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._call(self._db.execute(stmt))
            claimed = result.rowcount == 1
            await self._call(self._db.commit())
        except IntegrityError:
            await self._db.rollback()
            return False
        return claimed

    async def _insert_record(self, user_id: UUID, coupon_id: UUID, now: datetime) -> bool:
        self._db.add(CouponRedemption(user_id=user_id, coupon_id=coupon_id, redeemed_at=now))
        try:
            await self._call(self._db.commit())
        except IntegrityError:
            await self._db.rollback()
            return False
        return True

    async def _compensate(self, user_id: UUID, coupon_id: UUID, *, cause: BaseException | None) -> None:
        """Give back the usage unit claimed by a redemption that did not complete."""

        try:
            await self._db.rollback()
            await self._call(
                self._db.execute(
                    update(Coupon)
                    .where(Coupon.id == coupon_id, Coupon.usage_count > 0)
                    .values(usage_count=Coupon.usage_count - 1)
                    .execution_options(synchronize_session=False)
                )
            )
            await self._call(self._db.commit())
        except Exception as exc:
            logger.error(
                "Usage compensation failed",
                coupon_id=str(coupon_id),
                user_id=str(user_id),
                error=str(exc),
                cause=str(cause) if cause else None,
                reconciliation_required=True,
            )
            raise UnexpectedError("Redemption compensation failed") from exc
        logger.warning(
            "Usage count compensated",
            coupon_id=str(coupon_id),
            user_id=str(user_id),
            cause=str(cause) if cause else "duplicate redemption",
        )

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self._timeout)


__all__ = ["RedemptionEngine", "RedemptionResult"]
