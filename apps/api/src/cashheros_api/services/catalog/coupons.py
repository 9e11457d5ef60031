"""Coupon catalog: listing, admin CRUD and redemption history."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from loguru import logger
from sqlalchemy import exists, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.core.errors import ConflictError, NotFoundError, ValidationFailure
from cashheros_api.models.cashback import CashbackTransaction
from cashheros_api.models.coupon import Coupon, CouponRedemption
from cashheros_api.models.store import Store
from cashheros_api.schemas.catalog import CouponCreate, CouponUpdate

from .pagination import Page, PageRequest, apply_sort, paginate, search_pattern

_SORTABLE_COLUMNS = {
    "createdAt": Coupon.created_at,
    "discount": Coupon.discount,
    "expiryDate": Coupon.expiry_date,
    "usageCount": Coupon.usage_count,
    "title": Coupon.title,
    "code": Coupon.code,
}

# API field names for the columns a patch may touch.
_FIELD_LABELS = {
    "store_id": "store",
    "expiry_date": "expiryDate",
    "is_active": "isActive",
    "usage_limit": "usageLimit",
}


class DeleteOutcome(str, Enum):
    DELETED = "deleted"
    DEACTIVATED = "deactivated"


@dataclass(slots=True)
class CouponFilters(PageRequest):
    search: str | None = None
    category: str | None = None
    store_id: UUID | None = None
    active: bool | None = None


class CouponCatalog:
    """Admin-managed coupon records; redemption itself lives in the redemption engine."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def list_coupons(self, filters: CouponFilters | None = None) -> Page[Coupon]:
        filters = filters or CouponFilters()
        stmt = select(Coupon)

        if filters.search:
            pattern = search_pattern(filters.search)
            stmt = stmt.where(
                or_(
                    Coupon.title.ilike(pattern, escape="\\"),
                    Coupon.description.ilike(pattern, escape="\\"),
                    Coupon.code.ilike(pattern, escape="\\"),
                )
            )
        if filters.category:
            stmt = stmt.where(Coupon.category == filters.category.strip().lower())
        if filters.store_id:
            stmt = stmt.where(Coupon.store_id == filters.store_id)
        if filters.active is not None:
            stmt = stmt.where(Coupon.is_active == filters.active)

        stmt = apply_sort(stmt, filters.sort, _SORTABLE_COLUMNS, default="-createdAt", tiebreaker=Coupon.id)
        return await paginate(self._db, stmt, filters)

    async def get(self, coupon_id: UUID) -> Coupon:
        coupon = await self._db.get(Coupon, coupon_id, populate_existing=True)
        if coupon is None:
            raise NotFoundError("Coupon not found")
        return coupon

    async def create(self, data: CouponCreate, *, actor_id: UUID | None) -> Coupon:
        await self._require_store(data.store_id)
        coupon = Coupon(
            code=data.code,
            title=data.title.strip(),
            description=data.description,
            store_id=data.store_id,
            discount=data.discount,
            category=data.category.strip().lower() if data.category else None,
            expiry_date=data.expiry_date,
            is_active=data.is_active,
            usage_limit=data.usage_limit,
            usage_count=0,
            created_by=actor_id,
        )
        self._db.add(coupon)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise ConflictError(f"Coupon code {data.code} already exists") from exc

        await self._db.refresh(coupon)
        logger.info("Coupon created", coupon_id=str(coupon.id), code=coupon.code, actor_id=str(actor_id))
        return coupon

    async def update(self, coupon_id: UUID, patch: CouponUpdate | dict, *, actor_id: UUID | None) -> Coupon:
        changes = patch.model_dump(exclude_unset=True) if isinstance(patch, CouponUpdate) else dict(patch)
        if "code" in changes:
            raise ValidationFailure("code", "Coupon codes are immutable")

        coupon = await self.get(coupon_id)
        if "store_id" in changes:
            if changes["store_id"] is None:
                raise ValidationFailure("store", "A coupon must belong to a store")
            await self._require_store(changes["store_id"])
        for required in ("title", "discount", "is_active"):
            if required in changes and changes[required] is None:
                raise ValidationFailure(_FIELD_LABELS.get(required, required), f"{required} cannot be null")

        limit = changes.get("usage_limit", coupon.usage_limit)
        if limit is not None and limit < coupon.usage_count:
            raise ValidationFailure("usageLimit", "usageLimit cannot be below the current usageCount")

        if changes.get("category"):
            changes["category"] = changes["category"].strip().lower()

        for attr, value in changes.items():
            setattr(coupon, attr, value)

        try:
            await self._db.commit()
        except IntegrityError as exc:
            # usage_count moved past the new limit between the check and the write.
            await self._db.rollback()
            raise ValidationFailure("usageLimit", "usageLimit cannot be below the current usageCount") from exc

        await self._db.refresh(coupon)
        logger.info(
            "Coupon updated",
            coupon_id=str(coupon.id),
            fields=sorted(changes),
            actor_id=str(actor_id),
        )
        return coupon

    async def delete(self, coupon_id: UUID, *, actor_id: UUID | None) -> DeleteOutcome:
        """Hard-delete unreferenced coupons; deactivate coupons someone already used."""

        coupon = await self.get(coupon_id)
        referenced = await self._db.scalar(
            select(
                or_(
                    exists().where(CouponRedemption.coupon_id == coupon.id),
                    exists().where(CashbackTransaction.coupon_id == coupon.id),
                )
            )
        )
        if referenced:
            coupon.is_active = False
            await self._db.commit()
            logger.info("Coupon deactivated instead of deleted", coupon_id=str(coupon.id), actor_id=str(actor_id))
            return DeleteOutcome.DEACTIVATED

        await self._db.delete(coupon)
        await self._db.commit()
        logger.info("Coupon deleted", coupon_id=str(coupon_id), actor_id=str(actor_id))
        return DeleteOutcome.DELETED

    async def list_redemptions(self, user_id: UUID, request: PageRequest | None = None) -> Page[CouponRedemption]:
        request = request or PageRequest()
        stmt = (
            select(CouponRedemption)
            .where(CouponRedemption.user_id == user_id)
            .order_by(CouponRedemption.redeemed_at.desc(), CouponRedemption.id)
        )
        return await paginate(self._db, stmt, request)

    async def _require_store(self, store_id: UUID) -> Store:
        store = await self._db.get(Store, store_id)
        if store is None:
            raise ValidationFailure("store", "Unknown store")
        return store
