"""Store catalog."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import String, exists, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.core.errors import ConflictError, NotFoundError, ValidationFailure
from cashheros_api.models.cashback import CashbackOffer, CashbackTransaction
from cashheros_api.models.coupon import Coupon
from cashheros_api.models.store import Store
from cashheros_api.schemas.catalog import StoreCreate, StoreUpdate

from .coupons import DeleteOutcome
from .pagination import Page, PageRequest, apply_sort, paginate, search_pattern

_SORTABLE_COLUMNS = {
    "createdAt": Store.created_at,
    "name": Store.name,
    "cashbackPercentage": Store.cashback_percentage,
}


@dataclass(slots=True)
class StoreFilters(PageRequest):
    search: str | None = None
    category: str | None = None
    active: bool | None = None
    featured: bool | None = None


class StoreCatalog:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def list_stores(self, filters: StoreFilters | None = None) -> Page[Store]:
        filters = filters or StoreFilters()
        stmt = select(Store)
        if filters.search:
            pattern = search_pattern(filters.search)
            stmt = stmt.where(
                or_(
                    Store.name.ilike(pattern, escape="\\"),
                    Store.description.ilike(pattern, escape="\\"),
                )
            )
        if filters.active is not None:
            stmt = stmt.where(Store.is_active == filters.active)
        if filters.featured is not None:
            stmt = stmt.where(Store.is_featured == filters.featured)
        if filters.category:
            # JSON list membership; portable across SQLite and PostgreSQL.
            label = filters.category.strip().lower().replace('"', "")
            stmt = stmt.where(Store.categories.cast(String).like(f'%"{label}"%'))
        stmt = apply_sort(stmt, filters.sort, _SORTABLE_COLUMNS, default="name", tiebreaker=Store.id)
        return await paginate(self._db, stmt, filters)

    async def get(self, store_id: UUID) -> Store:
        store = await self._db.get(Store, store_id, populate_existing=True)
        if store is None:
            raise NotFoundError("Store not found")
        return store

    async def create(self, data: StoreCreate, *, actor_id: UUID | None) -> Store:
        store = Store(
            name=data.name.strip(),
            description=data.description,
            logo_url=data.logo_url,
            website_url=data.website_url,
            categories=data.categories,
            cashback_percentage=data.cashback_percentage,
            is_active=data.is_active,
            is_featured=data.is_featured,
            created_by=actor_id,
        )
        self._db.add(store)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise ConflictError(f"Store {data.name!r} already exists") from exc
        await self._db.refresh(store)
        logger.info("Store created", store_id=str(store.id), actor_id=str(actor_id))
        return store

    async def update(self, store_id: UUID, patch: StoreUpdate, *, actor_id: UUID | None) -> Store:
        changes = patch.model_dump(exclude_unset=True)
        for required, label in (("name", "name"), ("cashback_percentage", "cashbackPercentage"), ("is_active", "isActive")):
            if required in changes and changes[required] is None:
                raise ValidationFailure(label, f"{label} cannot be null")
        if changes.get("categories") is None:
            changes.pop("categories", None)

        store = await self.get(store_id)
        for attr, value in changes.items():
            setattr(store, attr, value)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise ConflictError("Store name already exists") from exc
        await self._db.refresh(store)
        logger.info("Store updated", store_id=str(store.id), fields=sorted(changes), actor_id=str(actor_id))
        return store

    async def delete(self, store_id: UUID, *, actor_id: UUID | None) -> DeleteOutcome:
        store = await self.get(store_id)
        referenced = await self._db.scalar(
            select(
                or_(
                    exists().where(Coupon.store_id == store.id),
                    exists().where(CashbackOffer.store_id == store.id),
                    exists().where(CashbackTransaction.store_id == store.id),
                )
            )
        )
        if referenced:
            store.is_active = False
            await self._db.commit()
            logger.info("Store deactivated instead of deleted", store_id=str(store.id), actor_id=str(actor_id))
            return DeleteOutcome.DEACTIVATED

        await self._db.delete(store)
        await self._db.commit()
        logger.info("Store deleted", store_id=str(store_id), actor_id=str(actor_id))
        return DeleteOutcome.DELETED
