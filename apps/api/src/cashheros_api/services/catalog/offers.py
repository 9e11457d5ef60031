"""Cashback offer catalog."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.core.errors import NotFoundError, ValidationFailure
from cashheros_api.models.cashback import CashbackOffer, CashbackTransaction
from cashheros_api.models.store import Store
from cashheros_api.schemas.catalog import CashbackOfferCreate, CashbackOfferUpdate

from .coupons import DeleteOutcome
from .pagination import Page, PageRequest, apply_sort, paginate, search_pattern

_SORTABLE_COLUMNS = {
    "createdAt": CashbackOffer.created_at,
    "rate": CashbackOffer.rate,
    "expiryDate": CashbackOffer.expiry_date,
    "title": CashbackOffer.title,
}


@dataclass(slots=True)
class OfferFilters(PageRequest):
    search: str | None = None
    category: str | None = None
    store_id: UUID | None = None
    active: bool | None = None
    featured: bool | None = None


class CashbackOfferCatalog:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def list_offers(self, filters: OfferFilters | None = None) -> Page[CashbackOffer]:
        filters = filters or OfferFilters()
        stmt = select(CashbackOffer)
        if filters.search:
            pattern = search_pattern(filters.search)
            stmt = stmt.where(
                or_(
                    CashbackOffer.title.ilike(pattern, escape="\\"),
                    CashbackOffer.description.ilike(pattern, escape="\\"),
                )
            )
        if filters.category:
            stmt = stmt.where(CashbackOffer.category == filters.category.strip().lower())
        if filters.store_id:
            stmt = stmt.where(CashbackOffer.store_id == filters.store_id)
        if filters.active is not None:
            stmt = stmt.where(CashbackOffer.is_active == filters.active)
        if filters.featured is not None:
            stmt = stmt.where(CashbackOffer.is_featured == filters.featured)
        stmt = apply_sort(stmt, filters.sort, _SORTABLE_COLUMNS, default="-rate", tiebreaker=CashbackOffer.id)
        return await paginate(self._db, stmt, filters)

    async def get(self, offer_id: UUID) -> CashbackOffer:
        offer = await self._db.get(CashbackOffer, offer_id, populate_existing=True)
        if offer is None:
            raise NotFoundError("Cashback offer not found")
        return offer

    async def create(self, data: CashbackOfferCreate, *, actor_id: UUID | None) -> CashbackOffer:
        await self._require_store(data.store_id)
        offer = CashbackOffer(
            title=data.title.strip(),
            description=data.description,
            store_id=data.store_id,
            rate=data.rate,
            category=data.category.strip().lower() if data.category else None,
            terms=data.terms,
            expiry_date=data.expiry_date,
            is_active=data.is_active,
            is_featured=data.is_featured,
            created_by=actor_id,
        )
        self._db.add(offer)
        await self._db.commit()
        await self._db.refresh(offer)
        logger.info("Cashback offer created", offer_id=str(offer.id), actor_id=str(actor_id))
        return offer

    async def update(self, offer_id: UUID, patch: CashbackOfferUpdate, *, actor_id: UUID | None) -> CashbackOffer:
        changes = patch.model_dump(exclude_unset=True)
        for required, label in (("title", "title"), ("rate", "rate"), ("is_active", "isActive"), ("store_id", "store")):
            if required in changes and changes[required] is None:
                raise ValidationFailure(label, f"{label} cannot be null")
        if "store_id" in changes:
            await self._require_store(changes["store_id"])
        if changes.get("category"):
            changes["category"] = changes["category"].strip().lower()

        offer = await self.get(offer_id)
        for attr, value in changes.items():
            setattr(offer, attr, value)
        await self._db.commit()
        await self._db.refresh(offer)
        logger.info("Cashback offer updated", offer_id=str(offer.id), fields=sorted(changes), actor_id=str(actor_id))
        return offer

    async def delete(self, offer_id: UUID, *, actor_id: UUID | None) -> DeleteOutcome:
        offer = await self.get(offer_id)
        referenced = await self._db.scalar(select(exists().where(CashbackTransaction.offer_id == offer.id)))
        if referenced:
            offer.is_active = False
            await self._db.commit()
            logger.info("Cashback offer deactivated instead of deleted", offer_id=str(offer.id))
            return DeleteOutcome.DEACTIVATED
        await self._db.delete(offer)
        await self._db.commit()
        logger.info("Cashback offer deleted", offer_id=str(offer_id), actor_id=str(actor_id))
        return DeleteOutcome.DELETED

    async def _require_store(self, store_id: UUID) -> Store:
        store = await self._db.get(Store, store_id)
        if store is None:
            raise ValidationFailure("store", "Unknown store")
        return store
