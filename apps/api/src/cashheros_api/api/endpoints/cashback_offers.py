"""Advertised cashback offers."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.api.dependencies.auth import require_admin
from cashheros_api.db.session import get_session
from cashheros_api.schemas.catalog import CashbackOfferCreate, CashbackOfferResponse, CashbackOfferUpdate
from cashheros_api.schemas.common import ApiResponse, DeleteResponse, PagedResponse, pagination_meta
from cashheros_api.services.auth import AccessClaims
from cashheros_api.services.catalog import CashbackOfferCatalog, OfferFilters

router = APIRouter(prefix="/cashback-offers", tags=["Cashback offers"])


def get_catalog(db: AsyncSession = Depends(get_session)) -> CashbackOfferCatalog:
    return CashbackOfferCatalog(db)


@router.get("", response_model=PagedResponse[CashbackOfferResponse])
async def list_offers(
    search: str | None = Query(None, max_length=100),
    category: str | None = Query(None, max_length=64),
    store: UUID | None = Query(None),
    active: bool | None = Query(None),
    featured: bool | None = Query(None),
    sort: str | None = Query(None, max_length=32),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    catalog: CashbackOfferCatalog = Depends(get_catalog),
) -> PagedResponse[CashbackOfferResponse]:
    result = await catalog.list_offers(
        OfferFilters(
            page=page,
            limit=limit,
            sort=sort,
            search=search,
            category=category,
            store_id=store,
            active=active,
            featured=featured,
        )
    )
    return PagedResponse(
        data=[CashbackOfferResponse.model_validate(item) for item in result.items],
        pagination=pagination_meta(result),
    )


@router.get("/{offer_id}", response_model=ApiResponse[CashbackOfferResponse])
async def get_offer(
    offer_id: UUID,
    catalog: CashbackOfferCatalog = Depends(get_catalog),
) -> ApiResponse[CashbackOfferResponse]:
    return ApiResponse(data=CashbackOfferResponse.model_validate(await catalog.get(offer_id)))


@router.post("", response_model=ApiResponse[CashbackOfferResponse], status_code=201)
async def create_offer(
    payload: CashbackOfferCreate,
    claims: AccessClaims = Depends(require_admin),
    catalog: CashbackOfferCatalog = Depends(get_catalog),
) -> ApiResponse[CashbackOfferResponse]:
    offer = await catalog.create(payload, actor_id=claims.user_id)
    return ApiResponse(data=CashbackOfferResponse.model_validate(offer))


@router.put("/{offer_id}", response_model=ApiResponse[CashbackOfferResponse])
async def update_offer(
    offer_id: UUID,
    payload: CashbackOfferUpdate,
    claims: AccessClaims = Depends(require_admin),
    catalog: CashbackOfferCatalog = Depends(get_catalog),
) -> ApiResponse[CashbackOfferResponse]:
    offer = await catalog.update(offer_id, payload, actor_id=claims.user_id)
    return ApiResponse(data=CashbackOfferResponse.model_validate(offer))


@router.delete("/{offer_id}", response_model=ApiResponse[DeleteResponse])
async def delete_offer(
    offer_id: UUID,
    claims: AccessClaims = Depends(require_admin),
    catalog: CashbackOfferCatalog = Depends(get_catalog),
) -> ApiResponse[DeleteResponse]:
    outcome = await catalog.delete(offer_id, actor_id=claims.user_id)
    return ApiResponse(data=DeleteResponse(id=offer_id, outcome=outcome.value))
