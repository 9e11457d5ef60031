"""Store catalog endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.api.dependencies.auth import require_admin
from cashheros_api.db.session import get_session
from cashheros_api.schemas.catalog import StoreCreate, StoreResponse, StoreUpdate
from cashheros_api.schemas.common import ApiResponse, DeleteResponse, PagedResponse, pagination_meta
from cashheros_api.services.auth import AccessClaims
from cashheros_api.services.catalog import StoreCatalog, StoreFilters


router = APIRouter(prefix="/stores", tags=["Stores"])


def get_catalog(db: AsyncSession = Depends(get_session)) -> StoreCatalog:
    return StoreCatalog(db)


@router.get("", response_model=PagedResponse[StoreResponse])
async def list_stores(
    search: str | None = Query(None, max_length=100),
    category: str | None = Query(None, max_length=64),
    active: bool | None = Query(None),
    featured: bool | None = Query(None),
    sort: str | None = Query(None, max_length=32),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    catalog: StoreCatalog = Depends(get_catalog),
) -> PagedResponse[StoreResponse]:
    result = await catalog.list_stores(
        StoreFilters(
            page=page,
            limit=limit,
            sort=sort,
            search=search,
            category=category,
            active=active,
            featured=featured,
        )
    )
    return PagedResponse(
        data=[StoreResponse.model_validate(item) for item in result.items],
        pagination=pagination_meta(result),
    )


@router.get("/{store_id}", response_model=ApiResponse[StoreResponse])
async def get_store(store_id: UUID, catalog: StoreCatalog = Depends(get_catalog)) -> ApiResponse[StoreResponse]:
    return ApiResponse(data=StoreResponse.model_validate(await catalog.get(store_id)))


@router.post("", response_model=ApiResponse[StoreResponse], status_code=201)
async def create_store(
    payload: StoreCreate,
    claims: AccessClaims = Depends(require_admin),
    catalog: StoreCatalog = Depends(get_catalog),
) -> ApiResponse[StoreResponse]:
    store = await catalog.create(payload, actor_id=claims.user_id)
    return ApiResponse(data=StoreResponse.model_validate(store))


@router.put("/{store_id}", response_model=ApiResponse[StoreResponse])
async def update_store(
    store_id: UUID,
    payload: StoreUpdate,
    claims: AccessClaims = Depends(require_admin),
    catalog: StoreCatalog = Depends(get_catalog),
) -> ApiResponse[StoreResponse]:
    store = await catalog.update(store_id, payload, actor_id=claims.user_id)
    return ApiResponse(data=StoreResponse.model_validate(store))


@router.delete("/{store_id}", response_model=ApiResponse[DeleteResponse])
async def delete_store(
    store_id: UUID,
    claims: AccessClaims = Depends(require_admin),
    catalog: StoreCatalog = Depends(get_catalog),
) -> ApiResponse[DeleteResponse]:
    outcome = await catalog.delete(store_id, actor_id=claims.user_id)
    return ApiResponse(data=DeleteResponse(id=store_id, outcome=outcome.value))
