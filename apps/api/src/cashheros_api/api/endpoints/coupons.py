"""Coupon catalog and redemption endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.api.dependencies.auth import get_current_claims, require_admin
from cashheros_api.db.session import get_session
from cashheros_api.schemas.catalog import (
    CouponCreate,
    CouponResponse,
    CouponUpdate,
    RedemptionResponse,
)
from cashheros_api.schemas.common import ApiResponse, DeleteResponse, PagedResponse, UtcDatetime, pagination_meta
from cashheros_api.services.auth import AccessClaims
from cashheros_api.services.catalog import CouponCatalog, CouponFilters, PageRequest
from cashheros_api.services.redemption import RedemptionEngine

router = APIRouter(prefix="/coupons", tags=["Coupons"])


class RedemptionHistoryItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    coupon: CouponResponse
    redeemed_at: UtcDatetime = Field(..., alias="redeemedAt")


def get_catalog(db: AsyncSession = Depends(get_session)) -> CouponCatalog:
    return CouponCatalog(db)


@router.get("", response_model=PagedResponse[CouponResponse])
async def list_coupons(
    search: str | None = Query(None, max_length=100),
    category: str | None = Query(None, max_length=64),
    store: UUID | None = Query(None),
    active: bool | None = Query(None),
    sort: str | None = Query(None, max_length=32),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    catalog: CouponCatalog = Depends(get_catalog),
) -> PagedResponse[CouponResponse]:
    result = await catalog.list_coupons(
        CouponFilters(
            page=page,
            limit=limit,
            sort=sort,
            search=search,
            category=category,
            store_id=store,
            active=active,
        )
    )
    return PagedResponse(
        data=[CouponResponse.model_validate(item) for item in result.items],
        pagination=pagination_meta(result),
    )


@router.get("/redeemed", response_model=PagedResponse[RedemptionHistoryItem])
async def list_redeemed(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    claims: AccessClaims = Depends(get_current_claims),
    catalog: CouponCatalog = Depends(get_catalog),
) -> PagedResponse[RedemptionHistoryItem]:
    result = await catalog.list_redemptions(claims.user_id, PageRequest(page=page, limit=limit))
    return PagedResponse(
        data=[RedemptionHistoryItem.model_validate(item) for item in result.items],
        pagination=pagination_meta(result),
    )


@router.get("/{coupon_id}", response_model=ApiResponse[CouponResponse])
async def get_coupon(
    coupon_id: UUID,
    catalog: CouponCatalog = Depends(get_catalog),
) -> ApiResponse[CouponResponse]:
    coupon = await catalog.get(coupon_id)
    return ApiResponse(data=CouponResponse.model_validate(coupon))


@router.post("", response_model=ApiResponse[CouponResponse], status_code=201)
async def create_coupon(
    payload: CouponCreate,
    claims: AccessClaims = Depends(require_admin),
    catalog: CouponCatalog = Depends(get_catalog),
) -> ApiResponse[CouponResponse]:
    coupon = await catalog.create(payload, actor_id=claims.user_id)
    return ApiResponse(data=CouponResponse.model_validate(coupon))


@router.put("/{coupon_id}", response_model=ApiResponse[CouponResponse])
async def update_coupon(
    coupon_id: UUID,
    payload: CouponUpdate,
    claims: AccessClaims = Depends(require_admin),
    catalog: CouponCatalog = Depends(get_catalog),
) -> ApiResponse[CouponResponse]:
    coupon = await catalog.update(coupon_id, payload, actor_id=claims.user_id)
    return ApiResponse(data=CouponResponse.model_validate(coupon))


@router.delete("/{coupon_id}", response_model=ApiResponse[DeleteResponse])
async def delete_coupon(
    coupon_id: UUID,
    claims: AccessClaims = Depends(require_admin),
    catalog: CouponCatalog = Depends(get_catalog),
) -> ApiResponse[DeleteResponse]:
    outcome = await catalog.delete(coupon_id, actor_id=claims.user_id)
    return ApiResponse(data=DeleteResponse(id=coupon_id, outcome=outcome.value))


@router.post("/{coupon_id}/redeem", response_model=ApiResponse[RedemptionResponse])
async def redeem_coupon(
    coupon_id: UUID,
    claims: AccessClaims = Depends(get_current_claims),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[RedemptionResponse]:
    result = await RedemptionEngine(db).redeem(claims.user_id, coupon_id)
    return ApiResponse(
        data=RedemptionResponse(
            coupon=CouponResponse.model_validate(result.coupon),
            redemption_date=result.redeemed_at,
        )
    )
