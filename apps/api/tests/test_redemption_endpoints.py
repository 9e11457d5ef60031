from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from cashheros_api.models.coupon import Coupon, CouponRedemption


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _usage_count(session_factory, coupon_id) -> int:
    async with session_factory() as session:
        return (await session.execute(select(Coupon.usage_count).where(Coupon.id == coupon_id))).scalar_one()


@pytest.mark.asyncio
async def test_redeem_then_retry_is_already_redeemed(
    app_with_db, make_user, make_store, make_coupon, auth_headers
) -> None:
    app, session_factory = app_with_db
    store = await make_store(session_factory)
    coupon = await make_coupon(
        session_factory,
        store,
        "SAVE20",
        discount=20,
        is_active=True,
        expiry_date=datetime.now(timezone.utc) + timedelta(days=7),
        usage_limit=100,
        usage_count=0,
    )
    user_a = await make_user(session_factory)
    headers = await auth_headers(app, session_factory, user_a)

    async with _client(app) as client:
        first = await client.post(f"/api/coupons/{coupon.id}/redeem", headers=headers)
        assert first.status_code == 200
        body = first.json()
        assert body["success"] is True
        assert body["data"]["coupon"]["code"] == "SAVE20"
        assert body["data"]["coupon"]["usageCount"] == 1
        assert "redemptionDate" in body["data"]
        assert await _usage_count(session_factory, coupon.id) == 1

        retry = await client.post(f"/api/coupons/{coupon.id}/redeem", headers=headers)

    assert retry.status_code == 400
    assert retry.json() == {"success": False, "error": "AlreadyRedeemed"}
    assert await _usage_count(session_factory, coupon.id) == 1

    async with session_factory() as session:
        records = await session.scalar(
            select(func.count()).select_from(CouponRedemption).where(
                CouponRedemption.user_id == user_a.id,
                CouponRedemption.coupon_id == coupon.id,
            )
        )
    assert records == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("fields", "expected"),
    [
        ({"is_active": False}, "Inactive"),
        ({"expiry_date": datetime.now(timezone.utc) - timedelta(days=1)}, "Expired"),
        ({"usage_limit": 100, "usage_count": 100}, "LimitReached"),
    ],
)
async def test_redeem_reports_failing_predicate(
    app_with_db, make_user, make_store, make_coupon, auth_headers, fields, expected
) -> None:
    app, session_factory = app_with_db
    store = await make_store(session_factory)
    coupon = await make_coupon(session_factory, store, **fields)
    before = coupon.usage_count
    user_b = await make_user(session_factory)
    headers = await auth_headers(app, session_factory, user_b)

    async with _client(app) as client:
        response = await client.post(f"/api/coupons/{coupon.id}/redeem", headers=headers)

    assert response.status_code == 400
    assert response.json()["error"] == expected
    assert await _usage_count(session_factory, coupon.id) == before


@pytest.mark.asyncio
async def test_redeem_unknown_coupon_is_not_found(app_with_db, make_user, auth_headers) -> None:
    app, session_factory = app_with_db
    user = await make_user(session_factory)
    headers = await auth_headers(app, session_factory, user)

    async with _client(app) as client:
        response = await client.post("/api/coupons/00000000-0000-0000-0000-00000000beef/redeem", headers=headers)

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_redeemed_history_endpoint_lists_callers_coupons(
    app_with_db, make_user, make_store, make_coupon, auth_headers
) -> None:
    app, session_factory = app_with_db
    store = await make_store(session_factory)
    coupon = await make_coupon(session_factory, store, "HISTORY1")
    user = await make_user(session_factory)
    headers = await auth_headers(app, session_factory, user)

    async with _client(app) as client:
        await client.post(f"/api/coupons/{coupon.id}/redeem", headers=headers)
        history = await client.get("/api/coupons/redeemed", headers=headers)

    assert history.status_code == 200
    body = history.json()
    assert [item["coupon"]["code"] for item in body["data"]] == ["HISTORY1"]
    assert body["pagination"]["total"] == 1
