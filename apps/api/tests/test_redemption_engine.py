import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from loguru import logger
from sqlalchemy import func, select

from cashheros_api.core.errors import NotFoundError, RedemptionError, RedemptionErrorKind, UnexpectedError
from cashheros_api.models.coupon import Coupon, CouponRedemption
from cashheros_api.services.redemption import RedemptionEngine


async def _state(session_factory, coupon_id) -> tuple[int, int]:
    async with session_factory() as session:
        usage = (await session.execute(select(Coupon.usage_count).where(Coupon.id == coupon_id))).scalar_one()
        records = (
            await session.execute(
                select(func.count()).select_from(CouponRedemption).where(CouponRedemption.coupon_id == coupon_id)
            )
        ).scalar_one()
    return usage, records


async def _redeem(session_factory, user_id, coupon_id, **engine_kwargs):
    async with session_factory() as session:
        return await RedemptionEngine(session, **engine_kwargs).redeem(user_id, coupon_id)


@pytest.mark.asyncio
async def test_redeem_increments_usage_and_records_user(session_factory, make_user, make_store, make_coupon) -> None:
    store = await make_store(session_factory)
    coupon = await make_coupon(session_factory, store, usage_limit=None)
    user = await make_user(session_factory)

    result = await _redeem(session_factory, user.id, coupon.id)

    assert result.coupon.usage_count == 1
    assert result.redeemed_at.tzinfo is not None
    assert await _state(session_factory, coupon.id) == (1, 1)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("fields", "expected"),
    [
        (
            {"is_active": False, "expiry_date": datetime(2020, 1, 1, tzinfo=timezone.utc), "usage_count": 100},
            RedemptionErrorKind.INACTIVE,
        ),
        ({"expiry_date": datetime(2020, 1, 1, tzinfo=timezone.utc), "usage_count": 100}, RedemptionErrorKind.EXPIRED),
        ({"usage_count": 100}, RedemptionErrorKind.LIMIT_REACHED),
    ],
)
async def test_predicates_fail_in_fixed_order(
    session_factory, make_user, make_store, make_coupon, fields, expected
) -> None:
    store = await make_store(session_factory)
    coupon = await make_coupon(session_factory, store, usage_limit=100, **fields)
    user = await make_user(session_factory)

    with pytest.raises(RedemptionError) as excinfo:
        await _redeem(session_factory, user.id, coupon.id)

    assert excinfo.value.kind is expected
    assert await _state(session_factory, coupon.id) == (100, 0)


@pytest.mark.asyncio
async def test_limit_reached_is_reported_before_already_redeemed(
    session_factory, make_user, make_store, make_coupon
) -> None:
    store = await make_store(session_factory)
    coupon = await make_coupon(session_factory, store, usage_limit=1)
    user = await make_user(session_factory)
    await _redeem(session_factory, user.id, coupon.id)

    with pytest.raises(RedemptionError) as excinfo:
        await _redeem(session_factory, user.id, coupon.id)

    assert excinfo.value.kind is RedemptionErrorKind.LIMIT_REACHED


@pytest.mark.asyncio
async def test_expiry_instant_itself_is_expired(session_factory, make_user, make_store, make_coupon) -> None:
    expiry = datetime(2030, 6, 1, 12, 0, tzinfo=timezone.utc)
    store = await make_store(session_factory)
    coupon = await make_coupon(session_factory, store, expiry_date=expiry)
    user = await make_user(session_factory)

    with pytest.raises(RedemptionError) as excinfo:
        await _redeem(session_factory, user.id, coupon.id, clock=lambda: expiry)
    assert excinfo.value.kind is RedemptionErrorKind.EXPIRED

    result = await _redeem(session_factory, user.id, coupon.id, clock=lambda: expiry - timedelta(microseconds=1))
    assert result.coupon.usage_count == 1


@pytest.mark.asyncio
async def test_unknown_coupon_is_not_found(session_factory, make_user) -> None:
    user = await make_user(session_factory)

    with pytest.raises(NotFoundError):
        await _redeem(session_factory, user.id, uuid4())


@pytest.mark.asyncio
async def test_second_call_by_same_user_is_already_redeemed(
    session_factory, make_user, make_store, make_coupon
) -> None:
    store = await make_store(session_factory)
    coupon = await make_coupon(session_factory, store)
    user = await make_user(session_factory)

    await _redeem(session_factory, user.id, coupon.id)
    with pytest.raises(RedemptionError) as excinfo:
        await _redeem(session_factory, user.id, coupon.id)

    assert excinfo.value.kind is RedemptionErrorKind.ALREADY_REDEEMED
    assert await _state(session_factory, coupon.id) == (1, 1)


@pytest.mark.asyncio
async def test_concurrent_users_never_exceed_usage_limit(
    file_session_factory, make_user, make_store, make_coupon
) -> None:
    store = await make_store(file_session_factory)
    coupon = await make_coupon(file_session_factory, store, usage_limit=1)
    users = [await make_user(file_session_factory) for _ in range(8)]

    outcomes = await asyncio.gather(
        *(_redeem(file_session_factory, user.id, coupon.id) for user in users),
        return_exceptions=True,
    )

    successes = [item for item in outcomes if not isinstance(item, BaseException)]
    failures = [item for item in outcomes if isinstance(item, BaseException)]
    assert len(successes) == 1
    assert all(isinstance(item, RedemptionError) for item in failures)
    assert {item.kind for item in failures} == {RedemptionErrorKind.LIMIT_REACHED}
    assert await _state(file_session_factory, coupon.id) == (1, 1)


@pytest.mark.asyncio
async def test_concurrent_calls_by_one_user_redeem_once(
    file_session_factory, make_user, make_store, make_coupon
) -> None:
    store = await make_store(file_session_factory)
    coupon = await make_coupon(file_session_factory, store, usage_limit=50)
    user = await make_user(file_session_factory)

    outcomes = await asyncio.gather(
        *(_redeem(file_session_factory, user.id, coupon.id) for _ in range(5)),
        return_exceptions=True,
    )

    successes = [item for item in outcomes if not isinstance(item, BaseException)]
    failures = [item for item in outcomes if isinstance(item, BaseException)]
    assert len(successes) == 1
    assert {item.kind for item in failures} == {RedemptionErrorKind.ALREADY_REDEEMED}
    assert await _state(file_session_factory, coupon.id) == (1, 1)


@pytest.mark.asyncio
async def test_slow_store_read_surfaces_unexpected(
    session_factory, make_user, make_store, make_coupon, monkeypatch
) -> None:
    store = await make_store(session_factory)
    coupon = await make_coupon(session_factory, store)
    user = await make_user(session_factory)

    async with session_factory() as session:
        async def _stalled_get(*args, **kwargs):
            await asyncio.sleep(1)

        monkeypatch.setattr(session, "get", _stalled_get)
        with pytest.raises(UnexpectedError):
            await RedemptionEngine(session, timeout_seconds=0.01).redeem(user.id, coupon.id)

    assert await _state(session_factory, coupon.id) == (0, 0)


@pytest.mark.asyncio
async def test_failed_record_insert_gives_usage_back(
    session_factory, make_user, make_store, make_coupon, monkeypatch
) -> None:
    store = await make_store(session_factory)
    coupon = await make_coupon(session_factory, store)
    user = await make_user(session_factory)

    async def _timed_out(self, user_id, coupon_id, now):
        raise asyncio.TimeoutError()

    monkeypatch.setattr(RedemptionEngine, "_insert_record", _timed_out)

    with pytest.raises(UnexpectedError):
        await _redeem(session_factory, user.id, coupon.id)

    assert await _state(session_factory, coupon.id) == (0, 0)


@pytest.mark.asyncio
async def test_failed_compensation_is_logged_for_reconciliation(
    session_factory, make_user, make_store, make_coupon, monkeypatch
) -> None:
    store = await make_store(session_factory)
    coupon = await make_coupon(session_factory, store)
    user = await make_user(session_factory)
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="ERROR")

    async with session_factory() as session:
        store_down = {"value": False}
        original_execute = session.execute

        async def _execute(*args, **kwargs):
            if store_down["value"]:
                raise OSError("connection reset")
            return await original_execute(*args, **kwargs)

        async def _timed_out(self, user_id, coupon_id, now):
            store_down["value"] = True
            raise asyncio.TimeoutError()

        monkeypatch.setattr(session, "execute", _execute)
        monkeypatch.setattr(RedemptionEngine, "_insert_record", _timed_out)
        try:
            with pytest.raises(UnexpectedError, match="compensation"):
                await RedemptionEngine(session).redeem(user.id, coupon.id)
        finally:
            logger.remove(handler_id)

    assert "Usage compensation failed" in messages
    assert await _state(session_factory, coupon.id) == (1, 0)
