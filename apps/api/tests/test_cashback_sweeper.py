from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cashheros_api.jobs.cashback_sweep import (
    EXIT_LEASE_HELD,
    EXIT_OK,
    EXIT_STORE_UNREACHABLE,
    parse_args,
    run_sweep,
)
from cashheros_api.models.cashback import CashbackStatus, CashbackTransaction
from cashheros_api.services.cashback import CashbackLedger
from cashheros_api.services.leases import JobLeaseService, LeaseUnavailableError
from cashheros_api.workers import CashbackSweeperWorker

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
LEASE = "cashback-sweeper"


async def _seed_purchases(session_factory, user, store, *, count: int, age: timedelta, now: datetime = NOW) -> None:
    async with session_factory() as session:
        ledger = CashbackLedger(session, clock=lambda: now)
        for _ in range(count):
            await ledger.record_purchase(
                user_id=user.id,
                store_id=store.id,
                gross_amount=Decimal("100"),
                purchase_date=now - age,
            )


async def _statuses(session_factory) -> list[CashbackStatus]:
    async with session_factory() as session:
        result = await session.execute(select(CashbackTransaction.status))
        return sorted(result.scalars().all(), key=lambda status: status.value)


async def _hold_lease(session_factory, holder: str, *, at: datetime, ttl_seconds: int = 600) -> None:
    async with session_factory() as session:
        assert await JobLeaseService(session, clock=lambda: at).acquire(LEASE, holder, ttl_seconds=ttl_seconds)


@pytest.mark.asyncio
async def test_run_once_stops_at_per_tick_cap_and_drains_on_later_ticks(
    session_factory, make_user, make_store
) -> None:
    user = await make_user(session_factory)
    store = await make_store(session_factory)
    await _seed_purchases(session_factory, user, store, count=5, age=timedelta(days=40))
    await _seed_purchases(session_factory, user, store, count=1, age=timedelta(days=3))

    worker = CashbackSweeperWorker(
        session_factory,
        batch_size=2,
        max_per_tick=3,
        lease_name=LEASE,
        holder="sweeper-a",
        clock=lambda: NOW,
    )
    first = await worker.run_once()

    assert first == {"confirmed": 3, "batches": 2}
    async with session_factory() as session:
        balances = await CashbackLedger(session).get_balances(user.id)
    assert balances.available == Decimal("15.00")
    assert balances.pending == Decimal("15.00")

    second = await worker.run_once()
    third = await worker.run_once()

    assert second == {"confirmed": 2, "batches": 2}
    assert third == {"confirmed": 0, "batches": 1}
    assert worker.last_summary == third
    assert worker.last_run_at == NOW
    assert await _statuses(session_factory) == [CashbackStatus.CONFIRMED] * 5 + [CashbackStatus.PENDING]

    async with session_factory() as session:
        balances = await CashbackLedger(session).get_balances(user.id)
    assert balances.available == Decimal("25.00")
    assert balances.pending == Decimal("5.00")


@pytest.mark.asyncio
async def test_run_once_refuses_while_another_holder_owns_lease(session_factory, make_user, make_store) -> None:
    user = await make_user(session_factory)
    store = await make_store(session_factory)
    await _seed_purchases(session_factory, user, store, count=1, age=timedelta(days=40))
    await _hold_lease(session_factory, "sweeper-b", at=NOW, ttl_seconds=60)

    blocked = CashbackSweeperWorker(session_factory, lease_name=LEASE, holder="sweeper-a", clock=lambda: NOW)
    with pytest.raises(LeaseUnavailableError):
        await blocked.run_once()
    assert await _statuses(session_factory) == [CashbackStatus.PENDING]

    later = NOW + timedelta(seconds=61)
    takeover = CashbackSweeperWorker(session_factory, lease_name=LEASE, holder="sweeper-a", clock=lambda: later)
    assert await takeover.run_once() == {"confirmed": 1, "batches": 1}


@pytest.mark.asyncio
async def test_released_lease_is_free_for_the_next_holder(session_factory) -> None:
    async with session_factory() as session:
        leases = JobLeaseService(session, clock=lambda: NOW)
        assert await leases.acquire(LEASE, "sweeper-a", ttl_seconds=60)
        assert await leases.acquire(LEASE, "sweeper-a", ttl_seconds=60)
        assert not await leases.acquire(LEASE, "sweeper-b", ttl_seconds=60)
        await leases.release(LEASE, "sweeper-a")
        assert await leases.acquire(LEASE, "sweeper-b", ttl_seconds=60)


@pytest.mark.asyncio
async def test_run_sweep_exit_codes(session_factory, make_user, make_store, tmp_path) -> None:
    now = datetime.now(timezone.utc)
    user = await make_user(session_factory)
    store = await make_store(session_factory)
    await _seed_purchases(session_factory, user, store, count=2, age=timedelta(days=45), now=now)

    assert await run_sweep(session_factory, batch_size=10, holder="cli-a") == EXIT_OK
    assert await _statuses(session_factory) == [CashbackStatus.CONFIRMED] * 2

    await _hold_lease(session_factory, "cli-b", at=datetime.now(timezone.utc))
    assert await run_sweep(session_factory, holder="cli-a") == EXIT_LEASE_HELD

    unreachable = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'cashheros.db'}")
    try:
        factory = async_sessionmaker(unreachable, expire_on_commit=False, class_=AsyncSession)
        assert await run_sweep(factory, holder="cli-a") == EXIT_STORE_UNREACHABLE
    finally:
        await unreachable.dispose()


def test_parse_args_reads_overrides() -> None:
    args = parse_args(
        [
            "--batch-size",
            "25",
            "--max-per-tick",
            "200",
            "--holder",
            "cron",
            "--database-url",
            "sqlite+aiosqlite:///x.db",
        ]
    )

    assert args.batch_size == 25
    assert args.max_per_tick == 200
    assert args.holder == "cron"
    assert args.database_url == "sqlite+aiosqlite:///x.db"
    assert parse_args([]).batch_size is None
