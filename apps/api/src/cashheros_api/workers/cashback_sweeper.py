"""Worker that confirms pending cashback once its confirmation window elapses."""

from __future__ import annotations

import asyncio
import os
import socket
from datetime import datetime
from typing import Awaitable, Callable, Dict
from uuid import uuid4

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.core.clock import Clock, utcnow
from cashheros_api.core.settings import settings
from cashheros_api.services.cashback import CashbackLedger
from cashheros_api.services.leases import JobLeaseService, LeaseUnavailableError
from cashheros_api.services.notifications import AccountNotifier

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]
NotifierFactory = Callable[[], AccountNotifier]


def _default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


class CashbackSweeperWorker:
    """Periodically moves due pending transactions to confirmed, in batches."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        notifier_factory: NotifierFactory | None = None,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
        max_per_tick: int | None = None,
        lease_seconds: int | None = None,
        lease_name: str | None = None,
        holder: str | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._notifier_factory = notifier_factory or AccountNotifier
        self.interval_seconds = interval_seconds or settings.cashback_sweeper_interval_seconds
        self._batch_size = batch_size or settings.cashback_sweeper_batch_size
        self._max_per_tick = max_per_tick or settings.cashback_sweeper_max_per_tick
        self._lease_seconds = lease_seconds or settings.cashback_sweeper_lease_seconds
        self._lease_name = lease_name or settings.cashback_sweeper_lease_name
        self._holder = holder or _default_holder()
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False
        self.last_run_at: datetime | None = None
        self.last_summary: Dict[str, int] | None = None
        self.last_error: str | None = None

    @property
    def holder(self) -> str:
        return self._holder

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Cashback sweeper worker started",
            interval_seconds=self.interval_seconds,
            batch_size=self._batch_size,
            max_per_tick=self._max_per_tick,
            holder=self._holder,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Cashback sweeper worker stopped")

    async def run_once(self) -> Dict[str, int]:
        """Confirm up to ``max_per_tick`` due transactions while holding the sweeper lease.

        Anything still due after the cap waits for the next tick. Raises :class:`LeaseUnavailableError` when another process holds it.
        """

        summary: Dict[str, int] = {"confirmed": 0, "batches": 0}
        session = await self._ensure_session()
        async with session as managed_session:
            leases = JobLeaseService(managed_session, clock=self._clock)
            if not await leases.acquire(self._lease_name, self._holder, ttl_seconds=self._lease_seconds):
                logger.info("Cashback sweep skipped; lease held elsewhere", lease=self._lease_name)
                raise LeaseUnavailableError(self._lease_name)

            ledger = CashbackLedger(managed_session, notifier=self._notifier_factory(), clock=self._clock)
            try:
                while summary["confirmed"] < self._max_per_tick:
                    limit = min(self._batch_size, self._max_per_tick - summary["confirmed"])
                    confirmed = await ledger.confirm_due(limit=limit, now=self._clock())
                    summary["batches"] += 1
                    summary["confirmed"] += len(confirmed)
                    if len(confirmed) < limit or summary["confirmed"] >= self._max_per_tick:
                        break
                    if not await leases.acquire(self._lease_name, self._holder, ttl_seconds=self._lease_seconds):
                        logger.warning("Cashback sweeper lost its lease mid-run", lease=self._lease_name)
                        break
            finally:
                await managed_session.rollback()
                await leases.release(self._lease_name, self._holder)

        self.last_run_at = self._clock()
        self.last_summary = summary
        self.last_error = None
        logger.info(
            "Cashback sweep completed",
            confirmed=summary["confirmed"],
            batches=summary["batches"],
            holder=self._holder,
        )
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except LeaseUnavailableError:
                pass
            except Exception as exc:  # pragma: no cover - logged and retried next tick
                self.last_error = str(exc)
                logger.exception("Cashback sweep iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["CashbackSweeperWorker"]
