"""Database-backed leases so only one process runs a singleton job at a time."""

from __future__ import annotations

from datetime import timedelta

from loguru import logger
from sqlalchemy import insert, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.core.clock import Clock, utcnow
from cashheros_api.core.errors import ConflictError
from cashheros_api.models.lease import JobLease


class LeaseUnavailableError(ConflictError):
    """Another holder owns an unexpired lease."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Lease {name} is held by another worker")
        self.name = name


class JobLeaseService:
    def __init__(self, db_session: AsyncSession, *, clock: Clock = utcnow) -> None:
        self._db = db_session
        self._clock = clock

    async def acquire(self, name: str, holder: str, *, ttl_seconds: int) -> bool:
        """Take or renew ``name`` for ``ttl_seconds``; False when someone else holds it."""

        now = self._clock()
        expires_at = now + timedelta(seconds=ttl_seconds)

        result = await self._db.execute(
            update(JobLease)
            .where(
                JobLease.name == name,
                or_(JobLease.expires_at <= now, JobLease.holder == holder),
            )
            .values(holder=holder, acquired_at=now, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await self._db.commit()
            logger.debug("Lease taken over or renewed", lease=name, holder=holder)
            return True

        try:
            await self._db.execute(
                insert(JobLease).values(name=name, holder=holder, acquired_at=now, expires_at=expires_at)
            )
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            return False
        logger.debug("Lease acquired", lease=name, holder=holder)
        return True

    async def release(self, name: str, holder: str) -> None:
        await self._db.execute(
            update(JobLease)
            .where(JobLease.name == name, JobLease.holder == holder)
            .values(expires_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()


__all__ = ["JobLeaseService", "LeaseUnavailableError"]
