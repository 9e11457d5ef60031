"""Run the cashback confirmation sweep once.

Exit codes: ``0`` sweep completed, ``1`` store unreachable, ``2`` another
process holds the sweeper lease.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Sequence

from loguru import logger
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cashheros_api import __version__
from cashheros_api.core.logging import configure_logging
from cashheros_api.core.settings import settings
from cashheros_api.services.leases import LeaseUnavailableError
from cashheros_api.workers.cashback_sweeper import CashbackSweeperWorker, SessionFactory

EXIT_OK = 0
EXIT_STORE_UNREACHABLE = 1
EXIT_LEASE_HELD = 2


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Confirm pending cashback whose window has elapsed")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Override the number of transactions confirmed per batch.",
    )
    parser.add_argument(
        "--max-per-tick",
        type=int,
        default=None,
        help="Override the cap on transactions confirmed by this run.",
    )
    parser.add_argument(
        "--holder",
        default=None,
        help="Lease holder label recorded for this invocation.",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Sweep a database other than DATABASE_URL.",
    )
    return parser.parse_args(argv)


async def run_sweep(
    session_factory: SessionFactory,
    *,
    batch_size: int | None = None,
    max_per_tick: int | None = None,
    holder: str | None = None,
) -> int:
    worker = CashbackSweeperWorker(
        session_factory,
        batch_size=batch_size,
        max_per_tick=max_per_tick,
        holder=holder,
    )
    try:
        summary = await worker.run_once()
    except LeaseUnavailableError:
        logger.warning("Cashback sweep not started; lease is held", lease=settings.cashback_sweeper_lease_name)
        return EXIT_LEASE_HELD
    except (DBAPIError, OSError) as exc:
        logger.error("Cashback sweep failed; store unreachable", error=str(exc))
        return EXIT_STORE_UNREACHABLE

    logger.success(
        "Cashback sweep run completed",
        confirmed=summary.get("confirmed", 0),
        batches=summary.get("batches", 0),
    )
    return EXIT_OK


async def _run(args: argparse.Namespace) -> int:
    from cashheros_api.db.session import async_session, build_engine

    if not args.database_url:
        return await run_sweep(
            async_session,
            batch_size=args.batch_size,
            max_per_tick=args.max_per_tick,
            holder=args.holder,
        )

    engine = build_engine(args.database_url)
    try:
        factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
        return await run_sweep(
            factory,
            batch_size=args.batch_size,
            max_per_tick=args.max_per_tick,
            holder=args.holder,
        )
    finally:
        await engine.dispose()


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(
        service_name="cashheros-sweeper",
        environment=settings.environment,
        version=__version__,
        level=settings.log_level,
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
