"""Background workers started with the API process."""

from .cashback_sweeper import CashbackSweeperWorker

__all__ = ["CashbackSweeperWorker"]
