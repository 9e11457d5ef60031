"""Cashback ledger and its balance projections."""

from .ledger import BalanceAudit, CashbackLedger, LedgerBalances, TransactionFilters, compute_cashback

__all__ = [
    "BalanceAudit",
    "CashbackLedger",
    "LedgerBalances",
    "TransactionFilters",
    "compute_cashback",
]
