"""Coupon redemption engine."""

from .engine import RedemptionEngine, RedemptionResult

__all__ = ["RedemptionEngine", "RedemptionResult"]
