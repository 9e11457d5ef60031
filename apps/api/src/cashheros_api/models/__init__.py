from .cashback import (
    CashbackOffer,
    CashbackStatus,
    CashbackStatusEvent,
    CashbackTransaction,
    WithdrawalMethod,
    WithdrawalRequest,
    WithdrawalStatus,
)
from .coupon import Coupon, CouponRedemption
from .lease import JobLease
from .store import Store
from .user import User, UserRoleEnum

__all__ = [
    "CashbackOffer",
    "CashbackStatus",
    "CashbackStatusEvent",
    "CashbackTransaction",
    "Coupon",
    "CouponRedemption",
    "JobLease",
    "Store",
    "User",
    "UserRoleEnum",
    "WithdrawalMethod",
    "WithdrawalRequest",
    "WithdrawalStatus",
]
