"""Authentication and session services."""

from .blacklist import InMemoryTokenBlacklist, RedisTokenBlacklist, TokenBlacklist, build_token_blacklist
from .lockout_service import AuthLockoutState, LockoutService
from .service import AuthService, AuthSession, normalize_email
from .tokens import AccessClaims, InvalidTokenError, RefreshResult, TokenPair, TokenService

__all__ = [
    "AccessClaims",
    "AuthLockoutState",
    "AuthService",
    "AuthSession",
    "InMemoryTokenBlacklist",
    "InvalidTokenError",
    "LockoutService",
    "RedisTokenBlacklist",
    "RefreshResult",
    "TokenBlacklist",
    "TokenPair",
    "TokenService",
    "build_token_blacklist",
    "normalize_email",
]
