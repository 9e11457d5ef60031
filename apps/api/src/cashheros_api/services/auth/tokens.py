"""Access/refresh token issuance, verification and revocation."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import jwt
from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.core.clock import Clock, utcnow
from cashheros_api.core.errors import AuthenticationError, NotFoundError
from cashheros_api.core.settings import Settings, settings as default_settings
from cashheros_api.models.user import User

from .blacklist import TokenBlacklist


class InvalidTokenError(AuthenticationError):
    """Token failed signature, expiry, format, blacklist or version checks."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid token: {reason}")
        self.reason = reason


@dataclass(slots=True, frozen=True)
class AccessClaims:
    user_id: UUID
    role: str
    email: str
    verified: bool
    token_version: int
    expires_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(slots=True, frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(slots=True)
class RefreshResult:
    access_token: str
    user: User
    refresh_token: str | None = None


class TokenService:
    """Mints and checks credentials; revocation state lives in the blacklist and ``users.token_version``."""

    def __init__(
        self,
        db_session: AsyncSession,
        blacklist: TokenBlacklist,
        *,
        config: Settings | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db_session
        self._blacklist = blacklist
        self._config = config or default_settings
        self._clock = clock

    def issue(self, user: User) -> TokenPair:
        return TokenPair(
            access_token=self._mint_access(user),
            refresh_token=self._mint_refresh(user),
        )

    async def verify_access(self, token: str) -> AccessClaims:
        payload = self._decode(token, self._config.jwt_secret)
        try:
            claims = AccessClaims(
                user_id=UUID(str(payload["userId"])),
                role=str(payload["role"]),
                email=str(payload["email"]),
                verified=bool(payload["verified"]),
                token_version=int(payload["tokenVersion"]),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidTokenError("malformed claims") from exc

        if await self._blacklist.contains(token):
            raise InvalidTokenError("revoked")

        current_version = await self._current_token_version(claims.user_id)
        if current_version is None or current_version != claims.token_version:
            raise InvalidTokenError("version revoked")
        return claims

    async def refresh(self, refresh_token: str) -> RefreshResult:
        payload = self._decode(refresh_token, self._config.jwt_refresh_secret)
        try:
            user_id = UUID(str(payload["userId"]))
            token_version = int(payload["tokenVersion"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidTokenError("malformed claims") from exc
        if not payload.get("tokenId"):
            raise InvalidTokenError("malformed claims")

        user = await self._db.get(User, user_id, populate_existing=True)
        if user is None:
            raise InvalidTokenError("unknown subject")
        if user.token_version != token_version:
            logger.info(
                "Refresh rejected after revocation",
                user_id=str(user_id),
                presented_version=token_version,
                current_version=user.token_version,
            )
            raise InvalidTokenError("version revoked")

        result = RefreshResult(access_token=self._mint_access(user), user=user)
        if self._config.refresh_token_rotation:
            result.refresh_token = self._mint_refresh(user)
        return result

    async def logout(self, access_token: str) -> None:
        """Blacklist an access token until it would have expired anyway.

        Unparseable or already-expired tokens are ignored, so repeated calls
        are harmless.
        """

        try:
            payload = jwt.decode(
                access_token,
                options={"verify_signature": False, "verify_exp": False},
            )
            expires_at = float(payload["exp"])
        except (jwt.PyJWTError, KeyError, TypeError, ValueError):
            return

        # Forged tokens cannot occupy the blacklist longer than a real one lives.
        ttl = min(expires_at - self._clock().timestamp(), self._config.access_token_ttl.total_seconds())
        if ttl <= 0:
            return
        await self._blacklist.add(access_token, ttl)
        logger.info("Access token blacklisted", user_id=payload.get("userId"), ttl_seconds=round(ttl))

    async def revoke_all(self, user_id: UUID) -> int:
        """Bump the user's token version; returns the new version."""

        result = await self._db.execute(
            update(User)
            .where(User.id == user_id)
            .values(token_version=User.token_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            raise NotFoundError("User not found")
        await self._db.commit()

        version = await self._current_token_version(user_id)
        logger.info("All tokens revoked", user_id=str(user_id), token_version=version)
        return int(version or 0)

    def _mint_access(self, user: User) -> str:
        issued_at = self._clock()
        payload: dict[str, Any] = {
            "userId": str(user.id),
            "role": user.role,
            "email": user.email,
            "verified": bool(user.is_verified),
            "tokenVersion": int(user.token_version or 0),
            "tokenId": secrets.token_hex(16),
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self._config.access_token_ttl).timestamp()),
        }
        return jwt.encode(payload, self._config.jwt_secret, algorithm=self._config.jwt_algorithm)

    def _mint_refresh(self, user: User) -> str:
        issued_at = self._clock()
        payload: dict[str, Any] = {
            "userId": str(user.id),
            "tokenVersion": int(user.token_version or 0),
            "tokenId": secrets.token_hex(16),
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self._config.refresh_token_ttl).timestamp()),
        }
        return jwt.encode(payload, self._config.jwt_refresh_secret, algorithm=self._config.jwt_algorithm)

    def _decode(self, token: str, secret: str) -> dict[str, Any]:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[self._config.jwt_algorithm],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidTokenError("expired") from exc
        except jwt.PyJWTError as exc:
            raise InvalidTokenError("signature or format") from exc

    async def _current_token_version(self, user_id: UUID) -> int | None:
        result = await self._db.execute(select(User.token_version).where(User.id == user_id))
        return result.scalar_one_or_none()


__all__ = [
    "AccessClaims",
    "InvalidTokenError",
    "RefreshResult",
    "TokenPair",
    "TokenService",
]
