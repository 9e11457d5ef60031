"""Brute force lockout tracking on the user record."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.core.clock import Clock, ensure_aware, utcnow
from cashheros_api.core.settings import settings
from cashheros_api.models.user import User


@dataclass
class AuthLockoutState:
    """Represents the lockout state for an account."""

    locked: bool
    retry_after_seconds: int | None
    remaining_attempts: int


class LockoutService:
    """Counts consecutive failed logins and locks the account past a threshold."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        threshold: int | None = None,
        lockout_seconds: int | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db_session
        self._threshold = threshold or settings.auth_lockout_threshold
        self._lockout_seconds = lockout_seconds or settings.auth_lockout_duration_seconds
        self._clock = clock

    def get_state(self, user: User) -> AuthLockoutState:
        locked_until = ensure_aware(user.locked_until)
        now = self._clock()
        if locked_until is not None and locked_until > now:
            retry_after = int((locked_until - now).total_seconds()) + 1
            return AuthLockoutState(locked=True, retry_after_seconds=retry_after, remaining_attempts=0)
        remaining = max(self._threshold - (user.failed_login_attempts or 0), 0)
        return AuthLockoutState(locked=False, retry_after_seconds=None, remaining_attempts=remaining)

    async def register_failure(self, user: User) -> AuthLockoutState:
        state = self.get_state(user)
        if state.locked:
            return state

        attempts = (user.failed_login_attempts or 0) + 1
        if attempts >= self._threshold:
            user.failed_login_attempts = 0
            user.locked_until = self._clock() + timedelta(seconds=self._lockout_seconds)
            await self._db.commit()
            logger.warning(
                "Account locked after repeated login failures",
                user_id=str(user.id),
                lockout_seconds=self._lockout_seconds,
            )
            return AuthLockoutState(locked=True, retry_after_seconds=self._lockout_seconds, remaining_attempts=0)

        user.failed_login_attempts = attempts
        await self._db.commit()
        return AuthLockoutState(
            locked=False,
            retry_after_seconds=None,
            remaining_attempts=self._threshold - attempts,
        )

    async def register_success(self, user: User) -> AuthLockoutState:
        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login_at = self._clock()
        await self._db.commit()
        return AuthLockoutState(locked=False, retry_after_seconds=None, remaining_attempts=self._threshold)
