"""Registration, login and email verification."""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.core.clock import Clock, utcnow
from cashheros_api.core.errors import (
    AccountLockedError,
    ConflictError,
    InvalidCredentialsError,
    NotFoundError,
    ValidationFailure,
)
from cashheros_api.core.settings import settings
from cashheros_api.models.user import User, UserRoleEnum
from cashheros_api.services.notifications import AccountNotifier

from .lockout_service import LockoutService
from .passwords import hash_password, verify_password
from .tokens import TokenPair, TokenService

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(slots=True)
class AuthSession:
    user: User
    tokens: TokenPair


def normalize_email(email: str) -> str:
    normalized = email.strip().casefold()
    if not _EMAIL_PATTERN.match(normalized):
        raise ValidationFailure("email", "Malformed email address")
    return normalized


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AuthService:
    """Account lifecycle operations that end in a freshly issued token pair."""

    def __init__(
        self,
        db_session: AsyncSession,
        token_service: TokenService,
        *,
        notifier: AccountNotifier | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db_session
        self._tokens = token_service
        self._notifier = notifier or AccountNotifier()
        self._lockout = LockoutService(db_session, clock=clock)
        self._clock = clock

    async def register(
        self,
        *,
        email: str,
        password: str,
        display_name: str | None = None,
        role: UserRoleEnum = UserRoleEnum.USER,
    ) -> AuthSession:
        normalized = normalize_email(email)
        if len(password) < settings.password_min_length:
            raise ValidationFailure("password", "Password too short")

        verification_token = secrets.token_urlsafe(32)
        user = User(
            email=normalized,
            password_hash=hash_password(password),
            display_name=display_name,
            role=role.value,
            verification_token_hash=_digest(verification_token),
            token_version=0,
        )
        self._db.add(user)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise ConflictError("Email already registered") from exc
        await self._db.refresh(user)

        logger.info("User registered", user_id=str(user.id), role=user.role)
        await self._notifier.send_verification_email(user, verification_token)
        return AuthSession(user=user, tokens=self._tokens.issue(user))

    async def login(self, *, email: str, password: str) -> AuthSession:
        normalized = email.strip().casefold()
        result = await self._db.execute(select(User).where(User.email == normalized))
        user = result.scalar_one_or_none()
        if user is None:
            # Same cost as a real check so response timing does not reveal accounts.
            verify_password(password, _DUMMY_HASH)
            logger.info("Login failed", reason="unknown_email")
            raise InvalidCredentialsError()

        state = self._lockout.get_state(user)
        if state.locked:
            logger.info("Login refused for locked account", user_id=str(user.id))
            raise AccountLockedError(state.retry_after_seconds or 0)

        if not verify_password(password, user.password_hash):
            state = await self._lockout.register_failure(user)
            logger.info(
                "Login failed",
                reason="bad_password",
                user_id=str(user.id),
                remaining_attempts=state.remaining_attempts,
            )
            if state.locked:
                raise AccountLockedError(state.retry_after_seconds or 0)
            raise InvalidCredentialsError()

        await self._lockout.register_success(user)
        await self._db.refresh(user)
        logger.info("User logged in", user_id=str(user.id))
        return AuthSession(user=user, tokens=self._tokens.issue(user))

    async def verify_email(self, token: str) -> User:
        result = await self._db.execute(
            select(User).where(User.verification_token_hash == _digest(token))
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("Verification token not recognised")
        user.is_verified = True
        user.email_verified_at = self._clock()
        user.verification_token_hash = None
        await self._db.commit()
        await self._db.refresh(user)
        logger.info("Email verified", user_id=str(user.id))
        return user

    async def get_user(self, user_id) -> User:
        user = await self._db.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFoundError("User not found")
        return user


_DUMMY_HASH = hash_password(secrets.token_hex(8))
