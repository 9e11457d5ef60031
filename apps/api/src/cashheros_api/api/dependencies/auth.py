"""Bearer-token dependencies: verify once at the gateway, hand typed claims downstream."""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.core.errors import AuthenticationError, AuthorizationError, NotFoundError
from cashheros_api.core.logging import bind_request_context
from cashheros_api.db.session import get_session
from cashheros_api.models.user import User, UserRoleEnum
from cashheros_api.services.auth import AccessClaims, TokenBlacklist, TokenService


def get_token_blacklist(request: Request) -> TokenBlacklist:
    return request.app.state.token_blacklist


async def get_token_service(
    blacklist: TokenBlacklist = Depends(get_token_blacklist),
    db: AsyncSession = Depends(get_session),
) -> TokenService:
    return TokenService(db, blacklist)


def bearer_token(authorization: str | None = Header(None)) -> str | None:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


async def get_current_claims(
    token: str | None = Depends(bearer_token),
    tokens: TokenService = Depends(get_token_service),
) -> AccessClaims:
    if token is None:
        raise AuthenticationError("Missing bearer token")
    claims = await tokens.verify_access(token)
    bind_request_context(user_id=claims.user_id)
    return claims


async def get_current_user(
    claims: AccessClaims = Depends(get_current_claims),
    db: AsyncSession = Depends(get_session),
) -> User:
    user = await db.get(User, claims.user_id, populate_existing=True)
    if user is None:
        raise NotFoundError("User not found")
    return user


def require_role(role: UserRoleEnum) -> Callable[..., AccessClaims]:
    async def _guard(claims: AccessClaims = Depends(get_current_claims)) -> AccessClaims:
        if claims.role != role.value:
            raise AuthorizationError(f"Requires role {role.value}")
        return claims

    return _guard


require_admin = require_role(UserRoleEnum.ADMIN)
