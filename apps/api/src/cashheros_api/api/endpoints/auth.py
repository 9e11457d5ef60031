"""Registration, login, token refresh and logout."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.api.dependencies.auth import (
    bearer_token,
    get_current_claims,
    get_current_user,
    get_token_service,
)
from cashheros_api.db.session import get_session
from cashheros_api.models.user import User
from cashheros_api.schemas.auth import (
    AuthTokensResponse,
    BalanceSnapshot,
    LoginRequest,
    ProfileResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    UserResponse,
)
from cashheros_api.schemas.common import ApiResponse
from cashheros_api.services.auth import AccessClaims, AuthService, AuthSession, TokenService

router = APIRouter(prefix="/auth", tags=["Auth"])


def get_auth_service(
    db: AsyncSession = Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
) -> AuthService:
    return AuthService(db, tokens)


def _session_response(session: AuthSession) -> ApiResponse[AuthTokensResponse]:
    return ApiResponse(
        data=AuthTokensResponse(
            access_token=session.tokens.access_token,
            refresh_token=session.tokens.refresh_token,
            user=UserResponse.model_validate(session.user),
        )
    )


def profile_of(user: User) -> ProfileResponse:
    base = UserResponse.model_validate(user)
    return ProfileResponse(**base.model_dump(), balances=BalanceSnapshot.model_validate(user))


@router.post(
    "/register",
    response_model=ApiResponse[AuthTokensResponse],
    status_code=status.HTTP_201_CREATED,
)
async def register(
    payload: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[AuthTokensResponse]:
    session = await service.register(
        email=payload.email,
        password=payload.password,
        display_name=payload.display_name,
    )
    return _session_response(session)


@router.post("/login", response_model=ApiResponse[AuthTokensResponse])
async def login(
    payload: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[AuthTokensResponse]:
    session = await service.login(email=payload.email, password=payload.password)
    return _session_response(session)


@router.post("/refresh", response_model=ApiResponse[RefreshResponse], response_model_exclude_none=True)
async def refresh(
    payload: RefreshRequest,
    tokens: TokenService = Depends(get_token_service),
) -> ApiResponse[RefreshResponse]:
    result = await tokens.refresh(payload.refresh_token)
    return ApiResponse(
        data=RefreshResponse(access_token=result.access_token, refresh_token=result.refresh_token)
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    token: str | None = Depends(bearer_token),
    tokens: TokenService = Depends(get_token_service),
) -> Response:
    """Blacklist the presented access token; repeated calls are harmless."""

    if token:
        await tokens.logout(token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/logout-all", status_code=status.HTTP_204_NO_CONTENT)
async def logout_all(
    claims: AccessClaims = Depends(get_current_claims),
    tokens: TokenService = Depends(get_token_service),
) -> Response:
    await tokens.revoke_all(claims.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=ApiResponse[ProfileResponse])
async def me(user: User = Depends(get_current_user)) -> ApiResponse[ProfileResponse]:
    return ApiResponse(data=profile_of(user))


@router.get("/verify-email/{token}", response_model=ApiResponse[UserResponse])
async def verify_email(
    token: str,
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[UserResponse]:
    user = await service.verify_email(token)
    return ApiResponse(data=UserResponse.model_validate(user))
