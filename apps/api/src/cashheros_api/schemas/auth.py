from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .common import UtcDatetime


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=128)
    display_name: str | None = Field(None, alias="displayName", max_length=120)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=128)


class RefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(..., alias="refreshToken")


class BalanceSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    available: float = Field(..., validation_alias="available_balance", serialization_alias="available")
    pending: float = Field(..., validation_alias="pending_balance", serialization_alias="pending")
    total_earned: float = Field(..., serialization_alias="totalEarned")
    total_redeemed: float = Field(..., serialization_alias="totalRedeemed")


class UserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    email: str
    display_name: str | None = Field(None, alias="displayName")
    role: str
    verified: bool = Field(..., validation_alias="is_verified", serialization_alias="verified")
    created_at: UtcDatetime = Field(..., alias="createdAt")


class ProfileResponse(UserResponse):
    balances: BalanceSnapshot


class AuthTokensResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken")
    refresh_token: str = Field(..., alias="refreshToken")
    user: UserResponse


class RefreshResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken")
    refresh_token: str | None = Field(None, alias="refreshToken")
