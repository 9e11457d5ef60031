import re
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common import UtcDatetime

COUPON_CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,20}$")


def _clean_categories(value: list[str] | None) -> list[str] | None:
    if value is None:
        return None
    cleaned: list[str] = []
    for item in value:
        label = item.strip().lower()
        if label and label not in cleaned:
            cleaned.append(label)
    return cleaned


class StoreSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    name: str
    logo_url: str | None = Field(None, alias="logoUrl")


# Stores


class StoreCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: str = Field(..., min_length=2, max_length=120)
    description: str | None = Field(None, max_length=2000)
    logo_url: str | None = Field(None, alias="logoUrl", max_length=512)
    website_url: str | None = Field(None, alias="websiteUrl", max_length=512)
    categories: list[str] = Field(default_factory=list)
    cashback_percentage: Decimal = Field(Decimal("0"), alias="cashbackPercentage", ge=0, le=100)
    is_active: bool = Field(True, alias="isActive")
    is_featured: bool = Field(False, alias="isFeatured")

    @field_validator("categories")
    @classmethod
    def _normalize_categories(cls, value: list[str] | None) -> list[str] | None:
        return _clean_categories(value)


class StoreUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: str | None = Field(None, min_length=2, max_length=120)
    description: str | None = Field(None, max_length=2000)
    logo_url: str | None = Field(None, alias="logoUrl", max_length=512)
    website_url: str | None = Field(None, alias="websiteUrl", max_length=512)
    categories: list[str] | None = None
    cashback_percentage: Decimal | None = Field(None, alias="cashbackPercentage", ge=0, le=100)
    is_active: bool | None = Field(None, alias="isActive")
    is_featured: bool | None = Field(None, alias="isFeatured")

    @field_validator("categories")
    @classmethod
    def _normalize_categories(cls, value: list[str] | None) -> list[str] | None:
        return _clean_categories(value)


class StoreResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    name: str
    description: str | None = None
    logo_url: str | None = Field(None, alias="logoUrl")
    website_url: str | None = Field(None, alias="websiteUrl")
    categories: list[str] = Field(default_factory=list)
    cashback_percentage: float = Field(..., alias="cashbackPercentage")
    is_active: bool = Field(..., alias="isActive")
    is_featured: bool = Field(..., alias="isFeatured")
    created_at: UtcDatetime = Field(..., alias="createdAt")
    updated_at: UtcDatetime = Field(..., alias="updatedAt")


# Coupons


class CouponCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    code: str
    title: str = Field(..., min_length=3, max_length=100)
    description: str | None = Field(None, max_length=1000)
    store_id: UUID = Field(..., alias="store")
    discount: Decimal = Field(..., ge=0, le=100)
    category: str | None = Field(None, max_length=64)
    expiry_date: UtcDatetime | None = Field(None, alias="expiryDate")
    is_active: bool = Field(True, alias="isActive")
    usage_limit: int | None = Field(None, alias="usageLimit", gt=0)

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not COUPON_CODE_PATTERN.match(normalized):
            raise ValueError("code must be 3-20 uppercase letters or digits")
        return normalized


class CouponUpdate(BaseModel):
    """Patch body; ``code`` is immutable and rejected as an unknown key."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    title: str | None = Field(None, min_length=3, max_length=100)
    description: str | None = Field(None, max_length=1000)
    store_id: UUID | None = Field(None, alias="store")
    discount: Decimal | None = Field(None, ge=0, le=100)
    category: str | None = Field(None, max_length=64)
    expiry_date: UtcDatetime | None = Field(None, alias="expiryDate")
    is_active: bool | None = Field(None, alias="isActive")
    usage_limit: int | None = Field(None, alias="usageLimit", gt=0)


class CouponResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    code: str
    title: str
    description: str | None = None
    store_id: UUID = Field(..., alias="storeId")
    store: StoreSummary | None = None
    discount: float
    category: str | None = None
    expiry_date: UtcDatetime | None = Field(None, alias="expiryDate")
    is_active: bool = Field(..., alias="isActive")
    usage_limit: int | None = Field(None, alias="usageLimit")
    usage_count: int = Field(..., alias="usageCount")
    created_at: UtcDatetime = Field(..., alias="createdAt")
    updated_at: UtcDatetime = Field(..., alias="updatedAt")


class RedemptionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    coupon: CouponResponse
    redemption_date: UtcDatetime = Field(..., alias="redemptionDate")


# Cashback offers


class CashbackOfferCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    title: str = Field(..., min_length=3, max_length=100)
    description: str | None = Field(None, max_length=1000)
    store_id: UUID = Field(..., alias="store")
    rate: Decimal = Field(..., gt=0, le=100)
    category: str | None = Field(None, max_length=64)
    terms: str | None = Field(None, max_length=2000)
    expiry_date: UtcDatetime | None = Field(None, alias="expiryDate")
    is_active: bool = Field(True, alias="isActive")
    is_featured: bool = Field(False, alias="featured")


class CashbackOfferUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    title: str | None = Field(None, min_length=3, max_length=100)
    description: str | None = Field(None, max_length=1000)
    store_id: UUID | None = Field(None, alias="store")
    rate: Decimal | None = Field(None, gt=0, le=100)
    category: str | None = Field(None, max_length=64)
    terms: str | None = Field(None, max_length=2000)
    expiry_date: UtcDatetime | None = Field(None, alias="expiryDate")
    is_active: bool | None = Field(None, alias="isActive")
    is_featured: bool | None = Field(None, alias="featured")


class CashbackOfferResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    title: str
    description: str | None = None
    store_id: UUID = Field(..., alias="storeId")
    store: StoreSummary | None = None
    rate: float
    category: str | None = None
    terms: str | None = None
    expiry_date: UtcDatetime | None = Field(None, alias="expiryDate")
    is_active: bool = Field(..., alias="isActive")
    is_featured: bool = Field(..., alias="featured")
    created_at: UtcDatetime = Field(..., alias="createdAt")
    updated_at: UtcDatetime = Field(..., alias="updatedAt")
