from datetime import datetime
from typing import Annotated, Generic, TypeVar
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from cashheros_api.core.clock import ensure_aware

T = TypeVar("T")

UtcDatetime = Annotated[datetime, AfterValidator(ensure_aware)]


class PaginationMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    page: int
    total_pages: int = Field(..., alias="totalPages")
    limit: int


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T


class PagedResponse(BaseModel, Generic[T]):
    success: bool = True
    data: list[T]
    pagination: PaginationMeta


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    field: str | None = None


def pagination_meta(page) -> PaginationMeta:
    """Build response pagination from a service-layer ``Page``."""

    return PaginationMeta(total=page.total, page=page.page, total_pages=page.total_pages, limit=page.limit)


class DeleteResponse(BaseModel):
    """``deleted`` for a hard delete, ``deactivated`` when the record is still referenced."""

    id: UUID
    outcome: str
