"""Offset pagination and sort parsing shared by the catalog listings."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Generic, Mapping, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api.core.errors import ValidationFailure
from cashheros_api.core.settings import settings

T = TypeVar("T")


@dataclass(slots=True)
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


@dataclass(slots=True)
class PageRequest:
    page: int = 1
    limit: int | None = None
    sort: str | None = None

    @property
    def bounded_limit(self) -> int:
        return clamp_limit(self.limit)

    @property
    def bounded_page(self) -> int:
        return max(self.page or 1, 1)


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return min(settings.page_limit_default, settings.page_limit_max)
    return max(1, min(int(limit), settings.page_limit_max))


def apply_sort(
    stmt: Select,
    sort: str | None,
    columns: Mapping[str, Any],
    *,
    default: str,
    tiebreaker: Any,
) -> Select:
    """Order by ``field`` or ``-field``; unknown fields are a validation error."""

    ordering = (sort or default).strip()
    descending = ordering.startswith("-")
    key = ordering.lstrip("-+")
    column = columns.get(key)
    if column is None:
        raise ValidationFailure("sort", f"Unsupported sort field {key!r}")
    return stmt.order_by(column.desc() if descending else column.asc(), tiebreaker)


async def paginate(session: AsyncSession, stmt: Select, request: PageRequest) -> Page:
    limit = request.bounded_limit
    page = request.bounded_page

    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await session.execute(count_stmt)).scalar_one()

    result = await session.execute(stmt.offset((page - 1) * limit).limit(limit))
    items = list(result.scalars().unique().all())
    return Page(items=items, total=int(total), page=page, limit=limit)


def search_pattern(term: str) -> str:
    escaped = term.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
