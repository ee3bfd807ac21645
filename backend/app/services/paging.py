from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from app.core.settings import settings

T = TypeVar("T")


@dataclass(frozen=True)
class PageParams:
    page_number: int = 1
    page_size: int = 20

    @classmethod
    def build(cls, page_number: int | None, page_size: int | None) -> "PageParams":
        number = max(page_number or 1, 1)
        size = page_size if page_size and page_size > 0 else settings.default_page_size
        return cls(page_number=number, page_size=min(size, settings.max_page_size))

    @property
    def offset(self) -> int:
        return (self.page_number - 1) * self.page_size


@dataclass
class Page(Generic[T]):
    items: list[T]
    total_count: int
    page_number: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_count / self.page_size)


LIKE_ESCAPE = "\\"


def search_pattern(term: str | None) -> str | None:
    """Build a case-insensitive substring pattern; pair it with ``escape=LIKE_ESCAPE``."""
    if term is None or not term.strip():
        return None
    escaped = (
        term.strip()
        .lower()
        .replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )
    return f"%{escaped}%"


def paginate(db: Session, stmt: Select, params: PageParams) -> Page:
    """Count the filtered statement, then fetch one page of it.

    The statement must already carry its ORDER BY; the count ignores it.
    """
    total = db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    items = list(db.scalars(stmt.limit(params.page_size).offset(params.offset)))
    return Page(
        items=items,
        total_count=int(total),
        page_number=params.page_number,
        page_size=params.page_size,
    )
