from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class PageOut(BaseModel, Generic[T]):
    items: list[T]
    total_count: int
    page_number: int
    page_size: int
    total_pages: int

    @classmethod
    def build(cls, page, items: list[T]) -> "PageOut[T]":
        return cls(
            items=items,
            total_count=page.total_count,
            page_number=page.page_number,
            page_size=page.page_size,
            total_pages=page.total_pages,
        )
