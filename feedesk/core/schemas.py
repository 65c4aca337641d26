from typing import Generic, List, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated response: items plus total and page info."""

    items: List[T]
    total: int = Field(..., ge=0, description="Total number of matching rows")
    page: int = Field(..., ge=1, description="Current page number")
    page_size: int = Field(..., ge=1, le=100, description="Page size used")
    total_pages: int = Field(..., ge=0, description="Total number of pages")


def total_pages_for(total: int, page_size: int) -> int:
    return (total + page_size - 1) // page_size if page_size else 0
