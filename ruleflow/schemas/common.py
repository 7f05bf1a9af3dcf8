"""Common API schemas."""

from typing import Any, Callable, Generic, Sequence, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Standard API response wrapper: ``code`` 0 on success, the HTTP status otherwise."""

    code: int = Field(default=0, description="Response code, 0 for success")
    message: str = Field(default="success", description="Response message")
    data: T | None = Field(default=None, description="Response data")


class PaginationParams(BaseModel):
    """Pagination query parameters."""

    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Items per page")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def window(self, items: Sequence[Any]) -> Sequence[Any]:
        """The slice of ``items`` on the requested page."""
        return items[self.offset:self.offset + self.page_size]


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated response wrapper."""

    code: int = Field(default=0, description="Response code")
    message: str = Field(default="success", description="Response message")
    data: list[T] = Field(default_factory=list, description="Items on this page")
    total: int = Field(default=0, ge=0, description="Total matching items")
    page: int = Field(default=1, ge=1, description="Current page")
    page_size: int = Field(default=20, ge=1, le=100, description="Page size")

    @classmethod
    def from_items(
        cls,
        items: Sequence[Any],
        pagination: PaginationParams,
        convert: Callable[[Any], T],
    ) -> "PaginatedResponse[T]":
        """Page an already filtered, ordered list."""
        return cls(
            data=[convert(item) for item in pagination.window(items)],
            total=len(items),
            page=pagination.page,
            page_size=pagination.page_size,
        )
