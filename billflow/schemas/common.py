"""Shared schema helpers: response envelopes and pagination."""

import math
from typing import Any, Generic, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, Field
from pydantic.fields import FieldInfo

T = TypeVar("T")


def metadata_field(description: str = "Free-form key/value metadata") -> FieldInfo:
    """Field for ``metadata``, read from the ORM ``meta`` attribute when loading rows."""
    return Field(
        default_factory=dict,
        validation_alias=AliasChoices("meta", "metadata"),
        description=description,
    )


class PaginationParams(BaseModel):
    """Page based pagination request."""

    page: int = Field(1, ge=1, description="1-based page number")
    limit: int = Field(20, ge=1, le=100, description="Items per page")

    @property
    def skip(self) -> int:
        """Offset of the first row on the page."""
        return (self.page - 1) * self.limit


class Pagination(BaseModel):
    """Pagination block returned by list endpoints."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, params: PaginationParams, total: int) -> "Pagination":
        """Compute the pagination block for ``total`` rows."""
        total_pages = math.ceil(total / params.limit) if total else 0
        return cls(
            page=params.page,
            limit=params.limit,
            total=total,
            total_pages=total_pages,
            has_next=params.page < total_pages,
            has_prev=params.page > 1,
        )


class Page(BaseModel, Generic[T]):
    """One page of results from a service list call."""

    items: list[T]
    pagination: Pagination


class ErrorDetail(BaseModel):
    """Machine readable error."""

    code: str
    message: str
    details: Optional[Any] = None


class ApiResponse(BaseModel, Generic[T]):
    """Standard response envelope."""

    success: bool = True
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


class PaginatedResponse(ApiResponse[list[T]], Generic[T]):
    """Envelope for list endpoints."""

    pagination: Pagination


class BatchResult(BaseModel):
    """Outcome counts of a batch job that isolates failures per item."""

    processed: int = 0
    failed: int = 0
