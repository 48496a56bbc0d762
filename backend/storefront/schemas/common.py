"""
Shared response envelope schemas.

Every endpoint answers with ``{"success": ..., "data": ..., "message": ...}``;
list endpoints add ``pagination``.
"""

from math import ceil
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

DataT = TypeVar("DataT")


class Pagination(BaseModel):
    """Pagination metadata for list responses."""

    page: int = Field(..., ge=1, description="Current page number")
    limit: int = Field(..., ge=1, description="Items per page")
    total: int = Field(..., ge=0, description="Total matching items")
    total_pages: int = Field(..., ge=0, description="Total number of pages")

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, total_pages=ceil(total / limit))


class ApiResponse(BaseModel, Generic[DataT]):
    """Standard success envelope."""

    success: bool = True
    data: Optional[DataT] = None
    message: Optional[str] = None
    pagination: Optional[Pagination] = None


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    success: bool = False
    message: str
    code: Optional[str] = None
    request_id: Optional[str] = None
