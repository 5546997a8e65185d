from typing import Generic, List, TypeVar
from pydantic import BaseModel, Field

T = TypeVar("T")


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class PaginatedResponse(BaseModel, Generic[T]):
    data: List[T] = Field(default_factory=list)  # type: ignore[assignment]
    pagination: PaginationMeta


def build_pagination(page: int, limit: int, total: int) -> PaginationMeta:
    total_pages = max(1, (total + limit - 1) // limit)
    return PaginationMeta(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


def sort_column(model, sort_by: str, sort_order: str, allowed: set, default: str):
    """Resolve ?sort_by=&sort_order= to an ORDER BY clause, restricted to `allowed` columns."""
    column = getattr(model, sort_by if sort_by in allowed else default)
    return column.asc() if sort_order == "asc" else column.desc()
