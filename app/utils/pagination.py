from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from fastapi import Query
from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import BaseModel

T = TypeVar("T")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class PaginationOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class PaginationParams(BaseModel):
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort_by: Optional[str] = None
    order: PaginationOrder = PaginationOrder.DESC

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class Pagination(BaseModel):
    current_page: int
    records_per_page: int
    total_records: int
    total_pages: int


class Page(BaseModel, Generic[T]):
    data: List[T]
    pagination: Pagination


def pagination_params(
    page: int = Query(DEFAULT_PAGE, ge=1, description="Numéro de page"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT, description="Éléments par page"),
) -> PaginationParams:
    return PaginationParams(page=page, limit=limit)


def build_pagination(total_records: int, params: PaginationParams) -> Pagination:
    total_pages = (total_records + params.limit - 1) // params.limit
    return Pagination(
        current_page=params.page,
        records_per_page=params.limit,
        total_records=total_records,
        total_pages=total_pages,
    )


async def find_with_pagination(
    collection: AsyncIOMotorCollection,
    query: Dict[str, Any],
    params: PaginationParams,
    projection: Optional[Dict[str, Any]] = None,
    default_sort: str = "created_at",
) -> Tuple[List[Dict[str, Any]], Pagination]:
    """find() + count_documents() avec skip/limit, tri optionnel."""
    sort_field = params.sort_by or default_sort
    direction = 1 if params.order == PaginationOrder.ASC else -1

    cursor = collection.find(
        query, projection, sort=[(sort_field, direction)], skip=params.skip, limit=params.limit
    )
    data = [doc async for doc in cursor]
    total = await collection.count_documents(query)
    return data, build_pagination(total, params)
