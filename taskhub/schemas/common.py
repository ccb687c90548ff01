"""Common schemas."""
from typing import Generic, List, TypeVar
from pydantic import BaseModel

ItemT = TypeVar("ItemT")


class PaginatedResponse(BaseModel, Generic[ItemT]):
    """Paginated response."""

    total: int
    skip: int
    limit: int
    items: List[ItemT]
