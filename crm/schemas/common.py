from typing import Annotated, Generic, List, Optional, TypeVar

from pydantic import BaseModel, BeforeValidator, EmailStr, Field

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


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


class MessageResponse(BaseModel):
    message: str


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


def blank_to_none(value):
    """Forms send "" for cleared optional inputs."""
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


def iso(value) -> str:
    return value.isoformat() if value else ""


# Optional email that also accepts "" as "not set"
OptionalEmail = Annotated[Optional[EmailStr], BeforeValidator(blank_to_none)]


def update_values(body: BaseModel, required: tuple = ()) -> dict:
    """Fields explicitly sent in a PATCH body; nulls for required columns are ignored."""
    values = body.model_dump(exclude_unset=True)
    return {k: v for k, v in values.items() if v is not None or k not in required}
