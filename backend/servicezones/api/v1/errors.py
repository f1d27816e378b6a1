"""Translation of domain errors into HTTP errors."""
from typing import Optional

from fastapi import HTTPException, status

from servicezones.domain import ShopCategory
from servicezones.exceptions import (
    AreaNotFoundError,
    QueryValidationError,
)


def invalid_query(exc: QueryValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
            "error_code": exc.error_code,
            "message": str(exc),
            "errors": exc.errors,
        },
    )


def area_not_found(exc: AreaNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "error_code": "AREA_NOT_FOUND",
            "message": f"Operational area '{exc.slug}' not found",
        },
    )


def parse_category(value: Optional[str], field: str = "category") -> Optional[ShopCategory]:
    """Resolve a category slug from a query parameter.

    Raises:
        HTTPException: 400 when the slug names no category
    """
    if not value:
        return None
    category = ShopCategory.from_slug(value)
    if category is None:
        raise invalid_query(QueryValidationError(
            [{"field": field, "message": f"unknown category '{value}'"}]
        ))
    return category
