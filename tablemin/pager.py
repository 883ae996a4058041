"""Page arithmetic."""

import math

from tablemin.errors import InvalidArgument
from tablemin.models import PagerResult


def _check_page_size(page_size: int) -> None:
    if page_size < 1:
        raise InvalidArgument(f"Page size must be positive, got {page_size}")


def page_offset(page: int, page_size: int) -> int:
    """Row offset of a 1-based page; pages below 1 count as page 1."""
    _check_page_size(page_size)
    return (max(page, 1) - 1) * page_size


def compute(page: int, total_rows: int, page_size: int) -> PagerResult:
    """
    Compute offset, clamped page and total pages.

    Pages past the end are not clamped; they simply yield no rows.

    Args:
        page: Requested 1-based page number
        total_rows: Rows matching the query
        page_size: Rows per page

    Returns:
        PagerResult with offset, clamped_page and total_pages
    """
    _check_page_size(page_size)
    clamped_page = max(page, 1)
    total_pages = max(math.ceil(total_rows / page_size), 1)
    return PagerResult(
        offset=(clamped_page - 1) * page_size,
        clamped_page=clamped_page,
        total_pages=total_pages,
    )
