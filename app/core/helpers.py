"""
Helper functions for list endpoints and query services.

These utilities are domain-agnostic: they know about pages and limits, not
about transactions or payouts.

Usage:
    from core.helpers import calculate_pagination, normalize_page

    page, limit = normalize_page(query.page, query.limit, max_limit=100)
    pagination = calculate_pagination(total=total, page=page, per_page=limit)
"""

from __future__ import annotations

import math


def normalize_page(page: int | None, limit: int | None, max_limit: int = 100, default_limit: int = 20) -> tuple[int, int]:
    """
    Clamp page/limit query values to a sane range.

    Returns:
        (page, limit) with page >= 1 and 1 <= limit <= max_limit
    """
    page = max(1, int(page or 1))
    limit = int(limit or default_limit)
    limit = max(1, min(limit, max_limit))
    return page, limit


def calculate_pagination(total: int, page: int, per_page: int) -> dict:
    """
    Calculate pagination metadata.

    Args:
        total: Total number of items
        page: Current page number (1-indexed)
        per_page: Items per page

    Returns:
        Dict with pagination metadata

    Example:
        pagination = calculate_pagination(total=45, page=2, per_page=20)
        # {
        #     "total": 45,
        #     "page": 2,
        #     "per_page": 20,
        #     "total_pages": 3,
        #     "has_next": True,
        #     "has_previous": True,
        # }
    """
    total_pages = math.ceil(total / per_page) if per_page > 0 else 0
    page = max(1, min(page, total_pages or 1))

    return {
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_previous": page > 1,
    }
