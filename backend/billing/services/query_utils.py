# Overview: Shared list pagination for service-layer queries.

from __future__ import annotations

from typing import Callable

from flask import current_app


def paginate(query, *, page: int | None = 1, per_page: int | None = None, serializer: Callable | None = None) -> dict:
    """
    Offset pagination over an ordered query.

    per_page defaults to DEFAULT_PAGE_SIZE and is capped at MAX_PAGE_SIZE.
    """
    default_size = current_app.config.get("DEFAULT_PAGE_SIZE", 50)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)

    per_page = min(max(per_page or default_size, 1), max_size)
    page = max(page or 1, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = query.offset((page - 1) * per_page).limit(per_page).all()
    serialize = serializer or (lambda row: row.to_dict())

    return {
        "items": [serialize(row) for row in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
