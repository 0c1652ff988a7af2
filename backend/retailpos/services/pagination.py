from __future__ import annotations


def paginate(query, page: int | None, per_page: int | None, *, default: int = 20, maximum: int = 200, serialize=None) -> dict:
    """
    Run a query with optional pagination.

    page=None returns every row. Otherwise returns the page plus metadata.
    """
    serialize = serialize or (lambda row: row.to_dict())

    if page is None:
        rows = query.all()
        return {"items": [serialize(r) for r in rows], "count": len(rows)}

    per_page = min(max(int(per_page or default), 1), maximum)
    page = max(int(page), 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [serialize(r) for r in rows],
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
