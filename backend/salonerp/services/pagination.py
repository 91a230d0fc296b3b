# Overview: Shared pagination helpers for list endpoints.

MAX_PER_PAGE = 200


def clamp_page(page: int | None, per_page: int | None, default_per_page: int = 50) -> tuple[int, int]:
    page = page if page and page > 0 else 1
    per_page = per_page if per_page and per_page > 0 else default_per_page
    return page, min(per_page, MAX_PER_PAGE)


def page_to_dict(pagination) -> dict:
    """Serialize a Flask-SQLAlchemy Pagination of models exposing to_dict()."""
    return {
        "items": [item.to_dict() for item in pagination.items],
        "page": pagination.page,
        "per_page": pagination.per_page,
        "total": pagination.total,
        "pages": pagination.pages,
        "has_next": pagination.has_next,
        "has_prev": pagination.has_prev,
    }
