import math
from typing import Tuple


def paginate(page: int | None, limit: int | None, default_limit: int, max_limit: int) -> Tuple[int, int, int]:
    """Normalise page/limit and return ``(page, limit, skip)``.

    Page 1 is the first window; values below 1 are treated as 1 and the limit
    is clamped to ``[1, max_limit]``.
    """
    page = max(1, int(page or 1))
    limit = int(limit or default_limit)
    limit = max(1, min(limit, max_limit))
    return page, limit, (page - 1) * limit


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0
