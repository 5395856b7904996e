from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_LIMIT = 200
MAX_LIMIT = 1000


@dataclass
class Page:
    items: list[Any] = field(default_factory=list)
    count_returned: int = 0
    total_matching: int = 0


def clamp_limit(limit: int | None, default: int = DEFAULT_LIMIT) -> int:
    if limit is None or limit <= 0:
        return default
    return min(int(limit), MAX_LIMIT)


def paginate(query, *, limit: int | None = None, offset: int = 0, default_limit: int = DEFAULT_LIMIT) -> Page:
    """
    Run a count + a LIMIT/OFFSET fetch over the same (already ordered) query.
    """
    total = query.order_by(None).count()
    rows = query.limit(clamp_limit(limit, default_limit)).offset(max(0, int(offset or 0))).all()
    return Page(items=rows, count_returned=len(rows), total_matching=total)
