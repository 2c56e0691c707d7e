from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict

from fastapi import Query

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    limit: int = DEFAULT_LIMIT

    @classmethod
    def clamp(cls, page: int | None, limit: int | None) -> "Pagination":
        page = page if page and page >= 1 else 1
        limit = limit if limit and limit >= 1 else DEFAULT_LIMIT
        return cls(page=page, limit=min(limit, MAX_LIMIT))

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total: int) -> Dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "pages": math.ceil(total / self.limit),
        }


def pagination_params(page: int = Query(1), limit: int = Query(DEFAULT_LIMIT)) -> Pagination:
    return Pagination.clamp(page, limit)
