"""Page/page_size handling for the admin list endpoints."""

from __future__ import annotations

import os
from dataclasses import dataclass

from fastapi import Response


DEFAULT_PAGE_SIZE = 50
DEFAULT_MAX_PAGE_SIZE = 200


def get_max_page_size() -> int:
    raw = os.getenv("API_MAX_PAGE_SIZE", "").strip()
    if not raw.isdigit() or int(raw) < 1:
        return DEFAULT_MAX_PAGE_SIZE
    return int(raw)


@dataclass(frozen=True)
class PageWindow:
    page: int
    page_size: int

    @classmethod
    def from_query(cls, page: int, page_size: int) -> "PageWindow":
        size = min(max(page_size, 1), get_max_page_size())
        return cls(page=max(page, 1), page_size=size)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def apply_headers(self, response: Response, total: int) -> None:
        response.headers["X-Total-Count"] = str(total)
        response.headers["X-Page"] = str(self.page)
        response.headers["X-Page-Size"] = str(self.page_size)

    def envelope(self, items: list, total: int) -> dict:
        return {"items": items, "total": total, "page": self.page, "page_size": self.page_size}
