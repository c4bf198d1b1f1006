"""Shared helpers for repository classes."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PageSlice:
    """Pagination params used by list operations."""

    limit: int = 20
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit < 1:
            object.__setattr__(self, "limit", 1)
        if self.offset < 0:
            object.__setattr__(self, "offset", 0)

    def has_more(self, total: int) -> bool:
        return self.offset + self.limit < total
