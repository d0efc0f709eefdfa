"""Pagination value types."""

from __future__ import annotations

import math
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field


@dataclass(frozen=True)
class PageRow:
    """A page request. Page numbers start at 1."""

    page_number: int
    page_size: int

    def __post_init__(self) -> None:
        if self.page_number < 1:
            raise ValueError(f"page_number must be >= 1, got {self.page_number}")
        if self.page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {self.page_size}")

    @property
    def offset(self) -> int:
        """Number of rows skipped before this page."""
        return (self.page_number - 1) * self.page_size


@dataclass
class Page[T]:
    """One page of results plus the total row count.

    Example:
        >>> page = await User.query().order("id desc").page(2, 10)
        >>> page.total_count, page.page_count, len(page.rows)
        (25, 3, 10)
    """

    total_count: int
    page_number: int
    page_size: int
    rows: list[T] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def is_first_page(self) -> bool:
        return self.page_number == 1

    @property
    def is_last_page(self) -> bool:
        return self.page_number >= self.page_count

    @property
    def has_prev_page(self) -> bool:
        return self.page_number > 1

    @property
    def has_next_page(self) -> bool:
        return self.page_number < self.page_count

    @property
    def prev_page(self) -> int:
        return self.page_number - 1 if self.has_prev_page else 1

    @property
    def next_page(self) -> int:
        return self.page_number + 1 if self.has_next_page else self.page_number

    def map[R](self, func: Callable[[T], R]) -> Page[R]:
        """Return the same page with every row transformed.

        Example:
            >>> users = page.map(User.from_row)
        """
        return Page(self.total_count, self.page_number, self.page_size, [func(row) for row in self.rows])

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[T]:
        return iter(self.rows)
