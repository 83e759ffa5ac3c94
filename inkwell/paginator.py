"""
Page arithmetic shared by every listing (posts, archives, admin lists).
"""

from __future__ import annotations

from dataclasses import dataclass

PAGE_WINDOW = 9  # page links shown around the current page


@dataclass(frozen=True)
class PaginatorState:
    current_page: int
    total_pages: int
    page_size: int
    total_items: int
    display_range: tuple[int, ...]

    @property
    def offset(self) -> int:
        return self.page_size * (self.current_page - 1)

    @property
    def has_prev(self) -> bool:
        return self.current_page > 1

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def prev_page(self) -> int | None:
        return self.current_page - 1 if self.has_prev else None

    @property
    def next_page(self) -> int | None:
        return self.current_page + 1 if self.has_next else None

    @property
    def show_first(self) -> bool:
        """True when page 1 is outside the window (render "1 …")."""
        return self.display_range[0] > 1

    @property
    def show_last(self) -> bool:
        return self.display_range[-1] < self.total_pages

    def to_dict(self) -> dict:
        return {
            "currentPage": self.current_page,
            "totalPages": self.total_pages,
            "pageSize": self.page_size,
            "total": self.total_items,
            "displayRange": list(self.display_range),
            "prevPage": self.prev_page,
            "nextPage": self.next_page,
        }


def paginate(
    requested_page: int,
    total_items: int,
    page_size: int,
    *,
    window: int = PAGE_WINDOW,
) -> PaginatorState:
    """
    Clamp *requested_page* into ``1..total_pages`` and work out which page
    links to show.  Pages past the end are clamped, never rejected: stale
    links to page 12 of a list that shrank to 10 pages land on page 10.
    """
    if page_size <= 0:
        raise ValueError(f"page_size must be positive, got {page_size}")
    if window <= 0:
        raise ValueError(f"window must be positive, got {window}")

    total_items = max(0, total_items)
    total_pages = max(1, -(-total_items // page_size))
    current = min(max(requested_page, 1), total_pages)

    if total_pages <= window:
        start, end = 1, total_pages
    else:
        start = current - (window - 1) // 2
        start = min(max(start, 1), total_pages - window + 1)
        end = start + window - 1

    return PaginatorState(
        current_page=current,
        total_pages=total_pages,
        page_size=page_size,
        total_items=total_items,
        display_range=tuple(range(start, end + 1)),
    )


def parse_page(raw, default: int = 1) -> int:
    """`?page=` / `page-<n>` value → int ≥ 1; junk falls back to *default*."""
    try:
        return max(int(raw), 1)
    except (TypeError, ValueError):
        return default
