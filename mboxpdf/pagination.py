"""PaginationEngine: split a laid-out stream into page-sized fragments.

Each page takes the longest prefix of the remaining content whose laid-out
height fits the page box, found by binary search over end offsets.  The
first page uses the full box; later pages keep a strip free for the
``Page X of Y`` footer.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import structlog

from .config import RenderSettings
from .layout import TextLayout
from .models import PageFragment

logger = structlog.get_logger()


@dataclass(frozen=True)
class PageBox:
    """Usable content area of a page, in points."""

    width: float
    height: float
    footer_reserve: float = 30.0

    @classmethod
    def from_settings(cls, settings: RenderSettings) -> PageBox:
        return cls(
            width=settings.page_width - 2 * settings.margin,
            height=settings.page_height - 2 * settings.margin,
            footer_reserve=settings.footer_reserve,
        )

    def available_height(self, page_number: int) -> float:
        if page_number == 1:
            return self.height
        return self.height - self.footer_reserve


@dataclass
class PaginationResult:
    fragments: list[PageFragment] = field(default_factory=list)
    truncated: bool = False

    def __len__(self) -> int:
        return len(self.fragments)


def footer_label(page_number: int, fragment_length: int, remaining: int) -> str | None:
    """``Page X of Y`` for pages after the first.

    The total is an estimate: it assumes the remaining content paginates
    at the density of the current page.
    """
    if page_number < 2:
        return None
    estimated_total = page_number + math.ceil(remaining / max(fragment_length, 1))
    return f"Page {page_number} of {estimated_total}"


def _fit(layout: TextLayout, start: int, total: int, available: float) -> int:
    """Largest end in ``(start, total]`` whose content fits; ``start`` if none."""
    low, high = start, total
    while low < high:
        mid = (low + high + 1) // 2
        if layout.bounding_height(start, mid) <= available:
            low = mid
        else:
            high = mid - 1
    return low


def paginate(
    layout: TextLayout,
    box: PageBox,
    *,
    max_pages: int = 1000,
    min_advance: int = 100,
) -> PaginationResult:
    """Split *layout* into fragments that exactly cover it, in order.

    Stops early with ``truncated=True`` once *max_pages* pages exist.
    """
    result = PaginationResult()
    total = len(layout)
    start = 0

    while start < total:
        page_number = len(result.fragments) + 1
        if page_number > max_pages:
            result.truncated = True
            logger.warning(
                "pagination_page_limit",
                max_pages=max_pages,
                covered=start,
                total=total,
            )
            break

        end = _fit(layout, start, total, box.available_height(page_number))
        if end == start:
            # Nothing fits (e.g. an image taller than the page); force progress.
            end = min(start + min_advance, total)

        length = end - start
        result.fragments.append(
            PageFragment(
                start=start,
                length=length,
                footer_label=footer_label(page_number, length, total - end),
            )
        )
        start = end

    return result
