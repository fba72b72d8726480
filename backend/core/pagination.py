"""
pagination.py — Page-index window for the ranking list.

compute_window(10, 20) -> [1, "ellipsis", 9, 10, 11, "ellipsis", 20]
"""

from typing import List, Union

ELLIPSIS = "ellipsis"
MAX_UNCOLLAPSED = 7

PageItem = Union[int, str]


def compute_window(current_page: int, total_pages: int) -> List[PageItem]:
    """First and last page always, current page ±1, collapse markers between."""
    if total_pages <= MAX_UNCOLLAPSED:
        return list(range(1, total_pages + 1))

    pages: List[PageItem] = [1]
    if current_page > 3:
        pages.append(ELLIPSIS)

    start = max(2, current_page - 1)
    end = min(current_page + 1, total_pages - 1)
    pages.extend(range(start, end + 1))

    if current_page < total_pages - 2:
        pages.append(ELLIPSIS)
    if total_pages > 1:
        pages.append(total_pages)
    return pages


def is_valid_page(page: int, total_pages: int) -> bool:
    return 1 <= page <= total_pages
