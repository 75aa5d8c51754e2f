"""Shared utilities for all upstream fetchers."""

from typing import Callable, List, NamedTuple, Optional, Sequence

from ..errors import FetchError
from ..logger import get_logger

logger = get_logger()


class Page(NamedTuple):
    items: Sequence
    next_cursor: Optional[str]
    has_more: bool


def paginate(fetch_page: Callable[[Optional[str]], Page], label: str = "upstream") -> List:
    """Collect every page from ``fetch_page`` into one list.

    Starts with ``cursor=None`` and stops only when a page reports
    ``has_more=False``; a full page is not taken as a sign that more pages
    follow, nor a short one as the end.

    Args:
        fetch_page: Callable returning a Page for a cursor
        label: Name used in log lines and error messages

    Returns:
        The concatenation of every page's items, in page order

    Raises:
        FetchError: If any page fails, or a page claims more results but
            gives no new cursor
    """
    items: List = []
    cursor: Optional[str] = None
    seen_cursors = set()
    pages = 0

    while True:
        page = fetch_page(cursor)
        pages += 1
        items.extend(page.items)

        if not page.has_more:
            break

        next_cursor = page.next_cursor
        if next_cursor is None or next_cursor == cursor or next_cursor in seen_cursors:
            raise FetchError(
                f"{label} reported more pages but returned no new cursor (after page {pages})"
            )
        seen_cursors.add(next_cursor)
        cursor = next_cursor

    logger.debug(f"{label}: fetched {len(items)} items", pages=pages)
    return items
