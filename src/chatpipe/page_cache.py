"""Client-side cache of the paginated, authoritative message history."""

import logging
from typing import Callable, Dict, List, Optional

from .models import Page

logger = logging.getLogger(__name__)


class PageCache:
    """Fetched pages keyed by page number, newest page = 1.

    Pages are immutable snapshots. Only page 1 is ever invalidated during a
    conversation; older pages are not expected to change. ``total`` and
    ``total_pages`` always mirror the last response, they are never
    recomputed locally.

    Parameters
    ----------
    api : api.Api
        Anything with a ``fetch_page(page) -> Page`` method.
    on_fetch : callable, optional
        Called with every page fetched from the service.
    """

    def __init__(self, api, on_fetch: Optional[Callable[[Page], None]] = None):
        self.api = api
        self._pages: Dict[int, Page] = {}
        self._listeners: List[Callable[[Page], None]] = []
        if on_fetch is not None:
            self._listeners.append(on_fetch)
        self.total = 0
        self.total_pages = 0

    def add_listener(self, callback: Callable[[Page], None]) -> None:
        self._listeners.append(callback)

    def clamp(self, page: int) -> int:
        """Brings ``page`` into ``1..total_pages``; page 1 always exists."""
        return max(1, min(page, max(self.total_pages, 1)))

    def peek(self, page: int) -> Optional[Page]:
        return self._pages.get(page)

    def get(self, page: int = 1) -> Page:
        """Returns a page, fetching it when it is not cached.

        A page number past the end is clamped to the last page rather than
        treated as an error.
        """
        page = max(page, 1)
        if self.total_pages:
            page = self.clamp(page)
        cached = self._pages.get(page)
        if cached is not None:
            logger.debug("Page %d served from cache", page)
            return cached

        fetched = self._fetch(page)
        last = max(fetched.total_pages, 1)
        if page > last:
            return self.get(last)
        return fetched

    def refresh(self, page: int = 1) -> Page:
        self.invalidate(page)
        return self.get(page)

    def invalidate(self, page: int = 1) -> None:
        self._pages.pop(page, None)

    def clear(self) -> None:
        self._pages.clear()
        self.total = 0
        self.total_pages = 0

    def _fetch(self, page: int) -> Page:
        fetched = self.api.fetch_page(page)
        if fetched.number != page:
            fetched = fetched.model_copy(update={"number": page})
        self.total = fetched.total
        self.total_pages = fetched.total_pages
        # An out-of-range response carries no messages, keep only real pages
        if page == 1 or page <= fetched.total_pages:
            self._pages[page] = fetched
        logger.debug(
            "Fetched page %d (%d messages, %d pages)",
            page,
            len(fetched.messages),
            fetched.total_pages,
        )
        for listener in self._listeners:
            listener(fetched)
        return fetched
