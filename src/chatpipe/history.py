"""Materializes the full, time-ordered chat history for export."""

import logging
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional

from .config import MAX_HISTORY_PAGES
from .models import USER_ROLE, Message, Page

logger = logging.getLogger(__name__)


class HistoryMaterializer:
    """Walks every page of history and returns one ordered transcript.

    Pages arrive newest-first, so page order says nothing about time order
    across pages; the result is always sorted by creation time.

    Parameters
    ----------
    api : api.Api
        Anything with a ``fetch_page(page) -> Page`` method.
    max_pages : int, default=config.MAX_HISTORY_PAGES
        Hard bound on the walk, whatever ``totalPages`` claims.
    """

    def __init__(self, api, max_pages: int = MAX_HISTORY_PAGES):
        self.api = api
        self.max_pages = max_pages

    def pages(self) -> Iterator[Page]:
        """Yields pages 1, 2, ... until the last page reported by the service.

        ``totalPages`` is re-read from every response, so the walk adapts
        if history grows or shrinks while it runs.
        """
        number = 1
        while number <= self.max_pages:
            page = self.api.fetch_page(number)
            yield page
            if number >= page.total_pages:
                return
            number += 1
        logger.warning("History walk stopped at the %d page limit", self.max_pages)

    def materialize(self) -> List[Message]:
        """Returns every message once, oldest first."""
        seen = set()
        messages = []
        for page in self.pages():
            for message in page.messages:
                # A send during the walk shifts page boundaries
                if message.id in seen:
                    continue
                seen.add(message.id)
                messages.append(message)
        messages.sort(key=lambda m: m.created_at)
        logger.debug("Materialized %d messages", len(messages))
        return messages


def format_transcript(
    messages: Iterable[Message],
    user_label: str = "You",
    assistant_label: str = "AI",
    tz: Optional[timezone] = None,
) -> str:
    """Renders messages as ``[HH:MM] Label: content`` blocks."""
    blocks = []
    for message in messages:
        created = message.created_at.astimezone(tz) if tz else message.created_at
        label = user_label if message.role == USER_ROLE else assistant_label
        blocks.append(f"[{created:%H:%M}] {label}: {message.content}")
    return "\n\n".join(blocks)


def export_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"chat-export-{now:%Y-%m-%d-%H%M}.txt"
