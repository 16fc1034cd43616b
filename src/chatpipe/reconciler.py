"""Merges the confirmed page-1 history with the optimistic ledger."""

import logging
from typing import Dict, List, Optional, Tuple

from .config import MISS_THRESHOLD
from .ledger import OptimisticLedger
from .models import Entry, OptimisticEntry, Page

logger = logging.getLogger(__name__)


class Reconciler:
    """Retires optimistic entries as their durable counterparts show up.

    Parameters
    ----------
    ledger : OptimisticLedger
        The ledger owned by the conversation controller.
    miss_threshold : int, default=config.MISS_THRESHOLD
        Number of page-1 refreshes a completed entry may survive before it is
        reported as a reconciliation miss. Missed entries stay visible.
    """

    def __init__(self, ledger: OptimisticLedger, miss_threshold: int = MISS_THRESHOLD):
        self.ledger = ledger
        self.miss_threshold = miss_threshold
        self._completed: Dict[str, int] = {}
        self.misses: List[OptimisticEntry] = []

    def track(self, entry: OptimisticEntry) -> None:
        """Starts counting refreshes for an entry whose turn has completed."""
        self._completed.setdefault(entry.local_id, 0)

    def on_page_one(self, page: Page) -> List[OptimisticEntry]:
        """Applies a fresh page 1. Returns the entries it confirmed."""
        retired = self.ledger.retire_matching(page.messages)
        retired_ids = {entry.local_id for entry in retired}
        for local_id in retired_ids:
            self._completed.pop(local_id, None)
        if retired_ids and self.misses:
            self.misses = [m for m in self.misses if m.local_id not in retired_ids]

        for entry in self.ledger.snapshot():
            if entry.local_id not in self._completed:
                continue
            self._completed[entry.local_id] += 1
            if self._completed[entry.local_id] == self.miss_threshold:
                logger.warning(
                    "Optimistic %s entry %s not confirmed after %d refreshes",
                    entry.role,
                    entry.local_id,
                    self.miss_threshold,
                )
                self.misses.append(entry)
        return retired

    def forget(self, local_id: str) -> None:
        self._completed.pop(local_id, None)

    def reset(self) -> None:
        self._completed.clear()
        self.misses = []

    def merge(self, page: Optional[Page], show_pending: bool = True) -> Tuple[Entry, ...]:
        """Confirmed history first, then the still-pending tail."""
        confirmed: Tuple[Entry, ...] = tuple(page.messages) if page else ()
        if not show_pending:
            return confirmed
        return confirmed + self.ledger.snapshot()
