"""Debounced autosave for the free-text notes scratchpad."""

import logging
import time
from typing import Callable, Optional

from .config import NOTES_DELAY
from .errors import TransportError

logger = logging.getLogger(__name__)


class NotesAutosave:
    """Saves notes once edits have been quiet for ``delay`` seconds.

    Every edit marks the notes dirty and pushes the save deadline back, so a
    burst of keystrokes produces a single save. Nothing runs in the
    background: call ``poll`` from the host's event loop or timer. Last write
    wins, there is no conflict detection.

    Parameters
    ----------
    api : api.Api
        Anything with ``get_notes()`` and ``save_notes(content)``.
    delay : float, default=config.NOTES_DELAY
        Quiet window in seconds.
    clock : callable, default=time.monotonic
    """

    def __init__(
        self,
        api,
        delay: float = NOTES_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api = api
        self.delay = delay
        self.clock = clock
        self.content = ""
        self.dirty = False
        self.deadline: Optional[float] = None
        self.saves = 0

    @property
    def saved(self) -> bool:
        return not self.dirty

    def load(self) -> str:
        """Fetches the stored note. Pending edits are saved first."""
        if self.dirty and not self.flush():
            logger.warning("Discarding unsaved notes edits (%d chars)", len(self.content))
        note = self.api.get_notes()
        self.content = note.content
        self.dirty = False
        self.deadline = None
        return self.content

    def edit(self, content: str, now: Optional[float] = None) -> None:
        now = self.clock() if now is None else now
        self.content = content
        self.dirty = True
        self.deadline = now + self.delay

    def time_until_save(self, now: Optional[float] = None) -> Optional[float]:
        if self.deadline is None:
            return None
        now = self.clock() if now is None else now
        return max(0.0, self.deadline - now)

    def poll(self, now: Optional[float] = None) -> bool:
        """Saves if the quiet window has elapsed. Returns whether it saved."""
        if self.deadline is None:
            return False
        now = self.clock() if now is None else now
        if now < self.deadline:
            return False
        return self._save(now)

    def flush(self) -> bool:
        """Saves right away if there are unsaved edits."""
        if not self.dirty:
            return False
        return self._save(self.clock())

    def _save(self, now: float) -> bool:
        try:
            self.api.save_notes(self.content)
        except TransportError as e:
            logger.warning("Saving notes failed, retrying in %.1fs: %s", self.delay, e)
            self.deadline = now + self.delay
            return False
        self.saves += 1
        self.dirty = False
        self.deadline = None
        return True
