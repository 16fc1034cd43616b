"""Audio cue hooks and the persisted sound preference.

Cues are observational: they fire when a message is sent, when a reply
completes and when a turn fails, but nothing in the pipeline depends on them.
"""

import logging
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from .config import PREFERENCES_PATH

logger = logging.getLogger(__name__)

SEND = "send"
COMPLETE = "complete"
ERROR = "error"


class Preferences(BaseModel):
    """Client-local settings that survive restarts."""

    sound_enabled: bool = True

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Preferences":
        path = Path(path) if path is not None else PREFERENCES_PATH
        if not path.exists():
            return cls()
        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, OSError) as e:
            logger.warning("Ignoring unreadable preferences file %s: %s", path, e)
            return cls()

    def save(self, path: Optional[Path] = None) -> None:
        path = Path(path) if path is not None else PREFERENCES_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")


class Cues(ABC):
    """Interface for playing the pipeline's audio cues."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    @abstractmethod
    def play(self, cue: str) -> None:
        """Plays one of ``SEND``, ``COMPLETE`` or ``ERROR``."""
        pass

    def fire(self, cue: str) -> None:
        if not self.enabled:
            return
        try:
            self.play(cue)
        except Exception as e:
            logger.warning("Failed to play %s cue: %s", cue, e)


class Silent(Cues):
    """Default cues that do nothing."""

    def play(self, cue: str) -> None:
        pass


class Bell(Cues):
    """Rings the terminal bell on completion and failure."""

    def __init__(self, enabled: bool = True, stream=None):
        super().__init__(enabled)
        self.stream = stream if stream is not None else sys.stderr

    def play(self, cue: str) -> None:
        if cue in (COMPLETE, ERROR):
            self.stream.write("\a")
            self.stream.flush()


class Recording(Cues):
    """Keeps every cue it was asked to play."""

    def __init__(self, enabled: bool = True):
        super().__init__(enabled)
        self.played: List[str] = []

    def play(self, cue: str) -> None:
        self.played.append(cue)
