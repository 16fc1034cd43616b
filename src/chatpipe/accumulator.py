"""Buffers the assistant reply while it streams in."""

import logging
from typing import Callable, Optional

from .models import Frame, FrameKind

logger = logging.getLogger(__name__)


class StreamingAccumulator:
    """Owns the in-progress assistant reply.

    Parameters
    ----------
    on_partial : callable, optional
        Called with the full text received so far, once when the stream
        starts (with ``""``) and again after every delta.

    Notes
    -----
    A completion is never reported without a render frame before it: if
    ``feed`` sees a completion before ``start`` was called, the empty string
    is emitted first.
    """

    def __init__(self, on_partial: Optional[Callable[[str], None]] = None):
        self.on_partial = on_partial
        self.accumulated = ""
        self.active = False

    def start(self) -> None:
        self.accumulated = ""
        self.active = True
        self._emit()

    def feed(self, frame: Frame) -> Optional[str]:
        """Applies one frame.

        Returns the final reply text when ``frame`` completes the stream,
        otherwise ``None``.
        """
        if not self.active:
            self.start()

        if frame.kind is FrameKind.DELTA:
            self.accumulated += frame.content
            self._emit()
            return None

        if frame.kind is FrameKind.DONE:
            if frame.content:
                self.accumulated += frame.content
                self._emit()
            final = self.accumulated
            logger.debug("Stream completed with %d characters", len(final))
            self.reset()
            return final

        return None

    def reset(self) -> None:
        self.accumulated = ""
        self.active = False

    def _emit(self) -> None:
        if self.on_partial is not None:
            self.on_partial(self.accumulated)
