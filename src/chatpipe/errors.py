"""Exception hierarchy for the message pipeline."""

from typing import Optional


class ChatpipeError(Exception):
    """Base class for every error raised by chatpipe."""


class DecodeError(ChatpipeError):
    """A stream line could not be parsed into a frame.

    Never escapes the frame decoder; a corrupt frame must not abort a stream.
    """

    def __init__(self, line: str, reason: str = ""):
        self.line = line
        self.reason = reason
        super().__init__(f"Malformed frame {line!r}: {reason}" if reason else line)


class TransportError(ChatpipeError):
    """The current exchange failed: network error, timeout, bad status,
    an error frame from the service, or the stream closed before ``done``."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidMessageError(ChatpipeError):
    """The service rejected the message body (empty or too long)."""

    status_code = 400
