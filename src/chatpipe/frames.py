"""Decoder for the server-sent event stream of the chat endpoint."""

import codecs
import json
import logging
from typing import Iterator, Optional

from .config import FRAME_PREFIX
from .errors import DecodeError
from .models import Frame, FrameKind

logger = logging.getLogger(__name__)


def parse_frame(line: str, prefix: str = FRAME_PREFIX) -> Optional[Frame]:
    """Parses one line of the stream.

    Returns ``None`` for lines that are not frames (blank lines, comments,
    other SSE fields) and raises ``DecodeError`` for frame lines whose payload
    is not valid JSON.
    """
    line = line.rstrip("\r")
    if not line.startswith(prefix):
        return None

    raw = line[len(prefix) :]
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(line, str(e)) from e
    if not isinstance(payload, dict):
        raise DecodeError(line, "payload is not an object")

    if payload.get("error"):
        return Frame(kind=FrameKind.ERROR, error=str(payload["error"]))

    content = payload.get("content")
    if not isinstance(content, str):
        content = ""
    # A final frame may still carry a last delta
    if payload.get("done") is True:
        return Frame(kind=FrameKind.DONE, content=content)
    if content:
        return Frame(kind=FrameKind.DELTA, content=content)
    return Frame(kind=FrameKind.NONE)


class FrameDecoder:
    """Turns raw byte chunks of one response body into frames.

    A decoder holds the unterminated tail of the last chunk so that a frame
    split across two reads is still decoded once its newline arrives. Use one
    decoder per request.
    """

    def __init__(self, prefix: str = FRAME_PREFIX):
        self.prefix = prefix
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.skipped = 0

    def decode(self, chunk: bytes) -> Iterator[Frame]:
        """Yields the frames completed by ``chunk``, possibly none."""
        if isinstance(chunk, str):
            text = chunk
        else:
            text = self._decoder.decode(chunk)
        if not text:
            return
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            frame = self._parse(line)
            if frame is not None:
                yield frame

    def close(self) -> Iterator[Frame]:
        """Flushes whatever is left once the body has been fully read."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if tail.strip():
            frame = self._parse(tail)
            if frame is not None:
                yield frame

    def _parse(self, line: str) -> Optional[Frame]:
        try:
            frame = parse_frame(line, self.prefix)
        except DecodeError as e:
            self.skipped += 1
            logger.debug("Skipping frame: %s", e)
            return None
        if frame is None or frame.kind is FrameKind.NONE:
            return None
        return frame


def encode_frame(payload: dict, prefix: str = FRAME_PREFIX) -> bytes:
    """Serializes one frame the way the chat service writes it."""
    return f"{prefix}{json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")
