"""
Core pytest configuration and fixtures for chatpipe testing.

This module provides shared test data, a scripted transport that replays
canned streams and pages, and fixtures for the concrete pillar
implementations.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from chatpipe.api import Api
from chatpipe.errors import TransportError
from chatpipe.frames import encode_frame
from chatpipe.models import ASSISTANT_ROLE, USER_ROLE, ArchivedSession, Message, Note, Page

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# ===== TEST DATA HELPERS =====


def make_message(
    id, role: str, content: str, minutes: int = 0, client_token: Optional[str] = None
) -> Message:
    return Message(
        id=id,
        role=role,
        content=content,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        client_token=client_token,
    )


def sse(*payloads: dict) -> bytes:
    """Concatenates frames into one body chunk."""
    return b"".join(encode_frame(p) for p in payloads)


class ScriptedApi(Api):
    """Transport that replays queued streams and serves fixed pages.

    ``streams`` holds one entry per expected send: a list of byte chunks, or
    an exception instance to raise when the request is made. ``on_send`` is
    called with each message before its stream is returned, which lets a test
    make the "server" persist messages.
    """

    def __init__(self):
        self.streams: List = []
        self.pages: Dict[int, Page] = {}
        self.sent: List[tuple] = []
        self.fetched: List[int] = []
        self.closed_streams = 0
        self.cleared = 0
        self.note = Note(content="")
        self.saved_notes: List[str] = []
        self.fail_notes = False
        self.on_send = None

    def set_history(self, messages: List[Message], per_page: int = 50) -> None:
        """Paginates ``messages`` (oldest first) the way the service does."""
        total = len(messages)
        total_pages = -(-total // per_page) if total else 0
        newest_first = list(reversed(messages))
        self.pages = {}
        for number in range(1, max(total_pages, 1) + 1):
            rows = newest_first[(number - 1) * per_page : number * per_page]
            self.pages[number] = Page(
                number=number,
                messages=tuple(reversed(rows)),
                total=total,
                total_pages=total_pages,
            )

    def stream_message(self, message, client_token=None):
        self.sent.append((message, client_token))
        script = self.streams.pop(0)
        if isinstance(script, Exception):
            raise script
        if self.on_send is not None:
            self.on_send(message, client_token)
        return self._body(script)

    def _body(self, chunks):
        try:
            for chunk in chunks:
                if isinstance(chunk, Exception):
                    raise chunk
                yield chunk
        finally:
            self.closed_streams += 1

    def fetch_page(self, page):
        self.fetched.append(page)
        if page in self.pages:
            return self.pages[page]
        last = self.pages.get(1, Page())
        return Page(number=page, total=last.total, total_pages=last.total_pages)

    def clear_history(self):
        self.cleared += 1
        self.set_history([])

    def archive_history(self):
        count = self.pages.get(1, Page()).total
        self.set_history([])
        return count

    def list_archives(self):
        return [ArchivedSession(archived_at="2024-05-01T12:00:00", message_count=2)]

    def restore_archive(self, archived_at):
        return 2

    def get_notes(self):
        return self.note

    def save_notes(self, content):
        if self.fail_notes:
            raise TransportError("notes unavailable", status_code=503)
        self.saved_notes.append(content)
        self.note = Note(content=content)
        return self.note


# ===== TEST DATA FIXTURES =====


@pytest.fixture
def sample_messages() -> List[Message]:
    """Four confirmed messages, oldest first."""
    return [
        make_message(1, USER_ROLE, "Hello, how are you?", 0),
        make_message(2, ASSISTANT_ROLE, "Doing well! How can I help?", 1),
        make_message(3, USER_ROLE, "What is a J-cut?", 2),
        make_message(4, ASSISTANT_ROLE, "Audio leads the picture cut.", 3),
    ]


@pytest.fixture
def scripted_api() -> ScriptedApi:
    return ScriptedApi()


@pytest.fixture
def hello_stream() -> List[bytes]:
    """The reply 'Hi there' in two deltas, then completion."""
    return [sse({"content": "Hi"}), sse({"content": " there"}), sse({"done": True})]


# ===== PILLAR IMPLEMENTATION FIXTURES =====


@pytest.fixture
def all_store_implementations(tmp_path):
    """All store implementations for contract testing."""
    from chatpipe import store

    return [
        ("InMemory", store.InMemory()),
        ("SQLite", store.SQLite(str(tmp_path / "test.db"))),
    ]


@pytest.fixture
def local_api():
    """In-process service with an in-memory store and the Echo LLM."""
    from chatpipe.api import Local
    from chatpipe.llm import Echo
    from chatpipe.store import InMemory

    return Local(store=InMemory(), llm=Echo())


@pytest.fixture
def test_assistant(local_api):
    """
    Provides an Assistant wired to the in-process service.

    Ideal for integration tests that need the full pipeline without a
    network or a real LLM.
    """
    from chatpipe import Assistant
    from chatpipe.cues import Preferences, Recording

    return Assistant(api=local_api, cues=Recording(), preferences=Preferences())


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
