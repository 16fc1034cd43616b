"""Concrete implementations for the message store used by the local service."""

import itertools
import math
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .models import ArchivedSession, Message, Note, Page


class Store(ABC):
    """Interface for the durable, single-user chat history.

    Pages are numbered from 1 (most recent). Each page lists its messages in
    ascending creation order.
    """

    @abstractmethod
    def add_message(
        self, role: str, content: str, client_token: Optional[str] = None
    ) -> Message:
        """Persists a message and returns it with its store-assigned id."""
        pass

    @abstractmethod
    def get_page(self, page: int, per_page: int) -> Page:
        """Returns one page of active (non-archived) history."""
        pass

    @abstractmethod
    def recent(self, limit: int) -> List[Message]:
        """Returns the ``limit`` most recent active messages, oldest first."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Deletes every message, archived or not."""
        pass

    @abstractmethod
    def archive(self) -> int:
        """Moves all active messages into a new archive. Returns the count."""
        pass

    @abstractmethod
    def list_archives(self) -> List[ArchivedSession]:
        pass

    @abstractmethod
    def unarchive(self, archived_at: str) -> int:
        """Restores one archive to the active history. Returns the count."""
        pass

    @abstractmethod
    def get_note(self) -> Optional[Note]:
        pass

    @abstractmethod
    def save_note(self, content: str) -> Note:
        pass


def _total_pages(total: int, per_page: int) -> int:
    return math.ceil(total / per_page) if per_page > 0 else 0


def _preview(content: str, length: int = 100) -> str:
    return content[:length] + ("..." if len(content) > length else "")


class InMemory(Store):
    """Keeps history in process memory. Lost on restart."""

    def __init__(self):
        self._messages: List[Message] = []
        self._archived: Dict[str, List[Message]] = {}
        self._note: Optional[Note] = None
        self._ids = itertools.count(1)

    def add_message(
        self, role: str, content: str, client_token: Optional[str] = None
    ) -> Message:
        message = Message(
            id=next(self._ids),
            role=role,
            content=content,
            created_at=datetime.now(timezone.utc),
            client_token=client_token,
        )
        self._messages.append(message)
        return message

    def get_page(self, page: int, per_page: int) -> Page:
        total = len(self._messages)
        newest_first = sorted(
            self._messages, key=lambda m: (m.created_at, m.id), reverse=True
        )
        offset = (page - 1) * per_page
        rows = newest_first[offset : offset + per_page] if offset >= 0 else []
        return Page(
            number=page,
            messages=tuple(reversed(rows)),
            total=total,
            total_pages=_total_pages(total, per_page),
        )

    def recent(self, limit: int) -> List[Message]:
        ordered = sorted(self._messages, key=lambda m: (m.created_at, m.id))
        return ordered[-limit:] if limit > 0 else []

    def clear(self) -> None:
        self._messages = []
        self._archived = {}

    def archive(self) -> int:
        count = len(self._messages)
        if count:
            archived_at = datetime.now(timezone.utc).isoformat()
            self._archived.setdefault(archived_at, []).extend(self._messages)
            self._messages = []
        return count

    def list_archives(self) -> List[ArchivedSession]:
        sessions = []
        for archived_at, messages in self._archived.items():
            first_user = next((m for m in messages if m.role == "user"), None)
            sessions.append(
                ArchivedSession(
                    archived_at=archived_at,
                    message_count=len(messages),
                    preview=_preview(first_user.content) if first_user else "",
                )
            )
        return sorted(sessions, key=lambda s: s.archived_at, reverse=True)

    def unarchive(self, archived_at: str) -> int:
        messages = self._archived.pop(archived_at, [])
        self._messages.extend(messages)
        return len(messages)

    def get_note(self) -> Optional[Note]:
        return self._note

    def save_note(self, content: str) -> Note:
        self._note = Note(content=content, updated_at=datetime.now(timezone.utc))
        return self._note


class SQLite(Store):
    """SQLite-backed history that survives restarts."""

    def __init__(self, db_path: str):
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _migrate(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS assistant_chats (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                client_token TEXT,
                created_at TEXT NOT NULL,
                archived_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_chats_created
                ON assistant_chats(created_at);

            CREATE TABLE IF NOT EXISTS assistant_notes (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                content TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
        """)
        self.conn.commit()

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            role=row["role"],
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
            client_token=row["client_token"],
        )

    def add_message(
        self, role: str, content: str, client_token: Optional[str] = None
    ) -> Message:
        created_at = datetime.now(timezone.utc).isoformat()
        cur = self.conn.execute(
            "INSERT INTO assistant_chats (role, content, client_token, created_at) "
            "VALUES (?, ?, ?, ?)",
            (role, content, client_token, created_at),
        )
        self.conn.commit()
        row = self.conn.execute(
            "SELECT * FROM assistant_chats WHERE id = ?", (cur.lastrowid,)
        ).fetchone()
        return self._row_to_message(row)

    def get_page(self, page: int, per_page: int) -> Page:
        total = self.conn.execute(
            "SELECT COUNT(*) FROM assistant_chats WHERE archived_at IS NULL"
        ).fetchone()[0]
        offset = (page - 1) * per_page
        rows = []
        if offset >= 0:
            rows = self.conn.execute(
                "SELECT * FROM assistant_chats WHERE archived_at IS NULL "
                "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (per_page, offset),
            ).fetchall()
        return Page(
            number=page,
            messages=tuple(self._row_to_message(r) for r in reversed(rows)),
            total=total,
            total_pages=_total_pages(total, per_page),
        )

    def recent(self, limit: int) -> List[Message]:
        rows = self.conn.execute(
            "SELECT * FROM assistant_chats WHERE archived_at IS NULL "
            "ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._row_to_message(r) for r in reversed(rows)]

    def clear(self) -> None:
        self.conn.execute("DELETE FROM assistant_chats")
        self.conn.commit()

    def archive(self) -> int:
        archived_at = datetime.now(timezone.utc).isoformat()
        cur = self.conn.execute(
            "UPDATE assistant_chats SET archived_at = ? WHERE archived_at IS NULL",
            (archived_at,),
        )
        self.conn.commit()
        return cur.rowcount

    def list_archives(self) -> List[ArchivedSession]:
        rows = self.conn.execute("""
            SELECT archived_at, COUNT(*) AS message_count,
                   (SELECT content FROM assistant_chats AS first
                     WHERE first.archived_at = a.archived_at AND first.role = 'user'
                     ORDER BY first.created_at, first.id LIMIT 1) AS preview
              FROM assistant_chats AS a
             WHERE archived_at IS NOT NULL
             GROUP BY archived_at
             ORDER BY archived_at DESC
        """).fetchall()
        return [
            ArchivedSession(
                archived_at=r["archived_at"],
                message_count=r["message_count"],
                preview=_preview(r["preview"] or ""),
            )
            for r in rows
        ]

    def unarchive(self, archived_at: str) -> int:
        cur = self.conn.execute(
            "UPDATE assistant_chats SET archived_at = NULL WHERE archived_at = ?",
            (archived_at,),
        )
        self.conn.commit()
        return cur.rowcount

    def get_note(self) -> Optional[Note]:
        row = self.conn.execute(
            "SELECT content, updated_at FROM assistant_notes WHERE id = 1"
        ).fetchone()
        if row is None:
            return None
        return Note(
            content=row["content"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def save_note(self, content: str) -> Note:
        updated_at = datetime.now(timezone.utc)
        self.conn.execute(
            "INSERT INTO assistant_notes (id, content, updated_at) VALUES (1, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET content = excluded.content, "
            "updated_at = excluded.updated_at",
            (content, updated_at.isoformat()),
        )
        self.conn.commit()
        return Note(content=content, updated_at=updated_at)

    def close(self):
        self.conn.close()
