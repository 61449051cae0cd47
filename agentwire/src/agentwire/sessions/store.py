"""Event journal using aiosqlite.

Records canonical events per session in receipt order so a session's state
can be rebuilt offline with :func:`replay`.
"""

import logging
import time
from pathlib import Path
from typing import Any

import aiosqlite
from pydantic import TypeAdapter, ValidationError

from .events import CanonicalEvent
from .models import SessionState
from .projector import replay

logger = logging.getLogger(__name__)

_EVENT_ADAPTER: TypeAdapter[CanonicalEvent] = TypeAdapter(CanonicalEvent)


def _now_ms() -> int:
    return int(time.time() * 1000)


class EventJournal:
    """Async event history storage using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Initialize the database connection and schema."""
        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("PRAGMA journal_mode = WAL;")

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS events (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                FOREIGN KEY (session_id) REFERENCES sessions(id)
            )
        """)

        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS events_session_id ON events(session_id, seq)"
        )

        await self._db.commit()

    def _require_db(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("EventJournal not initialized")
        return self._db

    async def record(self, session_id: str, event: CanonicalEvent) -> None:
        """Append one event to a session's history."""
        db = self._require_db()
        now = _now_ms()

        await db.execute(
            """
            INSERT INTO sessions (id, created_at, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET updated_at = excluded.updated_at
            """,
            (session_id, now, now),
        )
        await db.execute(
            """
            INSERT INTO events (session_id, kind, data, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (session_id, event.kind, event.model_dump_json(), now),
        )
        await db.commit()

    async def load_events(self, session_id: str) -> list[CanonicalEvent]:
        """Load a session's events in the order they were recorded."""
        db = self._require_db()

        cursor = await db.execute(
            """
            SELECT seq, data FROM events
            WHERE session_id = ?
            ORDER BY seq ASC
            """,
            (session_id,),
        )
        rows = await cursor.fetchall()

        events: list[CanonicalEvent] = []
        for seq, data in rows:
            try:
                events.append(_EVENT_ADAPTER.validate_json(data))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable journal entry {seq}: {e}")
        return events

    async def replay(self, session_id: str) -> SessionState:
        """Rebuild a session's state from its recorded history."""
        events = await self.load_events(session_id)
        return replay(events, SessionState(session_id=session_id))

    async def list_sessions(self) -> list[dict[str, Any]]:
        """List journaled sessions ordered by updated_at desc."""
        db = self._require_db()

        cursor = await db.execute("""
            SELECT s.id, s.created_at, s.updated_at, COUNT(e.seq)
            FROM sessions s
            LEFT JOIN events e ON e.session_id = s.id
            GROUP BY s.id
            ORDER BY s.updated_at DESC
        """)
        rows = await cursor.fetchall()

        return [
            {
                "id": row[0],
                "createdAt": row[1],
                "updatedAt": row[2],
                "eventCount": row[3],
            }
            for row in rows
        ]

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its events."""
        if not self._db:
            return False

        await self._db.execute("DELETE FROM events WHERE session_id = ?", (session_id,))
        cursor = await self._db.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        await self._db.commit()

        return cursor.rowcount > 0

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
