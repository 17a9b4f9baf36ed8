"""
Event Store — append-only sink for operational events.

The controller writes here only when something falls outside the normal
health-driven path: a heartbeat it cannot parse, or a node key given up on
after repeated failed cycles. A quiet store is the expected steady state.

Prototype: SQLite. Any sink with the same ``record`` signature can be used.
"""

import sqlite3
import threading
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from virt_controller.models.events import Event, EventType


class EventStore:
    """Append-only event log queryable by object and recency."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # Workers record from several threads.
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the events table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                name TEXT NOT NULL,
                namespace TEXT,
                type TEXT NOT NULL,
                reason TEXT NOT NULL,
                event_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_events_object ON events(kind, name)
        """)
        self._conn.commit()

    def record(
        self,
        kind: str,
        name: str,
        event_type: EventType,
        reason: str,
        message: str,
        namespace: Optional[str] = None,
    ) -> Event:
        """Append one event about the object ``kind``/``namespace``/``name``."""
        event = Event(
            id=f"evt_{uuid4().hex[:12]}",
            kind=kind,
            name=name,
            namespace=namespace,
            type=event_type,
            reason=reason,
            message=message,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO events (
                    id, kind, name, namespace, type, reason, event_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.kind,
                    event.name,
                    event.namespace,
                    event.type.value,
                    event.reason,
                    event.model_dump_json(),
                    event.created_at.isoformat(),
                ),
            )
            self._conn.commit()
        return event

    def _deserialize(self, row: sqlite3.Row) -> Event:
        return Event.model_validate_json(row["event_json"])

    def query_recent(self, limit: int = 50) -> List[Event]:
        """Most recent events, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT event_json FROM events ORDER BY rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._deserialize(r) for r in reversed(rows)]

    def query_by_object(
        self, kind: str, name: str, namespace: Optional[str] = None
    ) -> List[Event]:
        """All events recorded against one object."""
        with self._lock:
            if namespace is None:
                rows = self._conn.execute(
                    "SELECT event_json FROM events WHERE kind = ? AND name = ? ORDER BY rowid",
                    (kind, name),
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT event_json FROM events WHERE kind = ? AND name = ? "
                    "AND namespace = ? ORDER BY rowid",
                    (kind, name, namespace),
                ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_by_reason(self, reason: str) -> List[Event]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT event_json FROM events WHERE reason = ? ORDER BY rowid",
                (reason,),
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def count(self) -> int:
        """Total number of recorded events."""
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) as cnt FROM events").fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
