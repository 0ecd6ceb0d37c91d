"""SQLite-backed storage for meetings."""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

from docschat.models import Meeting


class MeetingNotFound(LookupError):
    pass


class DuplicateRecord(RuntimeError):
    """A meeting with this uid has already been stored."""


class MeetingStore:
    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._logger = logging.getLogger("docschat.meetings")
        self.conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        if self._db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _migrate(self) -> None:
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS meetings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    uid TEXT NOT NULL UNIQUE,
                    topic TEXT NOT NULL DEFAULT '',
                    entry TEXT NOT NULL DEFAULT '',
                    unit TEXT NOT NULL DEFAULT '',
                    date TEXT,
                    ai_summary TEXT NOT NULL DEFAULT '',
                    ai_action_items TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_meetings_date ON meetings(date);
            """)

    @staticmethod
    def _row_to_meeting(row: sqlite3.Row) -> Meeting:
        return Meeting(
            id=row["id"],
            uid=row["uid"],
            topic=row["topic"],
            entry=row["entry"],
            unit=row["unit"],
            date=date.fromisoformat(row["date"]) if row["date"] else None,
            ai_summary=row["ai_summary"],
            ai_action_items=row["ai_action_items"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def list_meetings(self) -> list[Meeting]:
        """All meetings ordered by date ascending."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM meetings ORDER BY date ASC, id ASC"
            ).fetchall()
        return [self._row_to_meeting(row) for row in rows]

    def get_meeting(self, meeting_id: int) -> Optional[Meeting]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM meetings WHERE id = ?", (meeting_id,)
            ).fetchone()
        return self._row_to_meeting(row) if row else None

    def require_meeting(self, meeting_id: int) -> Meeting:
        meeting = self.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFound(f"Meeting not found: {meeting_id}")
        return meeting

    def exists_uid(self, uid: str) -> bool:
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM meetings WHERE uid = ?", (uid,)
            ).fetchone()
        return row is not None

    def create_meeting(self, meeting: Meeting) -> Meeting:
        """Insert a meeting in one transaction and return it with its id."""
        created_at = datetime.now(timezone.utc)
        with self._lock:
            try:
                with self.conn:
                    cursor = self.conn.execute(
                        """INSERT INTO meetings
                           (uid, topic, entry, unit, date, ai_summary, ai_action_items, created_at)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                        (
                            meeting.uid,
                            meeting.topic,
                            meeting.entry,
                            meeting.unit,
                            meeting.date.isoformat() if meeting.date else None,
                            meeting.ai_summary,
                            meeting.ai_action_items,
                            created_at.isoformat(),
                        ),
                    )
            except sqlite3.IntegrityError as exc:
                raise DuplicateRecord(f"Meeting uid already exists: {meeting.uid}") from exc
        self._logger.info("Meeting created: id=%s uid=%s", cursor.lastrowid, meeting.uid)
        return meeting.model_copy(update={"id": cursor.lastrowid, "created_at": created_at})

    def count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM meetings").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self.conn.close()
