"""Activity repository — SQLite persistence for the bot_logs table."""

import json
from datetime import datetime
from typing import Optional

from galetrade.repos.db import get_connection


class ActivityRepo:
    """Data access layer for activity events.  Usable as an ``ActivitySink``.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def append(
        self,
        event_type: str,
        level: str,
        payload: dict,
        timestamp: datetime,
    ) -> None:
        """Insert one event."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO bot_logs (event_type, level, payload, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    event_type,
                    level,
                    json.dumps(payload, default=str),
                    timestamp.isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_events(
        self,
        limit: int = 50,
        event_type: Optional[str] = None,
        level: Optional[str] = None,
    ) -> dict:
        """Return recent events, newest first.

        Returns:
            ``{"events": [...], "total": int}``
        """
        conn = get_connection(self._db_path)
        try:
            conditions: list[str] = []
            params: list = []

            if event_type:
                conditions.append("event_type = ?")
                params.append(event_type)
            if level:
                conditions.append("level = ?")
                params.append(level)

            where_clause = ""
            if conditions:
                where_clause = "WHERE " + " AND ".join(conditions)

            rows = conn.execute(
                f"SELECT * FROM bot_logs {where_clause} ORDER BY id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM bot_logs {where_clause}",
                params,
            ).fetchone()[0]

            events = []
            for row in rows:
                event = dict(row)
                event["payload"] = json.loads(event["payload"])
                events.append(event)
            return {"events": events, "total": total}
        finally:
            conn.close()
