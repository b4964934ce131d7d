"""
SQLite-based persistence for the TierStake audit trail.

Committed audit records are appended to an ``audit_events`` table; rows are
never updated or deleted.  The store is attached to an ``AuditLog`` as a
sink, so it only ever sees records of committed transactions.

Usage:
    store = AuditStore("data/tierstake_audit.db")
    audit.add_sink(store)
    ...
    rows = store.load_events(actor="ts...")
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from tierstake_core.events import AuditEvent

logger = logging.getLogger("tierstake_storage")


class AuditStore:
    """Append-only SQLite log of committed audit records."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/tierstake_audit.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Audit store opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        # ``id`` keeps growing across restarts; ``seq`` is the in-process number
        c.execute("""
            CREATE TABLE IF NOT EXISTS audit_events (
                id        INTEGER PRIMARY KEY AUTOINCREMENT,
                seq       INTEGER NOT NULL,
                event     TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                actor     TEXT NOT NULL,
                data_json TEXT NOT NULL
            )
        """)
        c.execute("CREATE INDEX IF NOT EXISTS idx_audit_actor ON audit_events(actor)")
        c.execute("CREATE INDEX IF NOT EXISTS idx_audit_event ON audit_events(event)")
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    def _ensure_schema_version(self) -> None:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{row['version']} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade TierStake."
            )

    # ── writes ───────────────────────────────────────────────────

    def append(self, event: AuditEvent) -> int:
        """Persist one committed record; returns its row id."""
        # amounts are exact ints of any size; JSON keeps them that way
        cur = self._conn.execute(
            "INSERT INTO audit_events (seq, event, timestamp, actor, data_json) "
            "VALUES (?, ?, ?, ?, ?)",
            (event.seq, event.event_type.value, event.timestamp, event.actor,
             json.dumps(event.data, default=str)),
        )
        self._conn.commit()
        return int(cur.lastrowid)

    def __call__(self, event: AuditEvent) -> None:
        self.append(event)

    # ── reads ────────────────────────────────────────────────────

    def load_events(
        self,
        event: str | None = None,
        actor: str | None = None,
        since_id: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        sql = "SELECT * FROM audit_events WHERE id > ?"
        args: list[Any] = [since_id]
        if event is not None:
            sql += " AND event = ?"
            args.append(event)
        if actor is not None:
            sql += " AND actor = ?"
            args.append(actor)
        sql += " ORDER BY id"
        if limit is not None:
            sql += " LIMIT ?"
            args.append(int(limit))
        rows = self._conn.execute(sql, args).fetchall()
        return [
            {
                "id": r["id"],
                "seq": r["seq"],
                "event": r["event"],
                "timestamp": r["timestamp"],
                "actor": r["actor"],
                "data": json.loads(r["data_json"]),
            }
            for r in rows
        ]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM audit_events").fetchone()[0]

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
