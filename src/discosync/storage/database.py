"""Async SQLite database for the discosync snapshot and run history."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
from pydantic import ValidationError

from discosync.storage.models import Snapshot, SyncRun

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS snapshot (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    data TEXT NOT NULL,
    saved_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    kind TEXT NOT NULL CHECK(kind IN ('sync', 'cleanup')),
    started_at TEXT NOT NULL,
    finished_at TEXT,
    status TEXT NOT NULL CHECK(status IN ('running', 'completed', 'failed')),
    stats_json TEXT,
    error_message TEXT
);
"""


class StoreUnavailable(Exception):
    """Raised when the snapshot cannot be read: missing, unreadable, or corrupt."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Async SQLite wrapper holding the snapshot and sync-run history."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._conn: aiosqlite.Connection | None = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            msg = "Database not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._conn

    async def connect(self) -> None:
        try:
            self._conn = await aiosqlite.connect(self.path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.executescript(_SCHEMA)
            await self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open database at {self.path}: {exc}") from exc

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # -- snapshot -------------------------------------------------------------

    async def has_snapshot(self) -> bool:
        cur = await self.conn.execute("SELECT 1 FROM snapshot WHERE id = 1")
        return await cur.fetchone() is not None

    async def load_snapshot(self) -> Snapshot:
        """Return the stored snapshot, raising :class:`StoreUnavailable` if there is none usable."""
        try:
            cur = await self.conn.execute("SELECT data FROM snapshot WHERE id = 1")
            row = await cur.fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot read snapshot: {exc}") from exc

        if row is None:
            raise StoreUnavailable("No snapshot found. Run `discosync init` first.")

        try:
            return Snapshot.model_validate_json(row["data"])
        except ValidationError as exc:
            raise StoreUnavailable(f"Stored snapshot is corrupt: {exc}") from exc

    async def init_snapshot(self, artists: list[str], playlist_ids: list[str]) -> Snapshot:
        """Store a baseline snapshot: nothing liked, nothing processed, empty playlists."""
        snapshot = Snapshot(artists=list(artists), playlist_ids=list(dict.fromkeys(playlist_ids)))
        await self.save_snapshot(snapshot)
        return snapshot

    async def save_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the stored snapshot in a single transaction."""
        await self.conn.execute(
            """
            INSERT INTO snapshot (id, data, saved_at) VALUES (1, ?, ?)
            ON CONFLICT (id) DO UPDATE SET data = excluded.data, saved_at = excluded.saved_at
            """,
            (snapshot.to_json(), _now_iso()),
        )
        await self.conn.commit()

    # -- sync_runs ------------------------------------------------------------

    async def start_sync_run(self, *, kind: str) -> SyncRun:
        cur = await self.conn.execute(
            """
            INSERT INTO sync_runs (kind, started_at, status)
            VALUES (?, ?, 'running')
            RETURNING *
            """,
            (kind, _now_iso()),
        )
        row = await cur.fetchone()
        await self.conn.commit()
        return self._row_to_sync_run(row)

    async def finish_sync_run(
        self,
        run_id: int,
        *,
        status: str,
        stats_json: str | None = None,
        error_message: str | None = None,
    ) -> SyncRun:
        cur = await self.conn.execute(
            """
            UPDATE sync_runs SET finished_at = ?, status = ?, stats_json = ?, error_message = ?
            WHERE id = ?
            RETURNING *
            """,
            (_now_iso(), status, stats_json, error_message, run_id),
        )
        row = await cur.fetchone()
        await self.conn.commit()
        return self._row_to_sync_run(row)

    async def list_sync_runs(self, *, limit: int = 20) -> list[SyncRun]:
        cur = await self.conn.execute(
            "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?", (limit,)
        )
        rows = await cur.fetchall()
        return [self._row_to_sync_run(r) for r in rows]

    @staticmethod
    def _row_to_sync_run(row: aiosqlite.Row) -> SyncRun:
        return SyncRun(
            id=row["id"],
            kind=row["kind"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            status=row["status"],
            stats_json=row["stats_json"],
            error_message=row["error_message"],
        )
