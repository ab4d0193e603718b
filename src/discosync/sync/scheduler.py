"""Sync scheduler: runs the engine on a fixed interval, with a periodic cleanup."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from discosync.sync.engine import SyncEngine

log = structlog.get_logger(__name__)


class SyncScheduler:
    """Runs a sync every ``interval_minutes`` and a cleanup every ``cleanup_every`` cycles."""

    def __init__(
        self,
        engine: SyncEngine,
        interval_minutes: int = 360,
        cleanup_every: int = 0,
    ) -> None:
        self._engine = engine
        self._interval = interval_minutes * 60  # seconds
        self._cleanup_every = cleanup_every
        self._cycles = 0
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._last_sync_at: datetime | None = None
        self._next_sync_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cycles(self) -> int:
        return self._cycles

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())
        log.info("scheduler_started", interval_minutes=self._interval // 60, cleanup_every=self._cleanup_every)

    async def stop(self) -> None:
        """Stop the scheduler, waiting for any in-progress run to complete."""
        if not self.is_running:
            return
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        log.info("scheduler_stopped")

    async def wait(self) -> None:
        """Block until the scheduler loop exits."""
        if self._task:
            await self._task

    def get_status(self) -> dict:
        return {
            "running": self.is_running,
            "interval_minutes": self._interval // 60,
            "cleanup_every": self._cleanup_every,
            "cycles": self._cycles,
            "last_sync_at": self._last_sync_at.isoformat() if self._last_sync_at else None,
            "next_sync_at": self._next_sync_at.isoformat() if self._next_sync_at else None,
        }

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            await self._run_cycle()

            self._next_sync_at = datetime.now(UTC).replace(microsecond=0) + timedelta(seconds=self._interval)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)

    async def _run_cycle(self) -> None:
        self._cycles += 1
        try:
            await self._engine.run_sync()
            self._last_sync_at = datetime.now(UTC)
        except Exception as exc:
            log.error("scheduled_sync_failed", error=str(exc))

        if self._cleanup_every and self._cycles % self._cleanup_every == 0:
            try:
                await self._engine.run_cleanup()
            except Exception as exc:
                log.error("scheduled_cleanup_failed", error=str(exc))
