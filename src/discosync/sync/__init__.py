"""Sync module: engine, scheduler, and the remote catalog client."""

from discosync.sync.engine import SyncEngine, SyncState, SyncStats
from discosync.sync.scheduler import SyncScheduler

__all__ = ["SyncEngine", "SyncScheduler", "SyncState", "SyncStats"]
