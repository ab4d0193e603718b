"""discosync storage layer: async SQLite snapshot store and run history."""

from discosync.storage.database import Database, StoreUnavailable
from discosync.storage.models import ArtistResult, Snapshot, SyncRun, Track

__all__ = [
    "ArtistResult",
    "Database",
    "Snapshot",
    "StoreUnavailable",
    "SyncRun",
    "Track",
]
