"""Pydantic models for the discosync storage layer.

Persisted field names follow the snapshot document layout (camelCase); the
Python attribute names are snake_case and both are accepted on input.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

RunKind = Literal["sync", "cleanup"]
RunStatus = Literal["running", "completed", "failed"]


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


class Track(BaseModel):
    """A track as tracked in liked songs and playlists.

    ``uri`` is the authoritative identity; ``(name, artist)`` is the looser
    key used only for duplicate pruning.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    artist: str
    uri: str


class ArtistResult(BaseModel):
    """Per-artist outcome, created the first time an artist is processed."""

    model_config = ConfigDict(populate_by_name=True)

    skipped: bool = False
    added_songs: int = Field(default=0, alias="addedSongs")
    skipped_songs: int = Field(default=0, alias="skippedSongs")
    last_updated: int = Field(default_factory=now_ms, alias="lastUpdated")


class Snapshot(BaseModel):
    """The whole durable state, always saved and loaded as one unit."""

    model_config = ConfigDict(populate_by_name=True)

    last_updated: int = Field(default=0, alias="lastUpdated")
    artists: list[str] = Field(default_factory=list)
    liked_tracks: list[Track] = Field(default_factory=list, alias="lastLikedTracks")
    playlist_ids: list[str] = Field(default_factory=list, alias="playlistIds")
    playlist_tracks: dict[str, list[Track]] = Field(default_factory=dict, alias="lastPlaylistTracks")
    # Remote slots without a playable track (removed or unavailable), per playlist.
    playlist_empty_slots: dict[str, int] = Field(default_factory=dict, alias="playlistEmptySlots")
    results: dict[str, ArtistResult] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _registry_matches_track_map(self) -> Snapshot:
        unknown = (set(self.playlist_tracks) | set(self.playlist_empty_slots)) - set(self.playlist_ids)
        if unknown:
            msg = f"playlist tracks recorded for unregistered playlists: {sorted(unknown)}"
            raise ValueError(msg)
        for playlist_id in self.playlist_ids:
            self.playlist_tracks.setdefault(playlist_id, [])
        return self

    def playlist_slots(self, playlist_id: str) -> int:
        """Remote item count of a playlist: known tracks plus empty slots."""
        return len(self.playlist_tracks.get(playlist_id, [])) + self.playlist_empty_slots.get(playlist_id, 0)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class SyncRun(BaseModel):
    """Record of a single sync or cleanup run."""

    id: int | None = None
    kind: RunKind
    started_at: datetime
    finished_at: datetime | None = None
    status: RunStatus
    stats_json: str | None = None
    error_message: str | None = None
