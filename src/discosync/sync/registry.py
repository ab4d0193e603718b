"""Playlist registry and the capacity-rollover allocator."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING

import structlog

from discosync.sync.backoff import retry_forever

if TYPE_CHECKING:
    from discosync.storage.models import Snapshot, Track
    from discosync.sync.remote import CatalogClient

log = structlog.get_logger(__name__)

DEFAULT_CAPACITY = 8000


class PlaylistRegistry:
    """Ordered, growth-only view over the snapshot's managed playlists.

    Every mutation of the playlist id list or the playlist track map goes
    through this object and bumps :attr:`version`.
    """

    def __init__(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot
        self.version = 0

    def __len__(self) -> int:
        return len(self._snapshot.playlist_ids)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._snapshot.playlist_ids))

    def __contains__(self, playlist_id: object) -> bool:
        return playlist_id in self._snapshot.playlist_tracks

    def __getitem__(self, index: int) -> str:
        return self._snapshot.playlist_ids[index]

    def append(self, playlist_id: str) -> int:
        """Register a playlist with an empty track list; returns its index."""
        if playlist_id in self:
            raise ValueError(f"Playlist {playlist_id} is already registered")
        self._snapshot.playlist_ids.append(playlist_id)
        self._snapshot.playlist_tracks[playlist_id] = []
        self.version += 1
        return len(self._snapshot.playlist_ids) - 1

    def tracks(self, playlist_id: str) -> list[Track]:
        return self._snapshot.playlist_tracks[playlist_id]

    def count(self, playlist_id: str) -> int:
        return len(self._snapshot.playlist_tracks[playlist_id])

    def empty_slots(self, playlist_id: str) -> int:
        return self._snapshot.playlist_empty_slots.get(playlist_id, 0)

    def slots(self, playlist_id: str) -> int:
        """Remote item count, empty slots included."""
        return self._snapshot.playlist_slots(playlist_id)

    def replace_tracks(self, playlist_id: str, tracks: list[Track], *, empty_slots: int | None = None) -> None:
        """Replace a playlist's tracks.

        Without ``empty_slots`` the previously recorded number of empty
        slots is kept.
        """
        if playlist_id not in self:
            raise KeyError(playlist_id)
        self._snapshot.playlist_tracks[playlist_id] = list(tracks)
        if empty_slots is not None:
            if empty_slots:
                self._snapshot.playlist_empty_slots[playlist_id] = empty_slots
            else:
                self._snapshot.playlist_empty_slots.pop(playlist_id, None)
        self.version += 1

    def record_added(self, playlist_id: str, tracks: list[Track]) -> None:
        self._snapshot.playlist_tracks[playlist_id].extend(tracks)
        self.version += 1

    def all_uris(self) -> set[str]:
        return {t.uri for tracks in self._snapshot.playlist_tracks.values() for t in tracks}


class PlaylistAllocator:
    """Chooses which managed playlist receives the next tracks.

    Walks the registry in order, skipping playlists that have reached
    ``capacity`` and creating a new playlist once the registry is exhausted.
    """

    def __init__(
        self,
        client: CatalogClient,
        registry: PlaylistRegistry,
        *,
        capacity: int = DEFAULT_CAPACITY,
        name_prefix: str = "Discover House",
        public: bool = False,
    ) -> None:
        self._client = client
        self._registry = registry
        self.capacity = capacity
        self._name_prefix = name_prefix
        self._public = public
        self.current_index = 0
        self.created: list[str] = []

    @property
    def current_id(self) -> str | None:
        if self.current_index < len(self._registry):
            return self._registry[self.current_index]
        return None

    def room(self, playlist_id: str) -> int:
        return max(self.capacity - self._registry.slots(playlist_id), 0)

    async def ensure_capacity(self) -> str:
        """Return the id of the playlist that should receive the next track.

        Advances past full playlists and creates new ones as needed; the
        returned playlist always has room for at least one track.
        """
        while True:
            playlist_id = self.current_id
            if playlist_id is None:
                playlist_id = await self._create()
            if self.room(playlist_id) > 0:
                return playlist_id
            log.info(
                "playlist_full",
                playlist_id=playlist_id,
                tracks=self._registry.slots(playlist_id),
                capacity=self.capacity,
            )
            self.current_index += 1

    async def _create(self) -> str:
        name = f"{self._name_prefix} {len(self._registry) + 1}"
        playlist_id = await retry_forever(
            lambda: self._client.create_playlist(name, public=self._public),
            event="playlist_create_failed",
            name=name,
        )
        self._registry.append(playlist_id)
        # Always continue from the newest playlist.
        self.current_index = len(self._registry) - 1
        self.created.append(playlist_id)
        log.info("playlist_created", playlist_id=playlist_id, name=name, index=self.current_index)
        return playlist_id
