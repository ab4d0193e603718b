"""Core sync engine: fill the managed playlists artist by artist, and clean up duplicates."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from discosync.sync.backoff import retry_forever, wait_until_ready
from discosync.sync.dedup import (
    dedupe_artists,
    dedupe_liked_tracks,
    dedupe_playlist,
    prune_liked_from_playlist,
)
from discosync.sync.library import refresh_liked_tracks, refresh_playlists
from discosync.sync.registry import PlaylistAllocator, PlaylistRegistry
from discosync.sync.resolver import ArtistTrackResolver

if TYPE_CHECKING:
    from discosync.config import AppConfig, SpotifyConfig
    from discosync.storage.database import Database
    from discosync.storage.models import ArtistResult, Snapshot, Track
    from discosync.sync.remote import CatalogClient

log = structlog.get_logger(__name__)

ADD_BATCH_SIZE = 100


class SyncState(StrEnum):
    IDLE = "idle"
    WAITING_FOR_TOKEN = "waiting_for_token"
    SYNCING = "syncing"
    CLEANING = "cleaning"
    ERROR = "error"


@dataclass
class SyncStats:
    artists_processed: int = 0
    artists_skipped: int = 0
    artists_not_found: int = 0
    tracks_added: int = 0
    tracks_skipped: int = 0
    playlists_created: int = 0
    liked_duplicates_removed: int = 0
    playlist_duplicates_removed: int = 0
    liked_pruned_from_playlists: int = 0
    artists_deduplicated: int = 0

    def to_json(self) -> str:
        return json.dumps(asdict(self))


class SyncEngine:
    """Runs sync and cleanup passes against the stored snapshot, one at a time."""

    def __init__(
        self,
        config: AppConfig,
        db: Database,
        *,
        client_factory: Callable[[SpotifyConfig], CatalogClient] | None = None,
        token_timeout: float | None = None,
    ) -> None:
        self._config = config
        self._db = db
        self._client_factory = client_factory
        self._token_timeout = token_timeout
        self._state = SyncState.IDLE
        self._lock = asyncio.Lock()
        self._last_stats: SyncStats | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def last_stats(self) -> SyncStats | None:
        return self._last_stats

    def get_status(self) -> dict:
        return {
            "state": self._state.value,
            "last_stats": self._last_stats.to_json() if self._last_stats else None,
        }

    async def run_sync(self) -> SyncStats:
        """Add every new track of every listed artist to the managed playlists."""
        return await self._run("sync", SyncState.SYNCING, self._sync)

    async def run_cleanup(self, *, prune_liked: bool = False) -> SyncStats:
        """Remove duplicates from liked songs, managed playlists and the artist list.

        With ``prune_liked`` also remove already-liked tracks from the playlists.
        """

        async def body(client: CatalogClient, snapshot: Snapshot, stats: SyncStats) -> None:
            await self._cleanup(client, snapshot, stats, prune_liked=prune_liked)

        return await self._run("cleanup", SyncState.CLEANING, body)

    async def _run(
        self,
        kind: str,
        working_state: SyncState,
        body: Callable[[CatalogClient, Snapshot, SyncStats], Awaitable[None]],
    ) -> SyncStats:
        if self._lock.locked():
            raise RuntimeError("Sync already in progress")

        async with self._lock:
            run = await self._db.start_sync_run(kind=kind)
            stats = SyncStats()
            log.info("run_start", kind=kind)
            try:
                snapshot = await self._db.load_snapshot()
                async with self._create_client() as client:
                    self._state = SyncState.WAITING_FOR_TOKEN
                    await wait_until_ready(client, timeout=self._token_timeout)
                    self._state = working_state
                    await body(client, snapshot, stats)
            except Exception as exc:
                self._state = SyncState.ERROR
                await self._db.finish_sync_run(
                    run.id, status="failed", stats_json=stats.to_json(), error_message=str(exc)
                )
                log.error("run_failed", kind=kind, error=str(exc))
                raise

            await self._db.finish_sync_run(run.id, status="completed", stats_json=stats.to_json())
            self._state = SyncState.IDLE
            self._last_stats = stats
            log.info("run_completed", kind=kind, stats=stats.to_json())
            return stats

    def _create_client(self) -> CatalogClient:
        if self._client_factory:
            return self._client_factory(self._config.spotify)
        from discosync.sync.spotify import SpotifyClient

        return SpotifyClient(self._config.spotify)

    async def _save(self, snapshot: Snapshot) -> None:
        await self._db.save_snapshot(snapshot)
        log.debug("snapshot_saved", last_updated=snapshot.last_updated)

    # ── SYNC ───────────────────────────────────────────────────────────────

    async def _sync(self, client: CatalogClient, snapshot: Snapshot, stats: SyncStats) -> None:
        if await refresh_liked_tracks(client, snapshot):
            await self._save(snapshot)

        registry = PlaylistRegistry(snapshot)
        if await refresh_playlists(client, registry, resume=True):
            await self._save(snapshot)

        allocator = PlaylistAllocator(
            client,
            registry,
            capacity=self._config.sync.playlist_capacity,
            name_prefix=self._config.sync.playlist_prefix,
            public=self._config.sync.playlist_public,
        )
        resolver = ArtistTrackResolver(client)

        try:
            for position, artist_name in enumerate(list(snapshot.artists)):
                structlog.contextvars.bind_contextvars(artist=artist_name, position=position + 1)
                try:
                    await self._sync_artist(client, snapshot, registry, allocator, resolver, artist_name, stats)
                finally:
                    structlog.contextvars.unbind_contextvars("artist", "position")
        finally:
            stats.playlists_created = len(allocator.created)
            # Persists skip flags set on already-processed artists.
            await self._save(snapshot)

    async def _sync_artist(
        self,
        client: CatalogClient,
        snapshot: Snapshot,
        registry: PlaylistRegistry,
        allocator: PlaylistAllocator,
        resolver: ArtistTrackResolver,
        artist_name: str,
        stats: SyncStats,
    ) -> None:
        await allocator.ensure_capacity()

        existing = snapshot.results.get(artist_name)
        if existing is not None:
            existing.skipped = True
            stats.artists_skipped += 1
            log.info("artist_skipped", reason="already_processed")
            return

        artist = await retry_forever(
            lambda: client.search_artist(artist_name),
            event="artist_search_failed",
        )
        if artist is None:
            stats.artists_not_found += 1
            log.info("artist_not_found")
            await self._save(snapshot)
            return

        candidates, result = await resolver.resolve(
            artist["id"], artist["name"], snapshot.liked_tracks, registry
        )
        snapshot.results[artist_name] = result

        try:
            remaining = candidates
            while remaining:
                playlist_id = await allocator.ensure_capacity()
                chunk = remaining[: allocator.room(playlist_id)]
                await self._append_tracks(client, registry, playlist_id, chunk, result)
                remaining = remaining[len(chunk) :]
        finally:
            await self._save(snapshot)

        stats.artists_processed += 1
        stats.tracks_added += result.added_songs
        stats.tracks_skipped += result.skipped_songs
        log.info("artist_done", added=result.added_songs, skipped=result.skipped_songs)

    async def _append_tracks(
        self,
        client: CatalogClient,
        registry: PlaylistRegistry,
        playlist_id: str,
        tracks: list[Track],
        result: ArtistResult,
    ) -> None:
        for start in range(0, len(tracks), ADD_BATCH_SIZE):
            batch = tracks[start : start + ADD_BATCH_SIZE]
            await retry_forever(
                lambda batch=batch: client.add_tracks_to_playlist(playlist_id, [t.uri for t in batch]),
                event="playlist_add_failed",
                playlist_id=playlist_id,
                batch_start=start,
            )
            registry.record_added(playlist_id, batch)
            result.added_songs += len(batch)
            log.debug(
                "tracks_added",
                playlist_id=playlist_id,
                batch_start=start,
                batch_size=len(batch),
                playlist_size=registry.count(playlist_id),
            )

    # ── CLEANUP ────────────────────────────────────────────────────────────

    async def _cleanup(
        self,
        client: CatalogClient,
        snapshot: Snapshot,
        stats: SyncStats,
        *,
        prune_liked: bool,
    ) -> None:
        stats.liked_duplicates_removed = await dedupe_liked_tracks(client, snapshot)
        await self._save(snapshot)

        registry = PlaylistRegistry(snapshot)
        for playlist_id in registry:
            stats.playlist_duplicates_removed += await dedupe_playlist(client, registry, playlist_id)
            if prune_liked:
                stats.liked_pruned_from_playlists += await prune_liked_from_playlist(
                    client, registry, playlist_id, snapshot
                )
            await self._save(snapshot)

        stats.artists_deduplicated = dedupe_artists(snapshot)
        await self._save(snapshot)
