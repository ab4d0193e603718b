"""Deduplication passes over liked tracks and managed playlists.

Duplicates are found by ``(name, artist)``: the first occurrence stays and
every later one is removed remotely in batches of 50, then pruned from the
snapshot.  Running a pass twice without remote changes in between finds
nothing the second time.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from discosync.sync.backoff import retry_forever
from discosync.sync.differ import (
    dedupe_artist_names,
    drop_positions,
    find_duplicates,
    track_id_from_uri,
    uri_set,
)
from discosync.sync.library import refresh_liked_tracks, refresh_playlist

if TYPE_CHECKING:
    from discosync.storage.models import Snapshot
    from discosync.sync.registry import PlaylistRegistry
    from discosync.sync.remote import CatalogClient

log = structlog.get_logger(__name__)

REMOVE_BATCH_SIZE = 50
RESTORE_BATCH_SIZE = 100


async def _remove_in_batches(
    remove: Callable[[list[str]], Awaitable[None]],
    values: list[str],
    *,
    event: str,
    **context: object,
) -> None:
    for start in range(0, len(values), REMOVE_BATCH_SIZE):
        batch = values[start : start + REMOVE_BATCH_SIZE]
        await retry_forever(lambda batch=batch: remove(batch), event=event, batch_start=start, **context)
        log.debug("tracks_removed", batch_start=start, batch_size=len(batch), **context)


async def dedupe_liked_tracks(client: CatalogClient, snapshot: Snapshot) -> int:
    """Remove later ``(name, artist)`` repeats from liked songs; returns how many."""
    await refresh_liked_tracks(client, snapshot)

    positions = find_duplicates(snapshot.liked_tracks)
    log.info("liked_duplicates", found=len(positions))
    if not positions:
        return 0

    ids = [track_id_from_uri(snapshot.liked_tracks[i].uri) for i in positions]
    await _remove_in_batches(client.remove_saved_tracks, ids, event="liked_remove_failed")
    snapshot.liked_tracks = drop_positions(snapshot.liked_tracks, positions)
    return len(positions)


async def dedupe_playlist(client: CatalogClient, registry: PlaylistRegistry, playlist_id: str) -> int:
    """Remove later ``(name, artist)`` repeats from one managed playlist; returns how many."""
    await refresh_playlist(client, registry, playlist_id)

    tracks = registry.tracks(playlist_id)
    positions = find_duplicates(tracks)
    log.info("playlist_duplicates", playlist_id=playlist_id, found=len(positions))
    if not positions:
        return 0

    uris = list(dict.fromkeys(tracks[i].uri for i in positions))
    await _remove_in_batches(
        lambda batch: client.remove_tracks_from_playlist(playlist_id, batch),
        uris,
        event="playlist_remove_failed",
        playlist_id=playlist_id,
    )
    remaining = drop_positions(tracks, positions)

    # Removal by URI also takes the kept first copy of a repeated URI; add it back once.
    kept_uris = uri_set(remaining)
    restore = [uri for uri in uris if uri in kept_uris]
    if restore:
        for start in range(0, len(restore), RESTORE_BATCH_SIZE):
            batch = restore[start : start + RESTORE_BATCH_SIZE]
            await retry_forever(
                lambda batch=batch: client.add_tracks_to_playlist(playlist_id, batch),
                event="playlist_restore_failed",
                playlist_id=playlist_id,
                batch_start=start,
            )
        log.info("playlist_tracks_restored", playlist_id=playlist_id, count=len(restore))
        restored = set(restore)
        by_uri = {t.uri: t for t in remaining if t.uri in restored}
        remaining = [t for t in remaining if t.uri not in restored] + [by_uri[uri] for uri in restore]

    registry.replace_tracks(playlist_id, remaining)
    return len(positions)


async def prune_liked_from_playlist(
    client: CatalogClient,
    registry: PlaylistRegistry,
    playlist_id: str,
    snapshot: Snapshot,
) -> int:
    """Remove tracks from a managed playlist that are already liked (by URI)."""
    await refresh_playlist(client, registry, playlist_id)

    liked = uri_set(snapshot.liked_tracks)
    tracks = registry.tracks(playlist_id)
    positions = [i for i, track in enumerate(tracks) if track.uri in liked]
    log.info("playlist_liked_tracks", playlist_id=playlist_id, found=len(positions))
    if not positions:
        return 0

    uris = list(dict.fromkeys(tracks[i].uri for i in positions))
    await _remove_in_batches(
        lambda batch: client.remove_tracks_from_playlist(playlist_id, batch),
        uris,
        event="playlist_remove_failed",
        playlist_id=playlist_id,
    )
    registry.replace_tracks(playlist_id, drop_positions(tracks, positions))
    return len(positions)


def dedupe_artists(snapshot: Snapshot) -> int:
    """Lower-case the artist list and drop repeats; returns how many were dropped.

    Results are re-keyed to the lower-cased names so processed artists stay skipped.
    """
    before = len(snapshot.artists)
    snapshot.artists = dedupe_artist_names(snapshot.artists)
    results = {}
    for name, result in snapshot.results.items():
        results.setdefault(name.lower(), result)
    snapshot.results = results
    dropped = before - len(snapshot.artists)
    log.info("artist_duplicates", dropped=dropped)
    return dropped
