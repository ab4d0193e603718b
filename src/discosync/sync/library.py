"""Bring liked tracks and managed playlist contents up to date in the snapshot."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from discosync.storage.models import now_ms
from discosync.sync.detector import liked_tracks_changed, playlist_total
from discosync.sync.differ import tracks_from_items
from discosync.sync.fetcher import PAGE_SIZE, fetch_all_pages

if TYPE_CHECKING:
    from discosync.storage.models import Snapshot
    from discosync.sync.registry import PlaylistRegistry
    from discosync.sync.remote import CatalogClient

log = structlog.get_logger(__name__)

LIKED_MAX_PAGES = 15000 // PAGE_SIZE
PLAYLIST_MAX_PAGES = 250


async def refresh_liked_tracks(client: CatalogClient, snapshot: Snapshot) -> bool:
    """Re-fetch liked tracks into ``snapshot`` when the probe says they changed.

    Returns True if a full fetch happened.  ``snapshot.last_updated`` is moved
    to the moment the probe was issued.
    """
    probe_started = now_ms()
    if not await liked_tracks_changed(client, snapshot):
        log.info("liked_tracks_unchanged", count=len(snapshot.liked_tracks))
        return False

    log.info("liked_tracks_fetch_start")
    items = await fetch_all_pages(
        client.get_saved_tracks_page,
        max_pages=LIKED_MAX_PAGES,
        source="liked_tracks",
    )
    snapshot.liked_tracks = tracks_from_items(items)
    snapshot.last_updated = probe_started
    log.info("liked_tracks_fetched", count=len(snapshot.liked_tracks))
    return True


async def refresh_playlist(
    client: CatalogClient,
    registry: PlaylistRegistry,
    playlist_id: str,
    *,
    resume: bool = False,
) -> bool:
    """Re-fetch one playlist's tracks if its remote item count differs from the known one.

    The remote count includes empty slots, so it is compared against the
    known tracks plus the empty slots seen by the last fetch.  With ``resume``
    and a playlist that only grew, scanning starts at the page holding the
    first unknown item and the known prefix is kept.  Resuming needs known
    tracks to line up with remote offsets, which only holds while the
    playlist has no empty slots.
    """
    known = registry.tracks(playlist_id)
    slots = registry.slots(playlist_id)
    total = await playlist_total(client, playlist_id)
    if total == slots:
        log.info("playlist_unchanged", playlist_id=playlist_id, count=total)
        return False

    aligned = registry.empty_slots(playlist_id) == 0
    start_page = len(known) // PAGE_SIZE if resume and aligned and total > slots else 0
    log.info("playlist_fetch_start", playlist_id=playlist_id, known=slots, remote=total, start_page=start_page)

    items = await fetch_all_pages(
        lambda limit, offset: client.get_playlist_tracks_page(playlist_id, limit, offset),
        max_pages=PLAYLIST_MAX_PAGES,
        start_page=start_page,
        source="playlist_tracks",
    )
    fetched = tracks_from_items(items)
    prefix = known[: start_page * PAGE_SIZE]
    registry.replace_tracks(playlist_id, prefix + fetched, empty_slots=len(items) - len(fetched))
    log.info(
        "playlist_fetched",
        playlist_id=playlist_id,
        count=registry.count(playlist_id),
        empty_slots=registry.empty_slots(playlist_id),
    )
    return True


async def refresh_playlists(
    client: CatalogClient,
    registry: PlaylistRegistry,
    *,
    resume: bool = False,
) -> int:
    """Refresh every managed playlist in registry order; returns how many were re-fetched."""
    refreshed = 0
    for playlist_id in registry:
        if await refresh_playlist(client, registry, playlist_id, resume=resume):
            refreshed += 1
    return refreshed
