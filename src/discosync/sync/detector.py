"""Change detection: one cheap probe per source decides whether a full re-fetch is needed."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from discosync.sync.backoff import retry_forever

if TYPE_CHECKING:
    from discosync.storage.models import Snapshot
    from discosync.sync.remote import CatalogClient

log = structlog.get_logger(__name__)


def _iso_to_ms(value: str) -> int:
    return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000)


async def liked_tracks_changed(client: CatalogClient, snapshot: Snapshot) -> bool:
    """True when the most recently liked track is newer than ``snapshot.last_updated``."""
    items = await retry_forever(
        lambda: client.get_saved_tracks_page(1, 0),
        event="liked_probe_failed",
    )
    if not items:
        # Nothing liked remotely: only stale if we still remember some.
        return bool(snapshot.liked_tracks)

    added_at = items[0].get("added_at")
    if not added_at:
        return True

    latest = _iso_to_ms(added_at)
    changed = latest > snapshot.last_updated
    log.debug("liked_probe", latest_added_ms=latest, last_updated=snapshot.last_updated, changed=changed)
    return changed


async def playlist_total(client: CatalogClient, playlist_id: str) -> int:
    """The playlist's current remote track count."""
    playlist = await retry_forever(
        lambda: client.get_playlist(playlist_id),
        event="playlist_probe_failed",
        playlist_id=playlist_id,
    )
    return int(playlist["tracks"]["total"])


async def playlist_changed(client: CatalogClient, snapshot: Snapshot, playlist_id: str) -> bool:
    """True when the playlist's remote item count differs from the snapshot's, empty slots included."""
    remote_total = await playlist_total(client, playlist_id)
    known = snapshot.playlist_slots(playlist_id)
    log.debug("playlist_probe", playlist_id=playlist_id, remote_total=remote_total, known=known)
    return remote_total != known
