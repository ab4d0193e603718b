"""Resolve every not-yet-known track of one artist."""

from __future__ import annotations

import asyncio
import math
from typing import TYPE_CHECKING

import structlog

from discosync.storage.models import ArtistResult, Track
from discosync.sync.backoff import retry_forever
from discosync.sync.differ import exclude_uris, unique_by_name, uri_set
from discosync.sync.fetcher import PAGE_SIZE, fetch_all_pages

if TYPE_CHECKING:
    from discosync.sync.registry import PlaylistRegistry
    from discosync.sync.remote import CatalogClient

log = structlog.get_logger(__name__)

_ALBUM_MAX_PAGES = 50
_ALBUMS_PER_CHUNK = 10
_MAX_PAGES_PER_ALBUM = 20
_TRACK_PAGE_CONCURRENCY = 20


class ArtistTrackResolver:
    """Walks an artist's albums and returns the tracks worth adding.

    Tracks are tagged with the artist's display name rather than the
    per-track credit, deduplicated by name, and stripped of anything already
    liked or already present in a managed playlist (by URI).
    """

    def __init__(self, client: CatalogClient) -> None:
        self._client = client
        self._track_pages = asyncio.Semaphore(_TRACK_PAGE_CONCURRENCY)

    async def resolve(
        self,
        artist_id: str,
        artist_name: str,
        liked_tracks: list[Track],
        registry: PlaylistRegistry,
    ) -> tuple[list[Track], ArtistResult]:
        albums = await fetch_all_pages(
            lambda limit, offset: self._client.get_artist_albums(artist_id, limit, offset),
            max_pages=_ALBUM_MAX_PAGES,
            round_size=1,
            source="artist_albums",
        )
        log.info("artist_albums", artist=artist_name, albums=len(albums))

        resolved: list[Track] = []
        for start in range(0, len(albums), _ALBUMS_PER_CHUNK):
            chunk = albums[start : start + _ALBUMS_PER_CHUNK]
            items = await retry_forever(
                lambda chunk=chunk: self._fetch_album_chunk(chunk),
                event="album_tracks_failed",
                artist=artist_name,
                album_offset=start,
            )
            resolved.extend(
                Track(name=item["name"], artist=artist_name, uri=item["uri"])
                for item in items
                if item and item.get("uri")
            )

        unique = unique_by_name(resolved)
        unliked = exclude_uris(unique, uri_set(liked_tracks))
        candidates = exclude_uris(unliked, registry.all_uris())

        result = ArtistResult(
            skipped=False,
            added_songs=0,
            skipped_songs=len(resolved) - len(candidates),
        )
        log.info(
            "artist_resolved",
            artist=artist_name,
            total=len(resolved),
            unique=len(unique),
            candidates=len(candidates),
        )
        return candidates, result

    async def _fetch_album_chunk(self, albums: list[dict]) -> list[dict]:
        """Fetch every track page of every album in ``albums``; any failure fails the chunk."""
        requests = []
        for album in albums:
            total = album.get("total_tracks") or 0
            pages = min(max(math.ceil(total / PAGE_SIZE), 1), _MAX_PAGES_PER_ALBUM)
            for page in range(pages):
                requests.append(self._album_page(album["id"], page * PAGE_SIZE))

        results = await asyncio.gather(*requests, return_exceptions=True)
        items: list[dict] = []
        for result in results:
            if isinstance(result, BaseException):
                raise result
            items.extend(result)
        return items

    async def _album_page(self, album_id: str, offset: int) -> list[dict]:
        async with self._track_pages:
            return await self._client.get_album_tracks(album_id, PAGE_SIZE, offset)
