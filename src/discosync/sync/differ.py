"""Track identity keys, duplicate detection and membership filtering.

Two notions of "same track" live side by side:

- URI equality decides whether a track is already liked or already in a
  managed playlist.
- ``(name, artist)`` equality decides what the deduplication passes prune,
  so two different URIs for the same song title and artist count as duplicates.
"""

from __future__ import annotations

from collections.abc import Iterable

from discosync.storage.models import Track

_UNKNOWN_ARTIST = "Unknown"


def track_from_item(item: dict | None) -> Track | None:
    """Build a Track from a saved-tracks or playlist-tracks item (``{"track": {...}}``).

    Returns None for empty slots (removed or local tracks without data).
    """
    if not item:
        return None
    track = item.get("track")
    if not track or not track.get("uri"):
        return None
    artists = track.get("artists") or []
    artist_name = artists[0]["name"] if artists else _UNKNOWN_ARTIST
    return Track(name=track["name"], artist=artist_name, uri=track["uri"])


def tracks_from_items(items: Iterable[dict | None]) -> list[Track]:
    return [t for t in (track_from_item(item) for item in items) if t is not None]


def track_id_from_uri(uri: str) -> str:
    """``spotify:track:abc`` -> ``abc``."""
    return uri.rsplit(":", 1)[-1]


def duplicate_key(track: Track) -> tuple[str, str]:
    return (track.name, track.artist)


def find_duplicates(tracks: list[Track]) -> list[int]:
    """Positions of every track whose ``(name, artist)`` already occurred earlier.

    The first occurrence of each key is never reported.
    """
    first_seen: dict[tuple[str, str], int] = {}
    duplicates: list[int] = []
    for position, track in enumerate(tracks):
        key = duplicate_key(track)
        if key in first_seen:
            duplicates.append(position)
        else:
            first_seen[key] = position
    return duplicates


def drop_positions(tracks: list[Track], positions: Iterable[int]) -> list[Track]:
    excluded = set(positions)
    return [t for i, t in enumerate(tracks) if i not in excluded]


def unique_by_name(tracks: Iterable[Track]) -> list[Track]:
    """Keep the first track seen for each name."""
    seen: set[str] = set()
    unique: list[Track] = []
    for track in tracks:
        if track.name in seen:
            continue
        seen.add(track.name)
        unique.append(track)
    return unique


def uri_set(*collections: Iterable[Track]) -> set[str]:
    return {track.uri for tracks in collections for track in tracks}


def exclude_uris(tracks: Iterable[Track], known: set[str]) -> list[Track]:
    return [t for t in tracks if t.uri not in known]


def dedupe_artist_names(artists: Iterable[str]) -> list[str]:
    """Lower-case artist names and drop repeats, keeping first-occurrence order."""
    seen: set[str] = set()
    result: list[str] = []
    for name in artists:
        key = name.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(key)
    return result
