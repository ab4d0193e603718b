"""Tests for the deduplication passes."""

from __future__ import annotations

import pytest

from discosync.storage.models import ArtistResult, Snapshot, Track
from discosync.sync.dedup import (
    dedupe_artists,
    dedupe_liked_tracks,
    dedupe_playlist,
    prune_liked_from_playlist,
)
from discosync.sync.library import refresh_playlist
from discosync.sync.registry import PlaylistRegistry


def _t(name: str, uri: str, artist: str = "Burial") -> Track:
    return Track(name=name, artist=artist, uri=uri)


# ---------------------------------------------------------------------------
# Liked tracks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_liked_duplicates_removed_keeping_first(catalog, sleeps):
    for track in [
        _t("Archangel", "spotify:track:arch-2"),
        _t("Near Dark", "spotify:track:near"),
        _t("Archangel", "spotify:track:arch-1"),
    ]:
        catalog.like(track)
    snapshot = Snapshot()

    removed = await dedupe_liked_tracks(catalog, snapshot)

    assert removed == 1
    # catalog.like() prepends, so arch-1 is at position 0 and kept.
    assert [t.uri for t in snapshot.liked_tracks] == ["spotify:track:arch-1", "spotify:track:near"]
    assert ("remove_saved_tracks", ["arch-2"]) in catalog.calls


@pytest.mark.asyncio
async def test_liked_duplicate_at_position_seven_removed(catalog, sleeps):
    liked = [_t(f"Track {i}", f"spotify:track:t{i}") for i in range(10)]
    liked[3] = _t("Song A", "spotify:track:song-a-1", artist="Artist1")
    liked[7] = _t("Song A", "spotify:track:song-a-2", artist="Artist1")
    for track in reversed(liked):
        catalog.like(track)
    snapshot = Snapshot()

    assert await dedupe_liked_tracks(catalog, snapshot) == 1

    assert catalog.count("remove_saved_tracks") == 1
    assert ("remove_saved_tracks", ["song-a-2"]) in catalog.calls
    assert snapshot.liked_tracks[3].uri == "spotify:track:song-a-1"
    assert len(snapshot.liked_tracks) == 9


@pytest.mark.asyncio
async def test_liked_removal_in_batches_of_fifty(catalog, sleeps):
    for i in range(121):
        catalog.like(_t("Loner", f"spotify:track:loner{i}"))
    snapshot = Snapshot()

    assert await dedupe_liked_tracks(catalog, snapshot) == 120

    batches = [call[1] for call in catalog.calls if call[0] == "remove_saved_tracks"]
    assert [len(b) for b in batches] == [50, 50, 20]
    assert len(snapshot.liked_tracks) == 1


@pytest.mark.asyncio
async def test_liked_dedupe_is_idempotent(catalog, sleeps):
    catalog.like(_t("Etched Headplate", "spotify:track:e1"))
    catalog.like(_t("Etched Headplate", "spotify:track:e2"))
    snapshot = Snapshot()

    assert await dedupe_liked_tracks(catalog, snapshot) == 1
    calls_before = catalog.count("remove_saved_tracks")

    assert await dedupe_liked_tracks(catalog, snapshot) == 0
    assert catalog.count("remove_saved_tracks") == calls_before


@pytest.mark.asyncio
async def test_liked_removal_retried(catalog, sleeps):
    catalog.like(_t("Ghost Hardware", "spotify:track:g1"))
    catalog.like(_t("Ghost Hardware", "spotify:track:g2"))
    catalog.failures["remove_saved_tracks"] = 2

    assert await dedupe_liked_tracks(catalog, Snapshot()) == 1
    assert sleeps == [1.0, 2.0]


# ---------------------------------------------------------------------------
# Playlists
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_playlist_duplicates_removed(catalog, sleeps):
    tracks = [
        _t("Untrue", "spotify:track:u1"),
        _t("Shell of Light", "spotify:track:s1"),
        _t("Untrue", "spotify:track:u2"),
    ]
    catalog.add_playlist("pl-1", tracks)
    snapshot = Snapshot(playlist_ids=["pl-1"])
    registry = PlaylistRegistry(snapshot)

    assert await dedupe_playlist(catalog, registry, "pl-1") == 1

    assert [t.uri for t in registry.tracks("pl-1")] == ["spotify:track:u1", "spotify:track:s1"]
    assert ("remove_tracks_from_playlist", "pl-1", ["spotify:track:u2"]) in catalog.calls
    assert [t.uri for t in catalog.playlists["pl-1"]] == ["spotify:track:u1", "spotify:track:s1"]

    assert await dedupe_playlist(catalog, registry, "pl-1") == 0


@pytest.mark.asyncio
async def test_repeated_uri_keeps_one_copy(catalog, sleeps):
    untrue = _t("Untrue", "spotify:track:u1")
    shell = _t("Shell of Light", "spotify:track:s1")
    catalog.add_playlist("pl-1", [untrue, shell, untrue])
    registry = PlaylistRegistry(Snapshot(playlist_ids=["pl-1"]))

    assert await dedupe_playlist(catalog, registry, "pl-1") == 1

    assert ("remove_tracks_from_playlist", "pl-1", ["spotify:track:u1"]) in catalog.calls
    assert ("add_tracks_to_playlist", "pl-1", ["spotify:track:u1"]) in catalog.calls
    # The surviving copy moves to the end of the playlist.
    assert [t.uri for t in catalog.playlists["pl-1"]] == ["spotify:track:s1", "spotify:track:u1"]
    assert registry.tracks("pl-1") == catalog.playlists["pl-1"]

    assert await dedupe_playlist(catalog, registry, "pl-1") == 0


@pytest.mark.asyncio
async def test_empty_slots_never_reported_as_duplicates(catalog, sleeps):
    tracks = [_t(f"Track {i}", f"spotify:track:{i}") for i in range(115)]
    catalog.add_playlist("pl-1", [None] * 5 + tracks)
    registry = PlaylistRegistry(Snapshot(playlist_ids=["pl-1"]))
    await refresh_playlist(catalog, registry, "pl-1", resume=True)
    await refresh_playlist(catalog, registry, "pl-1", resume=True)

    assert await dedupe_playlist(catalog, registry, "pl-1") == 0
    assert await dedupe_playlist(catalog, registry, "pl-1") == 0

    assert catalog.count("remove_tracks_from_playlist") == 0
    assert registry.tracks("pl-1") == tracks


@pytest.mark.asyncio
async def test_prune_liked_from_playlist(catalog, sleeps):
    catalog.add_playlist("pl-1", [_t("Kindred", "spotify:track:k"), _t("Rival Dealer", "spotify:track:r")])
    snapshot = Snapshot(playlist_ids=["pl-1"], liked_tracks=[_t("Kindred", "spotify:track:k")])
    registry = PlaylistRegistry(snapshot)

    assert await prune_liked_from_playlist(catalog, registry, "pl-1", snapshot) == 1
    assert [t.uri for t in registry.tracks("pl-1")] == ["spotify:track:r"]


# ---------------------------------------------------------------------------
# Artists
# ---------------------------------------------------------------------------


def test_dedupe_artists_rekeys_results():
    result = ArtistResult(added_songs=12, skipped_songs=3)
    snapshot = Snapshot(artists=["Burial", "Kode9", "burial"], results={"Burial": result})

    assert dedupe_artists(snapshot) == 1

    assert snapshot.artists == ["burial", "kode9"]
    assert snapshot.results == {"burial": result}


def test_dedupe_artists_noop():
    snapshot = Snapshot(artists=["burial"])
    assert dedupe_artists(snapshot) == 0
    assert snapshot.artists == ["burial"]
