"""Tests for track identity, duplicate detection and membership filtering."""

from __future__ import annotations

from discosync.storage.models import Track
from discosync.sync.differ import (
    dedupe_artist_names,
    drop_positions,
    exclude_uris,
    find_duplicates,
    track_from_item,
    track_id_from_uri,
    tracks_from_items,
    unique_by_name,
    uri_set,
)


def _t(name: str, artist: str = "Moderat", uri: str | None = None) -> Track:
    return Track(name=name, artist=artist, uri=uri or f"spotify:track:{name.lower().replace(' ', '')}")


# ---------------------------------------------------------------------------
# Item conversion
# ---------------------------------------------------------------------------


def test_track_from_item_uses_first_artist():
    item = {
        "track": {
            "name": "Bad Kingdom",
            "uri": "spotify:track:abc",
            "artists": [{"name": "Moderat"}, {"name": "Apparat"}],
        }
    }
    assert track_from_item(item) == Track(name="Bad Kingdom", artist="Moderat", uri="spotify:track:abc")


def test_track_from_item_unknown_artist():
    item = {"track": {"name": "Untitled", "uri": "spotify:track:x", "artists": []}}
    assert track_from_item(item).artist == "Unknown"


def test_tracks_from_items_skips_empty_slots():
    items = [
        {"track": None},
        {"track": {"name": "Local", "uri": None, "artists": []}},
        None,
        {"track": {"name": "Real", "uri": "spotify:track:r", "artists": [{"name": "A"}]}},
    ]
    assert [t.name for t in tracks_from_items(items)] == ["Real"]


def test_track_id_from_uri():
    assert track_id_from_uri("spotify:track:4uLU6hMCjMI75M1A2tKUQC") == "4uLU6hMCjMI75M1A2tKUQC"


# ---------------------------------------------------------------------------
# Duplicates
# ---------------------------------------------------------------------------


def test_find_duplicates_reports_later_positions():
    tracks = [_t(f"Song {i}") for i in range(10)]
    tracks[3] = _t("Song 0", uri="spotify:track:other0")
    tracks[7] = _t("Song 2", uri="spotify:track:other2")

    positions = find_duplicates(tracks)

    assert positions == [3, 7]
    remaining = drop_positions(tracks, positions)
    assert len(remaining) == 8
    assert remaining[0].uri == "spotify:track:song0"
    assert remaining[2].uri == "spotify:track:song2"


def test_find_duplicates_same_name_other_artist_is_distinct():
    tracks = [_t("Intro", artist="A"), _t("Intro", artist="B", uri="spotify:track:intro-b")]
    assert find_duplicates(tracks) == []


def test_find_duplicates_empty():
    assert find_duplicates([]) == []


def test_unique_by_name_ignores_artist_and_uri():
    tracks = [_t("Intro", artist="A"), _t("Intro", artist="B", uri="spotify:track:2"), _t("Outro")]
    assert [t.uri for t in unique_by_name(tracks)] == ["spotify:track:intro", "spotify:track:outro"]


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


def test_exclude_uris_across_collections():
    liked = [_t("A")]
    playlist = [_t("B")]
    candidates = [_t("A"), _t("B"), _t("C")]

    assert [t.name for t in exclude_uris(candidates, uri_set(liked, playlist))] == ["C"]


def test_uri_membership_and_name_dedup_disagree():
    """A re-release with a new URI is "new" for membership but a duplicate for pruning."""
    original = _t("Rusty Nails", uri="spotify:track:album-version")
    rerelease = _t("Rusty Nails", uri="spotify:track:single-version")

    assert exclude_uris([rerelease], uri_set([original])) == [rerelease]
    assert find_duplicates([original, rerelease]) == [1]


# ---------------------------------------------------------------------------
# Artists
# ---------------------------------------------------------------------------


def test_dedupe_artist_names_lowercases_and_keeps_order():
    assert dedupe_artist_names(["Moderat", "Bicep", "moderat", "BICEP", "Four Tet"]) == [
        "moderat",
        "bicep",
        "four tet",
    ]
