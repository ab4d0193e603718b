"""Shared fixtures for discosync tests."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from discosync.storage.database import Database
from discosync.storage.models import Track
from discosync.sync.remote import TransientRemoteError


class FakeCatalog:
    """In-memory stand-in for the remote catalog.

    Records every call in ``calls`` as ``(method, *args)``.  ``failures`` maps
    a method name to how many times it should raise a transient error before
    succeeding.
    """

    def __init__(self) -> None:
        self.token_ready = True
        self.token_polls = 0
        self.liked: list[tuple[Track, str]] = []  # newest first, with added_at
        self.artists: dict[str, dict] = {}
        self.albums: dict[str, list[dict]] = {}
        self.album_tracks: dict[str, list[Track]] = {}
        self.playlists: dict[str, list[Track | None]] = {}  # None is an empty slot
        self.created_names: list[str] = []
        self.calls: list[tuple] = []
        self.failures: dict[str, int] = {}
        self._known: dict[str, Track] = {}

    async def __aenter__(self) -> FakeCatalog:
        return self

    async def __aexit__(self, *exc: object) -> None:
        pass

    # -- setup helpers --

    def like(self, track: Track, added_at: str = "2020-01-01T00:00:00Z") -> None:
        self._known[track.uri] = track
        self.liked.insert(0, (track, added_at))

    def add_artist(self, name: str, albums: dict[str, list[Track]]) -> None:
        artist_id = f"artist-{name.lower().replace(' ', '-')}"
        self.artists[name.lower()] = {"id": artist_id, "name": name}
        self.albums[artist_id] = []
        for album_id, tracks in albums.items():
            self.albums[artist_id].append({"id": album_id, "total_tracks": len(tracks)})
            self.album_tracks[album_id] = list(tracks)
            for track in tracks:
                self._known[track.uri] = track

    def add_playlist(self, playlist_id: str, tracks: list[Track | None] | None = None) -> None:
        self.playlists[playlist_id] = list(tracks or [])
        for track in filter(None, self.playlists[playlist_id]):
            self._known[track.uri] = track

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def _record(self, method: str, *args: object) -> None:
        self.calls.append((method, *args))
        remaining = self.failures.get(method, 0)
        if remaining:
            self.failures[method] = remaining - 1
            raise TransientRemoteError({"status": 503, "message": "Service unavailable"}, status=503)

    @staticmethod
    def _item(track: Track | None, added_at: str | None = None) -> dict:
        if track is None:
            return {"track": None}
        item: dict = {"track": {"name": track.name, "uri": track.uri, "artists": [{"name": track.artist}]}}
        if added_at is not None:
            item["added_at"] = added_at
        return item

    # -- CatalogClient --

    async def has_valid_token(self) -> bool:
        self.token_polls += 1
        return self.token_ready

    async def get_saved_tracks_page(self, limit: int, offset: int) -> list[dict]:
        self._record("get_saved_tracks_page", limit, offset)
        return [self._item(t, at) for t, at in self.liked[offset : offset + limit]]

    async def remove_saved_tracks(self, track_ids: list[str]) -> None:
        self._record("remove_saved_tracks", list(track_ids))
        # Like the real endpoint, every saved copy of an id goes.
        ids = set(track_ids)
        self.liked = [(t, at) for t, at in self.liked if t.uri.rsplit(":", 1)[-1] not in ids]

    async def search_artist(self, name: str) -> dict | None:
        self._record("search_artist", name)
        return self.artists.get(name.lower())

    async def get_artist_albums(self, artist_id: str, limit: int, offset: int) -> list[dict]:
        self._record("get_artist_albums", artist_id, limit, offset)
        return self.albums.get(artist_id, [])[offset : offset + limit]

    async def get_album_tracks(self, album_id: str, limit: int, offset: int) -> list[dict]:
        self._record("get_album_tracks", album_id, limit, offset)
        tracks = self.album_tracks.get(album_id, [])[offset : offset + limit]
        return [{"name": t.name, "uri": t.uri, "artists": [{"name": t.artist}]} for t in tracks]

    async def get_playlist(self, playlist_id: str) -> dict:
        self._record("get_playlist", playlist_id)
        return {"id": playlist_id, "tracks": {"total": len(self.playlists[playlist_id])}}

    async def get_playlist_tracks_page(self, playlist_id: str, limit: int, offset: int) -> list[dict]:
        self._record("get_playlist_tracks_page", playlist_id, limit, offset)
        return [self._item(t) for t in self.playlists[playlist_id][offset : offset + limit]]

    async def add_tracks_to_playlist(self, playlist_id: str, track_uris: list[str]) -> None:
        self._record("add_tracks_to_playlist", playlist_id, list(track_uris))
        self.playlists[playlist_id].extend(self._known[uri] for uri in track_uris)

    async def remove_tracks_from_playlist(self, playlist_id: str, track_uris: list[str]) -> None:
        self._record("remove_tracks_from_playlist", playlist_id, list(track_uris))
        uris = set(track_uris)
        self.playlists[playlist_id] = [t for t in self.playlists[playlist_id] if t is None or t.uri not in uris]

    async def create_playlist(self, name: str, *, public: bool = False) -> str:
        self._record("create_playlist", name, public)
        playlist_id = f"created-{len(self.created_names) + 1}"
        self.created_names.append(name)
        self.playlists[playlist_id] = []
        return playlist_id


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all discosync runtime files to a temporary directory.

    Patches ``discosync.config.get_base_dir`` so that nothing touches the real
    ``~/.discosync/``.
    """
    fake_base = tmp_path / ".discosync"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()

    monkeypatch.setattr("discosync.config.get_base_dir", lambda: fake_base)

    return fake_base


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture()
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Make backoff sleeps instant and record their durations."""
    recorded: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        recorded.append(seconds)

    monkeypatch.setattr("discosync.sync.backoff.asyncio.sleep", fake_sleep)
    return recorded


@pytest_asyncio.fixture()
async def db(tmp_path: Path):
    d = Database(tmp_path / "test.db")
    await d.connect()
    yield d
    await d.close()
