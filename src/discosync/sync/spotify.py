"""Async Spotify Web API client using httpx.

Endpoints:
- GET/DELETE /me/tracks (liked tracks; DELETE body: {"ids": [...]})
- GET /search (type=artist)
- GET /artists/{id}/albums, GET /albums/{id}/tracks
- GET /playlists/{id}, GET/POST/DELETE /playlists/{id}/tracks
- POST /users/{user_id}/playlists

The client makes exactly one attempt per call (plus one forced token refresh
on 401).  Failures are raised as :mod:`discosync.sync.remote` errors and the
sync core decides how to back off.
"""

from __future__ import annotations

import time

import httpx
import structlog

from discosync.config import SpotifyConfig
from discosync.sync.remote import (
    RateLimited,
    RemoteAuthError,
    RemoteError,
    TransientRemoteError,
)

log = structlog.get_logger(__name__)

_API_BASE = "https://api.spotify.com/v1"
_TOKEN_URL = "https://accounts.spotify.com/api/token"  # noqa: S105


def _error_payload(resp: httpx.Response) -> str | dict:
    """Spotify errors look like {"error": {...}} or {"error": "..."}; fall back to raw text."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(data, dict) and "error" in data:
        return data["error"]
    return data


def _retry_after(resp: httpx.Response) -> float:
    """Seconds from a Retry-After header; 1.0 when it is missing or not a number."""
    try:
        return float(resp.headers.get("Retry-After", "1"))
    except ValueError:
        log.warning("retry_after_unparsable", value=resp.headers.get("Retry-After"))
        return 1.0


class SpotifyClient:
    """Async Spotify Web API client with automatic token refresh."""

    def __init__(
        self,
        config: SpotifyConfig,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = _transport
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0
        self._user_id: str | None = None
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> SpotifyClient:
        kw: dict = {"timeout": 30.0}
        if self._transport is not None:
            kw["transport"] = self._transport
        self._client = httpx.AsyncClient(**kw)
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # -- auth --

    async def _ensure_token(self, *, force: bool = False) -> str:
        if not force and self._access_token and time.time() < self._token_expires_at - 60:
            return self._access_token

        assert self._client is not None  # noqa: S101
        try:
            resp = await self._client.post(
                _TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": self._config.refresh_token.get_secret_value(),
                    "client_id": self._config.client_id,
                    "client_secret": self._config.client_secret.get_secret_value(),
                },
            )
        except httpx.TransportError as exc:
            raise TransientRemoteError(f"Token endpoint unreachable: {exc}") from exc

        if resp.status_code != 200:
            raise RemoteAuthError(_error_payload(resp), status=resp.status_code)

        data = resp.json()
        self._access_token = data["access_token"]
        self._token_expires_at = time.time() + data.get("expires_in", 3600)
        return self._access_token

    async def has_valid_token(self) -> bool:
        """True once an access token is available (refreshing it if needed)."""
        if not (self._config.client_id and self._config.refresh_token.get_secret_value()):
            return False
        try:
            await self._ensure_token()
        except RemoteError as exc:
            log.debug("spotify_token_unavailable", error=str(exc))
            return False
        return True

    # -- request helper --

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: dict | list | None = None,
        params: dict | None = None,
    ) -> httpx.Response:
        assert self._client is not None  # noqa: S101

        for attempt in range(2):
            token = await self._ensure_token(force=attempt > 0)
            try:
                resp = await self._client.request(
                    method,
                    url,
                    headers={"Authorization": f"Bearer {token}"},
                    json=json,
                    params=params,
                )
            except httpx.TransportError as exc:
                raise TransientRemoteError(f"Network error: {exc}") from exc

            if resp.status_code == 401 and attempt == 0:
                # Token expired mid-request, force refresh once.
                continue
            if resp.status_code == 401:
                raise RemoteAuthError(_error_payload(resp), status=401)
            if resp.status_code == 429:
                raise RateLimited(_error_payload(resp), retry_after=_retry_after(resp))
            if resp.status_code >= 500:
                raise TransientRemoteError(_error_payload(resp), status=resp.status_code)
            if resp.status_code >= 400:
                raise RemoteError(_error_payload(resp), status=resp.status_code)
            return resp

        raise RemoteAuthError("Unauthorized after token refresh", status=401)

    async def _get_items(self, url: str, *, limit: int, offset: int) -> list[dict]:
        resp = await self._request("GET", url, params={"limit": limit, "offset": offset})
        return resp.json().get("items", [])

    # -- liked tracks --

    async def get_saved_tracks_page(self, limit: int, offset: int) -> list[dict]:
        return await self._get_items(f"{_API_BASE}/me/tracks", limit=limit, offset=offset)

    async def remove_saved_tracks(self, track_ids: list[str]) -> None:
        await self._request("DELETE", f"{_API_BASE}/me/tracks", json={"ids": track_ids})

    # -- catalog --

    async def search_artist(self, name: str) -> dict | None:
        """Return the best-matching artist object, or ``None``."""
        resp = await self._request(
            "GET",
            f"{_API_BASE}/search",
            params={"q": name, "type": "artist", "limit": 1},
        )
        items = resp.json().get("artists", {}).get("items", [])
        return items[0] if items else None

    async def get_artist_albums(self, artist_id: str, limit: int, offset: int) -> list[dict]:
        return await self._get_items(f"{_API_BASE}/artists/{artist_id}/albums", limit=limit, offset=offset)

    async def get_album_tracks(self, album_id: str, limit: int, offset: int) -> list[dict]:
        return await self._get_items(f"{_API_BASE}/albums/{album_id}/tracks", limit=limit, offset=offset)

    # -- playlists --

    async def get_playlist(self, playlist_id: str) -> dict:
        resp = await self._request(
            "GET",
            f"{_API_BASE}/playlists/{playlist_id}",
            params={"fields": "id,name,tracks.total"},
        )
        return resp.json()

    async def get_playlist_tracks_page(self, playlist_id: str, limit: int, offset: int) -> list[dict]:
        return await self._get_items(f"{_API_BASE}/playlists/{playlist_id}/tracks", limit=limit, offset=offset)

    async def add_tracks_to_playlist(self, playlist_id: str, track_uris: list[str]) -> None:
        await self._request("POST", f"{_API_BASE}/playlists/{playlist_id}/tracks", json={"uris": track_uris})

    async def remove_tracks_from_playlist(self, playlist_id: str, track_uris: list[str]) -> None:
        await self._request(
            "DELETE",
            f"{_API_BASE}/playlists/{playlist_id}/tracks",
            json={"tracks": [{"uri": uri} for uri in track_uris]},
        )

    async def create_playlist(self, name: str, *, public: bool = False) -> str:
        if self._user_id is None:
            resp = await self._request("GET", f"{_API_BASE}/me")
            self._user_id = resp.json()["id"]
        resp = await self._request(
            "POST",
            f"{_API_BASE}/users/{self._user_id}/playlists",
            json={"name": name, "public": public},
        )
        return resp.json()["id"]
