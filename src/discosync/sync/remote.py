"""Remote catalog capability interface and its error taxonomy.

The sync core only talks to the music service through :class:`CatalogClient`.
Pages are returned as raw JSON items so that short-page detection can use the
real page length before any filtering.
"""

from __future__ import annotations

import json
from typing import Any, Protocol


class RemoteError(Exception):
    """Base class for every failure of a remote catalog call.

    ``payload`` is whatever the service sent back: a plain string or a
    structured (decoded JSON) object.
    """

    def __init__(self, payload: str | dict[str, Any], *, status: int | None = None) -> None:
        self.payload = payload
        self.status = status
        super().__init__(describe_payload(payload))


class TransientRemoteError(RemoteError):
    """Network failure or server-side error; retrying may succeed."""


class RateLimited(TransientRemoteError):
    """The service asked us to slow down."""

    def __init__(
        self,
        payload: str | dict[str, Any],
        *,
        status: int | None = 429,
        retry_after: float = 0.0,
    ) -> None:
        super().__init__(payload, status=status)
        self.retry_after = retry_after


class RemoteAuthError(RemoteError):
    """Access token could not be obtained or was rejected."""


class TokenUnavailable(Exception):
    """No usable access token appeared before the readiness timeout elapsed."""


def describe_payload(payload: object) -> str:
    """Render an error payload for logs: structured objects as JSON, the rest as text."""
    if isinstance(payload, (dict, list)):
        return json.dumps(payload, sort_keys=True)
    return str(payload)


class CatalogClient(Protocol):
    """Everything the sync core needs from the remote music catalog."""

    async def has_valid_token(self) -> bool: ...

    async def get_saved_tracks_page(self, limit: int, offset: int) -> list[dict]: ...

    async def remove_saved_tracks(self, track_ids: list[str]) -> None: ...

    async def search_artist(self, name: str) -> dict | None: ...

    async def get_artist_albums(self, artist_id: str, limit: int, offset: int) -> list[dict]: ...

    async def get_album_tracks(self, album_id: str, limit: int, offset: int) -> list[dict]: ...

    async def get_playlist(self, playlist_id: str) -> dict: ...

    async def get_playlist_tracks_page(self, playlist_id: str, limit: int, offset: int) -> list[dict]: ...

    async def add_tracks_to_playlist(self, playlist_id: str, track_uris: list[str]) -> None: ...

    async def remove_tracks_from_playlist(self, playlist_id: str, track_uris: list[str]) -> None: ...

    async def create_playlist(self, name: str, *, public: bool = False) -> str: ...
