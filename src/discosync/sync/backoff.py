"""Backoff policy and the unbounded retry loop every remote call goes through."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

import structlog

from discosync.sync.remote import RateLimited, RemoteError, TokenUnavailable, describe_payload

if TYPE_CHECKING:
    from discosync.sync.remote import CatalogClient

log = structlog.get_logger(__name__)

T = TypeVar("T")

_READY_POLL_SECONDS = 0.1
_READY_LOG_EVERY = 50


def backoff_delay(fail_count: int) -> float:
    """Seconds to wait before retry number ``fail_count + 1``: ``2 ** fail_count``."""
    return float(2**fail_count)


async def retry_forever(
    call: Callable[[], Awaitable[T]],
    *,
    event: str,
    **context: object,
) -> T:
    """Await ``call()`` until it succeeds, sleeping per :func:`backoff_delay` between attempts.

    The fail counter lives in this invocation only, so every call site starts
    again at one second.  ``call`` is re-invoked with the exact same arguments,
    which keeps the retried unit of work (offset, slice, artist) unchanged.
    Only :class:`RemoteError` is retried; anything else propagates.
    """
    fail_count = 0
    while True:
        try:
            return await call()
        except RemoteError as exc:
            wait = backoff_delay(fail_count)
            if isinstance(exc, RateLimited):
                wait = max(wait, exc.retry_after)
            log.warning(
                event,
                error=describe_payload(exc.payload),
                status=exc.status,
                attempt=fail_count + 1,
                retry_in=wait,
                **context,
            )
            await asyncio.sleep(wait)
            fail_count += 1


async def wait_until_ready(
    client: CatalogClient,
    *,
    interval: float = _READY_POLL_SECONDS,
    timeout: float | None = None,
) -> None:
    """Block until ``client.has_valid_token()`` reports True.

    Polls every ``interval`` seconds.  Without a ``timeout`` this waits
    indefinitely; with one, :class:`TokenUnavailable` is raised once it elapses.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    polls = 0
    while not await client.has_valid_token():
        polls += 1
        if deadline is not None and time.monotonic() >= deadline:
            raise TokenUnavailable(f"No access token after {timeout}s")
        if polls % _READY_LOG_EVERY == 1:
            log.info("waiting_for_token", polls=polls)
        await asyncio.sleep(interval)
