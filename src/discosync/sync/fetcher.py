"""Paginated fetcher: parallel rounds of page requests against a listing endpoint."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from discosync.sync.backoff import retry_forever

log = structlog.get_logger(__name__)

PAGE_SIZE = 50
ROUND_SIZE = 10

# (limit, offset) -> raw page items
PageFetch = Callable[[int, int], Awaitable[list[dict]]]


async def _fetch_round(fetch_page: PageFetch, offsets: list[int], page_size: int) -> list[list[dict]]:
    """Fetch every offset in parallel; any failure fails the whole round."""
    results = await asyncio.gather(
        *(fetch_page(page_size, offset) for offset in offsets),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results  # type: ignore[return-value]


async def fetch_all_pages(
    fetch_page: PageFetch,
    *,
    max_pages: int,
    page_size: int = PAGE_SIZE,
    round_size: int = ROUND_SIZE,
    start_page: int = 0,
    source: str = "pages",
) -> list[dict]:
    """Collect every item from a paginated listing.

    Pages are requested ``round_size`` at a time at consecutive offsets.  The
    fetch ends at the first page shorter than ``page_size`` (items after it in
    the same round are ignored), when a round yields no items at all, or once
    ``max_pages`` page indexes have been consumed.  A failed round is retried
    as a whole with the same offsets, so results never have gaps or repeats.
    ``start_page`` resumes the scan part-way through the listing.
    """
    items: list[dict] = []
    page = start_page

    while page < max_pages:
        count = min(round_size, max_pages - page)
        offsets = [(page + i) * page_size for i in range(count)]

        pages = await retry_forever(
            lambda offsets=offsets: _fetch_round(fetch_page, offsets, page_size),
            event="page_round_failed",
            source=source,
            offset=offsets[0],
        )

        round_items: list[dict] = []
        reached_end = False
        for raw in pages:
            round_items.extend(raw)
            if len(raw) < page_size:
                reached_end = True
                break

        if not round_items:
            break
        items.extend(round_items)
        log.debug("page_round_done", source=source, offset=offsets[0], items=len(items))

        if reached_end:
            break
        page += count
    else:
        log.warning("page_cap_reached", source=source, max_pages=max_pages, items=len(items))

    return items
