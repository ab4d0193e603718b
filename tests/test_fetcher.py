"""Tests for the paginated fetcher."""

from __future__ import annotations

import pytest

from discosync.sync.fetcher import fetch_all_pages
from discosync.sync.remote import TransientRemoteError


class PagedSource:
    """A listing of ``total`` numbered items (``None`` means endless)."""

    def __init__(self, total: int | None, fail_offsets: dict[int, int] | None = None):
        self.total = total
        self.fail_offsets = dict(fail_offsets or {})
        self.offsets: list[int] = []

    async def __call__(self, limit: int, offset: int) -> list[dict]:
        self.offsets.append(offset)
        if self.fail_offsets.get(offset):
            self.fail_offsets[offset] -= 1
            raise TransientRemoteError("Bad gateway", status=502)
        end = offset + limit if self.total is None else min(offset + limit, self.total)
        return [{"n": n} for n in range(offset, end)]


@pytest.mark.asyncio
async def test_stops_at_short_page(sleeps):
    source = PagedSource(120)
    items = await fetch_all_pages(source, max_pages=300)

    assert [i["n"] for i in items] == list(range(120))
    # A single round of ten parallel pages was enough.
    assert sorted(source.offsets) == [i * 50 for i in range(10)]


@pytest.mark.asyncio
async def test_exact_multiple_ends_on_empty_round(sleeps):
    source = PagedSource(100)
    items = await fetch_all_pages(source, max_pages=300, round_size=2)

    assert len(items) == 100
    assert sorted(source.offsets) == [0, 50, 100, 150]


@pytest.mark.asyncio
async def test_empty_listing(sleeps):
    source = PagedSource(0)
    assert await fetch_all_pages(source, max_pages=300) == []


@pytest.mark.asyncio
async def test_endless_source_stops_at_cap(sleeps):
    source = PagedSource(None)
    items = await fetch_all_pages(source, max_pages=5, round_size=2)

    assert len(items) == 250
    assert sorted(source.offsets) == [0, 50, 100, 150, 200]


@pytest.mark.asyncio
async def test_failed_round_retried_with_same_offsets(sleeps):
    source = PagedSource(130, fail_offsets={50: 2})
    items = await fetch_all_pages(source, max_pages=300, round_size=3)

    assert [i["n"] for i in items] == list(range(130))
    assert sleeps == [1.0, 2.0]
    # Three attempts at the same round, no other offsets touched.
    assert sorted(set(source.offsets)) == [0, 50, 100]
    assert source.offsets.count(0) == 3


@pytest.mark.asyncio
async def test_start_page_resumes_midway(sleeps):
    source = PagedSource(230)
    items = await fetch_all_pages(source, max_pages=300, start_page=2)

    assert min(source.offsets) == 100
    assert [i["n"] for i in items] == list(range(100, 230))


@pytest.mark.asyncio
async def test_items_after_short_page_in_round_ignored(sleeps):
    async def gappy(limit: int, offset: int) -> list[dict]:
        if offset == 50:
            return [{"n": 50}]
        return [{"n": n} for n in range(offset, offset + limit)]

    items = await fetch_all_pages(gappy, max_pages=300, round_size=3)
    assert [i["n"] for i in items] == list(range(51))
