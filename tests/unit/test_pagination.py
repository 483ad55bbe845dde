"""
Tests for the pagination orchestrator.
"""

import pytest

from storyfetch.pagination import PaginationOrchestrator, entity_items, page_count
from storyfetch.protocols import ContentApiError, ContentResponse


class PagedListing:
    """Page request callable serving ``total`` numbered items."""

    def __init__(self, total, server_per_page=None, entity="stories", fail_page=None):
        self.total = total
        self.server_per_page = server_per_page
        self.entity = entity
        self.fail_page = fail_page
        self.calls = []

    async def __call__(self, url, params):
        self.calls.append((url, dict(params)))
        page = params["page"]
        if page == self.fail_page:
            raise ContentApiError("Internal Server Error", status=500)
        size = self.server_per_page or params["per_page"]
        start = (page - 1) * size
        items = [{"id": i} for i in range(start, min(start + size, self.total))]
        return ContentResponse(
            data={self.entity: items},
            per_page=self.server_per_page,
            total=self.total,
        )


@pytest.mark.unit
class TestPageCount:
    @pytest.mark.parametrize(
        "total, per_page, expected",
        [(1000, 100, 10), (100, 25, 4), (101, 25, 5), (0, 25, 1), (None, 25, 1), (5, 25, 1)],
    )
    def test_page_count(self, total, per_page, expected):
        assert page_count(total, per_page) == expected


@pytest.mark.unit
class TestEntityItems:
    def test_list_and_keyed_collections(self):
        assert entity_items(ContentResponse(data={"stories": [1, 2]}), "stories") == [1, 2]
        assert entity_items(ContentResponse(data={"links": {"a": 1, "b": 2}}), "links") == [1, 2]
        assert entity_items(ContentResponse(data={}), "stories") == []


@pytest.mark.unit
class TestPaginationOrchestrator:
    @pytest.mark.asyncio
    async def test_server_page_size_drives_page_count(self):
        listing = PagedListing(total=1000, server_per_page=100)

        items = await PaginationOrchestrator(listing).fetch_all("/cdn/stories", {"version": "draft"}, "stories")

        assert len(listing.calls) == 10
        assert len(items) == 1000
        assert items == [{"id": i} for i in range(1000)]

    @pytest.mark.asyncio
    async def test_default_page_size_without_server_hint(self):
        listing = PagedListing(total=100)

        items = await PaginationOrchestrator(listing).fetch_all("/cdn/stories", {}, "stories")

        assert len(listing.calls) == 4
        assert [params["page"] for _, params in listing.calls] == [1, 2, 3, 4]
        assert all(params["per_page"] == 25 for _, params in listing.calls)
        assert len(items) == 100

    @pytest.mark.asyncio
    async def test_requested_page_size_is_forwarded(self):
        listing = PagedListing(total=120)

        items = await PaginationOrchestrator(listing).fetch_all("/cdn/stories", {"per_page": 50}, "stories")

        assert len(listing.calls) == 3
        assert len(items) == 120

    @pytest.mark.asyncio
    async def test_caller_params_are_not_mutated(self):
        params = {"starts_with": "blog/"}
        await PaginationOrchestrator(PagedListing(total=30)).fetch_all("/cdn/stories", params, "stories")
        assert params == {"starts_with": "blog/"}

    @pytest.mark.asyncio
    async def test_failing_page_fails_the_call(self):
        listing = PagedListing(total=100, fail_page=3)

        with pytest.raises(ContentApiError) as exc_info:
            await PaginationOrchestrator(listing).fetch_all("/cdn/stories", {}, "stories")

        assert exc_info.value.status == 500

    @pytest.mark.asyncio
    async def test_keyed_entity_pages_are_flattened(self):
        async def links(url, params):
            return ContentResponse(data={"links": {"a": {"slug": "a"}, "b": {"slug": "b"}}}, total=2)

        items = await PaginationOrchestrator(links).fetch_all("/cdn/links", {}, "links")

        assert items == [{"slug": "a"}, {"slug": "b"}]
