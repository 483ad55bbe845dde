"""
Fetch every page of a paginated listing.

Page 1 is requested first to learn ``total`` and the page size the server
applied; the remaining pages are then dispatched concurrently and their
entity arrays concatenated in page order.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import structlog

from storyfetch.protocols import ContentResponse
from storyfetch.throttle.rate_limit import DEFAULT_PER_PAGE

logger = structlog.get_logger(__name__)

PageRequest = Callable[[str, Dict[str, Any]], Awaitable[ContentResponse]]


def page_count(total: Optional[int], per_page: int) -> int:
    if not total or per_page < 1:
        return 1
    return max(1, math.ceil(total / per_page))


def entity_items(response: ContentResponse, entity: str) -> List[Any]:
    """Items of ``entity`` in one page. Keyed collections contribute their values."""
    data = response.data if isinstance(response.data, dict) else {}
    value = data.get(entity)
    if value is None:
        return []
    if isinstance(value, dict):
        return list(value.values())
    if isinstance(value, list):
        return value
    return [value]


class PaginationOrchestrator:
    """Drives a page-by-page listing through a page request callable."""

    def __init__(self, make_request: PageRequest, default_per_page: int = DEFAULT_PER_PAGE):
        self.make_request = make_request
        self.default_per_page = default_per_page

    async def fetch_all(self, url: str, params: Optional[Mapping[str, Any]], entity: str) -> List[Any]:
        """
        Return the concatenated ``entity`` items of every page.

        Any failing page fails the whole call.
        """
        base = dict(params or {})
        per_page = int(base.get("per_page") or self.default_per_page)

        first = await self.make_request(url, {**base, "per_page": per_page, "page": 1})
        page_size = first.per_page or per_page
        last_page = page_count(first.total, page_size)

        responses = [first]
        if last_page > 1:
            logger.debug("Fetching remaining pages", url=url, pages=last_page, per_page=page_size)
            responses.extend(
                await asyncio.gather(
                    *(self.make_request(url, {**base, "per_page": per_page, "page": page}) for page in range(2, last_page + 1))
                )
            )

        items: List[Any] = []
        for response in responses:
            items.extend(entity_items(response, entity))
        return items
