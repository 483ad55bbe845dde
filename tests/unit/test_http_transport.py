"""
Tests for the HTTP transport adapter.

aioresponses mocks the default aiohttp executor; the scripted executor is
used where a test needs to inspect composed URLs or control timing.
"""

import json
import re

import aiohttp
import pytest
import pytest_asyncio
from aioresponses import aioresponses

from storyfetch.observability import METRICS
from storyfetch.protocols import TIMEOUT_MESSAGE, ContentApiError, ContentResponse, TransportFailure
from storyfetch.transport.http_client import AiohttpExecutor, ContentFetch
from storyfetch.utils.query import stringify_params
from tests.helpers import ScriptedExecutor, json_response, metric_delta

BASE_URL = "https://api.example.com/v2"
STORIES = re.compile(r"^https://api\.example\.com/v2/cdn/stories.*$")


@pytest_asyncio.fixture
async def fetch():
    transport = ContentFetch(BASE_URL, headers={"Accept": "application/json"}, executor=AiohttpExecutor())
    yield transport
    await transport.close()


@pytest.mark.unit
class TestStringifyParams:
    def test_scalars_and_booleans(self):
        assert stringify_params({"version": "draft", "cv": 0, "is_startpage": False}) == (
            "version=draft&cv=0&is_startpage=false"
        )

    def test_lists_use_bracket_notation(self):
        assert stringify_params({"with_tag": ["a", "b"]}) == "with_tag%5B%5D=a&with_tag%5B%5D=b"

    def test_nested_dicts(self):
        query = stringify_params({"filter_query": {"component": {"in": "page,post"}}})
        assert query == "filter_query%5Bcomponent%5D%5Bin%5D=page%2Cpost"

    def test_none_values_are_skipped(self):
        assert stringify_params({"token": None, "page": 2}) == "page=2"

    def test_values_are_percent_encoded(self):
        assert stringify_params({"search_term": "a b&c"}) == "search_term=a%20b%26c"


@pytest.mark.unit
class TestComposeUrl:
    def test_joins_base_and_path(self):
        transport = ContentFetch(BASE_URL + "/", executor=ScriptedExecutor())
        assert transport.compose_url("/cdn/stories") == "https://api.example.com/v2/cdn/stories"
        assert transport.compose_url("cdn/stories", {"page": 1}) == "https://api.example.com/v2/cdn/stories?page=1"

    def test_empty_params_add_no_query(self):
        transport = ContentFetch(BASE_URL, executor=ScriptedExecutor())
        assert transport.compose_url("cdn/links", {}) == "https://api.example.com/v2/cdn/links"


@pytest.mark.unit
class TestContentFetch:
    @pytest.mark.asyncio
    async def test_get_success(self, fetch):
        with aioresponses() as m:
            m.get(STORIES, status=200, payload={"stories": [{"id": 1}]}, headers={"Total": "1"})
            result = await fetch.get("/cdn/stories", {"version": "published"})

        assert isinstance(result, ContentResponse)
        assert result.status == 200
        assert result.data == {"stories": [{"id": 1}]}
        assert result.headers["total"] == "1"

    @pytest.mark.asyncio
    async def test_error_status_raises_with_error_field(self, fetch):
        with aioresponses() as m:
            m.get(STORIES, status=401, payload={"error": "Unauthorized"}, reason="Unauthorized")
            with pytest.raises(ContentApiError) as exc_info:
                await fetch.get("/cdn/stories")

        assert exc_info.value.status == 401
        assert exc_info.value.message == "Unauthorized"
        assert exc_info.value.response == "Unauthorized"

    @pytest.mark.asyncio
    async def test_error_status_with_slug_and_list_bodies(self):
        slug_body = ContentFetch(
            BASE_URL, executor=ScriptedExecutor(handler=lambda call: json_response({"slug": ["taken"]}, status=422))
        )
        with pytest.raises(ContentApiError) as exc_info:
            await slug_body.post("/spaces/1/stories", {"story": {}})
        assert exc_info.value.response == ["taken"]

        list_body = ContentFetch(
            BASE_URL, executor=ScriptedExecutor(handler=lambda call: json_response(["first", "second"], status=422))
        )
        with pytest.raises(ContentApiError) as exc_info:
            await list_body.post("/spaces/1/stories")
        assert exc_info.value.response == "first"

    @pytest.mark.asyncio
    async def test_network_error_becomes_failure(self, fetch):
        with aioresponses() as m:
            m.get(STORIES, exception=aiohttp.ClientConnectionError("connection refused"))
            with metric_delta(METRICS["requests_total"], labels={"method": "get", "status_class": "error"}):
                result = await fetch.get("/cdn/stories")

        assert result == TransportFailure(message="connection refused")

    @pytest.mark.asyncio
    async def test_timeout_becomes_failure(self):
        executor = ScriptedExecutor(handler=lambda call: json_response({}), delay=1.0)
        transport = ContentFetch(BASE_URL, timeout=0.05, executor=executor)

        result = await transport.get("/cdn/stories")

        assert result == TransportFailure(message=TIMEOUT_MESSAGE)
        assert executor.in_flight == 0

    @pytest.mark.asyncio
    async def test_fetch_options_override_timeout_and_headers(self):
        executor = ScriptedExecutor(handler=lambda call: json_response({"ok": True}), delay=0.1)
        transport = ContentFetch(BASE_URL, headers={"Accept": "application/json"}, timeout=0.01, executor=executor)

        result = await transport.get("/cdn/stories", fetch_options={"timeout": 0, "headers": {"X-Trace": "1"}})

        assert isinstance(result, ContentResponse)
        assert executor.calls[0].headers == {"Accept": "application/json", "X-Trace": "1"}

    @pytest.mark.asyncio
    async def test_zero_timeout_disables_deadline(self):
        executor = ScriptedExecutor(handler=lambda call: json_response({"ok": True}), delay=0.05)
        transport = ContentFetch(BASE_URL, timeout=0, executor=executor)
        result = await transport.get("/cdn/stories")
        assert isinstance(result, ContentResponse)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout", [0, 30])
    async def test_executor_timeout_is_a_network_failure(self, timeout):
        def handler(call):
            raise TimeoutError("server timed out")

        transport = ContentFetch(BASE_URL, timeout=timeout, executor=ScriptedExecutor(handler=handler))

        with metric_delta(METRICS["requests_total"], labels={"method": "get", "status_class": "error"}):
            result = await transport.get("/cdn/stories")

        assert result == TransportFailure(message="server timed out")

    @pytest.mark.asyncio
    async def test_non_get_sends_json_body(self):
        executor = ScriptedExecutor(handler=lambda call: json_response({"story": {"id": 1}}, status=201))
        transport = ContentFetch(BASE_URL, executor=executor)

        await transport.post("/spaces/1/stories", {"story": {"name": "New"}})
        await transport.delete("/spaces/1/stories/1")

        post, delete = executor.calls
        assert post.method == "post"
        assert json.loads(post.body) == {"story": {"name": "New"}}
        assert post.path == "/v2/spaces/1/stories"
        assert "?" not in post.url
        assert delete.body == "{}"

    @pytest.mark.asyncio
    async def test_no_content_yields_empty_data(self):
        transport = ContentFetch(BASE_URL, executor=ScriptedExecutor(handler=lambda call: json_response(status=204)))
        result = await transport.delete("/spaces/1/stories/1")
        assert result.data == {}
        assert result.status == 204

    @pytest.mark.asyncio
    async def test_interceptor_runs_before_status_check(self):
        def recover(response):
            return ContentResponse(data={"recovered": True}, headers=response.headers, status=200)

        executor = ScriptedExecutor(handler=lambda call: json_response({"error": "gone"}, status=404))
        transport = ContentFetch(BASE_URL, response_interceptor=recover, executor=executor)

        result = await transport.get("/cdn/stories/missing")

        assert result.data == {"recovered": True}
