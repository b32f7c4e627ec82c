"""Tests for the trace API client.

These tests mock HTTP requests at the transport level using respx.
This validates that api.py makes correct requests without hitting real servers.
"""

import json

import pytest
import httpx

from explorer.api import (
    API_URL,
    DEFAULT_PAGE_SIZE,
    build_search_request,
    check_health,
    get_flame,
    get_trace_detail,
    normalize_trace_id,
    search_traces,
    suggest_attributes,
    suggest_operations,
    suggest_services,
)
from explorer.exceptions import FetchFailure
from explorer.flame import FlameGroupBy, FlameMode


class TestBuildSearchRequest:
    """Tests for the search body builder."""

    def test_defaults_to_last_hour(self):
        body = build_search_request(to_ts=1_700_000_000)

        assert body["to"] == 1_700_000_000
        assert body["from"] == 1_700_000_000 - 3600
        assert body["sort"] == {"by": "duration", "order": "DESC"}
        assert body["page"] == {"size": DEFAULT_PAGE_SIZE}

    def test_to_defaults_to_now(self):
        body = build_search_request()

        assert body["to"] - body["from"] == 3600
        assert body["to"] > 1_600_000_000

    def test_wraps_single_filters(self):
        body = build_search_request(service="checkout", operation=" ", status="error")

        assert body["filters"]["service"] == ["checkout"]
        assert body["filters"]["operation"] == []
        assert body["filters"]["status"] == ["ERROR"]

    def test_duration_bounds(self):
        body = build_search_request(min_duration_ms=5, max_duration_ms=250.5)

        assert body["filters"]["durationMs"] == {"gte": 5.0, "lte": 250.5}

    def test_duration_omitted_when_unset(self):
        assert "durationMs" not in build_search_request()["filters"]

    def test_one_sided_duration(self):
        body = build_search_request(min_duration_ms=0)

        assert body["filters"]["durationMs"] == {"gte": 0.0}

    @pytest.mark.parametrize("size", [0, -3, 501])
    def test_out_of_range_page_size(self, size):
        assert build_search_request(page_size=size)["page"]["size"] == DEFAULT_PAGE_SIZE

    def test_unknown_sort_falls_back(self):
        body = build_search_request(sort_by="name", order="sideways")

        assert body["sort"] == {"by": "duration", "order": "DESC"}

    def test_ascending_sort(self):
        body = build_search_request(sort_by="SpanCount", order="asc")

        assert body["sort"] == {"by": "spancount", "order": "ASC"}


class TestNormalizeTraceId:

    def test_lowercases_and_strips(self):
        assert normalize_trace_id("  ABCdef01 ") == "abcdef01"

    def test_none(self):
        assert normalize_trace_id(None) == ""


class TestSearchTraces:
    """Tests for search_traces function."""

    @pytest.mark.asyncio
    async def test_posts_request_body(self, respx_mock):
        """Should POST the built body to /api/traces/list."""
        route = respx_mock.post(f"{API_URL}/api/traces/list").mock(
            return_value=httpx.Response(200, json={"items": []})
        )
        body = build_search_request(service="api", to_ts=1_700_000_000)

        await search_traces(body)

        assert route.called
        assert json.loads(route.calls[0].request.content) == body

    @pytest.mark.asyncio
    async def test_returns_parsed_rows(self, respx_mock):
        respx_mock.post(f"{API_URL}/api/traces/list").mock(
            return_value=httpx.Response(200, json={"items": [
                {"traceId": "t1", "durationMs": 12.0, "rootService": "api", "spanCount": 4},
                {"traceId": "t2", "status": "ERROR"},
            ]})
        )

        result = await search_traces(build_search_request())

        assert [r.trace_id for r in result] == ["t1", "t2"]
        assert result[0].span_count == 4
        assert result[1].is_error

    @pytest.mark.asyncio
    async def test_skips_invalid_rows(self, respx_mock):
        respx_mock.post(f"{API_URL}/api/traces/list").mock(
            return_value=httpx.Response(200, json={"items": [
                {"durationMs": 3},
                {"traceId": "ok"},
            ]})
        )

        result = await search_traces(build_search_request())

        assert [r.trace_id for r in result] == ["ok"]

    @pytest.mark.asyncio
    async def test_skips_row_with_malformed_breakdown(self, respx_mock):
        respx_mock.post(f"{API_URL}/api/traces/list").mock(
            return_value=httpx.Response(200, json={"items": [
                {"traceId": "bad", "svcBreakdown": [5]},
                {"traceId": "good", "svcBreakdown": [["api", 3.0]]},
            ]})
        )

        result = await search_traces(build_search_request())

        assert [r.trace_id for r in result] == ["good"]

    @pytest.mark.asyncio
    async def test_missing_items_is_empty(self, respx_mock):
        respx_mock.post(f"{API_URL}/api/traces/list").mock(
            return_value=httpx.Response(200, json={})
        )

        assert await search_traces(build_search_request()) == []

    @pytest.mark.asyncio
    async def test_raises_fetch_failure_on_server_error(self, respx_mock):
        respx_mock.post(f"{API_URL}/api/traces/list").mock(
            return_value=httpx.Response(500, text="boom")
        )

        with pytest.raises(FetchFailure) as exc_info:
            await search_traces(build_search_request())

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_raises_fetch_failure_on_invalid_json(self, respx_mock):
        respx_mock.post(f"{API_URL}/api/traces/list").mock(
            return_value=httpx.Response(200, text="<html>")
        )

        with pytest.raises(FetchFailure):
            await search_traces(build_search_request())


class TestGetTraceDetail:
    """Tests for get_trace_detail function."""

    @pytest.mark.asyncio
    async def test_requests_lowercased_id(self, respx_mock):
        """Should call /api/traces/{trace_id} with the id lower-cased."""
        route = respx_mock.get(f"{API_URL}/api/traces/abc123").mock(
            return_value=httpx.Response(200, json={"traceId": "abc123", "spans": []})
        )

        await get_trace_detail("ABC123")

        assert route.called

    @pytest.mark.asyncio
    async def test_returns_raw_spans(self, respx_mock):
        spans = [{"spanId": "s1"}, {"broken": True}]
        respx_mock.get(f"{API_URL}/api/traces/abc").mock(
            return_value=httpx.Response(200, json={"traceId": "abc", "spans": spans})
        )

        result = await get_trace_detail("abc")

        assert result == {"traceId": "abc", "spans": spans}

    @pytest.mark.asyncio
    async def test_missing_spans_is_empty(self, respx_mock):
        respx_mock.get(f"{API_URL}/api/traces/abc").mock(
            return_value=httpx.Response(200, json={"traceId": "abc", "spans": None})
        )

        result = await get_trace_detail("abc")

        assert result["spans"] == []

    @pytest.mark.asyncio
    async def test_raises_on_not_found(self, respx_mock):
        """Should raise FetchFailure on 404 (trace not found)."""
        respx_mock.get(f"{API_URL}/api/traces/nonexistent").mock(
            return_value=httpx.Response(404, json={"error": "not found"})
        )

        with pytest.raises(FetchFailure) as exc_info:
            await get_trace_detail("nonexistent")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_raises_on_connection_error(self, respx_mock):
        respx_mock.get(f"{API_URL}/api/traces/abc").mock(
            side_effect=httpx.ConnectError("Connection refused")
        )

        with pytest.raises(FetchFailure) as exc_info:
            await get_trace_detail("abc")

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_raises_on_non_object_payload(self, respx_mock):
        respx_mock.get(f"{API_URL}/api/traces/abc").mock(
            return_value=httpx.Response(200, json=["not", "an", "object"])
        )

        with pytest.raises(FetchFailure):
            await get_trace_detail("abc")


class TestGetFlame:
    """Tests for get_flame function."""

    @pytest.mark.asyncio
    async def test_passes_grouping_and_mode(self, respx_mock):
        route = respx_mock.get(f"{API_URL}/api/traces/abc/flame").mock(
            return_value=httpx.Response(200, json={"name": "trace:abc", "value": 0})
        )

        await get_flame("ABC", group_by=FlameGroupBy.SERVICE, mode=FlameMode.TOTAL)

        params = route.calls[0].request.url.params
        assert params["groupBy"] == "service"
        assert params["mode"] == "total"

    @pytest.mark.asyncio
    async def test_returns_tree(self, respx_mock):
        respx_mock.get(f"{API_URL}/api/traces/abc/flame").mock(
            return_value=httpx.Response(200, json={
                "name": "A:op1",
                "value": 100,
                "children": [{"name": "B:op2", "value": 30}],
            })
        )

        tree = await get_flame("abc", mode="total")

        assert tree.value == 100
        assert tree.children[0].name == "B:op2"

    @pytest.mark.asyncio
    async def test_unnamed_root_gets_trace_label(self, respx_mock):
        respx_mock.get(f"{API_URL}/api/traces/abc/flame").mock(
            return_value=httpx.Response(200, json={"value": 5})
        )

        tree = await get_flame("abc")

        assert tree.name == "trace:abc"

    @pytest.mark.asyncio
    async def test_invalid_tree_raises_fetch_failure(self, respx_mock):
        respx_mock.get(f"{API_URL}/api/traces/abc/flame").mock(
            return_value=httpx.Response(200, json={"name": "x", "value": "lots"})
        )

        with pytest.raises(FetchFailure):
            await get_flame("abc")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        '{"name": "x", "value": Infinity}',
        '{"name": "x", "value": NaN}',
        '{"name": "x", "value": 1, "children": [{"name": "y", "value": "lots"}]}',
    ])
    async def test_unusable_values_raise_fetch_failure(self, respx_mock, body):
        respx_mock.get(f"{API_URL}/api/traces/abc/flame").mock(
            return_value=httpx.Response(200, text=body)
        )

        with pytest.raises(FetchFailure):
            await get_flame("abc")

    @pytest.mark.asyncio
    async def test_deep_tree(self, respx_mock):
        payload = {"name": "n299", "value": 1}
        for i in range(298, -1, -1):
            payload = {"name": f"n{i}", "value": 300 - i, "children": [payload]}
        respx_mock.get(f"{API_URL}/api/traces/abc/flame").mock(
            return_value=httpx.Response(200, json=payload)
        )

        tree = await get_flame("abc", mode="total")

        assert len(tree.to_rows()) == 300

    @pytest.mark.asyncio
    async def test_tree_too_deep_to_decode_raises_fetch_failure(self, respx_mock):
        depth = 50_000
        body = '{"name":"n","value":1,"children":[' * depth + '{"name":"leaf","value":1}' + "]}" * depth
        respx_mock.get(f"{API_URL}/api/traces/abc/flame").mock(
            return_value=httpx.Response(200, text=body)
        )

        with pytest.raises(FetchFailure):
            await get_flame("abc")


class TestSuggestions:
    """Tests for the suggestion endpoints (newline-delimited JSON)."""

    @pytest.mark.asyncio
    async def test_services(self, respx_mock):
        route = respx_mock.get(f"{API_URL}/api/traces/suggest/services").mock(
            return_value=httpx.Response(
                200,
                text='{"ServiceName":"checkout"}\n{"ServiceName":"cart"}\n',
            )
        )

        result = await suggest_services("c")

        assert result == ["checkout", "cart"]
        assert route.calls[0].request.url.params["q"] == "c"

    @pytest.mark.asyncio
    async def test_services_without_query(self, respx_mock):
        route = respx_mock.get(f"{API_URL}/api/traces/suggest/services").mock(
            return_value=httpx.Response(200, text="")
        )

        assert await suggest_services() == []
        assert "q" not in route.calls[0].request.url.params

    @pytest.mark.asyncio
    async def test_operations_skip_bad_rows(self, respx_mock):
        respx_mock.get(f"{API_URL}/api/traces/suggest/operations").mock(
            return_value=httpx.Response(
                200,
                text='{"SpanName":"GET /"}\nnot json\n{"SpanName":""}\n{"SpanName":"POST /pay"}',
            )
        )

        assert await suggest_operations() == ["GET /", "POST /pay"]

    @pytest.mark.asyncio
    async def test_attributes(self, respx_mock):
        route = respx_mock.get(f"{API_URL}/api/traces/suggest/attributes").mock(
            return_value=httpx.Response(200, text='{"Val":"200"}\n{"Val":"404"}\n')
        )

        result = await suggest_attributes("http.status_code", "4")

        params = route.calls[0].request.url.params
        assert result == ["200", "404"]
        assert params["key"] == "http.status_code"
        assert params["q"] == "4"

    @pytest.mark.asyncio
    async def test_attributes_require_key(self):
        with pytest.raises(ValueError):
            await suggest_attributes("")

    @pytest.mark.asyncio
    async def test_bad_request_raises(self, respx_mock):
        respx_mock.get(f"{API_URL}/api/traces/suggest/services").mock(
            return_value=httpx.Response(400, text="bad request")
        )

        with pytest.raises(FetchFailure):
            await suggest_services()


class TestCheckHealth:
    """Tests for check_health function."""

    @pytest.mark.asyncio
    async def test_returns_true_on_healthy(self, respx_mock):
        """Should return True when API is healthy."""
        respx_mock.get(f"{API_URL}/healthz").mock(
            return_value=httpx.Response(200, text="ok")
        )

        assert await check_health() is True

    @pytest.mark.asyncio
    async def test_returns_false_on_unhealthy(self, respx_mock):
        """Should return False when API is unavailable."""
        respx_mock.get(f"{API_URL}/healthz").mock(
            return_value=httpx.Response(503)
        )

        assert await check_health() is False

    @pytest.mark.asyncio
    async def test_returns_false_on_timeout(self, respx_mock):
        """Should return False on connection timeout."""
        respx_mock.get(f"{API_URL}/healthz").mock(
            side_effect=httpx.TimeoutException("Connection timed out")
        )

        assert await check_health() is False

    @pytest.mark.asyncio
    async def test_returns_false_on_connection_error(self, respx_mock):
        """Should return False when server is unreachable."""
        respx_mock.get(f"{API_URL}/healthz").mock(
            side_effect=httpx.ConnectError("Connection refused")
        )

        assert await check_health() is False
