import json
import logging
import os
import time
from typing import Any, Dict, List, Optional, Sequence, Union
from urllib.parse import quote

import httpx
from dotenv import load_dotenv, find_dotenv

from .exceptions import FetchFailure
from .flame import FlameGroupBy, FlameMode
from .models import FlameNode, TraceSummary

load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)

API_URL = os.getenv("TRACE_API_URL", "http://localhost:8080").rstrip("/")

# Default timeouts for API requests (seconds)
DEFAULT_TIMEOUT = float(os.getenv("TRACE_API_TIMEOUT", "30"))
HEALTH_TIMEOUT = 5.0

# Search defaults, matching what the search service itself falls back to
DEFAULT_LOOKBACK_S = 3600
DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 500
SORT_FIELDS = ("duration", "start", "spancount")


def normalize_trace_id(trace_id: str) -> str:
    """Trace ids are compared case-insensitively; send them lower-cased."""
    return (trace_id or "").strip().lower()


def _as_list(value: Union[None, str, Sequence[str]]) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    return [v.strip() for v in value if v and v.strip()]


def build_search_request(
    service: Union[None, str, Sequence[str]] = None,
    operation: Union[None, str, Sequence[str]] = None,
    status: Union[None, str, Sequence[str]] = None,
    from_ts: Optional[float] = None,
    to_ts: Optional[float] = None,
    lookback_s: int = DEFAULT_LOOKBACK_S,
    min_duration_ms: Optional[float] = None,
    max_duration_ms: Optional[float] = None,
    sort_by: str = "duration",
    order: str = "DESC",
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Dict[str, Any]:
    """Build the body for ``POST /api/traces/list``.

    Parameters
    ----------
    service, operation, status : str or list of str, optional
        Filter values. A single string is wrapped in a list; blanks are dropped.
    from_ts, to_ts : float, optional
        Time range in unix seconds. ``to_ts`` defaults to now and ``from_ts``
        to ``to_ts - lookback_s``.
    min_duration_ms, max_duration_ms : float, optional
        Bounds on trace duration. Omitted from the body when both are None.
    sort_by : str
        One of "duration", "start", "spancount"; anything else means "duration".
    order : str
        "ASC" or "DESC"; anything but "ASC" means "DESC".
    page_size : int
        Number of results; values outside 1..500 fall back to 100.

    Returns
    -------
    Dict[str, Any]
        JSON-serializable request body.
    """
    to_ts = float(to_ts) if to_ts else float(int(time.time()))
    from_ts = float(from_ts) if from_ts else to_ts - lookback_s

    by = (sort_by or "").lower()
    if by not in SORT_FIELDS:
        by = "duration"
    order = "ASC" if (order or "").upper() == "ASC" else "DESC"
    if not page_size or page_size <= 0 or page_size > MAX_PAGE_SIZE:
        page_size = DEFAULT_PAGE_SIZE

    filters: Dict[str, Any] = {
        "service": _as_list(service),
        "operation": _as_list(operation),
        "status": [s.upper() for s in _as_list(status)],
    }
    duration: Dict[str, float] = {}
    if min_duration_ms is not None:
        duration["gte"] = float(min_duration_ms)
    if max_duration_ms is not None:
        duration["lte"] = float(max_duration_ms)
    if duration:
        filters["durationMs"] = duration

    return {
        "from": int(from_ts),
        "to": int(to_ts),
        "filters": filters,
        "sort": {"by": by, "order": order},
        "page": {"size": int(page_size)},
    }


async def _send(
    method: str,
    path: str,
    timeout: float = DEFAULT_TIMEOUT,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request to the trace API.

    Raises
    ------
    FetchFailure
        On transport errors and on 4xx/5xx responses.
    """
    url = f"{API_URL}{path}"
    logger.debug(f"{method} {url}")
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.request(method, url, **kwargs)
            resp.raise_for_status()
            return resp
    except httpx.HTTPStatusError as e:
        status_code = e.response.status_code
        logger.warning(f"{method} {path} -> {status_code}")
        raise FetchFailure(
            f"Request failed with status {status_code}",
            status_code=status_code,
            url=url,
        ) from e
    except httpx.RequestError as e:
        logger.warning(f"{method} {path} failed: {e!r}")
        raise FetchFailure(f"Could not reach trace API: {e}", url=url) from e


def _json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        raise FetchFailure("Trace API returned invalid JSON", status_code=resp.status_code, url=str(resp.url)) from e
    except RecursionError as e:
        raise FetchFailure("Trace API response is nested too deeply", status_code=resp.status_code, url=str(resp.url)) from e


async def search_traces(request: Dict[str, Any]) -> List[TraceSummary]:
    """Search traces.

    Parameters
    ----------
    request : Dict[str, Any]
        Body built by ``build_search_request``.

    Returns
    -------
    List[TraceSummary]
        Ranked results. Rows that fail validation are skipped.
    """
    resp = await _send("POST", "/api/traces/list", json=request)
    data = _json(resp)
    items = data.get("items") if isinstance(data, dict) else None

    results: List[TraceSummary] = []
    for item in items or []:
        try:
            results.append(TraceSummary.model_validate(item))
        except ValueError as e:
            logger.warning(f"Skipping invalid trace summary: {e}")
    return results


async def get_trace_detail(trace_id: str) -> Dict[str, Any]:
    """Fetch the full span list of a trace.

    Parameters
    ----------
    trace_id : str
        ID of the trace to fetch. Lower-cased before sending.

    Returns
    -------
    Dict[str, Any]
        ``{"traceId": ..., "spans": [...]}`` with raw, unvalidated span records.
    """
    trace_id = normalize_trace_id(trace_id)
    resp = await _send("GET", f"/api/traces/{quote(trace_id, safe='')}")
    data = _json(resp)
    if not isinstance(data, dict):
        raise FetchFailure("Trace API returned an unexpected payload", status_code=resp.status_code)
    spans = data.get("spans")
    return {
        "traceId": data.get("traceId") or trace_id,
        "spans": spans if isinstance(spans, list) else [],
    }


async def get_flame(
    trace_id: str,
    group_by: Union[str, FlameGroupBy] = FlameGroupBy.SERVICE_OPERATION,
    mode: Union[str, FlameMode] = FlameMode.SELF,
) -> FlameNode:
    """Fetch a server-computed flame tree for a trace."""
    trace_id = normalize_trace_id(trace_id)
    params = {
        "groupBy": FlameGroupBy(group_by).value,
        "mode": FlameMode(mode).value,
    }
    resp = await _send("GET", f"/api/traces/{quote(trace_id, safe='')}/flame", params=params)
    try:
        return FlameNode.from_payload(_json(resp), default_name=f"trace:{trace_id}")
    except ValueError as e:
        raise FetchFailure(f"Invalid flame tree: {e}", status_code=resp.status_code) from e


def _parse_rows(text: str, column: str) -> List[str]:
    """Pull one column out of a newline-delimited JSON body."""
    values: List[str] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            row = json.loads(line)
        except ValueError:
            logger.debug(f"Skipping unparsable suggestion row: {line[:80]}")
            continue
        if isinstance(row, dict) and row.get(column):
            values.append(str(row[column]))
    return values


async def suggest_services(q: str = "") -> List[str]:
    """Service names seen recently, most frequent first."""
    params = {"q": q} if q else None
    resp = await _send("GET", "/api/traces/suggest/services", params=params)
    return _parse_rows(resp.text, "ServiceName")


async def suggest_operations(q: str = "") -> List[str]:
    """Operation (span) names seen recently, most frequent first."""
    params = {"q": q} if q else None
    resp = await _send("GET", "/api/traces/suggest/operations", params=params)
    return _parse_rows(resp.text, "SpanName")


async def suggest_attributes(key: str, q: str = "") -> List[str]:
    """Values seen recently for a span attribute key."""
    if not key:
        raise ValueError("attribute key is required")
    params = {"key": key}
    if q:
        params["q"] = q
    resp = await _send("GET", "/api/traces/suggest/attributes", params=params)
    return _parse_rows(resp.text, "Val")


async def check_health() -> bool:
    """Check if the trace API is healthy."""
    try:
        async with httpx.AsyncClient(timeout=HEALTH_TIMEOUT) as client:
            resp = await client.get(f"{API_URL}/healthz")
            return resp.status_code == 200

    except (httpx.RequestError, httpx.TimeoutException):
        return False
