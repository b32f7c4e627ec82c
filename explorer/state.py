"""Explorer state management.

This module contains the reactive state class for the trace explorer. It
holds the finder filters and search results, the selected trace with its
spans, and the flame options, and exposes computed vars that the components
render directly.

The state is organized into logical sections:
    - Base State Variables: Raw data from the trace API and UI flags
    - Data Loading Methods: Async handlers that call the API
    - Computed Vars by Component: Pre-computed values for each UI component
    - Event Handlers: User interaction handlers
    - Helper Methods: Internal utility functions

Note
----
Every fetch for a trace carries a ticket ``(trace_id, seq)``. Opening another
trace or changing flame options bumps the sequence number, so responses that
arrive late are recognized as stale and dropped instead of overwriting the
newer view.
"""

import json
import logging
import os
import zlib
from typing import Any, Dict, List, Optional

import reflex as rx
from dotenv import load_dotenv, find_dotenv

from . import api
from .exceptions import FetchFailure, StaleResponse
from .flame import (
    DEFAULT_FLAME_WIDTH,
    DEFAULT_ROW_HEIGHT,
    FlameGroupBy,
    FlameMode,
    aggregate_flame,
    flatten_flame,
)
from .models import FlameNode, Span, validate_spans
from .timeline import (
    DEFAULT_LANE_HEIGHT,
    DEFAULT_PAD,
    DEFAULT_WIDTH,
    format_duration_ns,
    layout_timeline,
)

load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Where flame trees come from: "client" aggregates the fetched spans in
# process, "server" asks the flame aggregation service.
FLAME_SOURCE = os.getenv("TRACE_FLAME_SOURCE", "client").lower()
DEFAULT_FLAME_MODE = os.getenv("TRACE_FLAME_MODE", FlameMode.SELF.value).lower()
SEARCH_PAGE_SIZE = int(os.getenv("TRACE_SEARCH_PAGE_SIZE", "50"))

# Lookback choices offered by the finder, in seconds.
LOOKBACK_OPTIONS: Dict[str, int] = {
    "15m": 15 * 60,
    "1h": 3600,
    "6h": 6 * 3600,
    "24h": 24 * 3600,
}

# One color per lane, cycled.
LANE_COLORS: List[str] = [
    "#3B82F6", "#8B5CF6", "#10B981", "#F59E0B",
    "#06B6D4", "#EC4899", "#EAB308", "#6B7280",
]
ERROR_COLOR = "#EF4444"

# Warm palette for flame cells, picked by label so colors stay put across renders.
FLAME_COLORS: List[str] = [
    "#F97316", "#FB923C", "#F59E0B", "#FBBF24",
    "#EF4444", "#F87171", "#EAB308", "#FDBA74",
]

PLACEHOLDER = "—"


# =============================================================================
# EXPLORER STATE
# =============================================================================

class ExplorerState(rx.State):
    """Reactive state for the trace explorer.

    Attributes
    ----------
    traces : List[Dict[str, Any]]
        Search results, as wire-form trace summaries.
    selected_trace_id : str
        Lower-cased ID of the open trace, empty when none is open.
    trace_request_seq : int
        Bumped on every trace open; part of the span fetch ticket.
    flame_request_seq : int
        Bumped on every trace open and flame option change; part of the
        server flame fetch ticket.
    spans : List[Dict[str, Any]]
        Validated spans of the open trace, in wire form.
    spans_loaded : bool
        False until the span fetch for the open trace succeeded. Separates
        "not loaded yet" from "loaded, but empty".
    dropped_spans : int
        Number of malformed span records dropped during validation.
    server_flame : List[Dict[str, Any]]
        Pre-order rows of the tree returned by the aggregation service
        (server source only), see ``FlameNode.to_rows``.
    """

    # -------------------------------------------------------------------------
    # Base State Variables: Finder
    # -------------------------------------------------------------------------

    filter_service: str = ""
    filter_operation: str = ""
    filter_status: str = ""
    filter_min_duration_ms: str = ""
    filter_max_duration_ms: str = ""
    lookback: str = "1h"
    sort_by: str = "duration"
    sort_order: str = "DESC"

    traces: List[Dict[str, Any]] = []
    searching: bool = False
    search_error: str = ""

    service_suggestions: List[str] = []
    operation_suggestions: List[str] = []

    # -------------------------------------------------------------------------
    # Base State Variables: Selected Trace & Spans
    # -------------------------------------------------------------------------

    selected_trace_id: str = ""
    trace_request_seq: int = 0
    spans: List[Dict[str, Any]] = []
    spans_loaded: bool = False
    spans_loading: bool = False
    dropped_spans: int = 0
    suspect_spans: int = 0
    trace_error: str = ""

    # -------------------------------------------------------------------------
    # Base State Variables: Flame Graph
    # -------------------------------------------------------------------------

    flame_mode: str = DEFAULT_FLAME_MODE
    flame_group_by: str = FlameGroupBy.SERVICE_OPERATION.value
    flame_request_seq: int = 0
    server_flame: List[Dict[str, Any]] = []
    flame_loading: bool = False
    flame_error: str = ""
    flame_focus: str = ""

    # -------------------------------------------------------------------------
    # Base State Variables: UI State
    # -------------------------------------------------------------------------

    active_tab: str = "timeline"
    selected_span_id: str = ""
    healthy: bool = True

    # =========================================================================
    # DATA LOADING METHODS
    # =========================================================================

    async def search(self) -> None:
        """Run the trace search with the current finder filters.

        Transport failures are shown inline; the previous results are kept.
        """
        self.searching = True
        self.search_error = ""
        try:
            request = api.build_search_request(
                service=self.filter_service,
                operation=self.filter_operation,
                status=self.filter_status,
                lookback_s=LOOKBACK_OPTIONS.get(self.lookback, api.DEFAULT_LOOKBACK_S),
                min_duration_ms=self._parse_optional_float(self.filter_min_duration_ms),
                max_duration_ms=self._parse_optional_float(self.filter_max_duration_ms),
                sort_by=self.sort_by,
                order=self.sort_order,
                page_size=SEARCH_PAGE_SIZE,
            )
            items = await api.search_traces(request)
            self.traces = [item.model_dump(by_alias=True) for item in items]
        except FetchFailure as e:
            self.search_error = str(e)
        finally:
            self.searching = False

    async def load_suggestions(self) -> None:
        """Load service and operation suggestions for the finder inputs.

        Suggestions are optional, so failures only get logged.
        """
        try:
            self.service_suggestions = await api.suggest_services()
            self.operation_suggestions = await api.suggest_operations()
        except FetchFailure as e:
            logger.info(f"Suggestions unavailable: {e}")

    async def check_health(self) -> None:
        """Check if the trace API is healthy and update state."""
        self.healthy = await api.check_health()

    async def refresh(self) -> None:
        """Health check, suggestions and a fresh search.

        Used as on_mount handler for the index page.
        """
        await self.check_health()
        await self.load_suggestions()
        await self.search()

    def open_trace(self, trace_id: str):
        """Select a trace and start fetching its data.

        Resets everything derived from the previous trace before the fetch
        starts, so a failed fetch never shows the old trace's spans.
        """
        trace_id = api.normalize_trace_id(trace_id)
        if not trace_id:
            return None

        self.selected_trace_id = trace_id
        self.trace_request_seq += 1
        self.flame_request_seq += 1
        self._reset_trace_view()
        self.spans_loading = True

        events = [ExplorerState.fetch_spans(trace_id, self.trace_request_seq)]
        if FLAME_SOURCE == "server":
            self.flame_loading = True
            events.append(self._flame_fetch_event())
        return events

    def load_trace_from_route(self):
        """Open the trace named in the ``/trace/[trace_id]`` route."""
        trace_id = self.router.page.params.get("trace_id", "")
        if trace_id and api.normalize_trace_id(trace_id) != self.selected_trace_id:
            return ExplorerState.open_trace(trace_id)
        return None

    @rx.event(background=True)
    async def fetch_spans(self, trace_id: str, seq: int):
        """Fetch and validate the span list for a trace.

        Runs in the background so a newer ``open_trace`` is not blocked by it.
        The result is applied only if the ticket is still current.
        """
        batch = None
        error = ""
        try:
            payload = await api.get_trace_detail(trace_id)
            batch = validate_spans(payload["spans"])
            if batch.is_empty:
                logger.info(f"Trace {trace_id} has no usable spans")
        except FetchFailure as e:
            error = str(e)

        async with self:
            self._apply_span_result(self, trace_id, seq, batch, error)

    @rx.event(background=True)
    async def fetch_flame(self, trace_id: str, seq: int, group_by: str, mode: str):
        """Fetch a server-computed flame tree for a trace."""
        rows = None
        error = ""
        try:
            tree = await api.get_flame(trace_id, group_by=group_by, mode=mode)
            rows = tree.to_rows()
        except FetchFailure as e:
            error = str(e)

        async with self:
            self._apply_flame_result(self, trace_id, seq, rows, error)

    # =========================================================================
    # COMPUTED VARS: Finder Component
    # =========================================================================

    @rx.var(cache=True)
    def has_traces(self) -> bool:
        """Check if the last search returned anything."""
        return len(self.traces) > 0

    @rx.var(cache=True)
    def has_search_error(self) -> bool:
        return bool(self.search_error)

    @rx.var(cache=True)
    def formatted_traces(self) -> List[Dict[str, Any]]:
        """Enrich search results with pre-formatted values for the table.

        Adds:
            - trace_id, detail_url
            - duration_formatted: milliseconds with two decimals
            - span_count_display
            - breakdown: "service 420ms" pairs
            - has_error: Boolean status flag
        """
        result: List[Dict[str, Any]] = []

        for trace in self.traces:
            trace_id = trace.get("traceId", "")
            breakdown = trace.get("svcBreakdown") or []
            result.append({
                "trace_id": trace_id,
                "detail_url": f"/trace/{trace_id}",
                "start": trace.get("startTs") or PLACEHOLDER,
                "root_service": trace.get("rootService") or PLACEHOLDER,
                "root_operation": trace.get("rootOperation") or PLACEHOLDER,
                "duration_formatted": f"{self._safe_float(trace.get('durationMs')):.2f}",
                "span_count_display": str(trace.get("spanCount", 0)),
                "breakdown": ", ".join(
                    f"{name} {self._safe_float(value):.0f}ms" for name, value in breakdown
                ),
                "has_error": trace.get("status") == "ERROR",
            })

        return result

    # =========================================================================
    # COMPUTED VARS: Trace View Component
    # =========================================================================

    @rx.var(cache=True)
    def has_selected_trace(self) -> bool:
        return self.selected_trace_id != ""

    @rx.var(cache=True)
    def has_trace_error(self) -> bool:
        return bool(self.trace_error)

    @rx.var(cache=True)
    def trace_span_count(self) -> int:
        return len(self.spans)

    @rx.var(cache=True)
    def trace_is_empty(self) -> bool:
        """The trace loaded fine but has no spans."""
        return self.spans_loaded and len(self.spans) == 0

    @rx.var(cache=True)
    def span_notice(self) -> str:
        """Warn about dropped or clamped span records, empty if there are none."""
        return self._span_notice(self.dropped_spans, self.suspect_spans)

    @rx.var(cache=True)
    def selected_span(self) -> Dict[str, Any]:
        """Details of the span clicked in the timeline.

        Returns
        -------
        Dict[str, Any]
            Span fields plus ``duration_formatted`` and ``attributes_json``,
            or an empty dict when nothing is selected.
        """
        if not self.selected_span_id:
            return {}
        for raw in self.spans:
            if raw.get("spanId") == self.selected_span_id:
                span = Span.model_validate(raw)
                return {
                    "span_id": span.span_id,
                    "parent_span_id": span.parent_span_id or PLACEHOLDER,
                    "name": span.name,
                    "service": span.service,
                    "kind": span.kind or PLACEHOLDER,
                    "status": span.status_code or PLACEHOLDER,
                    "status_message": span.status_message or "",
                    "duration_formatted": format_duration_ns(span.duration_ns),
                    "suspect": span.suspect,
                    "attributes_json": json.dumps(span.attributes, indent=2, sort_keys=True),
                    "has_attributes": bool(span.attributes),
                }
        return {}

    @rx.var(cache=True)
    def has_selected_span(self) -> bool:
        return self.selected_span_id != ""

    # =========================================================================
    # COMPUTED VARS: Timeline Component
    # =========================================================================

    @rx.var(cache=True)
    def timeline_lanes(self) -> List[Dict[str, Any]]:
        """Lane labels and guide lines, one entry per service.

        Each entry has service, count, color, and the lane's top offset as
        a CSS pixel string.
        """
        layout = self._timeline(self.spans)
        return [
            {
                "service": lane.service,
                "count": layout.counts.get(lane.service, 0),
                "color": LANE_COLORS[lane.index % len(LANE_COLORS)],
                "top_px": f"{lane.y}px",
                "height_px": f"{layout.lane_height}px",
            }
            for lane in layout.lanes
        ]

    @rx.var(cache=True)
    def timeline_bars(self) -> List[Dict[str, Any]]:
        """Positioned span bars for the timeline.

        Geometry comes from the layout engine; this adds colors, CSS strings
        and tooltip text.
        """
        layout = self._timeline(self.spans)
        result: List[Dict[str, Any]] = []
        for bar in layout.bars():
            color = ERROR_COLOR if bar["has_error"] else LANE_COLORS[bar["lane"] % len(LANE_COLORS)]
            duration = format_duration_ns(bar["duration_ns"])
            result.append({
                **bar,
                "left_px": f"{bar['left']:.2f}px",
                "top_px": f"{bar['top']}px",
                "width_px": f"{bar['width']:.2f}px",
                "height_px": f"{bar['height']}px",
                "color": color,
                "label": bar["name"] if bar["width"] > 60 else "",
                "tooltip_text": (
                    f"{bar['service']} | {bar['name']} | {duration}"
                    f" @ +{format_duration_ns(bar['offset_ns'])}"
                ),
            })
        return result

    @rx.var(cache=True)
    def timeline_height_px(self) -> str:
        return f"{self._timeline(self.spans).height}px"

    @rx.var(cache=True)
    def timeline_end_label(self) -> str:
        """Trace span on the time axis, e.g. "12.40ms"."""
        layout = self._timeline(self.spans)
        if not layout.has_data:
            return "0"
        return format_duration_ns(layout.duration_ns)

    # =========================================================================
    # COMPUTED VARS: Flame Component
    # =========================================================================

    @rx.var(cache=True)
    def flame_rects(self) -> List[Dict[str, Any]]:
        """Icicle cells for the flame chart with CSS geometry and colors.

        The tree is computed from the held spans, or rebuilt from the rows
        the aggregation service returned when the server source is
        configured. Only the flat cell list reaches the frontend.
        """
        if FLAME_SOURCE == "server":
            if not self.server_flame:
                return []
            root = FlameNode.from_rows(self.server_flame, default_name=f"trace:{self.selected_trace_id}")
        else:
            if not self.spans_loaded:
                return []
            root = self._client_flame(
                self.spans, self.flame_group_by, self.flame_mode, self.selected_trace_id
            )
        return self._flame_cells(root, self._coerce_mode(self.flame_mode))

    @rx.var(cache=True)
    def has_flame_data(self) -> bool:
        return len(self.flame_rects) > 0

    @rx.var(cache=True)
    def has_flame_error(self) -> bool:
        return bool(self.flame_error)

    @rx.var(cache=True)
    def flame_height_px(self) -> str:
        depth = max((cell["depth"] for cell in self.flame_rects), default=-1) + 1
        return f"{depth * DEFAULT_ROW_HEIGHT}px"

    # =========================================================================
    # COMPUTED VARS: Navbar Component
    # =========================================================================

    @rx.var(cache=True)
    def health_status_text(self) -> str:
        return "Healthy" if self.healthy else "Offline"

    @rx.var(cache=True)
    def health_status_color(self) -> str:
        return "green" if self.healthy else "red"

    # =========================================================================
    # EVENT HANDLERS
    # =========================================================================

    def update_service_filter(self, value: str) -> None:
        self.filter_service = value

    def update_operation_filter(self, value: str) -> None:
        self.filter_operation = value

    def update_status_filter(self, value: str) -> None:
        # the select uses "ANY" because radix selects cannot hold an empty value
        self.filter_status = "" if value == "ANY" else value

    def update_min_duration(self, value: str) -> None:
        self.filter_min_duration_ms = value

    def update_max_duration(self, value: str) -> None:
        self.filter_max_duration_ms = value

    def update_lookback(self, value: str) -> None:
        if value in LOOKBACK_OPTIONS:
            self.lookback = value

    def update_sort_by(self, value: str) -> None:
        if value in api.SORT_FIELDS:
            self.sort_by = value

    def toggle_sort_order(self) -> None:
        self.sort_order = "ASC" if self.sort_order == "DESC" else "DESC"

    def show_tab(self, tab: str) -> None:
        if tab in ("timeline", "flame"):
            self.active_tab = tab

    def select_span(self, span_id: str) -> None:
        """Toggle the span detail panel for a timeline bar."""
        self.selected_span_id = "" if span_id == self.selected_span_id else span_id

    def focus_flame_node(self, name: str) -> None:
        self.flame_focus = name

    def change_flame_mode(self, mode: str):
        """Switch between self and total time.

        Client-side trees recompute from the held spans; with the server
        source a new tree is fetched.
        """
        if mode not in (m.value for m in FlameMode):
            return None
        self.flame_mode = mode
        return self._refetch_flame()

    def change_flame_group_by(self, group_by: str):
        if group_by not in (g.value for g in FlameGroupBy):
            return None
        self.flame_group_by = group_by
        return self._refetch_flame()

    def clear_search_error(self) -> None:
        self.search_error = ""

    def clear_selection(self) -> None:
        """Close the trace view and drop everything derived from it."""
        self.selected_trace_id = ""
        self.trace_request_seq += 1
        self.flame_request_seq += 1
        self._reset_trace_view()

    # =========================================================================
    # HELPER METHODS (Private)
    # =========================================================================

    def _reset_trace_view(self) -> None:
        self.spans = []
        self.spans_loaded = False
        self.spans_loading = False
        self.dropped_spans = 0
        self.suspect_spans = 0
        self.trace_error = ""
        self.server_flame = []
        self.flame_loading = False
        self.flame_error = ""
        self.flame_focus = ""
        self.selected_span_id = ""

    def _flame_fetch_event(self):
        return ExplorerState.fetch_flame(
            self.selected_trace_id,
            self.flame_request_seq,
            self.flame_group_by,
            self.flame_mode,
        )

    def _refetch_flame(self):
        self.flame_focus = ""
        if FLAME_SOURCE != "server" or not self.selected_trace_id:
            return None
        self.flame_request_seq += 1
        self.server_flame = []
        self.flame_error = ""
        self.flame_loading = True
        return self._flame_fetch_event()

    @staticmethod
    def _check_ticket(current_trace_id: str, current_seq: int, trace_id: str, seq: int) -> None:
        """Raise StaleResponse unless ``(trace_id, seq)`` is the current ticket."""
        if trace_id != current_trace_id or seq != current_seq:
            raise StaleResponse(trace_id, seq)

    @staticmethod
    def _apply_span_result(view, trace_id: str, seq: int, batch, error: str) -> bool:
        """Apply a finished span fetch to ``view`` if its ticket is current.

        ``batch`` is the validated SpanBatch, or None when the fetch failed
        with ``error``. Returns False, leaving ``view`` untouched, for a stale
        response.
        """
        try:
            ExplorerState._check_ticket(view.selected_trace_id, view.trace_request_seq, trace_id, seq)
        except StaleResponse as e:
            logger.debug(f"Discarding span list: {e}")
            return False

        view.spans_loading = False
        if batch is None:
            view.trace_error = error
            return True

        view.spans = [span.to_wire() for span in batch.spans]
        view.dropped_spans = batch.dropped
        view.suspect_spans = batch.suspect
        view.spans_loaded = True
        return True

    @staticmethod
    def _apply_flame_result(view, trace_id: str, seq: int, rows, error: str) -> bool:
        """Flame counterpart of ``_apply_span_result``; ``rows`` come from ``FlameNode.to_rows``."""
        try:
            ExplorerState._check_ticket(view.selected_trace_id, view.flame_request_seq, trace_id, seq)
        except StaleResponse as e:
            logger.debug(f"Discarding flame tree: {e}")
            return False

        view.flame_loading = False
        if rows is None:
            view.flame_error = error
            return True
        view.server_flame = rows
        return True

    @staticmethod
    def _client_flame(spans: List[Dict[str, Any]], group_by: str, mode: str, trace_id: str) -> FlameNode:
        """Aggregate the stored wire-form spans into a flame tree."""
        return aggregate_flame(
            [Span.model_validate(raw) for raw in spans],
            group_by=ExplorerState._coerce_group_by(group_by),
            mode=ExplorerState._coerce_mode(mode),
            root_label=f"trace:{trace_id}",
        )

    @staticmethod
    def _flame_cells(root: FlameNode, mode: FlameMode) -> List[Dict[str, Any]]:
        cells: List[Dict[str, Any]] = []
        for rect in flatten_flame(root, mode=mode, width=DEFAULT_FLAME_WIDTH, row_height=DEFAULT_ROW_HEIGHT):
            cells.append({
                "name": rect.name,
                "value": rect.value,
                "depth": rect.depth,
                "left_px": f"{rect.x:.2f}px",
                "top_px": f"{rect.y}px",
                "width_px": f"{rect.width:.2f}px",
                "height_px": f"{DEFAULT_ROW_HEIGHT - 1}px",
                "color": ExplorerState._flame_color(rect.name),
                "label": rect.name if rect.width > 40 else "",
                "tooltip_text": (
                    f"{rect.name} | {mode.value}: {format_duration_ns(rect.value)}"
                    f" | {rect.share * 100:.1f}%"
                ),
            })
        return cells

    @staticmethod
    def _timeline(spans: List[Dict[str, Any]]):
        return layout_timeline(
            [Span.model_validate(raw) for raw in spans],
            width=DEFAULT_WIDTH,
            lane_height=DEFAULT_LANE_HEIGHT,
            pad=DEFAULT_PAD,
        )

    @staticmethod
    def _span_notice(dropped: int, suspect: int) -> str:
        parts = []
        if dropped:
            parts.append(f"{dropped} malformed span{'s' if dropped != 1 else ''} skipped")
        if suspect:
            parts.append(f"{suspect} span{'s' if suspect != 1 else ''} with end before start")
        return "; ".join(parts)

    @staticmethod
    def _coerce_mode(value: str) -> FlameMode:
        try:
            return FlameMode(value)
        except ValueError:
            return FlameMode.SELF

    @staticmethod
    def _coerce_group_by(value: str) -> FlameGroupBy:
        try:
            return FlameGroupBy(value)
        except ValueError:
            return FlameGroupBy.SERVICE_OPERATION

    @staticmethod
    def _flame_color(name: str) -> str:
        return FLAME_COLORS[zlib.crc32(name.encode("utf-8")) % len(FLAME_COLORS)]

    @staticmethod
    def _safe_float(val: Any) -> float:
        """Safely convert value to float (handles str, None, etc).

        Returns 0.0 if conversion fails.
        """
        if val is None:
            return 0.0
        try:
            return float(val)
        except (ValueError, TypeError):
            return 0.0

    @staticmethod
    def _parse_optional_float(val: str) -> Optional[float]:
        """Parse a numeric input field; blank or garbage means "no bound"."""
        if val is None or str(val).strip() == "":
            return None
        try:
            return float(val)
        except (ValueError, TypeError):
            return None
