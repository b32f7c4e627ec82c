"""Timeline layout: spans grouped into per-service lanes on a shared time axis.

The layout is a pure function of the span list and the viewport settings.
It is recomputed whenever the span list changes; nothing is cached between
calls.

Coordinates are in pixels. With ``min``/``max`` the earliest start and latest
end over all spans::

    x(t) = pad + (t - min) / max(1, max - min) * (width - pad - right_margin)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from .models import Span

DEFAULT_WIDTH = 1000
DEFAULT_LANE_HEIGHT = 28
DEFAULT_PAD = 80
RIGHT_MARGIN = 20  # room for the end-of-axis label
BOTTOM_MARGIN = 20
MIN_BAR_WIDTH = 2
BAR_INSET = 6  # vertical gap between lane edge and bar


@dataclass(frozen=True)
class LaneSpan:
    """A span placed on the time axis."""

    span: Span
    x1: float
    x2: float
    rendered_width: float


@dataclass(frozen=True)
class Lane:
    """All spans of one service, ascending by start time."""

    service: str
    index: int
    y: float
    spans: Tuple[LaneSpan, ...] = ()


@dataclass(frozen=True)
class TimelineLayout:
    """Lane layout plus overall canvas size.

    ``has_data`` is False for a trace that loaded with no spans, which the
    view reports as "no data" rather than as an error.
    """

    lanes: Tuple[Lane, ...]
    width: float
    height: float
    lane_height: float
    pad: float
    start_ns: int = 0
    end_ns: int = 0
    has_data: bool = True
    # spans per service, keyed in lane order
    counts: Dict[str, int] = field(default_factory=dict)

    @property
    def duration_ns(self) -> int:
        return self.end_ns - self.start_ns

    def bars(self) -> List[Dict[str, Any]]:
        """Flatten lanes into one row per span with absolute pixel geometry.

        Rows are ordered lane by lane, and by start time within a lane.
        """
        rows: List[Dict[str, Any]] = []
        for lane in self.lanes:
            for placed in lane.spans:
                span = placed.span
                rows.append({
                    "span_id": span.span_id,
                    "name": span.name,
                    "service": lane.service,
                    "lane": lane.index,
                    "top": lane.y + BAR_INSET,
                    "left": placed.x1,
                    "width": placed.rendered_width,
                    "height": max(1, self.lane_height - 2 * BAR_INSET),
                    "offset_ns": span.start_unix_nanos - self.start_ns,
                    "duration_ns": span.duration_ns,
                    "has_error": span.has_error,
                    "suspect": span.suspect,
                })
        return rows


def empty_layout(
    width: float = DEFAULT_WIDTH,
    lane_height: float = DEFAULT_LANE_HEIGHT,
    pad: float = DEFAULT_PAD,
) -> TimelineLayout:
    """Layout for a trace that loaded with no spans."""
    return TimelineLayout(
        lanes=(),
        width=width,
        height=pad / 2 + BOTTOM_MARGIN,
        lane_height=lane_height,
        pad=pad,
        has_data=False,
    )


def group_by_service(spans: Sequence[Span]) -> Dict[str, List[Span]]:
    """Group spans by service, keeping first-occurrence order of services.

    Within a service, spans are sorted by start time. The sort is stable, so
    spans starting at the same instant keep their input order.
    """
    by_service: Dict[str, List[Span]] = {}
    for span in spans:
        by_service.setdefault(span.service, []).append(span)

    for service_spans in by_service.values():
        service_spans.sort(key=lambda s: s.start_unix_nanos)
    return by_service


def layout_timeline(
    spans: Sequence[Span],
    width: float = DEFAULT_WIDTH,
    lane_height: float = DEFAULT_LANE_HEIGHT,
    pad: float = DEFAULT_PAD,
    right_margin: float = RIGHT_MARGIN,
) -> TimelineLayout:
    """Compute the lane layout for a trace.

    Parameters
    ----------
    spans : Sequence[Span]
        Validated spans of one trace, in the order the trace store returned them.
    width : float
        Total canvas width in pixels.
    lane_height : float
        Height of one service lane in pixels.
    pad : float
        Left padding reserved for lane labels. Also sets the header height.
    right_margin : float
        Space kept free right of the axis end.

    Returns
    -------
    TimelineLayout
        ``has_data`` is False when ``spans`` is empty.
    """
    if not spans:
        return empty_layout(width, lane_height, pad)

    start_ns = min(s.start_unix_nanos for s in spans)
    end_ns = max(s.end_unix_nanos for s in spans)
    # Identical timestamps everywhere would divide by zero.
    total = max(1, end_ns - start_ns)
    usable = width - pad - right_margin

    def x(t: int) -> float:
        return pad + (t - start_ns) / total * usable

    header = pad / 2
    lanes: List[Lane] = []
    for index, (service, service_spans) in enumerate(group_by_service(spans).items()):
        placed = []
        for span in service_spans:
            x1 = x(span.start_unix_nanos)
            x2 = x(span.end_unix_nanos)
            placed.append(LaneSpan(
                span=span,
                x1=x1,
                x2=x2,
                rendered_width=max(MIN_BAR_WIDTH, x2 - x1),
            ))
        lanes.append(Lane(
            service=service,
            index=index,
            y=header + index * lane_height,
            spans=tuple(placed),
        ))

    return TimelineLayout(
        lanes=tuple(lanes),
        width=width,
        height=header + len(lanes) * lane_height + BOTTOM_MARGIN,
        lane_height=lane_height,
        pad=pad,
        start_ns=start_ns,
        end_ns=end_ns,
        has_data=True,
        counts={lane.service: len(lane.spans) for lane in lanes},
    )


def format_duration_ns(duration_ns: int) -> str:
    """Format a nanosecond duration for axis labels and tooltips.

    Examples: ``"850ns"``, ``"12.5µs"``, ``"3.20ms"``, ``"1.50s"``.
    """
    ns = max(0, int(duration_ns))
    if ns < 1_000:
        return f"{ns}ns"
    if ns < 1_000_000:
        return f"{ns / 1_000:.1f}µs"
    if ns < 1_000_000_000:
        return f"{ns / 1_000_000:.2f}ms"
    return f"{ns / 1_000_000_000:.2f}s"
