"""Data models for spans, trace summaries and flame nodes.

Wire payloads use camelCase keys; models expose snake_case attributes and
accept either form (``populate_by_name``). ``model_dump(by_alias=True)`` gives
the wire form back, which is what the explorer state stores.
"""

import json
import logging
import math
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .exceptions import MalformedSpan

logger = logging.getLogger(__name__)

REQUIRED_SPAN_FIELDS = ("spanId", "name", "service", "startUnixNanos", "endUnixNanos")


def stringify_attributes(data: Optional[Mapping]) -> Dict[str, str]:
    """Convert attribute values to strings.

    Strings pass through, everything else is JSON encoded so that nested
    values and numbers survive display unchanged.
    """
    if not data:
        return {}
    out: Dict[str, str] = {}
    for key, value in data.items():
        if isinstance(value, str):
            out[str(key)] = value
        else:
            out[str(key)] = json.dumps(value, default=str)
    return out


class Span(BaseModel):
    """One recorded unit of work within a trace."""

    model_config = ConfigDict(populate_by_name=True)

    span_id: str = Field(..., alias="spanId", min_length=1)
    parent_span_id: Optional[str] = Field(None, alias="parentSpanId")
    name: str
    service: str
    kind: Optional[str] = None
    start_unix_nanos: int = Field(..., alias="startUnixNanos")
    end_unix_nanos: int = Field(..., alias="endUnixNanos")
    attributes: Dict[str, str] = Field(default_factory=dict)
    status_code: Optional[str] = Field(None, alias="statusCode")
    status_message: Optional[str] = Field(None, alias="statusMessage")
    # Set when end < start on the wire and end was clamped to start.
    suspect: bool = False

    @field_validator("parent_span_id", mode="before")
    @classmethod
    def empty_parent_is_root(cls, v):
        """Trace stores send an empty string for root spans."""
        if v is None or v == "":
            return None
        return v

    @field_validator("attributes", mode="before")
    @classmethod
    def coerce_attributes(cls, v):
        if v is None:
            return {}
        if isinstance(v, Mapping):
            return stringify_attributes(v)
        return v

    @model_validator(mode="after")
    def clamp_end(self) -> "Span":
        if self.end_unix_nanos < self.start_unix_nanos:
            logger.warning(
                f"Span {self.span_id} ends before it starts "
                f"({self.end_unix_nanos} < {self.start_unix_nanos}), clamping"
            )
            self.end_unix_nanos = self.start_unix_nanos
            self.suspect = True
        return self

    @property
    def duration_ns(self) -> int:
        return self.end_unix_nanos - self.start_unix_nanos

    @property
    def has_error(self) -> bool:
        return (self.status_code or "").upper() in ("ERROR", "STATUS_CODE_ERROR")

    def to_wire(self) -> Dict[str, Any]:
        """Dump using wire (camelCase) keys."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SpanBatch(BaseModel):
    """Result of tolerant validation: usable spans plus a count of dropped records."""

    spans: List[Span] = Field(default_factory=list)
    dropped: int = 0

    @property
    def suspect(self) -> int:
        return sum(1 for s in self.spans if s.suspect)

    @property
    def is_empty(self) -> bool:
        return not self.spans


def parse_span(record: Any) -> Span:
    """Validate a single decoded span record.

    Raises
    ------
    MalformedSpan
        If the record is not a mapping, or a required field is missing or
        cannot be coerced.
    """
    if not isinstance(record, Mapping):
        raise MalformedSpan(f"span record must be an object, got {type(record).__name__}")

    try:
        return Span.model_validate(dict(record))
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise MalformedSpan(
            f"invalid span record {record.get('spanId', '?')!r}: {', '.join(fields)}",
            fields=fields,
        ) from e


def validate_spans(records: Optional[Iterable[Any]]) -> SpanBatch:
    """Validate a list of raw span records, dropping the malformed ones.

    A single bad record never fails the whole trace; it is logged and counted
    in ``SpanBatch.dropped`` so the view can mention it.
    """
    spans: List[Span] = []
    dropped = 0

    for record in records or []:
        try:
            spans.append(parse_span(record))
        except MalformedSpan as e:
            dropped += 1
            logger.warning(f"Dropping span: {e}")

    if dropped:
        logger.warning(f"Dropped {dropped} malformed span(s) out of {dropped + len(spans)}")
    return SpanBatch(spans=spans, dropped=dropped)


class TraceSummary(BaseModel):
    """One row of the trace search results."""

    model_config = ConfigDict(populate_by_name=True)

    trace_id: str = Field(..., alias="traceId", min_length=1)
    start_ts: str = Field("", alias="startTs")
    duration_ms: float = Field(0.0, alias="durationMs", ge=0)
    root_service: str = Field("", alias="rootService")
    root_operation: str = Field("", alias="rootOperation")
    status: str = "OK"
    span_count: int = Field(0, alias="spanCount", ge=0)
    svc_breakdown: List[Tuple[str, float]] = Field(default_factory=list, alias="svcBreakdown")

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        if not v:
            return "OK"
        return str(v).upper()

    @field_validator("svc_breakdown", mode="before")
    @classmethod
    def drop_empty_breakdown(cls, v):
        """The search service emits ``[["", 0]]`` when no top service is known."""
        if not v:
            return []
        if not isinstance(v, (list, tuple)):
            return v
        return [pair for pair in v if not isinstance(pair, (list, tuple)) or (pair and pair[0])]

    @property
    def is_error(self) -> bool:
        return self.status == "ERROR"


def flame_value(v: Any) -> int:
    """Coerce a flame node value to a non-negative integer.

    Raises
    ------
    ValueError
        For non-numeric and non-finite (NaN, Infinity) values.
    """
    if v is None:
        return 0
    if isinstance(v, int):
        return max(0, v)
    try:
        number = float(v)
    except (TypeError, ValueError) as e:
        raise ValueError(f"flame value must be a number, got {v!r}") from e
    if not math.isfinite(number):
        raise ValueError(f"flame value must be finite, got {v!r}")
    return max(0, int(number))


class FlameNode(BaseModel):
    """A node of the weighted call tree consumed by the flame chart.

    ``children`` is either None (leaf) or a non-empty list.

    Trees may be deeper than the recursion limit, so nothing here recurses:
    walks use an explicit stack and payloads are built node by node with
    ``model_construct``. Do not ``model_validate``/``model_dump`` whole trees.
    """

    name: str
    value: int = Field(0, ge=0)
    children: Optional[List["FlameNode"]] = None

    @field_validator("value", mode="before")
    @classmethod
    def floor_value(cls, v):
        return flame_value(v)

    @field_validator("children", mode="before")
    @classmethod
    def empty_children_absent(cls, v):
        if not v:
            return None
        return v

    @classmethod
    def _leaf(cls, data: Mapping, default_name: Optional[str] = None) -> "FlameNode":
        """Validate the scalar fields of one payload node."""
        name = data.get("name", default_name)
        if not isinstance(name, str):
            raise ValueError(f"flame node name must be a string, got {name!r}")
        return cls.model_construct(name=name, value=flame_value(data.get("value")), children=None)

    @classmethod
    def from_payload(cls, payload: Any, default_name: str = "trace") -> "FlameNode":
        """Build a tree from a server-computed JSON payload.

        Missing or non-object payloads yield an empty root rather than an
        error so the chart always has something to draw.

        Raises
        ------
        ValueError
            If a node below the root is not an object, or has an unusable
            name or value.
        """
        if not isinstance(payload, Mapping):
            return cls(name=default_name, value=0)

        root = cls._leaf(payload, default_name)
        stack = [(root, payload)]
        while stack:
            node, data = stack.pop()
            raw_children = data.get("children") or []
            if not isinstance(raw_children, list):
                raise ValueError(f"children of {node.name!r} must be a list")
            kids = []
            for raw in raw_children:
                if not isinstance(raw, Mapping):
                    raise ValueError(f"flame node must be an object, got {type(raw).__name__}")
                kid = cls._leaf(raw)
                kids.append(kid)
                stack.append((kid, raw))
            node.children = kids or None
        return root

    @classmethod
    def from_rows(cls, rows: List[Dict[str, Any]], default_name: str = "trace") -> "FlameNode":
        """Rebuild a tree from the pre-order rows produced by ``to_rows``."""
        if not rows:
            return cls(name=default_name, value=0)

        root = cls._leaf(rows[0], default_name)
        path = [root]
        for row in rows[1:]:
            depth = int(row.get("depth", 0))
            if depth < 1 or depth > len(path):
                raise ValueError(f"flame row at depth {depth} does not follow its parent")
            del path[depth:]
            node = cls._leaf(row)
            parent = path[-1]
            if parent.children is None:
                parent.children = []
            parent.children.append(node)
            path.append(node)
        return root

    def iter_nodes(self):
        """Yield this node and all descendants, pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children or []))

    def to_rows(self) -> List[Dict[str, Any]]:
        """Flatten into pre-order ``{name, value, depth}`` rows."""
        rows: List[Dict[str, Any]] = []
        stack = [(self, 0)]
        while stack:
            node, depth = stack.pop()
            rows.append({"name": node.name, "value": node.value, "depth": depth})
            stack.extend((child, depth + 1) for child in reversed(node.children or []))
        return rows

    def to_dict(self) -> Dict[str, Any]:
        """Nested ``{name, value, children}`` dict, children omitted on leaves."""
        out: Dict[str, Any] = {"name": self.name, "value": self.value}
        stack = [(self, out)]
        while stack:
            node, data = stack.pop()
            if not node.children:
                continue
            data["children"] = []
            for child in node.children:
                child_data = {"name": child.name, "value": child.value}
                data["children"].append(child_data)
                stack.append((child, child_data))
        return out


FlameNode.model_rebuild()
