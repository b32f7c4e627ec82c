"""Flame graph aggregation.

Folds the span forest of a trace into a single weighted call tree. Each tree
node stands for one grouping-key value along a root-to-leaf path: sibling
spans that share a key under the same (aggregated) parent collapse into one
node, and their children are merged before being grouped again.

Cost modes
----------
self
    A span contributes ``duration - sum(direct child durations)``, floored at
    zero (clock skew and overlapping children can push it negative).
total
    A span contributes its full duration. A node's value is never smaller
    than the sum of its children's values.

The same ``FlameNode`` shape is returned by the flame aggregation service, so
a server-computed tree can be used in place of ``aggregate_flame``.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Tuple

from .models import FlameNode, Span

logger = logging.getLogger(__name__)

DEFAULT_FLAME_WIDTH = 1000
DEFAULT_ROW_HEIGHT = 22
MIN_RECT_WIDTH = 0.5


class FlameMode(str, Enum):
    """How much of a span's time is charged to its own node."""

    SELF = "self"
    TOTAL = "total"


class FlameGroupBy(str, Enum):
    """Grouping key used to label and merge spans."""

    SERVICE_OPERATION = "service_operation"
    SERVICE = "service"
    OPERATION = "operation"
    NAME = "name"  # alias of OPERATION


def span_label(span: Span, group_by: FlameGroupBy = FlameGroupBy.SERVICE_OPERATION) -> str:
    """Display label of a span under the given grouping key."""
    if group_by is FlameGroupBy.SERVICE:
        return span.service
    if group_by in (FlameGroupBy.OPERATION, FlameGroupBy.NAME):
        return span.name
    if not span.service:
        return span.name
    return f"{span.service}:{span.name}"


def _group(spans: Iterable[Span], group_by: FlameGroupBy) -> List[Tuple[str, List[Span]]]:
    """Bucket spans by label, keeping first-occurrence order."""
    buckets: Dict[str, List[Span]] = {}
    for span in spans:
        buckets.setdefault(span_label(span, group_by), []).append(span)
    return list(buckets.items())


def _ordered(nodes: List[FlameNode]) -> List[FlameNode]:
    """Most expensive first, ties by label."""
    return sorted(nodes, key=lambda n: (-n.value, n.name))


def build_forest(spans: Sequence[Span]) -> Tuple[List[Span], Dict[str, List[Span]]]:
    """Split spans into roots and a parent id -> children index.

    A span whose parent is absent, unknown, or itself is treated as a root.
    """
    known = {s.span_id for s in spans}
    children: Dict[str, List[Span]] = defaultdict(list)
    roots: List[Span] = []

    for span in spans:
        parent = span.parent_span_id
        if parent and parent in known and parent != span.span_id:
            children[parent].append(span)
        else:
            if parent and parent not in known:
                logger.debug(f"Span {span.span_id} has unknown parent {parent}, treating as root")
            roots.append(span)
    return roots, children


def aggregate_flame(
    spans: Sequence[Span],
    group_by: FlameGroupBy = FlameGroupBy.SERVICE_OPERATION,
    mode: FlameMode = FlameMode.SELF,
    root_label: str = "trace",
) -> FlameNode:
    """Build the flame tree for a trace.

    Parameters
    ----------
    spans : Sequence[Span]
        Validated spans of one trace.
    group_by : FlameGroupBy
        Grouping key. Plain strings such as ``"service"`` are accepted.
    mode : FlameMode
        ``self`` or ``total``. Plain strings are accepted.
    root_label : str
        Name of the synthetic root used when the trace has several root
        groups, and of the empty tree.

    Returns
    -------
    FlameNode
        Always a single rooted tree. Empty input gives ``root_label`` with
        value 0 and no children.
    """
    group_by = FlameGroupBy(group_by)
    mode = FlameMode(mode)

    if not spans:
        return FlameNode(name=root_label, value=0)

    roots, children = build_forest(spans)

    def contribution(span: Span) -> int:
        if mode is FlameMode.TOTAL:
            return span.duration_ns
        child_time = sum(c.duration_ns for c in children.get(span.span_id, ()))
        return max(0, span.duration_ns - child_time)

    # Expand groups top-down. Every frame is (label, spans, parent frame
    # index) and comes after its parent, so walking the list backwards
    # finishes all children before their parent.
    frames: List[Tuple[str, List[Span], int]] = [
        (label, group, -1) for label, group in _group(roots, group_by)
    ]
    index = 0
    while index < len(frames):
        group = frames[index][1]
        merged = [c for s in group for c in children.get(s.span_id, ())]
        frames.extend((label, g, index) for label, g in _group(merged, group_by))
        index += 1

    kids: Dict[int, List[FlameNode]] = defaultdict(list)
    top: List[FlameNode] = []
    for index in range(len(frames) - 1, -1, -1):
        label, group, parent = frames[index]
        node_kids = _ordered(kids.pop(index, []))
        value = sum(contribution(s) for s in group)
        if mode is FlameMode.TOTAL:
            value = max(value, sum(k.value for k in node_kids))
        node = FlameNode.model_construct(name=label, value=value, children=node_kids or None)
        if parent < 0:
            top.append(node)
        else:
            kids[parent].append(node)

    top = _ordered(top)
    if len(top) == 1:
        return top[0]

    # Several root groups: wrap them so the chart always gets one tree. The
    # wrapper has no time of its own in self mode.
    value = sum(n.value for n in top) if mode is FlameMode.TOTAL else 0
    return FlameNode.model_construct(name=root_label, value=value, children=top)


@dataclass(frozen=True)
class FlameRect:
    """One cell of the icicle chart."""

    name: str
    value: int
    depth: int
    x: float
    y: float
    width: float
    share: float  # fraction of the root's width


def _weights(root: FlameNode, mode: FlameMode) -> Dict[int, int]:
    """Width weight per node, keyed by ``id(node)``.

    In total mode a node's value already covers its children. In self mode
    the children's widths are added on top of the node's own time.
    """
    weights: Dict[int, int] = {}
    # reversed pre-order visits children before parents
    for node in reversed(list(root.iter_nodes())):
        kids = sum(weights[id(c)] for c in node.children or [])
        weights[id(node)] = max(node.value, kids) if mode is FlameMode.TOTAL else node.value + kids
    return weights


def flatten_flame(
    root: FlameNode,
    mode: FlameMode = FlameMode.SELF,
    width: float = DEFAULT_FLAME_WIDTH,
    row_height: float = DEFAULT_ROW_HEIGHT,
) -> List[FlameRect]:
    """Lay the tree out as icicle rectangles, root on top.

    The root always spans the full width. Children are placed left to right
    in tree order, each taking its weight's share of the parent's width.
    Cells narrower than half a pixel are skipped together with their subtree.
    Rectangles come out in pre-order.
    """
    mode = FlameMode(mode)
    weights = _weights(root, mode)
    total = weights[id(root)]
    rects: List[FlameRect] = []

    stack = [(root, 0, 0.0, float(width))]
    while stack:
        node, depth, x, w = stack.pop()
        node_weight = weights[id(node)]
        rects.append(FlameRect(
            name=node.name,
            value=node.value,
            depth=depth,
            x=x,
            y=depth * row_height,
            width=w,
            share=(node_weight / total) if total else 1.0,
        ))
        if not node_weight:
            continue

        placed = []
        offset = x
        for child in node.children or []:
            cw = w * weights[id(child)] / node_weight
            if cw >= MIN_RECT_WIDTH:
                placed.append((child, depth + 1, offset, cw))
            offset += cw
        stack.extend(reversed(placed))
    return rects
