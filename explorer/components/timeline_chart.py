"""Per-service timeline of a trace.

Uses absolutely positioned boxes instead of a charting library. All
positioning is pre-computed in ExplorerState.timeline_lanes and
ExplorerState.timeline_bars from the layout engine's pixel coordinates.
"""

import reflex as rx
from typing import Dict, Any

from ..state import ExplorerState
from ..timeline import DEFAULT_PAD, DEFAULT_WIDTH, RIGHT_MARGIN


def lane_row(lane: rx.Var[Dict[str, Any]]) -> rx.Component:
    """Service label and guide line for one lane."""
    return rx.box(
        rx.text(
            lane["service"],
            font_size="0.75rem",
            white_space="nowrap",
            overflow="hidden",
            text_overflow="ellipsis",
            width=f"{DEFAULT_PAD - 8}px",
            padding_left="6px",
            line_height=lane["height_px"],
        ),
        rx.box(
            position="absolute",
            left=f"{DEFAULT_PAD}px",
            right="10px",
            top="50%",
            border_top="1px solid #eee",
        ),
        position="absolute",
        top=lane["top_px"],
        left="0",
        width="100%",
        height=lane["height_px"],
    )


def span_bar(bar: rx.Var[Dict[str, Any]]) -> rx.Component:
    """Render a single span rectangle.

    Parameters
    ----------
    bar : rx.Var[Dict[str, Any]]
        Entry of timeline_bars with left_px, top_px, width_px, height_px,
        color, label and tooltip_text.
    """
    return rx.tooltip(
        rx.box(
            rx.text(
                bar["label"],
                font_size="0.7rem",
                color="white",
                white_space="nowrap",
                overflow="hidden",
                padding_left="4px",
                line_height=bar["height_px"],
            ),
            position="absolute",
            left=bar["left_px"],
            top=bar["top_px"],
            width=bar["width_px"],
            height=bar["height_px"],
            background=bar["color"],
            border_radius="4px",
            border=rx.cond(bar["suspect"], "1px dashed #111827", "none"),
            cursor="pointer",
            overflow="hidden",
            _hover={"opacity": "0.8"},
            on_click=ExplorerState.select_span(bar["span_id"]),
        ),
        content=bar["tooltip_text"],
    )


def time_axis() -> rx.Component:
    """Start / end labels above the lanes."""
    return rx.box(
        rx.text(
            "0",
            font_size="0.7rem",
            color="gray",
            position="absolute",
            left=f"{DEFAULT_PAD}px",
            top="8px",
        ),
        rx.text(
            ExplorerState.timeline_end_label,
            font_size="0.7rem",
            color="gray",
            position="absolute",
            right=f"{RIGHT_MARGIN}px",
            top="8px",
        ),
    )


def timeline_chart() -> rx.Component:
    """Render the timeline, or the "no spans" state for an empty trace."""
    return rx.cond(
        ExplorerState.trace_is_empty,
        rx.center(
            rx.vstack(
                rx.icon("clock", size=32, color="gray"),
                rx.text("No spans to display", color="gray"),
                spacing="2",
                align="center",
            ),
            padding="2rem",
        ),
        rx.box(
            rx.box(
                time_axis(),
                rx.foreach(ExplorerState.timeline_lanes, lane_row),
                rx.foreach(ExplorerState.timeline_bars, span_bar),
                position="relative",
                width=f"{DEFAULT_WIDTH}px",
                height=ExplorerState.timeline_height_px,
            ),
            overflow_x="auto",
            padding="0.5rem",
            background="white",
            border_radius="8px",
            border="1px solid #E5E7EB",
        ),
    )
