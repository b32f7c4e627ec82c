"""Trace view: header, tab switch, and the timeline / flame panels."""

import reflex as rx

from ..state import ExplorerState
from .flame_chart import flame_chart
from .span_detail import span_detail
from .timeline_chart import timeline_chart


def trace_header() -> rx.Component:
    """Render the trace id, span count and tab buttons."""
    return rx.hstack(
        rx.text("Trace:", weight="bold"),
        rx.code(ExplorerState.selected_trace_id, font_size="0.85rem"),
        rx.button(
            rx.icon("copy", size=14),
            variant="ghost",
            size="1",
            on_click=rx.set_clipboard(ExplorerState.selected_trace_id),
        ),
        rx.cond(
            ExplorerState.spans_loaded,
            rx.badge(ExplorerState.trace_span_count.to_string() + " spans", variant="soft"),
            rx.fragment(),
        ),
        rx.spacer(),
        rx.button(
            "Timeline",
            on_click=ExplorerState.show_tab("timeline"),
            disabled=ExplorerState.active_tab == "timeline",
            variant="soft",
        ),
        rx.button(
            "Flame",
            on_click=ExplorerState.show_tab("flame"),
            disabled=ExplorerState.active_tab == "flame",
            variant="soft",
        ),
        spacing="2",
        align="center",
        width="100%",
        margin_bottom="1rem",
    )


def trace_error() -> rx.Component:
    """Inline error for a failed span fetch, with a retry button."""
    return rx.callout.root(
        rx.callout.icon(rx.icon("triangle_alert")),
        rx.callout.text(ExplorerState.trace_error),
        rx.button(
            "Retry",
            size="1",
            variant="soft",
            on_click=ExplorerState.open_trace(ExplorerState.selected_trace_id),
        ),
        color_scheme="red",
        margin_bottom="1rem",
    )


def trace_view() -> rx.Component:
    """Render the main trace view component."""
    return rx.cond(
        ExplorerState.has_selected_trace,
        rx.box(
            trace_header(),
            rx.cond(
                ExplorerState.has_trace_error,
                trace_error(),
                rx.fragment(),
            ),
            rx.cond(
                ExplorerState.span_notice != "",
                rx.callout(
                    ExplorerState.span_notice,
                    icon="info",
                    color_scheme="amber",
                    size="1",
                    margin_bottom="1rem",
                ),
                rx.fragment(),
            ),
            rx.cond(
                ExplorerState.spans_loading,
                rx.center(rx.spinner(size="3"), padding="4rem"),
                rx.cond(
                    ExplorerState.active_tab == "timeline",
                    rx.cond(
                        ExplorerState.spans_loaded,
                        rx.box(
                            timeline_chart(),
                            span_detail(),
                        ),
                        rx.fragment(),
                    ),
                    flame_chart(),
                ),
            ),
            padding="1rem",
            background="white",
            border_radius="12px",
            box_shadow="0 2px 8px rgba(0,0,0,0.08)",
            margin="1rem",
        ),
        rx.fragment(),
    )
