"""Trace finder: search filters and the results table."""

from typing import Dict, Any
import reflex as rx

from ..state import ExplorerState, LOOKBACK_OPTIONS


def suggestion_list(list_id: str, values: rx.Var) -> rx.Component:
    """HTML datalist feeding browser autocompletion for a filter input."""
    return rx.el.datalist(
        rx.foreach(values, lambda v: rx.el.option(value=v)),
        id=list_id,
    )


def filter_bar() -> rx.Component:
    """Service / operation / status / duration filters plus the search button."""
    return rx.vstack(
        rx.hstack(
            rx.input(
                placeholder="Service",
                value=ExplorerState.filter_service,
                on_change=ExplorerState.update_service_filter,
                list="service-suggestions",
                width="180px",
            ),
            suggestion_list("service-suggestions", ExplorerState.service_suggestions),
            rx.input(
                placeholder="Operation",
                value=ExplorerState.filter_operation,
                on_change=ExplorerState.update_operation_filter,
                list="operation-suggestions",
                width="220px",
            ),
            suggestion_list("operation-suggestions", ExplorerState.operation_suggestions),
            rx.select(
                ["ANY", "OK", "ERROR"],
                value=rx.cond(ExplorerState.filter_status == "", "ANY", ExplorerState.filter_status),
                on_change=ExplorerState.update_status_filter,
            ),
            rx.select(
                list(LOOKBACK_OPTIONS.keys()),
                value=ExplorerState.lookback,
                on_change=ExplorerState.update_lookback,
            ),
            spacing="2",
            align="center",
            flex_wrap="wrap",
        ),
        rx.hstack(
            rx.input(
                placeholder="Min ms",
                value=ExplorerState.filter_min_duration_ms,
                on_change=ExplorerState.update_min_duration,
                type="number",
                width="100px",
            ),
            rx.input(
                placeholder="Max ms",
                value=ExplorerState.filter_max_duration_ms,
                on_change=ExplorerState.update_max_duration,
                type="number",
                width="100px",
            ),
            rx.text("Sort by", color="gray", size="2"),
            rx.select(
                ["duration", "start", "spancount"],
                value=ExplorerState.sort_by,
                on_change=ExplorerState.update_sort_by,
            ),
            rx.button(
                ExplorerState.sort_order,
                variant="soft",
                on_click=ExplorerState.toggle_sort_order,
            ),
            rx.spacer(),
            rx.button(
                rx.icon("search", size=16),
                "Search",
                on_click=ExplorerState.search,
                loading=ExplorerState.searching,
            ),
            spacing="2",
            align="center",
            width="100%",
        ),
        spacing="2",
        padding="1rem",
        width="100%",
    )


def trace_row(trace: rx.Var[Dict[str, Any]]) -> rx.Component:
    """Single result row.

    Parameters
    ----------
    trace : rx.Var[Dict[str, Any]]
        Row from ExplorerState.formatted_traces.
    """
    return rx.table.row(
        rx.table.cell(trace["start"], color="gray"),
        rx.table.cell(
            rx.hstack(
                rx.cond(
                    trace["has_error"],
                    rx.text("⚠️", color="red"),
                    rx.text("✓", color="green"),
                ),
                rx.text(trace["root_service"]),
                spacing="2",
            )
        ),
        rx.table.cell(trace["root_operation"]),
        rx.table.cell(
            trace["duration_formatted"],
            font_family="monospace",
            text_align="right",
        ),
        rx.table.cell(trace["span_count_display"], text_align="right"),
        rx.table.cell(
            rx.text(trace["breakdown"], font_size="0.85rem", color="gray"),
        ),
        rx.table.cell(
            rx.hstack(
                rx.button(
                    "Open",
                    size="1",
                    variant="soft",
                    on_click=ExplorerState.open_trace(trace["trace_id"]),
                ),
                rx.link(rx.icon("external_link", size=14), href=trace["detail_url"]),
                spacing="2",
                align="center",
            ),
        ),
        _hover={"background": "#f8f9fa"},
    )


def finder() -> rx.Component:
    """Main finder component: filters on top, results (or their absence) below."""
    return rx.box(
        rx.hstack(
            rx.heading("Find Traces", size="5"),
            padding="1rem 1rem 0 1rem",
            align="center",
        ),
        filter_bar(),
        rx.cond(
            ExplorerState.has_search_error,
            rx.callout(
                ExplorerState.search_error,
                icon="triangle_alert",
                color_scheme="red",
                margin="0 1rem 1rem 1rem",
            ),
            rx.fragment(),
        ),
        rx.cond(
            ExplorerState.searching,
            rx.center(rx.spinner(size="3"), padding="2rem"),
            rx.cond(
                ExplorerState.has_traces,
                rx.table.root(
                    rx.table.header(
                        rx.table.row(
                            rx.table.column_header_cell("Start"),
                            rx.table.column_header_cell("Service"),
                            rx.table.column_header_cell("Operation"),
                            rx.table.column_header_cell("Duration (ms)", text_align="right"),
                            rx.table.column_header_cell("Spans", text_align="right"),
                            rx.table.column_header_cell("Top service"),
                            rx.table.column_header_cell(""),
                        ),
                    ),
                    rx.table.body(
                        rx.foreach(ExplorerState.formatted_traces, trace_row),
                    ),
                    width="100%",
                ),
                rx.center(
                    rx.vstack(
                        rx.icon("inbox", size=48, color="gray"),
                        rx.text("No traces match these filters", color="gray"),
                        spacing="2",
                        align="center",
                    ),
                    padding="3rem",
                ),
            ),
        ),
        background="white",
        border_radius="12px",
        box_shadow="0 2px 8px rgba(0, 0, 0, 0.1)",
        margin="1rem",
    )
