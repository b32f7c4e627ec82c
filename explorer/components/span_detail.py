"""Detail panel for the span selected in the timeline."""

import reflex as rx

from ..state import ExplorerState


def detail_row(label: str, value: rx.Var) -> rx.Component:
    return rx.hstack(
        rx.text(label, weight="medium", width="110px", color="gray"),
        rx.code(value),
        spacing="2",
    )


def attributes_viewer(code: rx.Var[str], max_height: str = "300px") -> rx.Component:
    """Collapsible JSON block for span attributes.

    ``code`` is already serialized in state, so nothing is formatted at
    runtime on the frontend.
    """
    return rx.accordion.root(
        rx.accordion.item(
            value="attributes",
            header=rx.text("Attributes", weight="medium"),
            content=rx.box(
                rx.code_block(
                    code=code,
                    language="json",
                    show_line_numbers=True,
                    wrap_long_lines=True,
                ),
                max_height=max_height,
                overflow_y="auto",
            ),
        ),
        type="multiple",
        variant="ghost",
        default_value=["attributes"],
    )


def span_detail() -> rx.Component:
    """Render the selected span, or nothing when no bar is selected."""
    span = ExplorerState.selected_span
    return rx.cond(
        ExplorerState.has_selected_span,
        rx.box(
            rx.hstack(
                rx.heading(span["name"], size="3"),
                rx.spacer(),
                rx.button(
                    rx.icon("x", size=14),
                    variant="ghost",
                    size="1",
                    on_click=ExplorerState.select_span(ExplorerState.selected_span_id),
                ),
                align="center",
                width="100%",
            ),
            rx.vstack(
                detail_row("Service", span["service"]),
                detail_row("Span ID", span["span_id"]),
                detail_row("Parent", span["parent_span_id"]),
                detail_row("Kind", span["kind"]),
                detail_row("Duration", span["duration_formatted"]),
                detail_row("Status", span["status"]),
                rx.cond(
                    span["status_message"] != "",
                    rx.box(
                        rx.code(span["status_message"], color_scheme="red"),
                        padding="0.5rem",
                        border_radius="4px",
                        background="#FEF2F2",
                        width="100%",
                    ),
                    rx.fragment(),
                ),
                rx.cond(
                    span["suspect"],
                    rx.badge("End time before start, clamped", color_scheme="amber"),
                    rx.fragment(),
                ),
                rx.cond(
                    span["has_attributes"],
                    attributes_viewer(span["attributes_json"].to(str)),
                    rx.text("No attributes", color="gray", font_style="italic"),
                ),
                spacing="2",
                align="stretch",
                width="100%",
                margin_top="0.5rem",
            ),
            padding="1rem",
            margin_top="1rem",
            background="#FAFAFA",
            border_left="3px solid #3B82F6",
            border_radius="4px",
        ),
        rx.fragment(),
    )
