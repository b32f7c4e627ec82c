"""Main trace explorer application."""

import logging

import reflex as rx

from .state import ExplorerState
from .components import finder, trace_view

logger = logging.getLogger(__name__)


def navbar(show_back: bool = False) -> rx.Component:
    """Navigation bar.

    Parameters
    ----------
    show_back : bool
        Whether to show the back link instead of title.
    """
    return rx.hstack(
        rx.cond(
            show_back,
            rx.link(
                rx.hstack(
                    rx.icon("arrow_left", size=16),
                    rx.text("Back"),
                    spacing="1",
                    align="center",
                ),
                href="/",
                on_click=ExplorerState.clear_selection,
            ),
            rx.hstack(
                rx.icon("activity", size=20),
                rx.text("Trace Explorer", font_weight="bold"),
                spacing="2",
                align="center",
            ),
        ),
        rx.spacer(),
        # health status badge
        rx.badge(
            ExplorerState.health_status_text,
            color_scheme=ExplorerState.health_status_color,
        ),
        padding="1rem",
        border_bottom="1px solid #eee",
        width="100%",
        align="center",
    )


def index() -> rx.Component:
    """Home page: finder, with the opened trace below it."""
    return rx.box(
        navbar(),
        finder.finder(),
        trace_view.trace_view(),
        on_mount=ExplorerState.refresh,
        min_height="100vh",
        background="#f5f5f5",
    )


def trace_page() -> rx.Component:
    """Stand-alone trace page, linkable by trace id."""
    return rx.box(
        navbar(show_back=True),
        trace_view.trace_view(),
        min_height="100vh",
        background="#f5f5f5",
    )


# Health check endpoint for container orchestration
@rx.api("/ping")
def ping():
    return {"status": "ok"}


app = rx.App(
    theme=rx.theme(
        accent_color="teal",
        radius="medium",
    ),
)

app.add_page(index, route="/", title="Trace Explorer")
app.add_page(
    trace_page,
    route="/trace/[trace_id]",
    title="Trace",
    on_load=[ExplorerState.check_health, ExplorerState.load_trace_from_route],
)
