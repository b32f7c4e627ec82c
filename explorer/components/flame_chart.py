"""Flame graph panel.

The chart itself is an icicle of positioned boxes; any renderer that accepts
the ``{name, value, children}`` tree could replace it. Cells come
pre-computed from ExplorerState.flame_rects.
"""

import reflex as rx
from typing import Dict, Any

from ..flame import DEFAULT_FLAME_WIDTH, FlameGroupBy, FlameMode
from ..state import ExplorerState, FLAME_SOURCE


def flame_cell(cell: rx.Var[Dict[str, Any]]) -> rx.Component:
    """Render one node of the tree."""
    return rx.tooltip(
        rx.box(
            rx.text(
                cell["label"],
                font_size="0.7rem",
                white_space="nowrap",
                overflow="hidden",
                text_overflow="ellipsis",
                padding_left="3px",
                line_height=cell["height_px"],
            ),
            position="absolute",
            left=cell["left_px"],
            top=cell["top_px"],
            width=cell["width_px"],
            height=cell["height_px"],
            background=cell["color"],
            border_right="1px solid white",
            overflow="hidden",
            cursor="pointer",
            _hover={"filter": "brightness(1.1)"},
            on_click=ExplorerState.focus_flame_node(cell["name"]),
        ),
        content=cell["tooltip_text"],
    )


def flame_controls() -> rx.Component:
    """Cost mode and grouping key selectors."""
    return rx.hstack(
        rx.text("Mode", color="gray", size="2"),
        rx.segmented_control.root(
            *[rx.segmented_control.item(m.value, value=m.value) for m in FlameMode],
            value=ExplorerState.flame_mode,
            on_change=ExplorerState.change_flame_mode,
        ),
        rx.text("Group by", color="gray", size="2"),
        rx.select(
            [g.value for g in FlameGroupBy if g is not FlameGroupBy.NAME],
            value=ExplorerState.flame_group_by,
            on_change=ExplorerState.change_flame_group_by,
        ),
        rx.spacer(),
        rx.badge(f"{FLAME_SOURCE} aggregation", variant="soft"),
        spacing="2",
        align="center",
        width="100%",
        margin_bottom="0.75rem",
    )


def flame_chart() -> rx.Component:
    """Main flame graph component."""
    return rx.box(
        flame_controls(),
        rx.cond(
            ExplorerState.has_flame_error,
            rx.callout(
                ExplorerState.flame_error,
                icon="triangle_alert",
                color_scheme="red",
                margin_bottom="0.75rem",
            ),
            rx.fragment(),
        ),
        rx.cond(
            ExplorerState.flame_loading,
            rx.center(rx.spinner(size="3"), padding="2rem"),
            rx.cond(
                ExplorerState.has_flame_data,
                rx.box(
                    rx.box(
                        rx.foreach(ExplorerState.flame_rects, flame_cell),
                        position="relative",
                        width=f"{DEFAULT_FLAME_WIDTH}px",
                        height=ExplorerState.flame_height_px,
                    ),
                    overflow_x="auto",
                ),
                rx.center(
                    rx.text("No flame data", color="gray"),
                    padding="2rem",
                ),
            ),
        ),
        rx.cond(
            ExplorerState.flame_focus != "",
            rx.hstack(
                rx.text("Selected:", color="gray", size="2"),
                rx.code(ExplorerState.flame_focus),
                margin_top="0.5rem",
            ),
            rx.fragment(),
        ),
        padding="1rem",
        background="white",
        border_radius="8px",
        border="1px solid #E5E7EB",
    )
