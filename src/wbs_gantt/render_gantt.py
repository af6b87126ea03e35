from __future__ import annotations

from importlib import metadata
from pathlib import Path
from typing import Sequence

import matplotlib

matplotlib.use("Agg")  # ensure headless, deterministic output
import matplotlib.pyplot as plt
from matplotlib.patches import Polygon, Rectangle

from .focus import bar_extent
from .task_models import BarGeometry, MilestoneMarker, TimelineLayout, VisibleRow

PHASE_COLORS: dict[str, str] = {
    "Initiation": "#3498db",
    "Planning": "#e74c3c",
    "Selection": "#f39c12",
    "Execution": "#27ae60",
    "Closure": "#9b59b6",
}
DEFAULT_COLOR = "#95a5a6"
HEURISTIC_COLOR = "#7f8c8d"
MILESTONE_COLOR = "#4CAF50"

ROW_HEIGHT = 0.6
BRACKET_LW = 2.5
CHAR_WIDTH_PX = 7  # approximate label glyph width
LABEL_WIDTH_PX = 300
INDENT_CHARS = 2
FONT_SCALE = 1.0
TITLE_FONT = 14 * FONT_SCALE
LABEL_FONT = 10 * FONT_SCALE
FOOTER_FONT = 8 * FONT_SCALE
TICK_FONT = 8 * FONT_SCALE
TOP_MARGIN_FRAC = 0.85
TITLE_Y = 0.985


def render_gantt(
    rows: Sequence[VisibleRow],
    layout: TimelineLayout,
    out_path: str,
    title: str = "",
    selected_id: str | None = None,
) -> None:
    """
    Render visible rows as a static SVG Gantt chart to `out_path`.

    - Bars, markers and header cells are drawn at their layout pixel offsets.
    - Summary rows render as brackets; milestones as diamonds.
    - Heuristic groups are labelled with a trailing '*'.
    """

    if not rows:
        raise ValueError("rows must not be empty")
    if layout.total_width_px <= 0:
        raise ValueError("layout has zero width")

    total = float(layout.total_width_px)
    fig_height = max(3.0, ROW_HEIGHT * len(rows) + 2.0)
    fig_width = max(12.0, min(36.0, total / 100.0 + 6.0))
    fig = plt.figure(figsize=(fig_width, fig_height))
    gs = fig.add_gridspec(1, 2, width_ratios=[1.2, 4.0], wspace=0.05, left=0.02, right=0.98, top=TOP_MARGIN_FRAC, bottom=0.1)
    label_ax = fig.add_subplot(gs[0, 0])
    ax = fig.add_subplot(gs[0, 1], sharey=label_ax)

    ax.set_ylim(-1, len(rows))
    ax.invert_yaxis()
    ax.set_xlim(0, total)
    ax.xaxis.tick_top()
    ax.set_xticks([cell.left + cell.width / 2 for cell in layout.header_cells])
    ax.set_xticklabels([cell.label for cell in layout.header_cells], rotation=30, fontsize=TICK_FONT)
    for cell in layout.header_cells:
        ax.axvline(cell.left, linestyle="--", linewidth=0.5, alpha=0.3, color="#495057")
    ax.tick_params(axis="x", length=0, pad=4)
    ax.set_yticks([])

    label_ax.set_ylim(-1, len(rows))
    label_ax.invert_yaxis()
    label_ax.set_xlim(0, 1)
    label_ax.axis("off")

    fig.suptitle(title, x=0.5, fontsize=TITLE_FONT, y=TITLE_Y)
    footer = f"wbs-gantt v{_tool_version()} - {layout.zoom.value} view"
    fig.text(0.99, 0.01, footer, ha="right", va="bottom", fontsize=FOOTER_FONT, alpha=0.8)

    for y, row in enumerate(rows):
        task = row.task
        label_ax.text(
            0.02,
            y,
            _row_label(row),
            ha="left",
            va="center",
            fontsize=LABEL_FONT,
            fontweight="bold" if row.has_children else "normal",
            transform=label_ax.transData,
        )

        geometry = layout.bars_by_task_id.get(task.id)
        if geometry is None:
            continue
        color = _task_color(row)
        edge = "black" if task.id != selected_id else "#007bff"

        if isinstance(geometry, MilestoneMarker):
            center = geometry.center
            half = geometry.size / 2
            half_height = ROW_HEIGHT / 1.5
            diamond = [(center - half, y), (center, y - half_height), (center + half, y), (center, y + half_height)]
            ax.add_patch(Polygon(diamond, closed=True, facecolor=MILESTONE_COLOR, edgecolor=edge))

        elif row.has_children and isinstance(geometry, BarGeometry):
            x_start, x_end = bar_extent(geometry)
            cap = ROW_HEIGHT / 2.2
            ax.plot([x_start, x_end], [y, y], color=color, linewidth=BRACKET_LW, zorder=2)
            ax.plot([x_start, x_start], [y - cap, y + cap], color=color, linewidth=BRACKET_LW, zorder=2)
            ax.plot([x_end, x_end], [y - cap, y + cap], color=color, linewidth=BRACKET_LW, zorder=2)

        else:
            ax.add_patch(
                Rectangle(
                    (geometry.left, y - ROW_HEIGHT / 2),
                    geometry.width,
                    ROW_HEIGHT,
                    facecolor=color,
                    edgecolor=edge,
                    linewidth=0.5,
                    alpha=0.45,
                )
            )
            if task.progress > 0:
                ax.add_patch(
                    Rectangle(
                        (geometry.left, y - ROW_HEIGHT / 2),
                        geometry.width * task.progress,
                        ROW_HEIGHT,
                        facecolor=color,
                        edgecolor="none",
                    )
                )

    Path(out_path).parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path, format="svg", bbox_inches="tight")
    plt.close(fig)


def truncate_label(name: str, available_width_px: float) -> str:
    """Shorten a label with an ellipsis so it fits the given pixel width."""
    max_chars = int((available_width_px - 12) // CHAR_WIDTH_PX)
    if len(name) <= max_chars:
        return name
    return name[: max(0, max_chars - 3)] + "..."


def _row_label(row: VisibleRow) -> str:
    marker = ""
    if row.has_children:
        marker = "- " if row.is_expanded else "+ "
    suffix = " *" if row.task.is_heuristic else ""
    prefix = " " * (INDENT_CHARS * row.depth) + marker
    available = LABEL_WIDTH_PX - CHAR_WIDTH_PX * (len(prefix) + len(suffix))
    return prefix + truncate_label(row.task.name, available) + suffix


def _task_color(row: VisibleRow) -> str:
    if row.task.is_heuristic:
        return HEURISTIC_COLOR
    return PHASE_COLORS.get(row.task.phase, DEFAULT_COLOR)


def _tool_version() -> str:
    try:
        return metadata.version("wbs-gantt")
    except Exception:
        return "0.0.0"
