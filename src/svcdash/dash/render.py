"""Plain-text rendering of the dashboard state.

`render(state)` is a pure function: it reads the state, never mutates it and
depends on no module-level mutable data, so equal states give equal frames.
The frame is composed from rich renderables and exported as uncoloured text
through an off-screen console. Widths are measured in terminal cells.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Sequence

from rich.align import Align
from rich.box import HEAVY, ROUNDED
from rich.cells import cell_len, set_cell_size
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import AppState, Service

ELLIPSIS = "..."
# Below this width a truncated string is dropped instead of ending in "..."
ELLIPSIS_MIN_WIDTH = len(ELLIPSIS)

SPINNER_FRAMES = ("⣾", "⣽", "⣻", "⢿", "⡿", "⣟", "⣯", "⣷")

LOGO = (
    " ___ __   __ ___  ___    _    ___  _  _ ",
    "/ __|\\ \\ / // __||   \\  /_\\  / __|| || |",
    "\\__ \\ \\ V /| (__ | |) |/ _ \\ \\__ \\| __ |",
    "|___/  \\_/  \\___||___//_/ \\_\\|___/|_||_|",
)

HELP_TEXT = "Tab: Switch | d: Dev Mode | Enter: Logs | c: Config | s/x/r: Control | q: Quit"
EMPTY_CONTENT = "No content loaded. Select a unit and press Enter."

ROW_HEIGHT = 2
ROW_SPACING = 1
LIST_HEADER_HEIGHT = 2
MAIN_HEADER_HEIGHT = 1


@dataclass(frozen=True)
class Geometry:
    content_width: int
    content_height: int
    sidebar_width: int  # inner width of the list panel
    main_width: int  # inner width of the content panel
    list_height: int
    viewport_height: int

    @property
    def rows_per_page(self) -> int:
        return max(1, (self.list_height + ROW_SPACING) // (ROW_HEIGHT + ROW_SPACING))


def compute_geometry(width: int, height: int) -> Geometry:
    content_width = max(0, width - 4)
    content_height = max(0, height - 4)
    sidebar = int(content_width * 0.35)
    main = content_width - sidebar
    return Geometry(
        content_width=content_width,
        content_height=content_height,
        sidebar_width=sidebar,
        main_width=main,
        list_height=max(0, content_height - LIST_HEADER_HEIGHT),
        viewport_height=max(0, content_height - MAIN_HEADER_HEIGHT),
    )


@dataclass(frozen=True)
class Frame:
    sidebar: str
    main: str
    footer: str


# ---- text helpers ----

def truncate(text: str, width: int) -> str:
    """Fit one line into `width` cells, ending in '...' when it had to be cut."""
    if width <= 0:
        return ""
    text = text.replace("\t", "    ")
    if cell_len(text) <= width:
        return text
    if width <= ELLIPSIS_MIN_WIDTH:
        return ""
    return set_cell_size(text, width - len(ELLIPSIS)) + ELLIPSIS


def fit(text: str, width: int) -> str:
    """Crop or pad to exactly `width` cells (no ellipsis)."""
    if width <= 0:
        return ""
    return set_cell_size(text.replace("\t", "    "), width)


def _lines(lines: Sequence[str]) -> Text:
    return Text("\n".join(lines), no_wrap=True, overflow="crop")


def export_lines(renderable: RenderableType, width: int, height: int | None = None) -> list[str]:
    """Render on an off-screen console `width` cells wide; uncoloured text lines."""
    if width <= 0 or (height is not None and height <= 0):
        return []
    console = Console(
        file=io.StringIO(),
        width=width,
        color_system=None,
        legacy_windows=False,
        record=True,
        markup=False,
        emoji=False,
        highlight=False,
    )
    console.print(renderable)
    lines = console.export_text().rstrip("\n").split("\n")
    return lines if height is None else lines[:height]


def panel(title: str, body: RenderableType, width: int, height: int, focused: bool) -> Panel | None:
    """A bordered box whose inner area is width x height cells, or None with no room."""
    if width <= 0 or height <= 0:
        return None
    # rich pads the title by one cell on each side inside a width - 4 slot
    label = truncate(title, width - 4)
    return Panel(
        body,
        title=Text(label) if label else None,
        title_align="left",
        box=HEAVY if focused else ROUNDED,
        width=width + 2,
        height=height + 2,
        padding=0,
    )


def format_uptime(seconds: int) -> str:
    if seconds <= 0:
        return "-"
    days, rem = divmod(int(seconds), 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def status_badge(active_state: str) -> str:
    return f" {(active_state or '?').upper()} "


# ---- list panel ----

def render_row(svc: Service, width: int, selected: bool) -> list[str]:
    """Two lines for one unit: name + status badge, then the description.

    Selection only changes the left marker, so rows can be re-rendered from the
    cursor on every frame.
    """
    if width <= 0:
        return ["", ""]
    prefix = "│ " if selected else "  "
    inner = max(0, width - len(prefix))
    badge = status_badge(svc.active_state)
    title = truncate(svc.name, inner - cell_len(badge) - 2)
    gap = max(0, inner - cell_len(title) - cell_len(badge))
    line1 = fit(prefix + title + " " * gap + badge, width)
    line2 = fit(prefix + truncate(svc.description, inner), width)
    return [line1, line2]


def list_title(state: AppState) -> str:
    return "Dev Services" if state.dev_filter_on else "System Units"


def render_list(state: AppState, geo: Geometry) -> list[str]:
    width = geo.sidebar_width
    listing = state.listing
    if listing.searching or listing.search:
        cursor = "_" if listing.searching else ""
        header = fit(f"  Filter: {listing.search}{cursor}", width)
    else:
        spacer = max(0, width - len("  UNIT") - len("STATUS "))
        header = fit("  UNIT" + " " * spacer + "STATUS ", width)
    lines = [header, "─" * width]

    if not listing.items:
        lines.append(fit("  No units.", width))
        return lines

    start = listing.page_start()
    for idx in range(start, min(len(listing.items), start + geo.rows_per_page)):
        if idx > start:
            lines.append("")
        lines.extend(render_row(listing.items[idx], width, idx == listing.cursor))
    return lines


# ---- content panel ----

def render_main_header(state: AppState, width: int) -> str:
    logs_tab = "[ Logs ]" if state.view_mode == "logs" else "  Logs  "
    config_tab = "[ Config ]" if state.view_mode == "config" else "  Config  "
    info = ""
    svc = state.selected_service()
    if svc is not None:
        info = f" {status_badge(svc.active_state)} "
    if state.streaming_target and state.view_mode == "logs":
        info += f" {SPINNER_FRAMES[state.spinner_frame % len(SPINNER_FRAMES)]} "
    line = "─" * max(0, width - cell_len(logs_tab) - cell_len(config_tab) - cell_len(info))
    return truncate(logs_tab + config_tab + line + info, width)


def render_content(state: AppState, geo: Geometry) -> RenderableType:
    width = geo.main_width
    header = render_main_header(state, width)
    content = state.content_lines()
    if not content:
        placeholder = Text(truncate(EMPTY_CONTENT, width), justify="center", no_wrap=True, overflow="crop")
        return Group(_lines([header]), placeholder)
    return _lines([header, *(fit(line, width) for line in state.viewport.window(content))])


def content_title(state: AppState) -> str:
    if state.view_mode == "logs" and state.streaming_target:
        return state.streaming_target
    if state.view_mode == "config" and state.config_name:
        return state.config_name
    return ""


def render_footer(state: AppState, width: int) -> str:
    return truncate(f"{HELP_TEXT}  │ {state.status_message}", width)


# ---- whole frame ----

def _panels(state: AppState, geo: Geometry) -> tuple[Panel | None, Panel | None]:
    sidebar = panel(
        list_title(state),
        _lines(render_list(state, geo)),
        geo.sidebar_width,
        geo.content_height,
        focused=state.active_pane == "list",
    )
    main = panel(
        content_title(state),
        render_content(state, geo),
        geo.main_width,
        geo.content_height,
        focused=state.active_pane == "content",
    )
    return sidebar, main


def layout(state: AppState) -> Frame:
    geo = compute_geometry(state.width, state.height)
    sidebar, main = _panels(state, geo)
    return Frame(
        sidebar="\n".join(export_lines(sidebar, geo.sidebar_width + 2)) if sidebar else "",
        main="\n".join(export_lines(main, geo.main_width + 2)) if main else "",
        footer=render_footer(state, geo.content_width),
    )


def render_splash(state: AppState) -> str:
    width, height = state.width, state.height
    host = state.host
    lines = [*LOGO, "", f"Units: {len(state.services)}"]
    if host.hostname:
        lines.append(f"{host.hostname} · {host.platform_name or '?'} · kernel {host.kernel_version or '?'}")
        lines.append(f"up {format_uptime(host.uptime_seconds)}")
    lines += ["", "Press Enter to Start"]
    splash = Text("\n".join(lines), justify="center", no_wrap=True, overflow="crop")
    return "\n".join(export_lines(Align(splash, vertical="middle", height=height), width, height))


def render(state: AppState) -> str:
    if state.width <= 0 or state.height <= 0:
        return "Initializing..."
    if state.view_mode == "dashboard":
        return render_splash(state)
    geo = compute_geometry(state.width, state.height)
    grid = Table.grid(padding=0)
    cells = []
    for box, inner in zip(_panels(state, geo), (geo.sidebar_width, geo.main_width)):
        if box is not None:
            grid.add_column(width=inner + 2, no_wrap=True)
            cells.append(box)
    footer = Text(render_footer(state, geo.content_width), no_wrap=True, overflow="crop")
    if cells:
        grid.add_row(*cells)
        frame: RenderableType = Group(grid, footer)
    else:
        frame = footer
    return "\n".join(export_lines(frame, state.width, state.height))
