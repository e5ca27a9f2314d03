"""
Curses-based terminal rendering.

This module handles all terminal output of the consoles. It provides:
  - Color initialization and color pair management
  - Frame rendering: title, view tabs, header summary, column header,
    scrolling list, action menu, status/prompt line
  - Row formatting for Docker resources (volumes with their "used by")
  - TerminalRunner: suspends curses to run interactive commands or to page
    long text (logs, inspect output, stats)
  - Text input prompt (FTP port and root directory)

Rendering Strategy:
  - Single curses window (stdscr), fully redrawn each loop iteration
  - Layout derived from the terminal size read just before rendering
  - Scroll offset derived from the selection (state.scroll_offset)

Color Pairs (initialized in init_colors):
  1: White (default text)
  2: Green (running/success)
  3: Red (error/stopped)
  4: Cyan (headers/borders)
  6: Yellow (warnings/unused)
  7: Black on cyan (title, selected row)
"""

import curses
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .model import (
    ContainerInfo, ImageInfo, NetworkInfo, StatusKind, StatusMessage,
    UsageIndex, VolumeInfo,
)
from .state import scroll_offset

logger = logging.getLogger(__name__)

# Column width constants
COL_NAME = 30
COL_IMAGE = 30
COL_ID = 14
COL_SIZE = 10
COL_DRIVER = 10

HEADER_ROWS = 4  # title, tabs, summary, column header
FOOTER_ROWS = 3  # menu (2 lines), status


def init_colors():
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(1, curses.COLOR_WHITE, -1)    # Default
    curses.init_pair(2, curses.COLOR_GREEN, -1)    # Success / Running
    curses.init_pair(3, curses.COLOR_RED, -1)      # Error / Stopped
    curses.init_pair(4, curses.COLOR_CYAN, -1)     # Highlight / Secondary
    curses.init_pair(5, curses.COLOR_MAGENTA, -1)  # Accent
    curses.init_pair(6, curses.COLOR_YELLOW, -1)   # Warning / Unused
    curses.init_pair(7, curses.COLOR_BLACK, curses.COLOR_CYAN)  # Inverse Highlight


STATUS_COLORS = {
    StatusKind.SUCCESS: 2,
    StatusKind.ERROR: 3,
    StatusKind.WARN: 6,
    StatusKind.INFO: 4,
}


@dataclass
class Row:
    text: str
    color: int = 1


@dataclass
class Frame:
    """Everything one console draws in one iteration."""
    title: str
    tabs: List[str]
    active_tab: int
    summary: str = ""
    header: str = ""
    rows: List[Row] = field(default_factory=list)
    selected_index: Optional[int] = None
    menu: List[str] = field(default_factory=list)
    status: Optional[StatusMessage] = None
    prompt: Optional[str] = None


def list_height(screen_height: int) -> int:
    return max(1, screen_height - HEADER_ROWS - FOOTER_ROWS)


def _put(win, y: int, x: int, text: str, attr: int = 0) -> None:
    h, w = win.getmaxyx()
    if y < 0 or y >= h or x >= w:
        return
    try:
        win.addstr(y, x, text[:max(0, w - x - 1)], attr)
    except curses.error:
        pass  # writing the last cell raises, the text is still drawn


def draw_frame(stdscr, frame: Frame) -> None:
    h, w = stdscr.getmaxyx()
    stdscr.erase()

    # Title bar
    _put(stdscr, 0, 0, f" {frame.title} ".center(w), curses.color_pair(7) | curses.A_BOLD)

    # Tab bar
    x = 2
    for i, label in enumerate(frame.tabs):
        tab = f"{i + 1}:{label}"
        if i == frame.active_tab:
            style = curses.color_pair(4) | curses.A_BOLD | curses.A_UNDERLINE
        else:
            style = curses.A_DIM
        _put(stdscr, 1, x, tab, style)
        x += len(tab) + 3

    if frame.summary:
        _put(stdscr, 2, 2, frame.summary, curses.color_pair(4))
    if frame.header:
        _put(stdscr, 3, 1, frame.header, curses.color_pair(5) | curses.A_BOLD)

    # List
    height = list_height(h)
    selected = frame.selected_index if frame.selected_index is not None else 0
    offset = scroll_offset(selected, height) if frame.selected_index is not None else 0
    for i, row in enumerate(frame.rows[offset:offset + height]):
        y = HEADER_ROWS + i
        if frame.selected_index is not None and offset + i == frame.selected_index:
            _put(stdscr, y, 1, f"> {row.text}".ljust(w - 2), curses.color_pair(7))
        else:
            _put(stdscr, y, 1, f"  {row.text}", curses.color_pair(row.color))

    # Menu
    menu_y = h - FOOTER_ROWS
    for i, line in enumerate(frame.menu[:FOOTER_ROWS - 1]):
        _put(stdscr, menu_y + i, 1, line, curses.A_DIM)

    # Status / confirmation prompt
    bar_y = h - 1
    if frame.prompt:
        _put(stdscr, bar_y, 1, f"{frame.prompt} [y/N]", curses.color_pair(6) | curses.A_BOLD)
    elif frame.status:
        color = STATUS_COLORS.get(frame.status.kind, 1)
        _put(stdscr, bar_y, 1, frame.status.text, curses.color_pair(color) | curses.A_BOLD)

    stdscr.noutrefresh()
    curses.doupdate()


def menu_lines(entries: Sequence[Tuple[str, str]], width: int) -> List[str]:
    """Pack ``key:label`` entries into at most two lines."""
    lines = [""]
    for key, label in entries:
        part = f"[{key}]{label}  "
        if len(lines[-1]) + len(part) > width - 2:
            if len(lines) == FOOTER_ROWS - 1:
                break
            lines.append("")
        lines[-1] += part
    return lines


# --- Docker rows ---

def docker_header(kind_value: str) -> str:
    if kind_value == "containers":
        return f"  {'NAME':<{COL_NAME}} {'IMAGE':<{COL_IMAGE}} STATUS"
    if kind_value == "images":
        return f"  {'REPOSITORY:TAG':<{COL_NAME + 10}} {'ID':<{COL_ID}} {'SIZE':<{COL_SIZE}} CREATED"
    if kind_value == "volumes":
        return f"  {'NAME':<{COL_NAME}} {'DRIVER':<{COL_DRIVER}} USED BY"
    return f"  {'NAME':<{COL_NAME}} {'DRIVER':<{COL_DRIVER}} SCOPE"


def _fit(text: str, width: int) -> str:
    if len(text) > width:
        return text[:width - 1] + "~"
    return text


def docker_row(item, usage_index: Optional[UsageIndex] = None) -> Row:
    if isinstance(item, ContainerInfo):
        text = f"{_fit(item.name, COL_NAME):<{COL_NAME}} {_fit(item.image, COL_IMAGE):<{COL_IMAGE}} {item.status}"
        return Row(text, 2 if item.is_running else 3)
    if isinstance(item, ImageInfo):
        size = f"{item.size_mb:.1f}MB"
        name = _fit(item.display_name, COL_NAME + 10)
        return Row(f"{name:<{COL_NAME + 10}} {item.short_id:<{COL_ID}} {size:<{COL_SIZE}} {item.created}",
                   6 if item.dangling else 1)
    if isinstance(item, VolumeInfo):
        usage = (usage_index or {}).get(item.name)
        used_by = usage.used_by if usage else "(unused)"
        color = 6 if not usage or not usage.referencing_containers else 1
        return Row(f"{_fit(item.name, COL_NAME):<{COL_NAME}} {item.driver:<{COL_DRIVER}} {used_by}", color)
    if isinstance(item, NetworkInfo):
        return Row(f"{_fit(item.name, COL_NAME):<{COL_NAME}} {item.driver:<{COL_DRIVER}} {item.scope}")
    return Row(str(item))


# --- Terminal suspension ---

class TerminalRunner:
    """Runs work outside curses: interactive commands and paged text."""

    def __init__(self, stdscr):
        self.stdscr = stdscr

    def _suspend(self) -> None:
        curses.def_prog_mode()
        curses.endwin()

    def _resume(self) -> None:
        curses.reset_prog_mode()
        curses.curs_set(0)
        self.stdscr.clearok(True)
        self.stdscr.refresh()

    def run(self, commands: Sequence[Sequence[str]], title: str = "") -> int:
        """
        Run interactive commands with the terminal handed over.

        Each command is tried in order until one exits 0 (shell fallback).

        Returns:
            int: Exit code of the last command tried
        """
        self._suspend()
        rc = 1
        try:
            if title:
                print(f"=== {title} ===")
            for cmd in commands:
                try:
                    rc = subprocess.call(list(cmd))
                except OSError as e:
                    logger.error(f"Cannot run {cmd[0]}: {e}")
                    rc = 127
                if rc == 0:
                    break
                logger.info(f"Command {' '.join(cmd)} exited {rc}")
        finally:
            self._resume()
        return rc

    def call(self, title: str, func: Callable[[], Any]) -> Any:
        """Run ``func`` on the normal screen (its output stays visible) and wait for Enter."""
        self._suspend()
        result = None
        try:
            print(f"=== {title} ===")
            result = func()
            message = getattr(result, "message", "")
            if message:
                print(message)
            input("\nPress Enter to return...")
        except EOFError:
            pass
        finally:
            self._resume()
        return result

    def page(self, title: str, lines: Sequence[str]) -> None:
        """Print text to the normal screen and wait for Enter."""
        self._suspend()
        try:
            print(f"=== {title} ===")
            for line in lines:
                print(line)
            input("\nPress Enter to return...")
        except EOFError:
            pass
        finally:
            self._resume()


def prompt_input(stdscr, prompt: str) -> Optional[str]:
    """
    Read a line of text on the status row.

    Returns:
        Optional[str]: Stripped text, or None when cancelled with Escape
    """
    max_h, max_w = stdscr.getmaxyx()
    y = max_h - 1
    text = ""
    prev_cursor = curses.curs_set(1)
    try:
        while True:
            stdscr.move(y, 0)
            stdscr.clrtoeol()
            _put(stdscr, y, 1, prompt + text, curses.A_BOLD)
            stdscr.refresh()

            ch = stdscr.getch()
            if ch == 27:  # ESC
                return None
            elif ch in (10, 13):  # Enter
                return text.strip()
            elif ch in (curses.KEY_BACKSPACE, 127, 8):
                text = text[:-1]
            elif 32 <= ch <= 126:
                if len(prompt) + len(text) < max_w - 3:
                    text += chr(ch)
    finally:
        curses.curs_set(prev_cursor)
