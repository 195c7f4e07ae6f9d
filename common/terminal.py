"""
terminal.py
-----------
Live multi-line status display for the terminal.

Keeps an ordered list of status lines (one per running job) and repaints
only the lines that changed since the previous frame, so several jobs can
report progress at once without the screen flickering.

Lines are rich markup strings. On an interactive terminal they are rendered
to ANSI with rich and diffed; anywhere else (pipes, CI logs) every change is
printed as a plain line straight away, with the markup stripped.

    renderer = TerminalRenderer(truncate=True)
    idx = renderer.push_line("  [bold]billing[/bold]: starting service")
    renderer.update_line(idx, "✓ [bold]billing[/bold]: [green]Successful[/green]")
    renderer.clear()
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import IO, Optional

from rich.console import Console
from rich.text import Text


CSI = "\x1b["
HIDE_CURSOR = f"{CSI}?25l"
SHOW_CURSOR = f"{CSI}?25h"
ERASE_TO_EOL = f"{CSI}K"
ERASE_DOWN = f"{CSI}J"

# Redraws closer together than this are coalesced into one write.
DEFAULT_INTERVAL = 0.05

# (rendered text, number of terminal rows it occupies)
FrameLine = tuple[str, int]


def _cursor_up(rows: int) -> str:
    return f"{CSI}{rows}A" if rows > 0 else ""


def _cursor_down(rows: int) -> str:
    return f"{CSI}{rows}B" if rows > 0 else ""


def frame_diff(previous: list[FrameLine], current: list[FrameLine]) -> str:
    """Return the escape sequence that turns ``previous`` into ``current``.

    The cursor is expected at column 0 of the row just below the previous
    frame, and is left at the same place relative to the new frame.

    Unchanged lines are never rewritten. When every line from the first
    change onwards keeps its height and each changed line fits on one row,
    changed lines are patched in place; otherwise the screen is cleared from
    the first changed line down and the rest of the frame is written again.

    Rows are erased before they are written, never after: a line exactly as
    wide as the terminal leaves the cursor waiting to wrap, and an erase there
    would remove its last column.
    """
    first = 0
    while first < len(previous) and first < len(current) and previous[first] == current[first]:
        first += 1
    if first == len(previous) == len(current):
        return ""

    previous_total = sum(height for _, height in previous)
    start_row = sum(height for _, height in previous[:first])
    old_tail = previous[first:]
    new_tail = current[first:]

    patchable = len(old_tail) == len(new_tail) and all(
        old[1] == new[1] and (old == new or new[1] == 1) for old, new in zip(old_tail, new_tail)
    )
    out: list[str] = []
    if not patchable:
        out.append(_cursor_up(previous_total - start_row))
        out.append("\r" + ERASE_DOWN)
        for text, _ in new_tail:
            out.append(text + "\n")
        return "".join(out)

    row = previous_total
    line_row = start_row
    for old, new in zip(old_tail, new_tail):
        if old != new:
            if row > line_row:
                out.append(_cursor_up(row - line_row))
            else:
                out.append(_cursor_down(line_row - row))
            out.append("\r" + ERASE_TO_EOL + new[0] + "\n")
            row = line_row + new[1]
        line_row += new[1]
    out.append(_cursor_down(previous_total - row))
    return "".join(out)


class TerminalRenderer:
    """Ordered, index-addressed status lines with throttled incremental redraw."""

    def __init__(
        self,
        file: Optional[IO[str]] = None,
        truncate: bool = False,
        interval: float = DEFAULT_INTERVAL,
        force_terminal: Optional[bool] = None,
        width: Optional[int] = None,
    ):
        self.console = Console(file=file, force_terminal=force_terminal, width=width, highlight=False)
        self.is_terminal = self.console.is_terminal
        self.truncate = truncate
        self.interval = interval
        self.buffer: list[str] = []
        self._frame: list[FrameLine] = []
        self._last_draw = 0.0
        self._pending: Optional[asyncio.TimerHandle] = None
        self._cursor_hidden = False

    # -- line mutations -----------------------------------------------------

    def push_line(self, text: str) -> int:
        """Append a line and return its index (stable for the renderer's lifetime)."""
        self.buffer.append(text)
        self._changed(text)
        return len(self.buffer) - 1

    def update_line(self, index: int, text: str) -> None:
        self.buffer[index] = text
        self._changed(text)

    def overwrite_line(self, index: int, offset: int, fragment: str) -> None:
        """Replace ``len(fragment)`` characters of line ``index`` starting at ``offset``."""
        previous = self.buffer[index]
        self.buffer[index] = previous[:offset] + fragment + previous[offset + len(fragment):]
        self._changed(self.buffer[index])

    def clear(self) -> None:
        """Flush the last frame, show the cursor again and end with a blank line."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if not self.is_terminal:
            self.console.print("")
            return
        self._draw()
        self.console.file.write(SHOW_CURSOR + "\n")
        self.console.file.flush()
        self._cursor_hidden = False

    # -- drawing ------------------------------------------------------------

    def _changed(self, text: str) -> None:
        if not self.is_terminal:
            self.console.print(text, soft_wrap=True)
            return
        self._schedule_draw()

    def _schedule_draw(self) -> None:
        if self._pending is not None:
            return
        elapsed = time.monotonic() - self._last_draw
        if elapsed >= self.interval:
            self._draw()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop to run a deferred redraw on.
            self._draw()
            return
        self._pending = loop.call_later(self.interval - elapsed, self._draw_pending)

    def _draw_pending(self) -> None:
        self._pending = None
        self._draw()

    def _render(self, line: str) -> FrameLine:
        text = Text.from_markup(line)
        width = max(self.console.width, 1)
        if self.truncate:
            text.truncate(max(width - 1, 1))
        with self.console.capture() as capture:
            self.console.print(text, end="", soft_wrap=True)
        return capture.get(), max(1, math.ceil(text.cell_len / width))

    def _draw(self) -> None:
        self._last_draw = time.monotonic()
        frame = [self._render(line) for line in self.buffer]
        changes = frame_diff(self._frame, frame)
        self._frame = frame
        if not changes:
            return
        if not self._cursor_hidden:
            changes = HIDE_CURSOR + changes
            self._cursor_hidden = True
        self.console.file.write(changes)
        self.console.file.flush()
