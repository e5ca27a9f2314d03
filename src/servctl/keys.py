"""
Keyboard input decoding.

Turns raw terminal units into Key tokens. One blocking read starts each key;
an Escape triggers up to two follow-up reads, and ``ESC [ A/B/C/D`` decode to
the arrow keys. Any other escape sequence is Unrecognized.

The follow-up reads use a short timeout (ui.escape_timeout_ms, 100 ms by
default) so a lone Escape decodes to Unrecognized instead of waiting for the
next key press. A timeout of None blocks until both units arrive.

Curses keypad translation is disabled by the console so that escape sequences
reach the decoder untouched.
"""

import curses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ESC = "\x1b"

_ARROWS = {"A": "UP", "B": "DOWN", "C": "RIGHT", "D": "LEFT"}


class KeyKind(Enum):
    CHAR = "char"
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class Key:
    kind: KeyKind
    char: str = ""

    @classmethod
    def of(cls, char: str) -> "Key":
        return cls(KeyKind.CHAR, char)


UNRECOGNIZED = Key(KeyKind.UNRECOGNIZED)


def decode_sequence(units: str) -> Key:
    """Decode a complete unit sequence (as read) into a Key."""
    if not units:
        return UNRECOGNIZED
    if units[0] != ESC:
        return Key.of(units[0]) if len(units) == 1 else UNRECOGNIZED
    if len(units) == 3 and units[1] == "[" and units[2] in _ARROWS:
        return Key(KeyKind[_ARROWS[units[2]]])
    return UNRECOGNIZED


class InputDecoder:
    """
    Reads and decodes one key per call.

    ``read_unit(timeout)`` returns the next unit, or None when ``timeout``
    (seconds) elapses first. It is only called with a timeout for the two
    units following an Escape.
    """

    def __init__(self, read_unit: Callable[[Optional[float]], Optional[str]],
                 escape_timeout: Optional[float] = 0.1):
        self.read_unit = read_unit
        self.escape_timeout = escape_timeout

    def read_key(self) -> Key:
        first = self.read_unit(None)
        if not first:
            return UNRECOGNIZED
        if first != ESC:
            return Key.of(first)

        units = first
        for _ in range(2):
            nxt = self.read_unit(self.escape_timeout)
            if nxt is None:
                break
            units += nxt
        key = decode_sequence(units)
        if key.kind == KeyKind.UNRECOGNIZED:
            logger.debug(f"Unrecognized escape sequence {units!r}")
        return key


class CursesInput:
    """read_unit implementation on top of a curses window."""

    def __init__(self, stdscr):
        self.stdscr = stdscr

    def __call__(self, timeout: Optional[float]) -> Optional[str]:
        self.stdscr.timeout(-1 if timeout is None else max(1, int(timeout * 1000)))
        try:
            ch = self.stdscr.getch()
        finally:
            self.stdscr.timeout(-1)
        if ch == -1:
            return None
        if ch == curses.KEY_RESIZE or ch > 255:
            return ""
        return chr(ch)
