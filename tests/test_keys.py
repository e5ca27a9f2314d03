from unittest.mock import MagicMock

import curses

from servctl.keys import ESC, UNRECOGNIZED, CursesInput, InputDecoder, Key, KeyKind, decode_sequence


def _reader(units):
    """read_unit double: pops units, None once exhausted (timeout)."""
    pending = list(units)
    calls = []

    def read(timeout):
        calls.append(timeout)
        return pending.pop(0) if pending else None
    read.calls = calls
    return read


def test_plain_character():
    assert InputDecoder(_reader(["d"])).read_key() == Key.of("d")


def test_arrow_keys():
    for letter, kind in (("A", KeyKind.UP), ("B", KeyKind.DOWN), ("C", KeyKind.RIGHT), ("D", KeyKind.LEFT)):
        assert InputDecoder(_reader([ESC, "[", letter])).read_key() == Key(kind)


def test_unknown_escape_sequence():
    assert InputDecoder(_reader([ESC, "[", "Z"])).read_key() == UNRECOGNIZED
    assert InputDecoder(_reader([ESC, "O", "A"])).read_key() == UNRECOGNIZED


def test_lone_escape_times_out():
    read = _reader([ESC])
    assert InputDecoder(read, escape_timeout=0.05).read_key() == UNRECOGNIZED
    assert read.calls == [None, 0.05]


def test_first_read_blocks():
    read = _reader(["q"])
    InputDecoder(read, escape_timeout=0.05).read_key()
    assert read.calls == [None]


def test_decode_sequence():
    assert decode_sequence("x") == Key.of("x")
    assert decode_sequence("") == UNRECOGNIZED
    assert decode_sequence(ESC + "[A").kind == KeyKind.UP
    assert decode_sequence(ESC).kind == KeyKind.UNRECOGNIZED


def test_curses_input_timeout_and_reset():
    win = MagicMock()
    win.getch.return_value = -1
    read = CursesInput(win)
    assert read(0.1) is None
    win.timeout.assert_any_call(100)
    win.timeout.assert_called_with(-1)


def test_curses_input_maps_special_codes():
    win = MagicMock()
    win.getch.return_value = curses.KEY_RESIZE
    assert CursesInput(win)(None) == ""
    win.getch.return_value = ord("j")
    assert CursesInput(win)(None) == "j"
