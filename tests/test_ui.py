import pytest
from unittest.mock import MagicMock, call

import curses

from servctl.model import (
    ContainerInfo, ImageInfo, NetworkInfo, StatusMessage, VolumeInfo, VolumeUsage,
)
from servctl.ui import Frame, Row, TerminalRunner, docker_row, draw_frame, list_height, menu_lines


@pytest.fixture(autouse=True)
def mock_curses(mocker):
    mocker.patch('curses.color_pair', return_value=0)
    mocker.patch('curses.doupdate')
    mocker.patch('curses.def_prog_mode')
    mocker.patch('curses.endwin')
    mocker.patch('curses.reset_prog_mode')
    mocker.patch('curses.curs_set')
    return mocker


def test_menu_fits_two_lines():
    entries = [(str(i), "Action") for i in range(40)]
    lines = menu_lines(entries, 60)
    assert len(lines) == 2
    assert all(len(l) <= 58 for l in lines)
    assert lines[0].startswith("[0]Action")


def test_rows_by_kind():
    running = docker_row(ContainerInfo("a", "a", "web", "nginx", "Up", "running"))
    stopped = docker_row(ContainerInfo("b", "b", "db", "pg", "Exited", "exited"))
    assert running.color == 2 and stopped.color == 3

    dangling = docker_row(ImageInfo("sha256:1", "1", (), 1.5, "2024-01-01"))
    assert "<none>:<none>" in dangling.text
    assert "1.5MB" in dangling.text

    net = docker_row(NetworkInfo("n", "n", "bridge", "bridge", "local"))
    assert net.text.rstrip().endswith("local")


def test_volume_row_used_by():
    usage = VolumeUsage()
    usage.add("web", "nginx")
    usage.add("worker", "nginx")
    row = docker_row(VolumeInfo("data", "local"), {"data": usage})
    assert row.text.endswith("web, worker")
    assert row.color == 1

    unused = docker_row(VolumeInfo("old", "local"), {"old": VolumeUsage()})
    assert unused.text.endswith("(unused)")
    assert unused.color == 6


def test_long_names_are_truncated():
    row = docker_row(ContainerInfo("a", "a", "x" * 50, "nginx", "Up", "running"))
    assert "x" * 29 + "~" in row.text
    assert "x" * 30 not in row.text


def test_draw_frame_scrolls_to_selection():
    win = MagicMock()
    win.getmaxyx.return_value = (12, 80)
    rows = [Row(f"item{i}") for i in range(20)]
    frame = Frame(title="Docker Manager", tabs=["Containers"], active_tab=0,
                  rows=rows, selected_index=15, status=StatusMessage.error("Failed"))
    draw_frame(win, frame)
    texts = [c.args[2] for c in win.addstr.call_args_list]
    assert any(t.startswith("> item15") for t in texts)
    assert not any("item0" == t.strip() for t in texts)
    assert "Failed" in texts
    assert list_height(12) == 5


def test_draw_frame_prompt_replaces_status():
    win = MagicMock()
    win.getmaxyx.return_value = (24, 80)
    frame = Frame(title="t", tabs=[], active_tab=0, status=StatusMessage("x"), prompt="Delete?")
    draw_frame(win, frame)
    texts = [c.args[2] for c in win.addstr.call_args_list]
    assert "Delete? [y/N]" in texts
    assert "x" not in texts


def test_draw_frame_ignores_curses_errors():
    win = MagicMock()
    win.getmaxyx.return_value = (24, 80)
    win.addstr.side_effect = curses.error
    draw_frame(win, Frame(title="t", tabs=["a"], active_tab=0, rows=[Row("r")]))


class TestTerminalRunner:
    def test_run_falls_back_to_second_command(self, mocker):
        sub = mocker.patch("servctl.ui.subprocess.call", side_effect=[126, 0])
        rc = TerminalRunner(MagicMock()).run([["docker", "exec", "bash"], ["docker", "exec", "sh"]])
        assert rc == 0
        assert sub.call_args_list == [call(["docker", "exec", "bash"]), call(["docker", "exec", "sh"])]
        curses.reset_prog_mode.assert_called_once()

    def test_page_resumes_after_eof(self, mocker):
        mocker.patch("builtins.input", side_effect=EOFError)
        scr = MagicMock()
        TerminalRunner(scr).page("Logs", ["a"])
        scr.refresh.assert_called_once()

    def test_call_returns_result(self, mocker):
        mocker.patch("builtins.input", return_value="")
        assert TerminalRunner(MagicMock()).call("Install", lambda: 42) == 42
