"""
Console loop and orchestration.

Each iteration of the loop is strictly sequential:

    terminal size -> reload current view -> render -> read + decode key
    -> dispatch -> repeat

until the dispatcher reports quit. There are no workers and no polling: every
manager call blocks the loop, and nothing changes on screen between key
presses.

Terminal handling:
  - curses.wrapper restores the terminal on any exit
  - the cursor visibility found at start is restored unconditionally
  - SIGTERM/SIGHUP are turned into a clean exit, Ctrl-C likewise
  - ManagerUnavailable ends the session with one error and exit code 1

Key Functions:
  - run_console(): The loop, for any console (Docker or FTP)
  - run_docker_console() / run_ftp_console(): Entry points used by the CLI
"""

import curses
import logging
import signal
import sys
from typing import Callable, Optional

from . import configure_logging
from .backend import DockerBackend, ManagerUnavailable
from .config import config_manager
from .keys import CursesInput, InputDecoder
from .main_actions import DOCKER_GLOBAL_ACTIONS, DOCKER_VIEW_ACTIONS, DOCKER_VIEWS, Dispatcher, DockerExecutor
from .model import ResourceKind, StatusMessage
from .state import ResourceLoader, ViewModel
from .ui import Frame, TerminalRunner, docker_header, docker_row, draw_frame, init_colors, menu_lines, prompt_input

logger = logging.getLogger(__name__)

_NAV_ACTIONS = ("up", "down")


class ConsoleExit(Exception):
    """Raised from a signal handler to leave the loop cleanly."""


class DockerConsole:
    title = "Docker Manager"

    def __init__(self, backend: DockerBackend, runner, skip_confirm: bool = False):
        cfg = config_manager.get_config()
        self.backend = backend
        self.show_summary = cfg.ui.show_header_summary
        self.loader = ResourceLoader(backend)
        self.view_model = ViewModel(self.loader, ResourceKind.CONTAINERS)
        self.executor = DockerExecutor(backend, runner, cfg.docker)
        self.dispatcher = Dispatcher(self.view_model, DOCKER_VIEWS, DOCKER_VIEW_ACTIONS,
                                     DOCKER_GLOBAL_ACTIONS, self.executor, skip_confirm)
        self.summary = ""

    def reload(self) -> None:
        self.view_model.reload()
        if self.show_summary:
            s = self.backend.summary()
            self.summary = (f"Containers: {s['running']}/{s['containers']} running | "
                            f"Images: {s['images']} | Volumes: {s['volumes']}")

    def handle(self, key) -> bool:
        return self.dispatcher.handle(key)

    def frame(self, width: int) -> Frame:
        kind = self.view_model.current_view
        usage = self.loader.usage_index if kind == ResourceKind.VOLUMES else None
        entries = [(a.keys[0], a.label) for a in self.dispatcher.actions_for(kind)
                   if a.name not in _NAV_ACTIONS]
        rows = [docker_row(item, usage) for item in self.view_model.items]
        if not rows:
            rows = [docker_row(f"No {kind.value}")]
        return Frame(
            title=self.title,
            tabs=[k.label for k in DOCKER_VIEWS.values()],
            active_tab=list(DOCKER_VIEWS.values()).index(kind),
            summary=self.summary,
            header=docker_header(kind.value),
            rows=rows,
            selected_index=self.view_model.selected_index if self.view_model.items else None,
            menu=menu_lines(entries, width),
            status=self.dispatcher.status,
            prompt=self.dispatcher.prompt,
        )


def run_console(stdscr, console, decoder: InputDecoder) -> None:
    """
    Run the console loop until quit.

    Raises:
        ManagerUnavailable: The manager stopped answering (fatal)
    """
    while True:
        h, w = stdscr.getmaxyx()
        try:
            console.reload()
        except ManagerUnavailable:
            raise
        except Exception as e:
            logger.error(f"Reload failed: {e}", exc_info=True)
            console.dispatcher.status = StatusMessage.error(f"Error: {e}")

        draw_frame(stdscr, console.frame(w))
        key = decoder.read_key()

        try:
            if not console.handle(key):
                logger.info("Quit requested")
                break
        except ManagerUnavailable:
            raise
        except Exception as e:
            logger.error(f"Action failed: {e}", exc_info=True)
            console.dispatcher.status = StatusMessage.error(f"Error: {e}")


def _raise_exit(signum, frame):
    raise ConsoleExit(signum)


def _session(stdscr, factory: Callable) -> None:
    try:
        prev_cursor = curses.curs_set(0)
    except curses.error:
        prev_cursor = None
    try:
        stdscr.keypad(False)  # escape sequences are decoded by InputDecoder
        init_colors()
        console = factory(stdscr)
        decoder = InputDecoder(CursesInput(stdscr), config_manager.get_escape_timeout())
        run_console(stdscr, console, decoder)
    finally:
        if prev_cursor is not None:
            try:
                curses.curs_set(prev_cursor)
            except curses.error:
                pass


def run(factory: Callable) -> int:
    """
    Run a console under curses.

    Args:
        factory: Builds the console from the curses window

    Returns:
        int: Exit code (0 on quit or signal, 1 when the manager is unreachable)
    """
    configure_logging()
    previous = {}
    for sig in (signal.SIGTERM, signal.SIGHUP):
        previous[sig] = signal.signal(sig, _raise_exit)
    try:
        curses.wrapper(_session, factory)
    except ManagerUnavailable as e:
        logger.critical(f"Docker unreachable: {e}")
        print(f"[ERROR] Docker daemon is not running or you don't have permission: {e}", file=sys.stderr)
        return 1
    except (KeyboardInterrupt, ConsoleExit) as e:
        logger.info(f"Console interrupted ({type(e).__name__})")
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    return 0


def run_docker_console(skip_confirm: bool = False, backend: Optional[DockerBackend] = None) -> int:
    def factory(stdscr):
        b = backend or DockerBackend(protected_networks=config_manager.get_config().docker.protected_networks)
        b.ping()
        return DockerConsole(b, TerminalRunner(stdscr), skip_confirm)
    return run(factory)


def run_ftp_console(skip_confirm: bool = False) -> int:
    from .ftp import FtpBackend
    from .ftp_console import FtpConsole

    def factory(stdscr):
        backend = FtpBackend(config_manager.get_config().ftp)
        return FtpConsole(backend, TerminalRunner(stdscr), lambda p: prompt_input(stdscr, p), skip_confirm)
    return run(factory)


if __name__ == "__main__":
    sys.exit(run_docker_console())
