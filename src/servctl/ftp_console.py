"""
FTP console: status, configuration, logs and tools views for vsftpd.

Keys are case-insensitive. Which keys are live depends on the server state
(read once per reload): only Install while vsftpd is missing, Start while it
is stopped, Stop while it runs. Unavailable keys are ignored. j/k and the
arrow keys move a row cursor so long config and log views scroll.
"""

import logging
from typing import List, Optional

from .ftp import FtpBackend, FtpError
from .main_actions import Dispatcher
from .model import Action, FtpStatus, FtpView, MutationResult, StatusMessage, Target
from .state import ViewModel
from .ui import Frame, Row, menu_lines

logger = logging.getLogger(__name__)

FTP_VIEWS = {
    "1": FtpView.STATUS,
    "2": FtpView.CONFIG,
    "3": FtpView.LOGS,
    "4": FtpView.TOOLS,
}

FTP_GLOBAL_ACTIONS = [
    Action("up", "kK", "Up"),
    Action("down", "jJ", "Down"),
    Action("install", "iI", "Install"),
    Action("start", "sS", "Start"),
    Action("stop", "tT", "Stop"),
    Action("restart", "rR", "Restart"),
    Action("set_root", "dD", "Set dir"),
    Action("configure", "cC", "Configure", ("Reset vsftpd configuration for anonymous access?",)),
    Action("enable_uploads", "wW", "Enable uploads"),
    Action("disable_uploads", "oO", "Disable uploads"),
    Action("set_port", "pP", "Set port"),
    Action("open_firewall", "fF", "Open firewall"),
    Action("close_firewall", "xX", "Close firewall"),
    Action("uninstall", "uU", "Uninstall", ("Uninstall vsftpd?",)),
    Action("refresh", "lL", "Refresh"),
    Action("quit", "qQ", "Quit"),
]

FTP_VIEW_ACTIONS = {
    FtpView.TOOLS: [
        Action("test", "tT", "Connection test"),
        Action("diagnose", "dD", "Diagnostics"),
    ],
}

# actions run with the terminal handed over, output left on screen
_LONG_RUNNING = {
    "install": ("Installing vsftpd", "install"),
    "uninstall": ("Uninstalling vsftpd", "uninstall"),
    "configure": ("Configuring vsftpd for Anonymous Access", "configure"),
    "enable_uploads": ("Enabling Uploads", "enable_uploads"),
    "disable_uploads": ("Disabling Uploads", "disable_uploads"),
    "open_firewall": ("Opening Firewall Ports", "open_firewall"),
    "close_firewall": ("Closing Firewall Ports", "close_firewall"),
}


def result_status(result: MutationResult) -> StatusMessage:
    if not result.ok:
        return StatusMessage.error(result.message)
    if result.applied == 0:
        return StatusMessage.warn(result.message)
    return StatusMessage.success(result.message)


class FtpExecutor:
    """
    Runs FTP console actions.

    Args:
        backend: FtpBackend instance
        runner: ui.TerminalRunner (or a test double)
        prompt_fn: Reads one line of text; returns None when cancelled
    """

    def __init__(self, backend: FtpBackend, runner, prompt_fn):
        self.backend = backend
        self.runner = runner
        self.prompt_fn = prompt_fn
        self.status = FtpStatus(installed=False)

    def available(self, action: Action, view) -> bool:
        name = action.name
        if name in ("quit", "refresh", "up", "down"):
            return True
        if name == "install":
            return not self.status.installed
        if not self.status.installed:
            return False
        if name == "start":
            return not self.status.running
        if name == "stop":
            return self.status.running
        return True

    def guard(self, action: Action, view, item) -> Optional[StatusMessage]:
        return None

    def execute(self, action: Action, view, target: Optional[Target]) -> Optional[StatusMessage]:
        name = action.name
        if name == "refresh":
            return StatusMessage.success("Refreshed")
        try:
            if name in _LONG_RUNNING:
                title, method = _LONG_RUNNING[name]
                return result_status(self.runner.call(title, getattr(self.backend, method)))
            if name == "start":
                return result_status(self.backend.start())
            if name == "stop":
                return result_status(self.backend.stop())
            if name == "restart":
                return result_status(self.backend.restart())
            if name == "set_port":
                return self._set_port()
            if name == "set_root":
                return self._set_root()
            if name == "test":
                self.runner.page("FTP Connection Test", check_lines(self.backend.test_connection()))
                return None
            if name == "diagnose":
                self.runner.page("FTP Server Diagnostics", check_lines(self.backend.diagnose(), numbered=True))
                return None
        except FtpError as e:
            return StatusMessage.error(str(e))
        return None

    def _set_port(self) -> StatusMessage:
        value = self.prompt_fn(f"Enter new FTP port [{self.backend.port}]: ")
        if not value:
            return StatusMessage.warn("Cancelled")
        return result_status(self.backend.set_port(value))

    def _set_root(self) -> StatusMessage:
        path = self.prompt_fn(f"Enter new FTP root directory [{self.backend.root}]: ")
        if not path:
            return StatusMessage.warn("Cancelled")
        try:
            return result_status(self.backend.set_root(path))
        except FtpError:
            answer = self.prompt_fn("Directory does not exist. Create it? [y/N]: ")
            if answer not in ("y", "Y"):
                return StatusMessage.warn("Cancelled")
            return result_status(self.backend.set_root(path, create=True))


def check_lines(checks, numbered: bool = False) -> List[str]:
    lines = []
    total = len(checks)
    for i, check in enumerate(checks, 1):
        mark = "OK  " if check.ok else "FAIL"
        prefix = f"[{i}/{total}] " if numbered else ""
        lines.append(f"{prefix}{mark} {check.name}: {check.detail}".rstrip(": "))
    issues = sum(1 for c in checks if not c.ok)
    lines.append("")
    lines.append("All checks passed!" if not issues else f"Found {issues} issue(s) - see above")
    return lines


class FtpConsole:
    title = "FTP Server Manager"

    def __init__(self, backend: FtpBackend, runner, prompt_fn, skip_confirm: bool = False):
        self.backend = backend
        self.executor = FtpExecutor(backend, runner, prompt_fn)
        self.view_model = ViewModel(self._load, FtpView.STATUS)
        self.dispatcher = Dispatcher(self.view_model, FTP_VIEWS, FTP_VIEW_ACTIONS,
                                     FTP_GLOBAL_ACTIONS, self.executor, skip_confirm)

    def reload(self) -> None:
        self.view_model.reload()

    def handle(self, key) -> bool:
        return self.dispatcher.handle(key)

    def _load(self, view: FtpView) -> List[Row]:
        self.executor.status = self.backend.status()
        return self.view_rows(view)

    def view_rows(self, view: FtpView) -> List[Row]:
        st = self.executor.status
        if view == FtpView.STATUS:
            return self._status_rows(st)
        if view == FtpView.CONFIG:
            if not self.backend.config.exists():
                return [Row("Configuration file not found", 6)]
            rows = [Row(f"Current Configuration: {self.backend.config.path}", 4), Row("")]
            return rows + [Row(f"{e.key:<25} = {e.value}") for e in self.backend.config.entries()]
        if view == FtpView.LOGS:
            return [Row("Recent Logs:", 4), Row("")] + [Row(l) for l in self.backend.logs()]
        return self._tools_rows(st)

    def _status_rows(self, st: FtpStatus) -> List[Row]:
        if not st.installed:
            return [Row("vsftpd is not installed", 6), Row(""), Row("Press [I] to install vsftpd")]
        rows = [
            Row(f"{'Service:':<20} {'Running' if st.running else 'Stopped'}", 2 if st.running else 3),
            Row(f"{'FTP Root:':<20} {st.root}"),
            Row(f"{'Port:':<20} {st.port}"),
            Row(f"{'Anonymous Access:':<20} {st.anonymous}"),
        ]
        if st.uploads:
            rows.append(Row(f"{'Uploads:':<20} Enabled ({st.root}/uploads)", 2))
        else:
            rows.append(Row(f"{'Uploads:':<20} Disabled (read-only)", 6))
        if st.passive:
            rows.append(Row(f"{'Passive Mode:':<20} Enabled (ports {st.passive_range})", 2))
        else:
            rows.append(Row(f"{'Passive Mode:':<20} Disabled", 6))
        rows += [Row(""), Row("Connection URLs:", 4)]
        for ip in st.addresses[:3] or ("localhost",):
            rows.append(Row(f"  ftp://{ip}:{st.port}", 4))
        contents = self.backend.root_contents()
        rows.append(Row(""))
        if contents is None:
            rows.append(Row(f"Root directory does not exist: {st.root}", 6))
        else:
            rows.append(Row(f"Root Contents: {contents[0]} files, {contents[1]} directories"))
        return rows

    def _tools_rows(self, st: FtpStatus) -> List[Row]:
        fw = self.backend.firewall()
        rows = [
            Row("Quick Actions:", 4),
            Row("  [T] Run connection test"),
            Row("  [D] Run full diagnostics"),
            Row(""),
            Row("Firewall:", 4),
            Row(f"  Status: {fw + ' active' if fw else 'No firewall detected'}", 2 if fw else 6),
            Row("  [F] Open firewall ports"),
            Row("  [X] Close firewall ports"),
            Row(""),
            Row("Network Info:", 4),
            Row(f"  FTP Port: {st.port}"),
            Row(f"  Passive Ports: {st.passive_range}"),
            Row(""),
            Row("Server IPs:", 4),
        ]
        return rows + [Row(f"  {ip}", 4) for ip in st.addresses[:4]]

    def frame(self, width: int) -> Frame:
        view = self.view_model.current_view
        st = self.executor.status
        if st.installed:
            summary = f"vsftpd: {'running' if st.running else 'stopped'} | port {st.port} | root {st.root}"
        else:
            summary = "vsftpd: not installed"
        entries = []
        seen = set()
        for a in self.dispatcher.actions_for(view):
            key = a.keys[0].upper()
            if a.name in ("up", "down"):
                continue
            if key not in seen:
                seen.add(key)
                entries.append((key, a.label))
        return Frame(
            title=self.title,
            tabs=[v.label for v in FTP_VIEWS.values()],
            active_tab=list(FTP_VIEWS.values()).index(view),
            summary=summary,
            rows=list(self.view_model.items),
            selected_index=self.view_model.selected_index if self.view_model.items else None,
            menu=menu_lines(entries, width),
            status=self.dispatcher.status,
            prompt=self.dispatcher.prompt,
        )
