"""
Action dispatching for the consoles.

The Dispatcher is a small state machine:

    IDLE --key--> direct action ------------------------------> IDLE
    IDLE --key--> destructive action --> AWAITING_CONFIRMATION
    AWAITING_CONFIRMATION --y/Y--> EXECUTING --> IDLE
    AWAITING_CONFIRMATION --other key--> IDLE ("Cancelled")

A key is looked up in the current view's table first, then in the global
table. The target of a single-item action is resolved when the key is
pressed and carried by the PendingConfirmation, so the prompt and the
mutation always name the same resource. Navigation, view switching and quit
are handled here; everything else goes to an executor (Docker or FTP).
"""

import json
import logging
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

from .backend import DockerBackend, ResourceNotFound
from .config import DockerConfig
from .keys import Key, KeyKind
from .main_bulk import BULK_ACTIONS, BULK_SUCCESS, NUKE_PROMPTS, run_bulk, run_teardown, teardown_status
from .model import (
    Action, NetworkInfo, PendingConfirmation, ResourceKind, StatusMessage, Target,
)
from .state import Direction, ViewModel

logger = logging.getLogger(__name__)


class Mode(Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXECUTING = "executing"


class Dispatcher:
    """
    Routes decoded keys to actions for one console.

    Args:
        view_model: ViewModel of the console
        views: Maps a view key ("1".."4") to the view it selects
        view_actions: Per-view action tables
        global_actions: Actions available in every view
        executor: Runs actions; see DockerExecutor for the interface
        skip_confirm: Execute destructive actions without prompting
    """

    def __init__(self, view_model: ViewModel, views: Mapping[str, object],
                 view_actions: Mapping[object, Sequence[Action]],
                 global_actions: Sequence[Action], executor,
                 skip_confirm: bool = False):
        self.view_model = view_model
        self.views = dict(views)
        self.view_actions = view_actions
        self.global_actions = list(global_actions)
        self.executor = executor
        self.skip_confirm = skip_confirm
        self.mode = Mode.IDLE
        self.pending: Optional[PendingConfirmation] = None
        self.status: Optional[StatusMessage] = None

    # --- Lookup ---

    def actions_for(self, view) -> List[Action]:
        """Actions of ``view`` that are currently available, view table first."""
        actions = list(self.view_actions.get(view, ())) + self.global_actions
        return [a for a in actions if self.executor.available(a, view)]

    def lookup(self, key: Key) -> Optional[Action]:
        if key.kind == KeyKind.UP:
            wanted = "up"
        elif key.kind == KeyKind.DOWN:
            wanted = "down"
        elif key.kind == KeyKind.CHAR:
            wanted = None
        else:
            return None
        for action in self.actions_for(self.view_model.current_view):
            if wanted is not None:
                if action.name == wanted:
                    return action
            elif key.char in action.keys:
                return action
        return None

    @property
    def prompt(self) -> Optional[str]:
        return self.pending.prompt if self.pending else None

    # --- Key handling ---

    def handle(self, key: Key) -> bool:
        """
        Process one key.

        Returns:
            bool: False when the console should quit
        """
        self.status = None
        if self.mode == Mode.AWAITING_CONFIRMATION:
            self._answer(key)
            return True

        if key.kind == KeyKind.CHAR and key.char in self.views:
            self.view_model.switch_view(self.views[key.char])
            return True

        action = self.lookup(key)
        if action is None:
            return True
        if action.name == "quit":
            return False
        if action.name == "up":
            self.view_model.move_selection(Direction.UP)
            return True
        if action.name == "down":
            self.view_model.move_selection(Direction.DOWN)
            return True

        view = self.view_model.current_view
        target = None
        if action.needs_selection:
            item = self.view_model.selected_item
            if item is None:
                self.status = StatusMessage.error(f"No {self._singular(view)} selected")
                return True
            target = Target(item.id, item.display_name)
            guard = self.executor.guard(action, view, item)
            if guard is not None:
                self.status = guard
                return True

        if action.destructive and not self.skip_confirm:
            self.pending = PendingConfirmation(
                action=action.name,
                prompt=action.prompts[0].format(name=target.name if target else ""),
                target=target,
                remaining=len(action.prompts),
            )
            self.mode = Mode.AWAITING_CONFIRMATION
            return True

        self._execute(action, view, target)
        return True

    def _answer(self, key: Key) -> None:
        pending = self.pending
        view = self.view_model.current_view
        if key.kind != KeyKind.CHAR or key.char not in ("y", "Y"):
            logger.info(f"Cancelled {pending.action}")
            self.pending = None
            self.mode = Mode.IDLE
            self.status = StatusMessage.warn("Cancelled")
            return

        action = self._find(view, pending.action)
        if pending.remaining > 1:
            step = len(action.prompts) - pending.remaining + 1
            name = pending.target.name if pending.target else ""
            self.pending = PendingConfirmation(
                pending.action, action.prompts[step].format(name=name),
                pending.target, pending.remaining - 1,
            )
            return

        self.pending = None
        self._execute(action, view, pending.target)

    def _execute(self, action: Action, view, target: Optional[Target]) -> None:
        self.mode = Mode.EXECUTING
        try:
            self.status = self.executor.execute(action, view, target)
        except ResourceNotFound as e:
            self.status = StatusMessage.error(str(e))
        finally:
            self.mode = Mode.IDLE

    def _find(self, view, name: str) -> Action:
        for action in list(self.view_actions.get(view, ())) + self.global_actions:
            if action.name == name:
                return action
        raise KeyError(name)

    @staticmethod
    def _singular(view) -> str:
        return getattr(view, "singular", str(getattr(view, "value", view)))


# --- Docker console ---

DOCKER_VIEWS = {
    "1": ResourceKind.CONTAINERS,
    "2": ResourceKind.IMAGES,
    "3": ResourceKind.VOLUMES,
    "4": ResourceKind.NETWORKS,
}

DOCKER_GLOBAL_ACTIONS = [
    Action("up", "kK", "Up"),
    Action("down", "jJ", "Down"),
    Action("prune", "pP", "Prune", ("Prune unused Docker resources?",)),
    Action("nuke", "N", "Nuke", NUKE_PROMPTS),
    Action("refresh", "f", "Refresh"),
    Action("stats", "?", "Stats"),
    Action("quit", "qQ", "Quit"),
]


def _delete(kind: ResourceKind) -> Action:
    return Action("delete", "d", "Delete", (f"Delete {kind.singular} '{{name}}'?",), needs_selection=True)


def _inspect() -> Action:
    return Action("inspect", "i", "Inspect", needs_selection=True)


DOCKER_VIEW_ACTIONS: Dict[ResourceKind, List[Action]] = {
    ResourceKind.CONTAINERS: [
        Action("start", "s", "Start", needs_selection=True),
        Action("stop", "t", "Stop", needs_selection=True),
        Action("restart", "r", "Restart", needs_selection=True),
        Action("logs", "l", "Logs", needs_selection=True),
        Action("shell", "h", "Shell", needs_selection=True),
        _inspect(),
        _delete(ResourceKind.CONTAINERS),
        Action("destroy", "D", "Destroy+vols",
               ("Destroy container '{name}' AND volumes?",), needs_selection=True),
    ] + BULK_ACTIONS[ResourceKind.CONTAINERS],
    ResourceKind.IMAGES: [
        _inspect(), _delete(ResourceKind.IMAGES),
    ] + BULK_ACTIONS[ResourceKind.IMAGES],
    ResourceKind.VOLUMES: [
        _inspect(), _delete(ResourceKind.VOLUMES),
    ] + BULK_ACTIONS[ResourceKind.VOLUMES],
    ResourceKind.NETWORKS: [
        _inspect(), _delete(ResourceKind.NETWORKS),
    ] + BULK_ACTIONS[ResourceKind.NETWORKS],
}

# action -> (adapter verb, success text, failure verb)
_SINGLE = {
    "start": ("start", "Started {kind}: {name}", "start"),
    "stop": ("stop", "Stopped {kind}: {name}", "stop"),
    "restart": ("restart", "Restarted {kind}: {name}", "restart"),
    "delete": ("remove", "Deleted {kind}: {name}", "delete"),
    "destroy": ("destroy", "Destroyed container and volumes: {name}", "destroy"),
}


class DockerExecutor:
    """
    Runs Docker console actions.

    Mutations go through the backend; logs, shell, inspect and stats run
    with the terminal handed over through ``runner`` (ui.TerminalRunner).
    """

    def __init__(self, backend: DockerBackend, runner, docker_config: Optional[DockerConfig] = None):
        self.backend = backend
        self.runner = runner
        self.config = docker_config or DockerConfig()

    def available(self, action: Action, view) -> bool:
        return True

    def guard(self, action: Action, view, item) -> Optional[StatusMessage]:
        if (action.name == "delete" and isinstance(item, NetworkInfo)
                and self.backend.is_protected_network(item.name)):
            return StatusMessage.error("Cannot delete default network")
        return None

    def execute(self, action: Action, view: ResourceKind, target: Optional[Target]) -> Optional[StatusMessage]:
        name = action.name
        if name in _SINGLE:
            return self._single(view, name, target)
        if (view, name) in BULK_SUCCESS:
            return run_bulk(self.backend, view, name)
        if name == "prune":
            result = self.backend.prune_system()
            if result.ok:
                return StatusMessage.success("Pruned unused resources")
            return StatusMessage.error(f"Prune failed: {result.message}")
        if name == "nuke":
            return teardown_status(run_teardown(self.backend))
        if name == "refresh":
            return StatusMessage.success("Refreshed")
        if name == "logs":
            lines = self.backend.get_logs(target.id, tail=self.config.log_tail)
            self.runner.page(f"Logs: {target.name}", lines)
            return None
        if name == "shell":
            cmds = self.backend.shell_command(target.id, self.config.default_shell, self.config.fallback_shell)
            if self.runner.run(cmds, title=f"Shell: {target.name} (exit to return)") not in (0, 130):
                return StatusMessage.error(f"Could not open shell: {target.name}")
            return None
        if name == "inspect":
            data = self.backend.inspect(view, target.id)
            self.runner.page(f"Inspect: {target.name}", json.dumps(data, indent=2, default=str).splitlines())
            return None
        if name == "stats":
            self.runner.page("Docker Stats", self.stats_lines())
            return None
        logger.warning(f"No handler for action {name} in {view}")
        return None

    def _single(self, view: ResourceKind, name: str, target: Target) -> StatusMessage:
        verb, success, failure_verb = _SINGLE[name]
        result = self.backend.mutate(view, verb, target.id)
        if result.ok:
            logger.info(f"{name} {view.singular} {target.name}: ok")
            return StatusMessage.success(success.format(kind=view.singular, name=target.name))
        logger.warning(f"{name} {view.singular} {target.name} failed: {result.message}")
        return StatusMessage.error(f"Failed to {failure_verb}: {target.name} ({result.message})")

    def stats_lines(self) -> List[str]:
        lines = [f"{'CONTAINER':<14} {'NAME':<30} {'CPU %':>8} {'MEM':>10}"]
        rows = self.backend.stats_rows()
        if not rows:
            lines.append("No running containers")
        for short_id, cname, cpu, mem in rows:
            lines.append(f"{short_id:<14} {cname:<30} {cpu:>8} {mem:>10}")
        lines += ["", f"{'TYPE':<16} {'TOTAL':>6} {'SIZE':>12}"]
        for kind, count, size_mb in self.backend.disk_usage():
            lines.append(f"{kind:<16} {count:>6} {size_mb:>10.1f}MB")
        return lines
