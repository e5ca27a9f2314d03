"""
View model: which view is shown, its items, and the selected row.

The console is single-threaded, so there are no workers and no locks: the
view state is an explicit value owned by ViewModel and every transition is a
pure function returning a new ViewState.

Transitions:
  - switch_view: new view, fresh items, selection reset to 0
  - move_selection: one row up or down, clamped at both ends (no wraparound)
  - reload: fresh items for the same view, selection kept when still in
    range, otherwise clamped to the new last row (0 when empty)

Rendering derives the scroll offset from the selection and the viewport
height (scroll_offset) instead of storing it.
"""

import logging
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

from .backend import DockerBackend
from .model import ResourceKind, UsageIndex, ViewState

logger = logging.getLogger(__name__)


class Direction(Enum):
    UP = -1
    DOWN = 1


def _clamp(index: int, count: int) -> int:
    if count <= 0:
        return 0
    return max(0, min(index, count - 1))


def switch_view(state: ViewState, view: Any, items: Iterable[Any]) -> ViewState:
    return ViewState(current_view=view, items=tuple(items), selected_index=0)


def move_selection(state: ViewState, direction: Direction) -> ViewState:
    new_idx = _clamp(state.selected_index + direction.value, len(state.items))
    if new_idx == state.selected_index:
        return state
    return ViewState(state.current_view, state.items, new_idx)


def reload(state: ViewState, items: Iterable[Any]) -> ViewState:
    items = tuple(items)
    return ViewState(state.current_view, items, _clamp(state.selected_index, len(items)))


def scroll_offset(selected_index: int, viewport_height: int) -> int:
    """First visible row so that the selected row stays on screen."""
    if viewport_height <= 0 or selected_index < viewport_height:
        return 0
    return selected_index - viewport_height + 1


class ResourceLoader:
    """
    Loads Docker inventories for the view model.

    Loading the volume view also rebuilds the usage index from the same
    volume listing, so the "used by" column never lags the list.
    """

    def __init__(self, backend: DockerBackend):
        self.backend = backend
        self.usage_index: UsageIndex = {}

    def __call__(self, kind: ResourceKind) -> List[Any]:
        items = self.backend.list_resources(kind)
        if kind == ResourceKind.VOLUMES:
            self.usage_index = self.backend.usage_index(items)
            logger.debug(f"Usage index rebuilt for {len(items)} volumes")
        return items


class ViewModel:
    """Owns the current ViewState and applies transitions to it."""

    def __init__(self, loader: Callable[[Any], Iterable[Any]], initial_view: Any):
        self.loader = loader
        self.state = ViewState(current_view=initial_view)

    @property
    def current_view(self) -> Any:
        return self.state.current_view

    @property
    def items(self) -> tuple:
        return self.state.items

    @property
    def selected_index(self) -> int:
        return self.state.selected_index

    @property
    def selected_item(self) -> Optional[Any]:
        return self.state.selected_item

    def switch_view(self, view: Any) -> None:
        self.state = switch_view(self.state, view, self.loader(view))

    def move_selection(self, direction: Direction) -> None:
        self.state = move_selection(self.state, direction)

    def reload(self) -> None:
        self.state = reload(self.state, self.loader(self.state.current_view))
