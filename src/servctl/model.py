"""
Data models for servctl consoles and commands.

Every record is a frozen dataclass: the manager is the source of truth, so a
listing is rebuilt in full on each load and items are replaced wholesale,
never edited in place.

Data Classes:
  - ContainerInfo, ImageInfo, VolumeInfo, NetworkInfo: one per resource kind,
    each exposing ``id``, ``display_name`` and the kind-specific ``fields``
  - VolumeUsage: one entry of the volume usage index
  - ViewState: current view, its items and the selected row
  - Target / PendingConfirmation: a destructive action waiting for y/N
  - StatusMessage: the single most recent notification
  - MutationResult / StepResult: outcome of a manager mutation
  - FtpView, FtpStatus, ConfigEntry, CheckResult: FTP console records
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class ResourceKind(str, Enum):
    CONTAINERS = "containers"
    IMAGES = "images"
    VOLUMES = "volumes"
    NETWORKS = "networks"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def singular(self) -> str:
        return self.value[:-1]


@dataclass(frozen=True)
class ContainerInfo:
    id: str
    short_id: str
    name: str
    image: str
    status: str  # human readable, e.g. "Up 2 hours"
    state: str = ""  # running, exited, paused, ...
    ports: str = ""
    mounts: Tuple[str, ...] = ()  # named volumes only

    @property
    def display_name(self) -> str:
        return self.name

    @property
    def fields(self) -> Tuple[str, ...]:
        return (self.image, self.status)

    @property
    def is_running(self) -> bool:
        return self.state == "running"


@dataclass(frozen=True)
class ImageInfo:
    id: str
    short_id: str
    tags: Tuple[str, ...]
    size_mb: float
    created: str

    @property
    def display_name(self) -> str:
        return self.tags[0] if self.tags else "<none>:<none>"

    @property
    def fields(self) -> Tuple[str, ...]:
        return (f"{self.size_mb:.1f}MB", self.created)

    @property
    def dangling(self) -> bool:
        return not self.tags


@dataclass(frozen=True)
class VolumeInfo:
    name: str
    driver: str
    mountpoint: str = ""

    @property
    def id(self) -> str:
        return self.name

    @property
    def display_name(self) -> str:
        return self.name

    @property
    def fields(self) -> Tuple[str, ...]:
        return (self.driver,)


@dataclass(frozen=True)
class NetworkInfo:
    id: str
    short_id: str
    name: str
    driver: str
    scope: str

    @property
    def display_name(self) -> str:
        return self.name

    @property
    def fields(self) -> Tuple[str, ...]:
        return (self.driver, self.scope)


ResourceItem = Union[ContainerInfo, ImageInfo, VolumeInfo, NetworkInfo]


@dataclass
class VolumeUsage:
    """Containers referencing one volume, in first-seen order."""
    referencing_containers: List[str] = field(default_factory=list)
    originating_image: str = ""

    def add(self, container_name: str, image: str) -> None:
        if not self.referencing_containers:
            self.originating_image = image
        if container_name not in self.referencing_containers:
            self.referencing_containers.append(container_name)

    @property
    def used_by(self) -> str:
        if not self.referencing_containers:
            return "(unused)"
        return ", ".join(self.referencing_containers)


UsageIndex = Dict[str, VolumeUsage]


@dataclass(frozen=True)
class ViewState:
    current_view: Any
    items: Tuple[Any, ...] = ()
    selected_index: int = 0

    @property
    def selected_item(self) -> Optional[Any]:
        if 0 <= self.selected_index < len(self.items):
            return self.items[self.selected_index]
        return None


class StatusKind(str, Enum):
    SUCCESS = "success"
    WARN = "warn"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class StatusMessage:
    text: str
    kind: StatusKind = StatusKind.INFO

    @classmethod
    def success(cls, text: str) -> "StatusMessage":
        return cls(text, StatusKind.SUCCESS)

    @classmethod
    def warn(cls, text: str) -> "StatusMessage":
        return cls(text, StatusKind.WARN)

    @classmethod
    def error(cls, text: str) -> "StatusMessage":
        return cls(text, StatusKind.ERROR)


@dataclass(frozen=True)
class Target:
    id: str
    name: str


@dataclass(frozen=True)
class PendingConfirmation:
    action: str
    prompt: str
    target: Optional[Target] = None  # None for bulk actions
    remaining: int = 1


@dataclass(frozen=True)
class MutationResult:
    ok: bool
    message: str = ""
    applied: int = 0
    failed: int = 0

    @classmethod
    def success(cls, message: str = "", applied: int = 1) -> "MutationResult":
        return cls(True, message, applied=applied)

    @classmethod
    def failure(cls, message: str, failed: int = 1) -> "MutationResult":
        return cls(False, message, failed=failed)


@dataclass(frozen=True)
class StepResult:
    step: str
    ok: bool
    detail: str = ""


# --- FTP console ---

class FtpView(str, Enum):
    STATUS = "status"
    CONFIG = "config"
    LOGS = "logs"
    TOOLS = "tools"

    @property
    def label(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class ConfigEntry:
    key: str
    value: str


@dataclass(frozen=True)
class FtpStatus:
    installed: bool
    running: bool = False
    port: str = "21"
    root: str = ""
    anonymous: str = "NO"
    uploads: bool = False
    passive: bool = False
    pasv_min_port: str = ""
    pasv_max_port: str = ""
    pasv_address: str = ""
    addresses: Tuple[str, ...] = ()

    @property
    def passive_range(self) -> str:
        return f"{self.pasv_min_port}:{self.pasv_max_port}"


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str = ""


# --- Console actions ---

@dataclass(frozen=True)
class Action:
    """
    One key binding of a console view.

    An action with prompts is destructive: each prompt must be answered
    with y/Y before it runs. ``{name}`` in a prompt is the target resolved
    at key press.
    """
    name: str
    keys: str
    label: str
    prompts: Tuple[str, ...] = ()
    needs_selection: bool = False

    @property
    def destructive(self) -> bool:
        return bool(self.prompts)
