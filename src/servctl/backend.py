"""
Docker API wrapper: the resource query adapter.

This module provides a typed interface to the Docker engine via the
docker-py library. It abstracts Docker API calls and provides methods for:
  - Listing resources (containers, images, volumes, networks), one request
    per kind, each raw row parsed into a typed record
  - Inspecting a single resource
  - Mutating resources (start/stop/restart/remove, bulk removals, prunes)
  - Header counts, logs, stats and disk usage for the console and CLI

Error Handling:
  - Engine unreachable -> ManagerUnavailable, raised from any call
  - Engine too slow to answer -> ManagerTimeout (a ManagerUnavailable)
  - Unknown id on inspect -> ResourceNotFound
  - Unknown id on mutation -> failed MutationResult ("not found")
  - Rejected mutation (in use, conflict) -> failed MutationResult with the
    engine's explanation
  - Malformed listing rows -> logged and skipped (MalformedRecord)

Mutations are never retried. Bulk mutations resolve their targets with a fresh
listing, issue one call per target, do not roll back, and report counts.

Dependencies:
  - docker>=7.0.0 (docker-py client)
  - requests (transport errors raised by docker-py)
"""

import datetime
import functools
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import docker
import docker.errors
import requests

from .model import (
    ContainerInfo, ImageInfo, MutationResult, NetworkInfo, ResourceKind,
    UsageIndex, VolumeInfo,
)
from .usage import build_usage_index

logger = logging.getLogger(__name__)

_CONNECTION_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)


class ManagerUnavailable(Exception):
    """The Docker engine cannot be reached."""


class ManagerTimeout(ManagerUnavailable):
    """The engine accepted the connection but did not answer in time."""


class ResourceNotFound(Exception):
    """The requested resource does not exist."""


class MalformedRecord(ValueError):
    """A listing row lacks a mandatory field."""


def _explain(error: Exception) -> str:
    explanation = getattr(error, "explanation", None)
    return str(explanation or error)


def manager_call(func: Callable) -> Callable:
    """Convert transport failures into ManagerUnavailable."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except requests.exceptions.ReadTimeout as e:
            logger.error(f"Docker timed out in {func.__name__}: {e}")
            raise ManagerTimeout(str(e)) from e
        except _CONNECTION_ERRORS as e:
            logger.error(f"Docker unreachable in {func.__name__}: {e}")
            raise ManagerUnavailable(str(e)) from e
    return wrapper


def docker_safe(action: str) -> Callable:
    """
    Decorator for mutating Docker calls.

    API errors are logged and returned as a failed MutationResult so the
    console can report them; transport errors still raise ManagerUnavailable.

    Usage:
        @docker_safe("start container")
        def start_container(self, container_id: str) -> MutationResult:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> MutationResult:
            try:
                return func(*args, **kwargs)
            except docker.errors.NotFound as e:
                logger.warning(f"{action} failed, not found: {_explain(e)}")
                return MutationResult.failure("not found")
            except docker.errors.APIError as e:
                logger.error(f"{action} failed: {_explain(e)}")
                return MutationResult.failure(_explain(e))
        return manager_call(wrapper)
    return decorator


# --- Parsers ---

def _format_ports(ports: Iterable[Dict[str, Any]]) -> str:
    parts = []
    for port in ports:
        private = port.get("PrivatePort")
        if private is None:
            continue
        proto = port.get("Type", "tcp")
        public = port.get("PublicPort")
        if public:
            parts.append(f"{port.get('IP', '0.0.0.0')}:{public}->{private}/{proto}")
        else:
            parts.append(f"{private}/{proto}")
    return ", ".join(parts)


def parse_container(raw: Dict[str, Any]) -> ContainerInfo:
    container_id = raw.get("Id")
    names = raw.get("Names") or []
    if not container_id or not names:
        raise MalformedRecord(f"container row without id or name: {raw!r:.80}")
    mounts = tuple(
        m["Name"] for m in raw.get("Mounts") or []
        if m.get("Type") == "volume" and m.get("Name")
    )
    return ContainerInfo(
        id=container_id,
        short_id=container_id[:12],
        name=names[0].lstrip("/"),
        image=raw.get("Image") or "",
        status=raw.get("Status") or "",
        state=raw.get("State") or "",
        ports=_format_ports(raw.get("Ports") or []),
        mounts=mounts,
    )


def parse_image(raw: Dict[str, Any]) -> ImageInfo:
    image_id = raw.get("Id")
    if not image_id:
        raise MalformedRecord(f"image row without id: {raw!r:.80}")
    tags = tuple(t for t in raw.get("RepoTags") or [] if t != "<none>:<none>")
    created = raw.get("Created")
    if isinstance(created, (int, float)):
        created = datetime.datetime.fromtimestamp(created).strftime("%Y-%m-%d %H:%M")
    return ImageInfo(
        id=image_id,
        short_id=image_id.split(":")[-1][:12],
        tags=tags,
        size_mb=(raw.get("Size") or 0) / (1024 * 1024),
        created=str(created or ""),
    )


def parse_volume(raw: Dict[str, Any]) -> VolumeInfo:
    name = raw.get("Name")
    if not name:
        raise MalformedRecord(f"volume row without name: {raw!r:.80}")
    return VolumeInfo(
        name=name,
        driver=raw.get("Driver") or "local",
        mountpoint=raw.get("Mountpoint") or "",
    )


def parse_network(raw: Dict[str, Any]) -> NetworkInfo:
    network_id = raw.get("Id")
    name = raw.get("Name")
    if not network_id or not name:
        raise MalformedRecord(f"network row without id or name: {raw!r:.80}")
    return NetworkInfo(
        id=network_id,
        short_id=network_id[:12],
        name=name,
        driver=raw.get("Driver") or "",
        scope=raw.get("Scope") or "",
    )


def _parse_rows(rows: Iterable[Dict[str, Any]], parser: Callable) -> List[Any]:
    res = []
    for row in rows:
        try:
            res.append(parser(row))
        except MalformedRecord as e:
            logger.warning(f"Skipping malformed row: {e}")
    return res


class DockerBackend:
    def __init__(self, client: Optional[docker.DockerClient] = None,
                 protected_networks: Iterable[str] = ("bridge", "host", "none")):
        if client is None:
            try:
                client = docker.from_env()
            except docker.errors.DockerException as e:
                raise ManagerUnavailable(str(e)) from e
        self.client = client
        self.protected_networks = frozenset(protected_networks)

    @manager_call
    def ping(self) -> None:
        """Raise ManagerUnavailable unless the engine answers."""
        try:
            self.client.ping()
        except docker.errors.APIError as e:
            raise ManagerUnavailable(_explain(e)) from e

    # --- Listing ---

    def list_resources(self, kind: ResourceKind) -> List[Any]:
        listers = {
            ResourceKind.CONTAINERS: self.list_containers,
            ResourceKind.IMAGES: self.list_images,
            ResourceKind.VOLUMES: self.list_volumes,
            ResourceKind.NETWORKS: self.list_networks,
        }
        return listers[ResourceKind(kind)]()

    @manager_call
    def list_containers(self) -> List[ContainerInfo]:
        return _parse_rows(self.client.api.containers(all=True), parse_container)

    @manager_call
    def list_images(self, dangling: bool = False) -> List[ImageInfo]:
        filters = {"dangling": True} if dangling else None
        return _parse_rows(self.client.api.images(filters=filters), parse_image)

    @manager_call
    def list_volumes(self) -> List[VolumeInfo]:
        resp = self.client.api.volumes() or {}
        return _parse_rows(resp.get("Volumes") or [], parse_volume)

    @manager_call
    def list_networks(self) -> List[NetworkInfo]:
        return _parse_rows(self.client.api.networks(), parse_network)

    def usage_index(self, volumes: Optional[List[VolumeInfo]] = None) -> UsageIndex:
        """Usage index from one container inventory."""
        if volumes is None:
            volumes = self.list_volumes()
        return build_usage_index((v.name for v in volumes), self.list_containers())

    def is_protected_network(self, name: str) -> bool:
        return name in self.protected_networks

    @manager_call
    def inspect(self, kind: ResourceKind, resource_id: str) -> Dict[str, Any]:
        api = self.client.api
        inspectors = {
            ResourceKind.CONTAINERS: api.inspect_container,
            ResourceKind.IMAGES: api.inspect_image,
            ResourceKind.VOLUMES: api.inspect_volume,
            ResourceKind.NETWORKS: api.inspect_network,
        }
        kind = ResourceKind(kind)
        try:
            return inspectors[kind](resource_id)
        except docker.errors.NotFound as e:
            raise ResourceNotFound(f"{kind.singular.capitalize()} '{resource_id}' not found") from e

    # --- Mutations ---

    def mutate(self, kind: ResourceKind, verb: str, *targets: str) -> MutationResult:
        """
        Apply ``verb`` to ``targets`` (or, for bulk verbs, to a fresh listing).

        Several targets for a single-item verb are issued one by one and
        reported as one aggregate result.
        """
        method_name = _VERBS.get((ResourceKind(kind), verb))
        if method_name is None:
            raise ValueError(f"Unsupported verb '{verb}' for {kind}")
        method = getattr(self, method_name)
        if verb in _BULK_VERBS:
            return method()
        results = [method(target) for target in targets]
        failed = [r for r in results if not r.ok]
        if failed:
            return MutationResult(False, failed[0].message, len(results) - len(failed), len(failed))
        return MutationResult(True, "", len(results), 0)

    @docker_safe("start container")
    def start_container(self, container_id: str) -> MutationResult:
        self.client.containers.get(container_id).start()
        return MutationResult.success()

    @docker_safe("stop container")
    def stop_container(self, container_id: str) -> MutationResult:
        self.client.containers.get(container_id).stop()
        return MutationResult.success()

    @docker_safe("restart container")
    def restart_container(self, container_id: str) -> MutationResult:
        self.client.containers.get(container_id).restart()
        return MutationResult.success()

    @docker_safe("remove container")
    def remove_container(self, container_id: str, volumes: bool = False) -> MutationResult:
        container = self.client.containers.get(container_id)
        try:
            container.stop()
        except docker.errors.APIError as e:
            logger.debug(f"Stop before remove of {container_id} failed: {_explain(e)}")
        container.remove(v=volumes)
        return MutationResult.success()

    def destroy_container(self, container_id: str) -> MutationResult:
        return self.remove_container(container_id, volumes=True)

    @docker_safe("remove image")
    def remove_image(self, image_id: str) -> MutationResult:
        self.client.images.remove(image_id)
        return MutationResult.success()

    @docker_safe("remove volume")
    def remove_volume(self, volume_name: str) -> MutationResult:
        self.client.volumes.get(volume_name).remove()
        return MutationResult.success()

    @docker_safe("remove network")
    def remove_network(self, network_id: str) -> MutationResult:
        self.client.networks.get(network_id).remove()
        return MutationResult.success()

    def _apply_each(self, action: str, targets: List[str], func: Callable[[str], Any]) -> MutationResult:
        applied = failed = 0
        first_error = ""
        for target in targets:
            try:
                func(target)
                applied += 1
            except docker.errors.APIError as e:
                failed += 1
                first_error = first_error or _explain(e)
                logger.warning(f"{action} {target} failed: {_explain(e)}")
        logger.info(f"{action}: {applied} applied, {failed} failed")
        if failed:
            return MutationResult(False, first_error, applied, failed)
        return MutationResult(True, "", applied, 0)

    @manager_call
    def stop_all(self) -> MutationResult:
        running = [c.id for c in self.list_containers() if c.is_running]
        if not running:
            return MutationResult(True, "No running containers")
        return self._apply_each("stop", running, lambda cid: self.client.containers.get(cid).stop())

    def _remove_all_containers(self, force: bool, volumes: bool) -> MutationResult:
        containers = self.list_containers()
        if not containers:
            return MutationResult(True, "No containers")
        running = [c.id for c in containers if c.is_running]
        if running:
            self._apply_each("stop", running, lambda cid: self.client.containers.get(cid).stop())
        return self._apply_each(
            "remove container", [c.id for c in containers],
            lambda cid: self.client.api.remove_container(cid, v=volumes, force=force),
        )

    @manager_call
    def remove_all_containers(self) -> MutationResult:
        return self._remove_all_containers(force=False, volumes=False)

    @manager_call
    def destroy_all_containers(self) -> MutationResult:
        return self._remove_all_containers(force=True, volumes=False)

    @manager_call
    def destroy_all_containers_with_volumes(self) -> MutationResult:
        return self._remove_all_containers(force=True, volumes=True)

    @manager_call
    def remove_all_images(self) -> MutationResult:
        images = [i.id for i in self.list_images()]
        if not images:
            return MutationResult(True, "No images to delete")
        return self._apply_each("remove image", images, lambda iid: self.client.images.remove(iid, force=True))

    @manager_call
    def remove_dangling_images(self) -> MutationResult:
        images = [i.id for i in self.list_images(dangling=True)]
        if not images:
            return MutationResult(True, "No dangling images")
        return self._apply_each("remove dangling image", images, self.client.images.remove)

    @docker_safe("prune volumes")
    def prune_volumes(self) -> MutationResult:
        resp = self.client.volumes.prune() or {}
        removed = resp.get("VolumesDeleted") or []
        return MutationResult.success(f"Removed {len(removed)} unused volume(s)", applied=len(removed))

    @manager_call
    def remove_all_volumes(self) -> MutationResult:
        names = [v.name for v in self.list_volumes()]
        if not names:
            return MutationResult(True, "No volumes")
        return self._apply_each("remove volume", names, lambda n: self.client.api.remove_volume(n, force=True))

    @manager_call
    def remove_custom_networks(self) -> MutationResult:
        custom = [n.id for n in self.list_networks() if not self.is_protected_network(n.name)]
        if not custom:
            return MutationResult(True, "No custom networks")
        return self._apply_each("remove network", custom, self.client.api.remove_network)

    @docker_safe("prune system")
    def prune_system(self, all_images: bool = False, volumes: bool = False) -> MutationResult:
        """Equivalent of ``docker system prune -f`` (``-a``/``--volumes`` via flags)."""
        self.client.containers.prune()
        self.client.networks.prune()
        self.client.images.prune(filters={"dangling": not all_images})
        if volumes:
            self.client.volumes.prune()
        self.client.api.prune_builds()
        return MutationResult.success("Pruned unused resources")

    def prune_everything(self) -> MutationResult:
        return self.prune_system(all_images=True, volumes=True)

    # --- Information ---

    @manager_call
    def summary(self) -> Dict[str, int]:
        info = self.client.api.info()
        return {
            "running": info.get("ContainersRunning", 0),
            "containers": info.get("Containers", 0),
            "images": info.get("Images", 0),
            "volumes": len(self.list_volumes()),
        }

    @manager_call
    def info(self) -> Dict[str, Any]:
        return self.client.api.info()

    @manager_call
    def get_logs(self, container_id: str, tail: int = 50) -> List[str]:
        try:
            logs_bytes = self.client.api.logs(container_id, tail=tail)
        except docker.errors.NotFound as e:
            raise ResourceNotFound(f"Container '{container_id}' not found") from e
        return logs_bytes.decode('utf-8', errors='replace').splitlines()

    @manager_call
    def stream_logs(self, container_id: str, tail: Any = "all", follow: bool = True):
        try:
            return self.client.api.logs(container_id, stream=True, follow=follow, tail=tail)
        except docker.errors.NotFound as e:
            raise ResourceNotFound(f"Container '{container_id}' not found") from e

    def shell_command(self, container_id: str, shell: str = "bash",
                       fallback_shell: str = "sh") -> List[List[str]]:
        """``docker exec -it`` command lines, preferred shell first."""
        return [["docker", "exec", "-it", container_id, sh] for sh in (shell, fallback_shell)]

    @manager_call
    def container_stats(self, container_id: str) -> Tuple[str, str]:
        stats = self.client.api.stats(container_id, stream=False)
        cpu_stats = stats.get('cpu_stats', {})
        precpu_stats = stats.get('precpu_stats', {})
        cpu_usage = cpu_stats.get('cpu_usage', {}).get('total_usage', 0)
        precpu_usage = precpu_stats.get('cpu_usage', {}).get('total_usage', 0)
        system_delta = cpu_stats.get('system_cpu_usage', 0) - precpu_stats.get('system_cpu_usage', 0)
        online_cpus = cpu_stats.get('online_cpus', len(cpu_stats.get('cpu_usage', {}).get('percpu_usage', [])) or 1)
        cpu_delta = cpu_usage - precpu_usage
        cpu_percent = 0.0
        if system_delta > 0.0 and cpu_delta > 0.0:
            cpu_percent = (cpu_delta / system_delta) * online_cpus * 100.0
        mem_usage_mb = stats.get('memory_stats', {}).get('usage', 0) / (1024 * 1024)
        return f"{cpu_percent:.1f}%", f"{mem_usage_mb:.1f}MB"

    def stats_rows(self) -> List[Tuple[str, str, str, str]]:
        """(short id, name, cpu, memory) for each running container."""
        rows = []
        for c in self.list_containers():
            if not c.is_running:
                continue
            try:
                cpu, mem = self.container_stats(c.id)
            except docker.errors.APIError as e:
                logger.warning(f"Stats for {c.name} unavailable: {_explain(e)}")
                cpu, mem = "--", "--"
            rows.append((c.short_id, c.name, cpu, mem))
        return rows

    @manager_call
    def disk_usage(self) -> List[Tuple[str, int, float]]:
        """(type, count, size in MB) as reported by ``docker system df``."""
        df = self.client.api.df()
        mb = 1024 * 1024
        images = df.get("Images") or []
        containers = df.get("Containers") or []
        volumes = df.get("Volumes") or []
        cache = df.get("BuildCache") or []
        return [
            ("Images", len(images), sum(i.get("Size", 0) for i in images) / mb),
            ("Containers", len(containers), sum(c.get("SizeRw", 0) or 0 for c in containers) / mb),
            ("Local Volumes", len(volumes),
             sum((v.get("UsageData") or {}).get("Size", 0) for v in volumes) / mb),
            ("Build Cache", len(cache), sum(b.get("Size", 0) for b in cache) / mb),
        ]


_VERBS = {
    (ResourceKind.CONTAINERS, "start"): "start_container",
    (ResourceKind.CONTAINERS, "stop"): "stop_container",
    (ResourceKind.CONTAINERS, "restart"): "restart_container",
    (ResourceKind.CONTAINERS, "remove"): "remove_container",
    (ResourceKind.CONTAINERS, "destroy"): "destroy_container",
    (ResourceKind.CONTAINERS, "stop_all"): "stop_all",
    (ResourceKind.CONTAINERS, "remove_all"): "remove_all_containers",
    (ResourceKind.CONTAINERS, "destroy_all"): "destroy_all_containers",
    (ResourceKind.CONTAINERS, "destroy_all_volumes"): "destroy_all_containers_with_volumes",
    (ResourceKind.IMAGES, "remove"): "remove_image",
    (ResourceKind.IMAGES, "remove_all"): "remove_all_images",
    (ResourceKind.IMAGES, "remove_dangling"): "remove_dangling_images",
    (ResourceKind.VOLUMES, "remove"): "remove_volume",
    (ResourceKind.VOLUMES, "prune_volumes"): "prune_volumes",
    (ResourceKind.VOLUMES, "remove_all"): "remove_all_volumes",
    (ResourceKind.NETWORKS, "remove"): "remove_network",
    (ResourceKind.NETWORKS, "remove_all"): "remove_custom_networks",
}

_BULK_VERBS = frozenset({
    "stop_all", "remove_all", "destroy_all", "destroy_all_volumes", "remove_dangling", "prune_volumes",
})
