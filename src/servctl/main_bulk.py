"""
Bulk actions and the full Docker teardown ("nuke").

Bulk actions apply to every item of one kind and always require
confirmation. Their targets are resolved by the backend with a fresh listing
when they execute, not when the key is pressed.

The teardown runs six best-effort steps in a fixed order. Each step is
captured as a StepResult and logged; a failing step never aborts the rest.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from .backend import DockerBackend, ManagerTimeout, ManagerUnavailable
from .model import Action, MutationResult, ResourceKind, StatusMessage, StepResult

logger = logging.getLogger(__name__)

BULK_ACTIONS: Dict[ResourceKind, List[Action]] = {
    ResourceKind.CONTAINERS: [
        Action("stop_all", "A", "Stop all", ("Stop ALL running containers?",)),
        Action("remove_all", "R", "Remove all", ("Remove ALL containers?",)),
        Action("destroy_all", "X", "Destroy all", ("Destroy ALL containers (no volumes)?",)),
        Action("destroy_all_volumes", "V", "Destroy all+vols",
               ("Destroy ALL containers AND their volumes?",)),
    ],
    ResourceKind.IMAGES: [
        Action("remove_all", "A", "Delete all", ("Delete ALL images?",)),
        Action("remove_dangling", "D", "Delete dangling", ("Remove dangling images?",)),
    ],
    ResourceKind.VOLUMES: [
        Action("prune_volumes", "U", "Delete unused", ("Delete all unused volumes?",)),
        Action("remove_all", "A", "Delete all", ("Force delete ALL volumes?",)),
    ],
    ResourceKind.NETWORKS: [
        Action("remove_all", "A", "Delete custom", ("Delete all custom networks?",)),
    ],
}

BULK_SUCCESS: Dict[Tuple[ResourceKind, str], str] = {
    (ResourceKind.CONTAINERS, "stop_all"): "Stopped all containers",
    (ResourceKind.CONTAINERS, "remove_all"): "Removed all containers",
    (ResourceKind.CONTAINERS, "destroy_all"): "Destroyed all containers",
    (ResourceKind.CONTAINERS, "destroy_all_volumes"): "Destroyed all containers and volumes",
    (ResourceKind.IMAGES, "remove_all"): "Deleted all images",
    (ResourceKind.IMAGES, "remove_dangling"): "Removed dangling images",
    (ResourceKind.VOLUMES, "prune_volumes"): "Deleted unused volumes",
    (ResourceKind.VOLUMES, "remove_all"): "Deleted all volumes",
    (ResourceKind.NETWORKS, "remove_all"): "Deleted custom networks",
}

NUKE_PROMPTS = (
    "Are you absolutely sure you want to NUKE everything?",
    "FINAL WARNING: This cannot be undone. Continue?",
)


def bulk_status(result: MutationResult, success_text: str) -> StatusMessage:
    """Status line for a bulk mutation: aggregate counts only."""
    if not result.ok:
        total = result.applied + result.failed
        return StatusMessage.error(f"{success_text}: {result.failed} of {total} failed")
    if result.applied == 0 and result.message:
        return StatusMessage.warn(result.message)
    return StatusMessage.success(success_text)


def run_bulk(backend: DockerBackend, kind: ResourceKind, action_name: str) -> StatusMessage:
    result = backend.mutate(kind, action_name)
    status = bulk_status(result, BULK_SUCCESS[(kind, action_name)])
    logger.info(f"Bulk {kind.value}/{action_name}: {status.text}")
    return status


def teardown_steps(backend: DockerBackend) -> List[Tuple[str, Callable[[], MutationResult]]]:
    return [
        ("Stopping all containers", backend.stop_all),
        ("Removing all containers", backend.destroy_all_containers),
        ("Removing all volumes", backend.remove_all_volumes),
        ("Removing custom networks", backend.remove_custom_networks),
        ("Removing all images", backend.remove_all_images),
        ("Final cleanup", backend.prune_everything),
    ]


def run_teardown(backend: DockerBackend,
                 progress: Optional[Callable[[str], None]] = None) -> List[StepResult]:
    """
    Reset Docker completely.

    Args:
        backend: DockerBackend instance
        progress: Called with each step name before it runs

    Returns:
        List[StepResult]: One entry per step, in execution order

    Raises:
        ManagerUnavailable: The engine cannot be reached (a step that
            times out is recorded as failed instead)
    """
    results = []
    for step, func in teardown_steps(backend):
        if progress:
            progress(step)
        try:
            outcome = func()
            res = StepResult(step, outcome.ok, outcome.message)
        except ManagerTimeout as e:
            logger.warning(f"Teardown step '{step}' timed out: {e}")
            res = StepResult(step, False, f"timed out ({e})")
        except ManagerUnavailable:
            raise
        except Exception as e:
            logger.error(f"Teardown step '{step}' raised: {e}", exc_info=True)
            res = StepResult(step, False, str(e))
        logger.info(f"Teardown step '{step}': {'ok' if res.ok else 'failed'} {res.detail}".rstrip())
        results.append(res)
    return results


def teardown_status(results: List[StepResult]) -> StatusMessage:
    failed = [r.step for r in results if not r.ok]
    if not failed:
        return StatusMessage.success("Docker has been completely reset")
    return StatusMessage.error(f"Reset finished with {len(failed)} failed step(s): {', '.join(failed)}")
