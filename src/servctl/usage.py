"""
Volume usage index.

Builds the reverse mapping volume -> containers referencing it (and the image
of the first such container) from a single container inventory, instead of
querying the manager once per volume.
"""

import logging
from typing import Iterable

from .model import ContainerInfo, UsageIndex, VolumeUsage

logger = logging.getLogger(__name__)


def build_usage_index(volume_names: Iterable[str], containers: Iterable[ContainerInfo]) -> UsageIndex:
    """
    Build the usage index in one pass over ``containers``.

    Every name in ``volume_names`` gets an entry, unreferenced ones with an
    empty container list. Mounts of volumes missing from ``volume_names`` are
    ignored, so the index never holds names the volume listing does not.
    Containers are visited in listing order, which decides the originating
    image of each volume.
    """
    index: UsageIndex = {name: VolumeUsage() for name in volume_names}
    for container in containers:
        for volume in container.mounts:
            usage = index.get(volume)
            if usage is None:
                logger.debug(f"Container {container.name} mounts unlisted volume {volume}")
                continue
            usage.add(container.display_name, container.image)
    return index
