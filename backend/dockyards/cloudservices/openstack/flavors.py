"""Flavor selection."""
from typing import Any, Dict, List
import math
import logging

from dockyards.schemas import NodePoolOptions

logger = logging.getLogger(__name__)

DEFAULT_RAM_SIZE_MB = 4096
DEFAULT_CPU_COUNT = 2
DEFAULT_DISK_SIZE_GB = 100


def requirements(options: NodePoolOptions):
    """Resource hints of a pool as ``(disk, ram, vcpus)``; defaults when none are given."""
    if not options.cpu_count and not options.ram_size_mb and not options.disk_size_gb:
        return DEFAULT_DISK_SIZE_GB, DEFAULT_RAM_SIZE_MB, DEFAULT_CPU_COUNT
    return options.disk_size_gb, options.ram_size_mb, options.cpu_count


def closest_flavor_id(flavors: List[Dict[str, Any]], disk: int, ram: int, vcpus: int) -> str:
    """Pick the flavor nearest to the requested resources.

    Distance is Euclidean over (disk, ram, vcpus); an exact match wins
    immediately. Returns an empty string when ``flavors`` is empty.
    """
    closest = ""
    shortest = math.inf

    for flavor in flavors:
        distance = math.sqrt(
            (flavor.get("disk", 0) - disk) ** 2
            + (flavor.get("ram", 0) - ram) ** 2
            + (flavor.get("vcpus", 0) - vcpus) ** 2
        )
        if distance == 0:
            closest = flavor["id"]
            break
        if distance < shortest:
            shortest = distance
            closest = flavor["id"]

    logger.debug(f"Closest flavor to disk={disk} ram={ram} vcpus={vcpus}: {closest or 'none'}")
    return closest
