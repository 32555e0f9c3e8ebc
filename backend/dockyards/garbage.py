"""Deferred deletion of upstream resources.

Some upstream objects cannot be deleted right after their parent (a cluster
template while its cluster is still being removed, for instance). They are
queued here and retried on every tick until a deletion succeeds.
"""
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional
import asyncio
import logging
import uuid

logger = logging.getLogger(__name__)

KIND_CLUSTER_TEMPLATE = "clusterTemplate"
KIND_NODE_TEMPLATE = "nodeTemplate"
KIND_TOKEN = "token"
KIND_SECURITY_GROUP = "securityGroup"


@dataclass(frozen=True)
class GarbageEntry:
    kind: str
    remote_id: str
    scope: Optional[str] = None  # e.g. the cloud project owning the resource
    id: uuid.UUID = field(default_factory=uuid.uuid4, compare=False)


class GarbageQueue:
    """Lock guarded map of remote id to entry, swept by ``tick``."""

    def __init__(self, name: str, deleter: Callable[[GarbageEntry], Awaitable[None]]):
        self.name = name
        self._deleter = deleter
        self._entries: Dict[str, GarbageEntry] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[GarbageEntry]:
        return list(self._entries.values())

    async def enqueue(self, entry: GarbageEntry) -> bool:
        """Queue ``entry``; returns False when its remote id is already queued."""
        async with self._lock:
            if entry.remote_id in self._entries:
                return False
            self._entries[entry.remote_id] = entry

        logger.debug(f"Queued {entry.kind} {entry.remote_id} for deletion ({self.name})")
        return True

    async def tick(self) -> int:
        """Attempt every queued deletion once; returns how many succeeded."""
        deleted = 0

        async with self._lock:
            for remote_id, entry in list(self._entries.items()):
                try:
                    await self._deleter(entry)
                except Exception as e:
                    logger.debug(f"Unable to delete {entry.kind} {remote_id}, keeping it: {e}")
                    continue

                del self._entries[remote_id]
                deleted += 1
                logger.debug(f"Deleted garbage {entry.kind} {remote_id} ({self.name})")

        return deleted


async def run_garbage_loop(interval: float, *sweepers: Callable[[], Awaitable[int]]):
    """Invoke every sweeper each ``interval`` seconds until cancelled."""
    logger.info(f"Garbage loop started (interval {interval}s)")

    try:
        while True:
            await asyncio.sleep(interval)
            for sweep in sweepers:
                try:
                    await sweep()
                except Exception as e:
                    logger.error(f"Garbage sweep failed: {type(e).__name__}: {e}")
    finally:
        logger.info("Garbage loop stopped")
