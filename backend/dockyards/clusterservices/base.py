"""Cluster manager abstraction consumed by the orchestrator and the API."""
from abc import ABC, abstractmethod
from typing import List

from dockyards.garbage import GarbageEntry
from dockyards.models.organization import Organization
from dockyards.schemas import Cluster, ClusterOptions, Node, NodePool, NodePoolOptions


class ClusterService(ABC):
    """Operations the upstream cluster manager must provide."""

    @abstractmethod
    async def create_cluster(self, organization: Organization, options: ClusterOptions) -> Cluster:
        """Create template, template revision and cluster; Conflict when the name is taken."""

    @abstractmethod
    async def create_node_pool(self, organization: Organization, cluster: Cluster, options: NodePoolOptions) -> NodePool:
        """Prepare the cloud environment and create a node pool in ``cluster``."""

    @abstractmethod
    async def delete_node_pool(self, organization: Organization, node_pool_id: str):
        """Clean the cloud environment of a pool and delete it."""

    @abstractmethod
    async def delete_cluster(self, organization: Organization, cluster_name: str):
        """Tear down the node pools of a cluster, then the cluster; NotFound when absent."""

    @abstractmethod
    async def get_all_clusters(self) -> List[Cluster]:
        """List every cluster known upstream."""

    @abstractmethod
    async def get_cluster(self, cluster_id: str) -> Cluster:
        """Fetch one cluster with its node pools; NotFound when absent."""

    @abstractmethod
    async def get_node_pool(self, node_pool_id: str) -> NodePool:
        """Fetch one node pool; NotFound when absent."""

    @abstractmethod
    async def get_nodes(self, node_pool: NodePool) -> List[Node]:
        """List the nodes of a node pool."""

    @abstractmethod
    async def generate_kubeconfig(self, cluster_id: str) -> str:
        """Return the raw kubeconfig of a cluster, carrying an unrestricted token."""

    @abstractmethod
    async def create_token(self, cluster_id: str, ttl_millis: int) -> str:
        """Create a cluster scoped token and return its bearer value."""

    @abstractmethod
    async def delete_token(self, token_id: str):
        """Delete a token by id."""

    @abstractmethod
    async def supported_versions(self) -> List[str]:
        """Kubernetes versions accepted by ``create_cluster``, newest first."""

    @abstractmethod
    async def enqueue_garbage(self, entry: GarbageEntry) -> bool:
        """Queue an upstream object for deferred deletion."""

    @abstractmethod
    async def delete_garbage(self) -> int:
        """Attempt every queued deletion once."""

    async def close(self):
        """Release network resources."""
