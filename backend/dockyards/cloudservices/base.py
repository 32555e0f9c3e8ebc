"""Cloud provider abstraction consumed by the cluster service and the orchestrator."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List

from dockyards.models.organization import Organization
from dockyards.schemas import Cluster, Deployment, NodePool, NodePoolOptions


@dataclass
class CloudConfig:
    """Everything a node template needs to boot nodes of one pool."""
    auth_url: str
    application_credential_id: str
    application_credential_secret: str
    flavor_id: str
    image_id: str
    network_id: str
    keypair_name: str
    private_key: str = ""
    security_groups: List[str] = field(default_factory=list)
    addresses: List[str] = field(default_factory=list)  # allocated for load-balancer pools
    project_id: str = ""


class CloudService(ABC):
    """Operations the cloud provider must provide."""

    @abstractmethod
    async def prepare_environment(self, organization: Organization, cluster: Cluster, options: NodePoolOptions) -> CloudConfig:
        """Resolve flavor, image and network and create keypair and security group for a pool."""

    @abstractmethod
    async def clean_environment(self, organization: Organization, config: CloudConfig):
        """Undo ``prepare_environment``."""

    @abstractmethod
    async def get_cluster_deployments(self, organization: Organization, cluster: Cluster) -> List[Deployment]:
        """Bootstrap workloads every cluster of this provider needs."""

    @abstractmethod
    async def get_flavor_node_pool(self, flavor_id: str) -> NodePool:
        """Resource sizes of a flavor, expressed as a node pool."""

    @abstractmethod
    async def delete_organization(self, organization: Organization):
        """Release the cloud project bound to an organization."""

    @abstractmethod
    async def delete_garbage(self) -> int:
        """Attempt every queued deletion once."""

    async def close(self):
        """Release network resources."""
