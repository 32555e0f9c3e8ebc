"""Create and delete cluster flows.

A create request walks a fixed sequence of states; every step talks to the
cluster manager or the cloud provider and nothing is rolled back when a step
fails. Upstream objects carry ownership labels so that leftovers can be
identified and reclaimed later.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional, Tuple
import logging
import uuid

from dockyards.authorization import authorize
from dockyards.cloudservices.base import CloudService
from dockyards.clusterservices.base import ClusterService
from dockyards.errors import Conflict, NotFound, Unprocessable
from dockyards.models.organization import Organization
from dockyards.schemas import Cluster, ClusterOptions, Deployment, NodePool, NodePoolOptions
from dockyards.utils.deployment import delete_cluster_deployments, store_deployment
from dockyards.utils.ipam import IPManager
from dockyards.utils.names import is_valid

logger = logging.getLogger(__name__)

MAX_NODE_POOL_QUANTITY = 9


class CreateClusterState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    AUTHORIZED = "authorized"
    CLUSTER_CREATED = "cluster_created"
    CP_POOL_CREATED = "cp_pool_created"
    EXTRA_POOLS_CREATED = "extra_pools_created"
    BOOTSTRAPPED = "bootstrapped"
    DONE = "done"


ALLOWED_TRANSITIONS = {
    CreateClusterState.RECEIVED: {CreateClusterState.VALIDATED},
    CreateClusterState.VALIDATED: {CreateClusterState.AUTHORIZED},
    CreateClusterState.AUTHORIZED: {CreateClusterState.CLUSTER_CREATED},
    CreateClusterState.CLUSTER_CREATED: {CreateClusterState.CP_POOL_CREATED},
    CreateClusterState.CP_POOL_CREATED: {CreateClusterState.EXTRA_POOLS_CREATED},
    CreateClusterState.EXTRA_POOLS_CREATED: {CreateClusterState.BOOTSTRAPPED},
    CreateClusterState.BOOTSTRAPPED: {CreateClusterState.DONE},
}


class InvalidStateTransition(Exception):
    pass


@dataclass
class CreateClusterRun:
    """Progress of one create-cluster request."""
    organization_name: str
    options: ClusterOptions
    state: CreateClusterState = CreateClusterState.RECEIVED
    organization: Optional[Organization] = None
    cluster: Optional[Cluster] = None
    node_pools: List[NodePoolOptions] = field(default_factory=list)
    deployments: List[Deployment] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)

    def transition(self, new_state: CreateClusterState):
        allowed = ALLOWED_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise InvalidStateTransition(f"Cannot transition from {self.state.value} to {new_state.value}")

        logger.debug(f"Cluster {self.organization_name}/{self.options.name}: {self.state.value} -> {new_state.value}")
        self.state = new_state


def recommended_node_pools() -> List[NodePoolOptions]:
    """Node pools used when a request does not list any."""
    return [
        control_plane_node_pool(),
        NodePoolOptions(name="worker", quantity=2, worker=True),
        NodePoolOptions(name="load-balancer", quantity=2, load_balancer=True),
    ]


def control_plane_node_pool() -> NodePoolOptions:
    return NodePoolOptions(
        name="control-plane",
        quantity=3,
        control_plane=True,
        etcd=True,
        control_plane_components_only=True,
    )


def single_node_pool() -> NodePoolOptions:
    return NodePoolOptions(
        name="single-node",
        quantity=1,
        control_plane=True,
        etcd=True,
        worker=True,
    )


def plan_node_pools(options: ClusterOptions) -> List[NodePoolOptions]:
    """Order in which node pools are created; the control plane pool comes first."""
    if options.single_node:
        return [single_node_pool()]

    requested = list(options.node_pool_options or [])
    if not requested:
        return recommended_node_pools()

    control_plane = next((pool for pool in requested if pool.control_plane and pool.etcd), None)
    if control_plane is None:
        return [control_plane_node_pool()] + requested

    requested.remove(control_plane)
    return [control_plane] + requested


def validate_node_pool_options(pool: NodePoolOptions):
    details, ok = is_valid(pool.name)
    if not ok:
        raise Unprocessable("node pool name is not valid", name=pool.name, details=details)

    if pool.quantity > MAX_NODE_POOL_QUANTITY:
        raise Unprocessable(
            "node pool quota exceeded",
            name=pool.name,
            details=f"quantity must not be greater than {MAX_NODE_POOL_QUANTITY}",
        )


def validate_cluster_options(options: ClusterOptions):
    """Reject invalid cluster and node pool names and oversized pools."""
    details, ok = is_valid(options.name)
    if not ok:
        raise Unprocessable("name is not valid", name=options.name, details=details)

    seen = set()
    for pool in options.node_pool_options or []:
        validate_node_pool_options(pool)

        if pool.name in seen:
            raise Unprocessable("node pool name is not unique", name=pool.name, details="node pool names must be unique within a cluster")
        seen.add(pool.name)


class ClusterOrchestrator:
    """Drives cluster creation and deletion across the cluster and cloud services."""

    def __init__(
        self,
        cluster_service: ClusterService,
        cloud_service: CloudService,
        ip_manager: IPManager,
        repository_root: str,
    ):
        self.cluster_service = cluster_service
        self.cloud_service = cloud_service
        self.ip_manager = ip_manager
        self.repository_root = repository_root

    async def _find_cluster(self, organization: Organization, cluster_name: str) -> Optional[Cluster]:
        for cluster in await self.cluster_service.get_all_clusters():
            if cluster.organization == organization.name and cluster.name == cluster_name:
                return cluster
        return None

    async def create_cluster(
        self,
        session: AsyncSession,
        principal_id: uuid.UUID,
        organization_name: str,
        options: ClusterOptions,
    ) -> Cluster:
        run = CreateClusterRun(organization_name=organization_name, options=options)

        validate_cluster_options(options)
        run.node_pools = plan_node_pools(options)
        if len({pool.name for pool in run.node_pools}) != len(run.node_pools):
            raise Unprocessable("node pool name is not unique", name=options.name, details="node pool names must be unique within a cluster")
        run.transition(CreateClusterState.VALIDATED)

        run.organization, _ = await authorize(session, principal_id, organization_name, write=True)
        run.transition(CreateClusterState.AUTHORIZED)

        if await self._find_cluster(run.organization, options.name) is not None:
            raise Conflict(f"cluster {options.name} already exists in organization {organization_name}")

        run.cluster = await self.cluster_service.create_cluster(run.organization, options)
        run.transition(CreateClusterState.CLUSTER_CREATED)
        logger.info(f"Creating cluster {organization_name}/{options.name} ({run.cluster.id}) with {len(run.node_pools)} node pool(s)")

        control_plane, extra_pools = run.node_pools[0], run.node_pools[1:]

        node_pool = await self.cluster_service.create_node_pool(run.organization, run.cluster, control_plane)
        run.cluster.node_pools.append(node_pool)
        run.transition(CreateClusterState.CP_POOL_CREATED)

        for pool in extra_pools:
            node_pool = await self.cluster_service.create_node_pool(run.organization, run.cluster, pool)
            run.cluster.node_pools.append(node_pool)
        run.transition(CreateClusterState.EXTRA_POOLS_CREATED)

        if options.no_cluster_apps:
            logger.debug(f"Skipping cluster apps for {run.cluster.id}")
        else:
            for deployment in await self.cloud_service.get_cluster_deployments(run.organization, run.cluster):
                run.deployments.append(await store_deployment(session, deployment, self.repository_root))
        run.transition(CreateClusterState.BOOTSTRAPPED)

        run.transition(CreateClusterState.DONE)
        elapsed = (datetime.utcnow() - run.started_at).total_seconds()
        logger.info(f"Created cluster {run.cluster.id} ({len(run.deployments)} deployment(s), {elapsed:.1f}s)")
        return run.cluster

    async def delete_cluster(
        self,
        session: AsyncSession,
        principal_id: uuid.UUID,
        organization_name: str,
        cluster_name: str,
    ):
        """Delete a cluster and everything stored for it, best effort below the cluster itself."""
        organization, _ = await authorize(session, principal_id, organization_name, write=True)

        cluster = await self._find_cluster(organization, cluster_name)

        await self.cluster_service.delete_cluster(organization, cluster_name)

        if cluster is None:
            return

        removed = await delete_cluster_deployments(session, cluster.id, self.repository_root)
        released = await self.ip_manager.release_by_tag(cluster.id)
        logger.info(f"Deleted cluster {organization_name}/{cluster_name} ({removed} deployment(s), {released} address(es))")

    async def resolve_cluster(
        self,
        session: AsyncSession,
        principal_id: uuid.UUID,
        organization_name: str,
        cluster_name: str,
        write: bool = False,
    ) -> Tuple[Organization, Cluster]:
        """The organization and the cluster it owns under ``cluster_name``."""
        organization, _ = await authorize(session, principal_id, organization_name, write=write)

        cluster = await self._find_cluster(organization, cluster_name)
        if cluster is None:
            raise NotFound(f"cluster {cluster_name} not found in organization {organization_name}")
        return organization, cluster

    async def resolve_cluster_id(
        self,
        session: AsyncSession,
        principal_id: uuid.UUID,
        cluster_id: str,
        write: bool = False,
    ) -> Tuple[Organization, Cluster]:
        cluster = await self.cluster_service.get_cluster(cluster_id)
        organization, _ = await authorize(session, principal_id, cluster.organization, write=write)
        return organization, cluster

    async def add_node_pool(self, organization: Organization, cluster: Cluster, options: NodePoolOptions) -> NodePool:
        """Add a node pool to a running cluster; pool names are unique within the cluster."""
        validate_node_pool_options(options)

        existing = await self.cluster_service.get_cluster(cluster.id)
        if any(node_pool.name == options.name for node_pool in existing.node_pools):
            raise Conflict(f"node pool {options.name} already exists in cluster {cluster.id}")

        node_pool = await self.cluster_service.create_node_pool(organization, existing, options)
        logger.info(f"Added node pool {options.name} ({node_pool.id}) to cluster {cluster.id}")
        return node_pool

    async def delete_node_pool(self, organization: Organization, cluster: Cluster, node_pool_name: str):
        existing = await self.cluster_service.get_cluster(cluster.id)
        node_pool = next((pool for pool in existing.node_pools if pool.name == node_pool_name), None)
        if node_pool is None:
            raise NotFound(f"node pool {node_pool_name} not found in cluster {cluster.id}")

        await self.cluster_service.delete_node_pool(organization, node_pool.id)
        logger.info(f"Deleted node pool {node_pool_name} ({node_pool.id}) from cluster {cluster.id}")
