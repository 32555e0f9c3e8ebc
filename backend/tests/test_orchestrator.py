"""Test the create and delete cluster flows."""

import itertools

import pytest
from sqlalchemy import select

from dockyards import models
from dockyards.errors import Conflict, Forbidden, NotFound, UpstreamFailure, Unprocessable
from dockyards.models.organization import ROLE_READER
from dockyards.orchestrator import (
    ClusterOrchestrator,
    CreateClusterRun,
    CreateClusterState,
    InvalidStateTransition,
    MAX_NODE_POOL_QUANTITY,
    plan_node_pools,
    validate_cluster_options,
)
from dockyards.schemas import Cluster, ClusterOptions, Deployment, NodePool, NodePoolOptions
from dockyards.utils.ipam import IPManager


class StubClusterService:
    """Records calls and keeps clusters in memory."""

    def __init__(self):
        self.clusters = []
        self.node_pools = []
        self.deleted = []
        self.fail_node_pool = None
        self._ids = itertools.count(1)

    async def get_all_clusters(self):
        return list(self.clusters)

    async def create_cluster(self, organization, options):
        cluster = Cluster(id=f"c-{next(self._ids)}", name=options.name, organization=organization.name)
        self.clusters.append(cluster)
        return cluster.model_copy(deep=True)

    async def create_node_pool(self, organization, cluster, options):
        if options.name == self.fail_node_pool:
            raise UpstreamFailure("node pool failed")
        self.node_pools.append((cluster.id, options))
        return NodePool(
            id=f"np-{next(self._ids)}",
            cluster_id=cluster.id,
            name=options.name,
            quantity=options.quantity,
            load_balancer=options.load_balancer,
        )

    async def delete_cluster(self, organization, cluster_name):
        for cluster in self.clusters:
            if cluster.organization == organization.name and cluster.name == cluster_name:
                self.clusters.remove(cluster)
                self.deleted.append(cluster.id)
                return
        raise NotFound("unable to find cluster to delete")


class StubCloudService:
    async def get_cluster_deployments(self, organization, cluster):
        return [
            Deployment(
                cluster_id=cluster.id,
                name="openstack-cinder-csi",
                type="helm",
                namespace="kube-system",
                helm_chart="openstack-cinder-csi",
            ),
        ]


@pytest.fixture
def cluster_service():
    return StubClusterService()


@pytest.fixture
def ip_manager(session_factory):
    return IPManager(session_factory)


@pytest.fixture
def orchestrator(cluster_service, ip_manager, tmp_path):
    return ClusterOrchestrator(cluster_service, StubCloudService(), ip_manager, str(tmp_path / "repositories"))


class TestPlanNodePools:
    """Test the order and defaults of node pools to create."""

    def test_recommended_pools(self):
        pools = plan_node_pools(ClusterOptions(name="test"))

        assert [(pool.name, pool.quantity) for pool in pools] == [
            ("control-plane", 3),
            ("worker", 2),
            ("load-balancer", 2),
        ]
        control_plane, worker, load_balancer = pools
        assert control_plane.control_plane and control_plane.etcd
        assert not control_plane.is_worker
        assert worker.is_worker
        assert load_balancer.load_balancer

    def test_single_node(self):
        pool, = plan_node_pools(ClusterOptions(name="test", single_node=True))

        assert pool.name == "single-node"
        assert pool.quantity == 1
        assert pool.control_plane and pool.etcd and pool.worker

    def test_requested_control_plane_goes_first(self):
        options = ClusterOptions(name="test", node_pool_options=[
            NodePoolOptions(name="workers", quantity=4),
            NodePoolOptions(name="masters", quantity=1, control_plane=True, etcd=True),
        ])

        assert [pool.name for pool in plan_node_pools(options)] == ["masters", "workers"]

    def test_default_control_plane_is_added(self):
        options = ClusterOptions(name="test", node_pool_options=[NodePoolOptions(name="workers")])

        assert [pool.name for pool in plan_node_pools(options)] == ["control-plane", "workers"]


class TestValidateClusterOptions:
    """Test rejection of invalid cluster options."""

    def test_invalid_cluster_name(self):
        with pytest.raises(Unprocessable) as exc_info:
            validate_cluster_options(ClusterOptions(name="InvalidClusterName"))

        assert exc_info.value.name == "InvalidClusterName"
        assert exc_info.value.details == "name must contain only lowercase alphanumeric characters and the '-' character"

    def test_invalid_node_pool_name(self):
        options = ClusterOptions(name="test", node_pool_options=[NodePoolOptions(name="-pool")])

        with pytest.raises(Unprocessable) as exc_info:
            validate_cluster_options(options)

        assert exc_info.value.message == "node pool name is not valid"

    def test_quantity_limit(self):
        options = ClusterOptions(name="test", node_pool_options=[
            NodePoolOptions(name="pool", quantity=MAX_NODE_POOL_QUANTITY + 1),
        ])

        with pytest.raises(Unprocessable):
            validate_cluster_options(options)

    def test_duplicate_node_pool_names(self):
        options = ClusterOptions(name="test", node_pool_options=[
            NodePoolOptions(name="pool"),
            NodePoolOptions(name="pool"),
        ])

        with pytest.raises(Unprocessable):
            validate_cluster_options(options)


class TestCreateClusterRun:
    """Test state transitions of a create request."""

    def test_linear_transitions(self):
        run = CreateClusterRun(organization_name="test-org", options=ClusterOptions(name="test"))

        for state in list(CreateClusterState)[1:]:
            run.transition(state)

        assert run.state == CreateClusterState.DONE

    def test_skipping_a_state_fails(self):
        run = CreateClusterRun(organization_name="test-org", options=ClusterOptions(name="test"))

        with pytest.raises(InvalidStateTransition):
            run.transition(CreateClusterState.CLUSTER_CREATED)

    def test_done_is_final(self):
        run = CreateClusterRun(
            organization_name="test-org",
            options=ClusterOptions(name="test"),
            state=CreateClusterState.DONE,
        )

        with pytest.raises(InvalidStateTransition):
            run.transition(CreateClusterState.RECEIVED)


class TestCreateCluster:
    """Test the create cluster flow against stub services."""

    async def test_creates_cluster_pools_and_deployments(self, db_session, orchestrator, cluster_service, user, organization):
        cluster = await orchestrator.create_cluster(db_session, user.id, "test-org", ClusterOptions(name="test"))

        assert cluster.id == "c-1"
        assert [pool.name for pool in cluster.node_pools] == ["control-plane", "worker", "load-balancer"]
        assert [options.quantity for _, options in cluster_service.node_pools] == [3, 2, 2]

        rows = (await db_session.execute(select(models.Deployment))).scalars().all()
        assert [(row.cluster_id, row.name) for row in rows] == [("c-1", "openstack-cinder-csi")]

    async def test_no_cluster_apps(self, db_session, orchestrator, user, organization):
        options = ClusterOptions(name="test", no_cluster_apps=True)

        await orchestrator.create_cluster(db_session, user.id, "test-org", options)

        assert (await db_session.execute(select(models.Deployment))).scalars().all() == []

    async def test_existing_cluster_conflicts(self, db_session, orchestrator, cluster_service, user, organization):
        await orchestrator.create_cluster(db_session, user.id, "test-org", ClusterOptions(name="test"))

        with pytest.raises(Conflict):
            await orchestrator.create_cluster(db_session, user.id, "test-org", ClusterOptions(name="test"))

        assert len(cluster_service.clusters) == 1

    async def test_reader_is_forbidden(self, db_session, orchestrator, cluster_service, create_user, create_organization):
        reader = await create_user("reader@example.com")
        await create_organization("readers", [(reader, ROLE_READER)])

        with pytest.raises(Forbidden):
            await orchestrator.create_cluster(db_session, reader.id, "readers", ClusterOptions(name="test"))

        assert cluster_service.clusters == []

    async def test_invalid_name_touches_nothing(self, db_session, orchestrator, cluster_service, user, organization):
        with pytest.raises(Unprocessable):
            await orchestrator.create_cluster(db_session, user.id, "test-org", ClusterOptions(name="Bad"))

        assert cluster_service.clusters == []

    async def test_failure_is_not_rolled_back(self, db_session, orchestrator, cluster_service, user, organization):
        cluster_service.fail_node_pool = "worker"

        with pytest.raises(UpstreamFailure):
            await orchestrator.create_cluster(db_session, user.id, "test-org", ClusterOptions(name="test"))

        assert [cluster.name for cluster in cluster_service.clusters] == ["test"]
        assert [options.name for _, options in cluster_service.node_pools] == ["control-plane"]


class TestDeleteCluster:
    """Test the delete cluster flow against stub services."""

    async def test_removes_deployments_and_addresses(self, db_session, orchestrator, cluster_service, ip_manager, user, organization):
        cluster = await orchestrator.create_cluster(db_session, user.id, "test-org", ClusterOptions(name="test"))
        await ip_manager.allocate("10.0.0.1/32", cluster.id)

        await orchestrator.delete_cluster(db_session, user.id, "test-org", "test")

        assert cluster_service.deleted == [cluster.id]
        assert (await db_session.execute(select(models.Deployment))).scalars().all() == []
        assert await ip_manager.find_by_tag(cluster.id) == []

    async def test_unknown_cluster(self, db_session, orchestrator, user, organization):
        with pytest.raises(NotFound):
            await orchestrator.delete_cluster(db_session, user.id, "test-org", "missing")
