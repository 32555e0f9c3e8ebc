"""Rancher implementation of the cluster service."""
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging
import re

import httpx

from dockyards.cloudservices.base import CloudService
from dockyards.clusterservices.base import ClusterService
from dockyards.clusterservices.rancher.client import RancherClient
from dockyards.clusterservices.rancher.configs import (
    cloud_config_from_node_template,
    node_taints,
    node_template,
    rke_config,
)
from dockyards.config import Settings
from dockyards.errors import DockyardsError, NotFound, Unprocessable
from dockyards.garbage import (
    GarbageEntry,
    GarbageQueue,
    KIND_CLUSTER_TEMPLATE,
    KIND_NODE_TEMPLATE,
    KIND_TOKEN,
)
from dockyards.labels import LABEL_CLUSTER_NAME, LABEL_ORGANIZATION_NAME, LOAD_BALANCER_ROLE, ownership_labels
from dockyards.models.organization import Organization
from dockyards.schemas import Cluster, ClusterOptions, Node, NodePool, NodePoolOptions
from dockyards.utils.names import decode, encode

logger = logging.getLogger(__name__)

SETTING_SUPPORTED_VERSIONS = "k8s-versions-current"

GARBAGE_COLLECTIONS = {
    KIND_CLUSTER_TEMPLATE: "clustertemplates",
    KIND_NODE_TEMPLATE: "nodetemplates",
    KIND_TOKEN: "tokens",
}


def _version_key(version: str):
    return [int(part) for part in re.findall(r"\d+", version)]


def _parse_created(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Ignoring unparsable timestamp {value!r}")
        return None


class RancherService(ClusterService):
    """Drives cluster templates, clusters and node pools through the Rancher v3 API."""

    def __init__(
        self,
        settings: Settings,
        cloud_service: CloudService,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = RancherClient(
            settings.CATTLE_URL,
            settings.CATTLE_BEARER_TOKEN,
            trust_insecure=settings.TRUST_INSECURE,
            transport=transport,
        )
        self.cloud_service = cloud_service
        self.garbage = GarbageQueue("rancher", self._delete_garbage_entry)

    async def close(self):
        await self.client.close()

    def _cluster_to_model(self, data: Dict[str, Any]) -> Cluster:
        # Labels are authoritative; decoding the flat name is lossy for
        # organizations whose name contains a dash
        labels = data.get("labels") or {}
        organization = labels.get(LABEL_ORGANIZATION_NAME)
        name = labels.get(LABEL_CLUSTER_NAME)
        if not organization or not name:
            organization, name = decode(data.get("name", ""))

        rke = data.get("rancherKubernetesEngineConfig") or {}

        return Cluster(
            id=data["id"],
            name=name,
            organization=organization,
            state=data.get("state") or "",
            node_count=data.get("nodeCount") or 0,
            created_at=_parse_created(data.get("created")),
            version=rke.get("kubernetesVersion") or "",
        )

    # -----------------------------
    # Clusters
    # -----------------------------

    async def supported_versions(self) -> List[str]:
        setting = await self.client.get("settings", SETTING_SUPPORTED_VERSIONS)
        versions = [version.strip() for version in (setting.get("value") or "").split(",") if version.strip()]
        return sorted(versions, key=_version_key, reverse=True)

    async def create_cluster(self, organization: Organization, options: ClusterOptions) -> Cluster:
        versions = await self.supported_versions()
        version = options.version or (versions[0] if versions else "")
        if version not in versions:
            raise Unprocessable(f"version {version!r} is not supported")

        flat_name = encode(organization.name, options.name)
        labels = ownership_labels(organization.name, options.name)

        template = await self.client.create("clustertemplates", {
            "type": "clusterTemplate",
            "name": flat_name,
            "labels": labels,
        })
        logger.debug(f"Created cluster template {template['id']} ({flat_name})")

        revision = await self.client.create("clustertemplaterevisions", {
            "type": "clusterTemplateRevision",
            "name": options.name,
            "clusterTemplateId": template["id"],
            "labels": labels,
            "clusterConfig": {
                "rancherKubernetesEngineConfig": rke_config(version, options.no_ingress_provider),
            },
        })
        logger.debug(f"Created cluster template revision {revision['id']}")

        created = await self.client.create("clusters", {
            "type": "cluster",
            "name": flat_name,
            "clusterTemplateId": template["id"],
            "clusterTemplateRevisionId": revision["id"],
            "labels": labels,
        })
        logger.info(f"Created cluster {created['id']} for {organization.name}/{options.name} ({version})")

        cluster = self._cluster_to_model(created)
        if not cluster.version:
            cluster.version = version
        return cluster

    async def get_all_clusters(self) -> List[Cluster]:
        return [self._cluster_to_model(data) for data in await self.client.list("clusters")]

    async def get_cluster(self, cluster_id: str) -> Cluster:
        cluster = self._cluster_to_model(await self.client.get("clusters", cluster_id))

        for data in await self.client.list("nodepools", clusterId=cluster_id):
            node_pool = self._node_pool_to_model(data)

            template = await self.client.get("nodetemplates", data["nodeTemplateId"])
            flavor_id = (template.get("openstackConfig") or {}).get("flavorId")
            if flavor_id:
                try:
                    flavor = await self.cloud_service.get_flavor_node_pool(flavor_id)
                except NotFound:
                    # Sizes stay unknown, the cluster itself still exists
                    logger.warning(f"Flavor {flavor_id} of node pool {node_pool.id} no longer exists")
                    cluster.node_pools.append(node_pool)
                    continue
                node_pool.cpu_count = flavor.cpu_count
                node_pool.ram_size_mb = flavor.ram_size_mb
                node_pool.disk_size_gb = flavor.disk_size_gb

            cluster.node_pools.append(node_pool)

        return cluster

    async def delete_cluster(self, organization: Organization, cluster_name: str):
        flat_name = encode(organization.name, cluster_name)

        for data in await self.client.list("clusters", name=flat_name):
            if data.get("name") != flat_name:
                continue

            logger.debug(f"Cluster to delete found: {data['id']} ({flat_name})")

            try:
                await self._delete_node_pools(organization, data["id"])
            except DockyardsError as e:
                # Node pool objects are not required to be gone before the cluster
                logger.warning(f"Error deleting node pools of cluster {data['id']}: {e}")

            await self.client.delete("clusters", data["id"])
            logger.info(f"Deleted cluster {data['id']} ({flat_name})")

            # The template is still referenced until the cluster is fully removed
            template_id = data.get("clusterTemplateId")
            if template_id:
                await self.garbage.enqueue(GarbageEntry(KIND_CLUSTER_TEMPLATE, template_id))
            return

        raise NotFound("unable to find cluster to delete")

    # -----------------------------
    # Node pools and nodes
    # -----------------------------

    def _node_pool_to_model(self, data: Dict[str, Any]) -> NodePool:
        load_balancer = any(taint.get("key") == LOAD_BALANCER_ROLE for taint in data.get("nodeTaints") or [])
        worker = bool(data.get("worker"))
        return NodePool(
            id=data["id"],
            cluster_id=data.get("clusterId") or "",
            name=data.get("name") or "",
            quantity=data.get("quantity") or 0,
            control_plane=bool(data.get("controlPlane")),
            etcd=bool(data.get("etcd")),
            worker=worker,
            load_balancer=load_balancer,
            control_plane_components_only=not worker,
        )

    async def create_node_pool(self, organization: Organization, cluster: Cluster, options: NodePoolOptions) -> NodePool:
        config = await self.cloud_service.prepare_environment(organization, cluster, options)

        name = f"{cluster.name}-{options.name}"
        labels = ownership_labels(organization.name, cluster.name)

        try:
            template = await self.client.create("nodetemplates", node_template(name, config, labels, options.load_balancer))
        except DockyardsError:
            await self.cloud_service.clean_environment(organization, config)
            raise
        logger.debug(f"Created node template {template['id']} ({name})")

        try:
            created = await self.client.create("nodepools", {
                "type": "nodePool",
                "clusterId": cluster.id,
                "name": options.name,
                "hostnamePrefix": f"{name}-",
                "nodeTemplateId": template["id"],
                "quantity": options.quantity,
                "controlPlane": options.control_plane,
                "etcd": options.etcd,
                "worker": options.is_worker,
                "drainBeforeDelete": True,
                "deleteNotReadyAfterSecs": 0,
                "nodeTaints": node_taints(options.load_balancer),
                "labels": labels,
            })
        except DockyardsError:
            await self.cloud_service.clean_environment(organization, config)
            await self.garbage.enqueue(GarbageEntry(KIND_NODE_TEMPLATE, template["id"]))
            raise

        logger.info(f"Created node pool {created['id']} ({name}, quantity {options.quantity})")

        return NodePool(
            id=created["id"],
            cluster_id=created.get("clusterId") or cluster.id,
            name=created.get("name") or options.name,
            quantity=created.get("quantity") or options.quantity,
            control_plane=options.control_plane,
            etcd=options.etcd,
            worker=options.is_worker,
            load_balancer=options.load_balancer,
            control_plane_components_only=options.control_plane_components_only,
            cpu_count=options.cpu_count,
            ram_size_mb=options.ram_size_mb,
            disk_size_gb=options.disk_size_gb,
        )

    async def delete_node_pool(self, organization: Organization, node_pool_id: str):
        node_pool = await self.client.get("nodepools", node_pool_id)
        template = await self.client.get("nodetemplates", node_pool["nodeTemplateId"])

        await self.cloud_service.clean_environment(organization, cloud_config_from_node_template(template))

        await self.client.delete("nodepools", node_pool["id"])
        logger.debug(f"Deleted node pool {node_pool['id']} ({node_pool.get('name')})")

        # The node template cannot be deleted until its nodes are gone
        await self.garbage.enqueue(GarbageEntry(KIND_NODE_TEMPLATE, template["id"]))

    async def _delete_node_pools(self, organization: Organization, cluster_id: str):
        for data in await self.client.list("nodepools", clusterId=cluster_id):
            try:
                await self.delete_node_pool(organization, data["id"])
            except DockyardsError as e:
                logger.warning(f"Error deleting node pool {data['id']}: {e}")

    async def get_node_pool(self, node_pool_id: str) -> NodePool:
        node_pool = self._node_pool_to_model(await self.client.get("nodepools", node_pool_id))
        node_pool.nodes = await self.get_nodes(node_pool)
        return node_pool

    async def get_nodes(self, node_pool: NodePool) -> List[Node]:
        return [
            Node(id=data["id"], name=data.get("hostname") or "", state=data.get("state") or "")
            for data in await self.client.list("nodes", nodePoolId=node_pool.id)
        ]

    # -----------------------------
    # Kubeconfig and tokens
    # -----------------------------

    async def generate_kubeconfig(self, cluster_id: str) -> str:
        cluster = await self.client.get("clusters", cluster_id)
        logger.debug(f"Generating kubeconfig for cluster {cluster['id']}")
        result = await self.client.action("clusters", cluster["id"], "generateKubeconfig")
        return result["config"]

    async def create_token(self, cluster_id: str, ttl_millis: int) -> str:
        created = await self.client.create("tokens", {
            "type": "token",
            "clusterId": cluster_id,
            "ttl": ttl_millis,
            "description": "dockyards kubeconfig",
        })
        logger.debug(f"Created token {created.get('id')} for cluster {cluster_id} (ttl {ttl_millis}ms)")
        return created["token"]

    async def delete_token(self, token_id: str):
        await self.client.delete("tokens", token_id)

    # -----------------------------
    # Garbage
    # -----------------------------

    async def _delete_garbage_entry(self, entry: GarbageEntry):
        collection = GARBAGE_COLLECTIONS.get(entry.kind)
        if collection is None:
            raise ValueError(f"unsupported garbage kind {entry.kind}")
        try:
            await self.client.delete(collection, entry.remote_id)
        except NotFound:
            logger.debug(f"{entry.kind} {entry.remote_id} already deleted")

    async def enqueue_garbage(self, entry: GarbageEntry) -> bool:
        return await self.garbage.enqueue(entry)

    async def delete_garbage(self) -> int:
        return await self.garbage.tick()
