"""OpenStack implementation of the cloud service."""
from dataclasses import dataclass
from typing import Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
import asyncio
import ipaddress
import httpx
import logging

from dockyards.cloudservices.base import CloudConfig, CloudService
from dockyards.cloudservices.openstack.client import OpenStackClient
from dockyards.cloudservices.openstack.deployments import (
    cinder_csi_deployment,
    ingress_nginx_deployment,
    metallb_deployment,
    parse_network_tags,
)
from dockyards.cloudservices.openstack.flavors import closest_flavor_id, requirements
from dockyards.config import Settings
from dockyards.errors import AddressNotAllocated, NotFound, UpstreamFailure
from dockyards.garbage import GarbageEntry, GarbageQueue, KIND_SECURITY_GROUP
from dockyards.models.openstack import OpenStackOrganization, OpenStackProject
from dockyards.models.organization import Organization
from dockyards.schemas import Cluster, Deployment, NodePool, NodePoolOptions
from dockyards.utils.crypto import CryptoService
from dockyards.utils.ipam import IPManager

logger = logging.getLogger(__name__)

IMAGE_NAME = "ubuntu-22.04"
NETWORK_NAME = "default"
FLAVOR_MIN_RAM = 4096  # MB
FLAVOR_MIN_DISK = 100  # GB


@dataclass
class ProjectBinding:
    project_id: str
    credential_id: str
    credential_secret: str


class OpenStackService(CloudService):
    """Prepares per node pool resources in the project bound to each organization."""

    def __init__(
        self,
        settings: Settings,
        session_factory,
        ip_manager: IPManager,
        crypto: CryptoService,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.auth_url = settings.OPENSTACK_AUTH_URL.rstrip("/")
        self.session_factory = session_factory
        self.ip_manager = ip_manager
        self.crypto = crypto
        self.http = httpx.AsyncClient(transport=transport, timeout=30.0, verify=not settings.TRUST_INSECURE)
        self.garbage = GarbageQueue("openstack", self._delete_garbage_entry)

        self._scoped_clients: Dict[str, OpenStackClient] = {}
        self._clients_lock = asyncio.Lock()

    async def close(self):
        await self.http.aclose()

    # -----------------------------
    # Clients and project bindings
    # -----------------------------

    async def get_scoped_client(self, project_id: Optional[str] = None) -> OpenStackClient:
        """Client scoped to ``project_id``, or to the service project when omitted.

        Cached per project; the lock makes sure a project authenticates once.
        """
        key = project_id or ""

        async with self._clients_lock:
            client = self._scoped_clients.get(key)
            if client is None or client.expired:
                client = OpenStackClient(self.http, self.auth_url, self.settings.OPENSTACK_REGION)
                await client.authenticate(
                    self.settings.OPENSTACK_USERNAME,
                    self.settings.OPENSTACK_PASSWORD,
                    user_domain=self.settings.OPENSTACK_USER_DOMAIN,
                    project_id=project_id,
                    project_name=None if project_id else self.settings.OPENSTACK_PROJECT_NAME,
                )
                self._scoped_clients[key] = client

        return client

    async def _find_project_binding(self, organization: Organization) -> Optional[ProjectBinding]:
        async with self.session_factory() as session:
            stmt = (
                select(OpenStackOrganization, OpenStackProject)
                .join(OpenStackProject, OpenStackOrganization.openstack_project_id == OpenStackProject.id)
                .where(OpenStackOrganization.organization_id == organization.id)
            )
            row = (await session.execute(stmt)).first()

        if row is None:
            return None

        binding, project = row
        return ProjectBinding(
            project_id=project.openstack_id,
            credential_id=binding.credential_id,
            credential_secret=self.crypto.decrypt(binding.credential_secret),
        )

    async def get_project_binding(self, organization: Organization) -> ProjectBinding:
        """Project bound to ``organization``, claiming a free one on first use."""
        binding = await self._find_project_binding(organization)
        if binding is not None:
            return binding
        return await self.create_organization(organization)

    async def create_organization(self, organization: Organization) -> ProjectBinding:
        """Bind ``organization`` to the first free project.

        Losing a race for a project moves on to the next free one.
        """
        while True:
            binding = await self._claim_project(organization)
            if binding is not None:
                return binding

    async def _claim_project(self, organization: Organization) -> Optional[ProjectBinding]:
        async with self.session_factory() as session:
            stmt = (
                select(OpenStackProject)
                .outerjoin(OpenStackOrganization, OpenStackOrganization.openstack_project_id == OpenStackProject.id)
                .where(OpenStackOrganization.id.is_(None))
                .order_by(OpenStackProject.openstack_id)
                .limit(1)
            )
            project = (await session.execute(stmt)).scalar_one_or_none()

            if project is None:
                logger.error("No OpenStack projects available for use")
                raise UpstreamFailure("no openstack projects available for use")

            logger.info(f"Claiming OpenStack project {project.openstack_id} for organization {organization.name}")

            client = await self.get_scoped_client(project.openstack_id)
            result = await client.post(
                "identity",
                f"/users/{client.user_id}/application_credentials",
                {"application_credential": {"name": organization.name}},
            )
            credential = result["application_credential"]

            session.add(OpenStackOrganization(
                organization_id=organization.id,
                openstack_project_id=project.id,
                credential_id=credential["id"],
                credential_secret=self.crypto.encrypt(credential["secret"]),
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                await self._delete_application_credential(client, credential["id"])
                binding = await self._find_project_binding(organization)
                if binding is not None:
                    logger.warning(f"Organization {organization.name} was bound concurrently")
                    return binding
                claimed = (await session.execute(
                    select(OpenStackOrganization.id).where(OpenStackOrganization.openstack_project_id == project.id)
                )).first()
                if claimed is None:
                    raise
                logger.warning(f"OpenStack project {project.openstack_id} was claimed concurrently, retrying")
                return None

        return ProjectBinding(
            project_id=project.openstack_id,
            credential_id=credential["id"],
            credential_secret=credential["secret"],
        )

    async def _delete_application_credential(self, client: OpenStackClient, credential_id: str):
        try:
            await client.delete("identity", f"/users/{client.user_id}/application_credentials/{credential_id}")
        except NotFound:
            logger.warning(f"Application credential {credential_id} already gone")

    async def delete_organization(self, organization: Organization):
        async with self.session_factory() as session:
            stmt = (
                select(OpenStackOrganization, OpenStackProject)
                .join(OpenStackProject, OpenStackOrganization.openstack_project_id == OpenStackProject.id)
                .where(OpenStackOrganization.organization_id == organization.id)
            )
            row = (await session.execute(stmt)).first()
            if row is None:
                logger.debug(f"Organization {organization.name} has no OpenStack project")
                return

            binding, project = row
            client = await self.get_scoped_client(project.openstack_id)
            await self._delete_application_credential(client, binding.credential_id)

            await session.delete(binding)
            await session.commit()

        logger.info(f"Released OpenStack project {project.openstack_id} from organization {organization.name}")

    # -----------------------------
    # Environment
    # -----------------------------

    async def _find_image(self, client: OpenStackClient) -> str:
        result = await client.get("image", "/v2/images", params={"name": IMAGE_NAME})
        for image in result.get("images", []):
            if image.get("name") == IMAGE_NAME:
                return image["id"]
        raise UpstreamFailure("unable to find suitable image")

    async def _find_network(self, client: OpenStackClient) -> dict:
        result = await client.get("network", "/v2.0/networks", params={"name": NETWORK_NAME})
        for network in result.get("networks", []):
            if network.get("name") == NETWORK_NAME:
                return network
        raise UpstreamFailure("unable to find suitable network")

    async def prepare_environment(self, organization: Organization, cluster: Cluster, options: NodePoolOptions) -> CloudConfig:
        binding = await self.get_project_binding(organization)
        client = await self.get_scoped_client(binding.project_id)

        result = await client.get("compute", "/flavors/detail", params={"minRam": FLAVOR_MIN_RAM, "minDisk": FLAVOR_MIN_DISK})
        disk, ram, vcpus = requirements(options)
        flavor_id = closest_flavor_id(result.get("flavors", []), disk, ram, vcpus)
        if not flavor_id:
            raise UpstreamFailure("unable to find a suitable flavor")

        image_id = await self._find_image(client)
        network = await self._find_network(client)

        keypair_name = f"{cluster.name}-{options.name}"
        result = await client.post("compute", "/os-keypairs", {"keypair": {"name": keypair_name}})
        keypair = result["keypair"]
        logger.debug(f"Created keypair {keypair_name} in project {binding.project_id}")

        config = CloudConfig(
            auth_url=self.auth_url,
            application_credential_id=binding.credential_id,
            application_credential_secret=binding.credential_secret,
            flavor_id=flavor_id,
            image_id=image_id,
            network_id=network["id"],
            keypair_name=keypair_name,
            private_key=keypair.get("private_key", ""),
            project_id=binding.project_id,
        )

        try:
            result = await client.post(
                "network",
                "/v2.0/security-groups",
                {"security_group": {"name": keypair_name, "description": f"node pool {options.name} of cluster {cluster.name}"}},
            )
            security_group = result["security_group"]
            config.security_groups.append(security_group["id"])

            for ethertype in ("IPv4", "IPv6"):
                await client.post(
                    "network",
                    "/v2.0/security-group-rules",
                    {"security_group_rule": {
                        "direction": "ingress",
                        "ethertype": ethertype,
                        "security_group_id": security_group["id"],
                    }},
                )

            if options.load_balancer:
                tags = parse_network_tags(network.get("tags", []))
                for prefix in tags.prefixes:
                    address = await self.ip_manager.allocate(prefix, cluster.id)
                    config.addresses.append(f"{address}/{address.max_prefixlen}")
        except Exception as e:
            logger.warning(f"Preparing node pool {options.name} failed, cleaning up: {e}")
            await self.clean_environment(organization, config)
            raise

        logger.info(f"Prepared OpenStack environment for {cluster.name}/{options.name} (flavor {flavor_id})")
        return config

    async def clean_environment(self, organization: Organization, config: CloudConfig):
        project_id = config.project_id
        if not project_id:
            binding = await self._find_project_binding(organization)
            project_id = binding.project_id if binding else ""

        if project_id:
            client = await self.get_scoped_client(project_id)
            try:
                await client.delete("compute", f"/os-keypairs/{config.keypair_name}")
            except (NotFound, UpstreamFailure) as e:
                logger.warning(f"Error deleting keypair {config.keypair_name}: {e}")
        else:
            logger.warning(f"Organization {organization.name} has no OpenStack project, skipping keypair {config.keypair_name}")

        for address in config.addresses:
            try:
                await self.ip_manager.release(ipaddress.ip_interface(address).ip)
            except AddressNotAllocated:
                logger.warning(f"Address {address} was not allocated")

        for security_group_id in config.security_groups:
            await self.garbage.enqueue(GarbageEntry(KIND_SECURITY_GROUP, security_group_id, scope=project_id))

    # -----------------------------
    # Deployments and flavors
    # -----------------------------

    async def get_cluster_deployments(self, organization: Organization, cluster: Cluster) -> List[Deployment]:
        binding = await self.get_project_binding(organization)

        deployments = [
            cinder_csi_deployment(cluster, self.auth_url, binding.credential_id, binding.credential_secret),
        ]

        if any(node_pool.load_balancer for node_pool in cluster.node_pools):
            logger.debug(f"Cluster {cluster.name} has load balancer node pools")
            client = await self.get_scoped_client(binding.project_id)
            network = await self._find_network(client)
            tags = parse_network_tags(network.get("tags", []))
            addresses = [f"{address}/{address.max_prefixlen}" for address in await self.ip_manager.find_by_tag(cluster.id)]
            deployments.append(metallb_deployment(cluster, network["name"], tags, addresses))
            deployments.append(ingress_nginx_deployment(cluster))

        return deployments

    async def get_flavor_node_pool(self, flavor_id: str) -> NodePool:
        client = await self.get_scoped_client()
        flavor = (await client.get("compute", f"/flavors/{flavor_id}"))["flavor"]
        return NodePool(
            name=flavor.get("name", flavor_id),
            cpu_count=flavor.get("vcpus", 0),
            ram_size_mb=flavor.get("ram", 0),
            disk_size_gb=flavor.get("disk", 0),
        )

    # -----------------------------
    # Garbage
    # -----------------------------

    async def _delete_garbage_entry(self, entry: GarbageEntry):
        if entry.kind != KIND_SECURITY_GROUP:
            raise ValueError(f"unsupported garbage kind {entry.kind}")
        client = await self.get_scoped_client(entry.scope)
        try:
            await client.delete("network", f"/v2.0/security-groups/{entry.remote_id}")
        except NotFound:
            logger.debug(f"Security group {entry.remote_id} already deleted")

    async def delete_garbage(self) -> int:
        return await self.garbage.tick()
