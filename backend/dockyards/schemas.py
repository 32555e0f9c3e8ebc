"""Request and response models shared by the API and the services.

Fields are camelCase on the wire; snake_case is accepted on input as well.
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional
from datetime import datetime
import uuid


class APIModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------
# Clusters and node pools
# -----------------------------

class NodePoolOptions(APIModel):
    """Requested node pool."""
    name: str = ""
    quantity: int = Field(default=1, ge=1)
    control_plane: bool = False
    etcd: bool = False
    worker: bool = False
    load_balancer: bool = False
    control_plane_components_only: bool = False
    cpu_count: int = Field(default=0, ge=0)
    ram_size_mb: int = Field(default=0, ge=0)
    disk_size_gb: int = Field(default=0, ge=0)

    @property
    def is_worker(self) -> bool:
        """Whether the pool schedules workloads."""
        return self.worker or not self.control_plane_components_only


class ClusterOptions(APIModel):
    name: str
    version: Optional[str] = None
    single_node: bool = False
    no_ingress_provider: bool = False
    no_cluster_apps: bool = False
    node_pool_options: Optional[List[NodePoolOptions]] = None


class Node(APIModel):
    id: str
    name: str
    state: str = ""


class NodePool(APIModel):
    id: str = ""
    cluster_id: str = ""
    name: str
    quantity: int = 0
    control_plane: bool = False
    etcd: bool = False
    worker: bool = False
    load_balancer: bool = False
    control_plane_components_only: bool = False
    cpu_count: int = 0
    ram_size_mb: int = 0
    disk_size_gb: int = 0
    nodes: List[Node] = []


class Cluster(APIModel):
    id: str
    name: str
    organization: str
    state: str = ""
    node_count: int = 0
    created_at: Optional[datetime] = None
    version: str = ""
    node_pools: List[NodePool] = []


class Options(APIModel):
    """Choices offered to clients building a ClusterOptions body."""
    version: List[str]
    single_node: bool = False
    node_pool_options: List[NodePoolOptions] = []


# -----------------------------
# Organizations and credentials
# -----------------------------

class OrganizationCreate(APIModel):
    name: str
    display_name: Optional[str] = None


class Organization(APIModel):
    id: uuid.UUID
    name: str
    display_name: Optional[str] = None
    role: Optional[str] = None
    created_at: Optional[datetime] = None


class CredentialCreate(APIModel):
    name: str
    data: Optional[Dict[str, str]] = None


class Credential(APIModel):
    id: uuid.UUID
    name: str
    organization: str
    data: Optional[Dict[str, str]] = None


# -----------------------------
# Deployments
# -----------------------------

class Deployment(APIModel):
    """A workload for one cluster; exactly one payload kind is expected."""
    id: Optional[uuid.UUID] = None
    cluster_id: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    namespace: Optional[str] = None
    container_image: Optional[str] = None
    port: Optional[int] = None
    helm_chart: Optional[str] = None
    helm_repository: Optional[str] = None
    helm_version: Optional[str] = None
    helm_values: Optional[Dict[str, Any]] = None
    kustomize: Optional[Dict[str, str]] = None
    credential_id: Optional[uuid.UUID] = None
    state: Optional[str] = None
    health: Optional[str] = None


# -----------------------------
# Users and tokens
# -----------------------------

class SignupRequest(APIModel):
    name: str
    email: str
    password: str


class LoginRequest(APIModel):
    email: str
    password: str


class RefreshRequest(APIModel):
    refresh_token: Optional[str] = None


class TokenPair(APIModel):
    access_token: str
    refresh_token: str


class User(APIModel):
    id: uuid.UUID
    name: str
    email: str
