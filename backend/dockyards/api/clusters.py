"""Cluster management endpoints."""
from fastapi import APIRouter, Depends, Response
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging

from dockyards.api.dependencies import get_container, get_principal
from dockyards.authorization import authorize, member_organizations
from dockyards.container import Container
from dockyards.database import get_db
from dockyards.models.user import User
from dockyards.orchestrator import recommended_node_pools
from dockyards.schemas import Cluster, ClusterOptions, NodePool, NodePoolOptions, Options

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Clusters"])


@router.get("/cluster-options", response_model=Options)
async def get_cluster_options(
    user: User = Depends(get_principal),
    container: Container = Depends(get_container),
):
    """Supported versions and the node pools used when none are requested."""
    return Options(
        version=await container.cluster_service.supported_versions(),
        single_node=False,
        node_pool_options=recommended_node_pools(),
    )


@router.post("/orgs/{org}/clusters", response_model=Cluster, status_code=201)
async def create_cluster(
    org: str,
    options: ClusterOptions,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    logger.debug(f"Create cluster {org}/{options.name} (version {options.version})")
    return await container.orchestrator.create_cluster(db, user.id, org, options)


@router.get("/clusters", response_model=List[Cluster])
async def list_clusters(
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Clusters of every organization the caller is a member of."""
    names = {organization.name for organization, _ in await member_organizations(db, user.id)}
    return [
        cluster
        for cluster in await container.cluster_service.get_all_clusters()
        if cluster.organization in names
    ]


@router.get("/clusters/{cluster_id}", response_model=Cluster)
async def get_cluster(
    cluster_id: str,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    cluster = await container.cluster_service.get_cluster(cluster_id)
    await authorize(db, user.id, cluster.organization)
    return cluster


@router.delete("/orgs/{org}/clusters/{cluster_name}", status_code=202)
async def delete_cluster(
    org: str,
    cluster_name: str,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    await container.orchestrator.delete_cluster(db, user.id, org, cluster_name)
    return Response(status_code=202)


@router.get("/orgs/{org}/clusters/{cluster_name}/kubeconfig", response_class=PlainTextResponse)
async def get_kubeconfig(
    org: str,
    cluster_name: str,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Kubeconfig with a token that expires after KUBECONFIG_TTL seconds."""
    _, cluster = await container.orchestrator.resolve_cluster(db, user.id, org, cluster_name)

    kubeconfig = await container.issuer.issue(cluster.id)
    return PlainTextResponse(kubeconfig, media_type="text/yaml")


@router.get("/node-pools/{node_pool_id}", response_model=NodePool, tags=["Node pools"])
async def get_node_pool(
    node_pool_id: str,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """A node pool with its nodes."""
    node_pool = await container.cluster_service.get_node_pool(node_pool_id)
    cluster = await container.cluster_service.get_cluster(node_pool.cluster_id)
    await authorize(db, user.id, cluster.organization)
    return node_pool


@router.post("/clusters/{cluster_id}/node-pools", response_model=NodePool, status_code=201, tags=["Node pools"])
async def create_cluster_node_pool(
    cluster_id: str,
    options: NodePoolOptions,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    organization, cluster = await container.orchestrator.resolve_cluster_id(db, user.id, cluster_id, write=True)
    return await container.orchestrator.add_node_pool(organization, cluster, options)


@router.post("/orgs/{org}/clusters/{cluster_name}/node-pools", response_model=NodePool, status_code=201, tags=["Node pools"])
async def create_organization_cluster_node_pool(
    org: str,
    cluster_name: str,
    options: NodePoolOptions,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    organization, cluster = await container.orchestrator.resolve_cluster(db, user.id, org, cluster_name, write=True)
    return await container.orchestrator.add_node_pool(organization, cluster, options)


@router.delete("/orgs/{org}/clusters/{cluster_name}/node-pools/{node_pool_name}", status_code=204, tags=["Node pools"])
async def delete_cluster_node_pool(
    org: str,
    cluster_name: str,
    node_pool_name: str,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    organization, cluster = await container.orchestrator.resolve_cluster(db, user.id, org, cluster_name, write=True)
    await container.orchestrator.delete_node_pool(organization, cluster, node_pool_name)
    return Response(status_code=204)
