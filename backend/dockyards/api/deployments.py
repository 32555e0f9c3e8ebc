"""Cluster deployment endpoints."""
from fastapi import APIRouter, Depends, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging
import uuid

from dockyards.api.dependencies import get_container, get_principal
from dockyards.authorization import authorize
from dockyards.container import Container
from dockyards.database import get_db
from dockyards.errors import NotFound, Unprocessable
from dockyards.models.credential import Credential
from dockyards.models.deployment import Deployment as DeploymentRow
from dockyards.models.user import User
from dockyards.schemas import Deployment
from dockyards.utils.deployment import (
    add_normalized_name,
    delete_deployment,
    latest_status,
    store_deployment,
    to_schema,
)
from dockyards.utils.names import is_valid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Deployments"])


@router.post("/clusters/{cluster_id}/deployments", response_model=Deployment, response_model_exclude_none=True, status_code=201)
async def create_deployment(
    cluster_id: str,
    deployment: Deployment,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Create a deployment; the name is derived from the payload when omitted."""
    cluster = await container.cluster_service.get_cluster(cluster_id)
    organization, _ = await authorize(db, user.id, cluster.organization, write=True)

    deployment.id = None
    deployment.cluster_id = cluster.id

    try:
        add_normalized_name(deployment)
    except ValueError as e:
        raise Unprocessable("container image is not valid", name=deployment.container_image, details=str(e))

    if deployment.type is None:
        raise Unprocessable("deployment has no container image, helm chart or kustomize payload")

    details, ok = is_valid(deployment.name or "")
    if not ok:
        raise Unprocessable("name is not valid", name=deployment.name, details=details)

    if deployment.credential_id is not None:
        stmt = select(Credential.id).where(
            Credential.id == deployment.credential_id,
            Credential.organization_id == organization.id,
        )
        if (await db.execute(stmt)).scalar_one_or_none() is None:
            raise NotFound(f"credential {deployment.credential_id} not found")

    return await store_deployment(db, deployment, container.settings.DEPLOYMENT_REPOSITORY_ROOT)


@router.get("/clusters/{cluster_id}/deployments", response_model=List[Deployment], response_model_exclude_none=True)
async def list_deployments(
    cluster_id: str,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    cluster = await container.cluster_service.get_cluster(cluster_id)
    await authorize(db, user.id, cluster.organization)

    stmt = select(DeploymentRow).where(DeploymentRow.cluster_id == cluster.id).order_by(DeploymentRow.name)
    rows = (await db.execute(stmt)).scalars().all()

    return [to_schema(row, await latest_status(db, row.id)) for row in rows]


@router.delete("/deployments/{deployment_id}", status_code=204)
async def remove_deployment(
    deployment_id: uuid.UUID,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    row = (await db.execute(select(DeploymentRow).where(DeploymentRow.id == deployment_id))).scalar_one_or_none()
    if row is None:
        raise NotFound(f"deployment {deployment_id} not found")

    cluster = await container.cluster_service.get_cluster(row.cluster_id)
    await authorize(db, user.id, cluster.organization, write=True)

    await delete_deployment(db, row, container.settings.DEPLOYMENT_REPOSITORY_ROOT)

    logger.info(f"Deleted deployment {row.name} ({deployment_id}) from cluster {row.cluster_id}")
    return Response(status_code=204)
