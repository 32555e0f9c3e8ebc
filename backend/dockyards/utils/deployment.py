"""Deployment normalization, persistence and per-deployment repository directories."""
from pathlib import Path
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import posixpath
import re
import shutil
import logging
import uuid
import yaml

from dockyards import models
from dockyards.errors import Conflict, Internal
from dockyards.models.deployment import (
    DEPLOYMENT_HEALTH_WARNING,
    DEPLOYMENT_STATE_CREATED,
    DEPLOYMENT_TYPE_CONTAINER_IMAGE,
    DEPLOYMENT_TYPE_HELM,
    DEPLOYMENT_TYPE_KUSTOMIZE,
)
from dockyards.schemas import Deployment

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "docker.io"
OFFICIAL_REPOSITORY_PREFIX = "library/"

_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = re.compile(rf"^{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?$")
_PATH_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
_REMAINDER = re.compile(
    rf"^(?P<path>{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*)"
    r"(?::(?P<tag>[\w][\w.-]{0,127}))?"
    r"(?:@(?P<digest>[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}))?$"
)


def _split_domain(reference: str):
    i = reference.find("/")
    if i == -1:
        return DEFAULT_DOMAIN, reference

    candidate = reference[:i]
    if "." not in candidate and ":" not in candidate and candidate != "localhost" and candidate.lower() == candidate:
        return DEFAULT_DOMAIN, reference

    return candidate, reference[i + 1:]


def normalize_container_image(reference: str):
    """Return ``(normalized reference, repository name)`` for a container image.

    ``test:v1.2.3`` becomes ``docker.io/library/test:v1.2.3``. Raises
    ValueError for references that are not valid image names.
    """
    domain, remainder = _split_domain(reference)

    if not _DOMAIN.match(domain):
        raise ValueError(f"invalid reference format: {reference}")

    if domain == DEFAULT_DOMAIN and "/" not in remainder.split(":")[0].split("@")[0]:
        remainder = OFFICIAL_REPOSITORY_PREFIX + remainder

    match = _REMAINDER.match(remainder)
    if not match:
        if remainder.lower() != remainder:
            raise ValueError(f"invalid reference format: repository name must be lowercase: {reference}")
        raise ValueError(f"invalid reference format: {reference}")

    name = f"{domain}/{match.group('path')}"
    normalized = name
    if match.group("tag"):
        normalized += ":" + match.group("tag")
    if match.group("digest"):
        normalized += "@" + match.group("digest")

    return normalized, name


def add_normalized_name(deployment: Deployment) -> Deployment:
    """Fill in type, name and namespace from the deployment payload."""
    if deployment.container_image is not None:
        normalized, name = normalize_container_image(deployment.container_image)
        deployment.container_image = normalized
        if not deployment.name:
            deployment.name = posixpath.basename(name)
        deployment.type = DEPLOYMENT_TYPE_CONTAINER_IMAGE

    if deployment.helm_chart is not None:
        if not deployment.name:
            deployment.name = deployment.helm_chart
        deployment.type = DEPLOYMENT_TYPE_HELM

    if deployment.kustomize is not None:
        if deployment.name is None:
            deployment.name = ""
        deployment.type = DEPLOYMENT_TYPE_KUSTOMIZE

    if deployment.namespace is None:
        deployment.namespace = deployment.name

    return deployment


def repository_path(root: str, deployment_id) -> Path:
    return Path(root) / str(deployment_id)


def create_repository(root: str, deployment: Deployment) -> Path:
    """Create the repository directory of a deployment and write its manifest."""
    path = repository_path(root, deployment.id)
    path.mkdir(parents=True, exist_ok=False)

    manifest = deployment.model_dump(mode="json", by_alias=True, exclude_none=True)
    kustomize = manifest.pop("kustomize", None)

    with open(path / "deployment.yaml", "w") as f:
        yaml.safe_dump(manifest, f, default_flow_style=False, sort_keys=False)

    # Kustomize payloads are a file name to content mapping
    for file_name, content in (kustomize or {}).items():
        target = path / posixpath.basename(file_name)
        target.write_text(content)

    logger.debug(f"Created repository {path}")
    return path


def remove_repository(root: str, deployment_id) -> bool:
    """Remove the repository directory of a deployment; False when it was absent."""
    path = repository_path(root, deployment_id)
    if not path.exists():
        return False

    shutil.rmtree(path)
    logger.debug(f"Removed repository {path}")
    return True


# -----------------------------
# Persistence
# -----------------------------

def to_schema(row: models.Deployment, status: Optional[models.DeploymentStatus] = None) -> Deployment:
    deployment = Deployment(
        id=row.id,
        cluster_id=row.cluster_id,
        name=row.name,
        type=row.type,
        namespace=row.namespace,
        container_image=row.container_image,
        port=row.port,
        helm_chart=row.helm_chart,
        helm_repository=row.helm_repository,
        helm_version=row.helm_version,
        helm_values=row.helm_values,
        kustomize=row.kustomize,
        credential_id=row.credential_id,
    )
    if status is not None:
        deployment.state = status.state
        deployment.health = status.health
    return deployment


async def store_deployment(session: AsyncSession, deployment: Deployment, repository_root: str) -> Deployment:
    """Persist a normalized deployment with its initial status and repository.

    Raises Conflict when the cluster already has a deployment of that name.
    """
    deployment.id = uuid.uuid4()

    row = models.Deployment(
        id=deployment.id,
        cluster_id=deployment.cluster_id,
        name=deployment.name,
        type=deployment.type,
        namespace=deployment.namespace,
        container_image=deployment.container_image,
        port=deployment.port,
        helm_chart=deployment.helm_chart,
        helm_repository=deployment.helm_repository,
        helm_version=deployment.helm_version,
        helm_values=deployment.helm_values,
        kustomize=deployment.kustomize,
        credential_id=deployment.credential_id,
    )
    session.add(row)

    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise Conflict(f"deployment {deployment.name} already exists in cluster {deployment.cluster_id}")

    # Helm charts are pulled from their repository, nothing to keep on disk
    if deployment.type in (DEPLOYMENT_TYPE_CONTAINER_IMAGE, DEPLOYMENT_TYPE_KUSTOMIZE):
        try:
            create_repository(repository_root, deployment)
        except OSError as e:
            await session.rollback()
            logger.error(f"Error creating repository for deployment {deployment.name}: {e}")
            raise Internal("unable to create deployment repository")

    status = models.DeploymentStatus(
        deployment_id=row.id,
        state=DEPLOYMENT_STATE_CREATED,
        health=DEPLOYMENT_HEALTH_WARNING,
    )
    session.add(status)
    await session.commit()

    logger.info(f"Created deployment {deployment.name} ({deployment.type}) for cluster {deployment.cluster_id}")
    return to_schema(row, status)


async def latest_status(session: AsyncSession, deployment_id) -> Optional[models.DeploymentStatus]:
    stmt = (
        select(models.DeploymentStatus)
        .where(models.DeploymentStatus.deployment_id == deployment_id)
        .order_by(models.DeploymentStatus.created_at.desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def delete_deployment(session: AsyncSession, row: models.Deployment, repository_root: str):
    """Remove a deployment row, its statuses and its repository directory."""
    await session.execute(delete(models.DeploymentStatus).where(models.DeploymentStatus.deployment_id == row.id))
    await session.delete(row)
    await session.commit()

    if not remove_repository(repository_root, row.id):
        logger.debug(f"Deployment {row.id} had no repository")


async def delete_cluster_deployments(session: AsyncSession, cluster_id: str, repository_root: str) -> int:
    stmt = select(models.Deployment).where(models.Deployment.cluster_id == cluster_id)
    rows = (await session.execute(stmt)).scalars().all()
    for row in rows:
        await delete_deployment(session, row, repository_root)
    return len(rows)
