"""Deployment and deployment status models."""
from sqlalchemy import Column, String, DateTime, Integer, JSON, ForeignKey, UniqueConstraint
import uuid
from datetime import datetime

from dockyards.database import Base
from dockyards.models.types import GUID

DEPLOYMENT_TYPE_CONTAINER_IMAGE = "container-image"
DEPLOYMENT_TYPE_HELM = "helm"
DEPLOYMENT_TYPE_KUSTOMIZE = "kustomize"

DEPLOYMENT_STATE_CREATED = "created"

DEPLOYMENT_HEALTH_HEALTHY = "healthy"
DEPLOYMENT_HEALTH_WARNING = "warning"
DEPLOYMENT_HEALTH_ERROR = "error"


class Deployment(Base):
    """Workload deployed into a cluster."""

    __tablename__ = "deployments"
    __table_args__ = (UniqueConstraint("cluster_id", "name", name="uq_deployments_cluster_name"),)

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    cluster_id = Column(String(255), nullable=False, index=True)  # Upstream cluster id
    name = Column(String(63), nullable=False)
    type = Column(String(32), nullable=False)
    namespace = Column(String(63), nullable=True)

    # container-image
    container_image = Column(String(512), nullable=True)
    port = Column(Integer, nullable=True)

    # helm
    helm_chart = Column(String(255), nullable=True)
    helm_repository = Column(String(512), nullable=True)
    helm_version = Column(String(64), nullable=True)
    helm_values = Column(JSON, nullable=True)

    # kustomize
    kustomize = Column(JSON, nullable=True)

    credential_id = Column(GUID, ForeignKey("credentials.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class DeploymentStatus(Base):
    """Point in time state of a deployment."""

    __tablename__ = "deployment_statuses"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    deployment_id = Column(GUID, ForeignKey("deployments.id", ondelete="CASCADE"), nullable=False, index=True)
    state = Column(String(64), nullable=False)
    health = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
