"""OpenStack project pool and organization binding models."""
from sqlalchemy import Column, String, DateTime, Text, ForeignKey
import uuid
from datetime import datetime

from dockyards.database import Base
from dockyards.models.types import GUID


class OpenStackProject(Base):
    """Pre-provisioned OpenStack project available to organizations."""

    __tablename__ = "openstack_projects"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    openstack_id = Column(String(64), unique=True, nullable=False)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class OpenStackOrganization(Base):
    """Binding of an organization to the project it claimed.

    The application credential secret is stored sealed.
    """

    __tablename__ = "openstack_organizations"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    organization_id = Column(GUID, ForeignKey("organizations.id", ondelete="CASCADE"), unique=True, nullable=False)
    openstack_project_id = Column(GUID, ForeignKey("openstack_projects.id"), unique=True, nullable=False)
    credential_id = Column(String(64), nullable=False)
    credential_secret = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
