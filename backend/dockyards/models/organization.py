"""Organization and membership models."""
from sqlalchemy import Column, String, DateTime, ForeignKey
import uuid
from datetime import datetime

from dockyards.database import Base
from dockyards.models.types import GUID

ROLE_SUPER_USER = "SuperUser"
ROLE_USER = "User"
ROLE_READER = "Reader"

WRITE_ROLES = {ROLE_SUPER_USER, ROLE_USER}
ROLES = {ROLE_SUPER_USER, ROLE_USER, ROLE_READER}


class Organization(Base):
    """Organization grouping users, clusters and credentials."""

    __tablename__ = "organizations"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    name = Column(String(63), unique=True, nullable=False, index=True)
    display_name = Column(String(255))
    expiration = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class OrganizationMember(Base):
    """Membership of a user in an organization, with its role."""

    __tablename__ = "organization_members"

    organization_id = Column(GUID, ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role = Column(String(32), nullable=False, default=ROLE_USER)
    created_at = Column(DateTime, default=datetime.utcnow)
