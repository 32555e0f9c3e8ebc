"""Credential model."""
from sqlalchemy import Column, String, DateTime, Text, ForeignKey, UniqueConstraint
import uuid
from datetime import datetime

from dockyards.database import Base
from dockyards.models.types import GUID


class Credential(Base):
    """Organization owned key/value secret.

    ``data`` holds the Fernet sealed JSON document, never plaintext.
    """

    __tablename__ = "credentials"
    __table_args__ = (UniqueConstraint("organization_id", "name", name="uq_credentials_organization_name"),)

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    name = Column(String(63), nullable=False)
    organization_id = Column(GUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    data = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
