"""IP allocation model."""
from sqlalchemy import Column, String, DateTime
import uuid
from datetime import datetime

from dockyards.database import Base
from dockyards.models.types import GUID


class IPAllocation(Base):
    """An address claimed from a prefix; ``address`` is unique across all rows."""

    __tablename__ = "ip_allocations"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    address = Column(String(64), unique=True, nullable=False)
    tag = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
