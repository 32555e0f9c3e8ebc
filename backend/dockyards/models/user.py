"""User database model."""
from sqlalchemy import Column, String, DateTime
import uuid
from datetime import datetime

from dockyards.database import Base
from dockyards.models.types import GUID


class User(Base):
    """User model for storing signed up users."""
    __tablename__ = "users"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)  # Always lowercased
    name = Column(String(255), nullable=False)
    password = Column(String(255), nullable=False)  # bcrypt hash
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": str(self.id),
            "email": self.email,
            "name": self.name,
        }
