"""Base model with common fields for all local store models"""

from datetime import datetime
from sqlalchemy import Column, DateTime, String
from vaultsync.database import Base


class BaseModel(Base):
    """Abstract base model with common fields"""

    __abstract__ = True

    # Either a backend UUID or an id minted on this device
    id = Column(String(64), primary_key=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.id})>"
