"""Folder model"""

from sqlalchemy import Column, String, ForeignKey
from sqlalchemy.orm import relationship
from vaultsync.models.base import BaseModel


class Folder(BaseModel):
    """Folder grouping media inside a project"""

    __tablename__ = "folders"

    project_id = Column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)

    # Relationships
    project = relationship("Project", back_populates="folders")

    def __repr__(self):
        return f"<Folder(id={self.id}, name={self.name})>"
