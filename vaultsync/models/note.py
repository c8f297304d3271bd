"""Note model"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from vaultsync.models.base import BaseModel


class Note(BaseModel):
    """
    Note attached to a project, optionally linked to a single media item.
    The latest media-scoped note is projected onto MediaItem.note.
    """

    __tablename__ = "notes"

    project_id = Column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    media_id = Column(String(64), nullable=True, index=True)
    author_user_id = Column(String(64), nullable=True)
    title = Column(String(255), nullable=True)
    content = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    project = relationship("Project", back_populates="notes")

    def __repr__(self):
        return f"<Note(id={self.id}, media_id={self.media_id})>"
