"""Media item model"""

import enum
from sqlalchemy import Column, String, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship
from vaultsync.models.base import BaseModel


class MediaType(str, enum.Enum):
    """Kind of captured asset"""
    PHOTO = "photo"
    VIDEO = "video"
    DOC = "doc"


class MediaItem(BaseModel):
    """
    Media item representing a captured photo, video or document.
    `uri` is either a remote storage URL or a local file reference; the uploader
    rewrites it after the asset reaches object storage.
    """

    __tablename__ = "media"

    project_id = Column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Detached explicitly when a folder is deleted
    folder_id = Column(String(64), nullable=True, index=True)
    uploaded_by_user_id = Column(String(64), nullable=True)
    type = Column(String(10), default=MediaType.PHOTO.value, nullable=False)
    uri = Column(Text, nullable=False)
    thumb_uri = Column(Text, nullable=True)
    # Denormalized copy of the latest linked note
    note = Column(Text, nullable=True)
    media_metadata = Column("metadata", JSON, nullable=True)

    # Relationships
    project = relationship("Project", back_populates="media")

    def __repr__(self):
        return f"<MediaItem(id={self.id}, type={self.type}, uri={self.uri})>"
