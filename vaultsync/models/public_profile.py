"""Project public profile model"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from vaultsync.database import Base

MAX_HIGHLIGHTS = 8


class ProjectPublicProfile(Base):
    """Public-facing description of a project, one per project"""

    __tablename__ = "project_public_profiles"

    project_id = Column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True
    )
    public_title = Column(String(255), nullable=True)
    summary = Column(Text, nullable=True)
    city = Column(String(255), nullable=True)
    region = Column(String(255), nullable=True)
    category = Column(String(255), nullable=True)
    hero_media_id = Column(String(64), nullable=True)
    hero_comment = Column(Text, nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(64), nullable=True)
    website_url = Column(Text, nullable=True)
    highlights = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    project = relationship("Project", back_populates="public_profile")

    def __repr__(self):
        return f"<ProjectPublicProfile(project_id={self.project_id})>"
