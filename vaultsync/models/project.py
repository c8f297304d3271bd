"""Project model"""

import enum
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, CheckConstraint
from sqlalchemy.orm import relationship
from vaultsync.models.base import BaseModel


class ProjectStatus(str, enum.Enum):
    """Derived or manually overridden project status"""
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    NEUTRAL = "neutral"


class ProjectVisibility(str, enum.Enum):
    """Whether a project is listed on the public feed"""
    PRIVATE = "private"
    PUBLIC = "public"


class Project(BaseModel):
    """
    Project model representing a construction job.
    Projects own folders, media, notes, members, a public profile and an activity log.
    """

    __tablename__ = "projects"

    owner_user_id = Column(String(64), nullable=True, index=True)
    organization_id = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    client = Column(String(255), nullable=True)
    location = Column(String(255), nullable=True)
    status = Column(String(20), default=ProjectStatus.NEUTRAL.value, nullable=False)
    status_override = Column(String(20), nullable=True)
    visibility = Column(String(20), default=ProjectVisibility.PRIVATE.value, nullable=False)
    public_slug = Column(String(255), nullable=True)
    public_published_at = Column(DateTime, nullable=True)
    public_updated_at = Column(DateTime, nullable=True)
    progress = Column(Integer, default=0, nullable=False)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    budget = Column(Float, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    folders = relationship("Folder", back_populates="project", cascade="all, delete-orphan")
    media = relationship("MediaItem", back_populates="project", cascade="all, delete-orphan")
    notes = relationship("Note", back_populates="project", cascade="all, delete-orphan")
    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    activities = relationship(
        "ActivityLogEntry", back_populates="project", cascade="all, delete-orphan"
    )
    public_profile = relationship(
        "ProjectPublicProfile",
        back_populates="project",
        cascade="all, delete-orphan",
        uselist=False,
    )

    __table_args__ = (
        CheckConstraint(
            "visibility <> 'public' OR (public_slug IS NOT NULL AND public_slug <> '')",
            name="check_public_project_has_slug",
        ),
    )

    @property
    def effective_status(self) -> str:
        """Manual override wins over the derived status"""
        return self.status_override or self.status

    def __repr__(self):
        return f"<Project(id={self.id}, name={self.name}, visibility={self.visibility})>"
