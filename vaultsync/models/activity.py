"""Activity log model"""

from sqlalchemy import Column, String, ForeignKey, JSON
from sqlalchemy.orm import relationship
from vaultsync.models.base import BaseModel


class ActivityLogEntry(BaseModel):
    """Append-only record of a change made to a project"""

    __tablename__ = "activity_log"

    project_id = Column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action_type = Column(String(100), nullable=False, index=True)
    reference_id = Column(String(64), nullable=True)
    actor_user_id = Column(String(64), nullable=True)
    actor_name_snapshot = Column(String(255), nullable=True)
    activity_metadata = Column("metadata", JSON, nullable=True)

    # Relationships
    project = relationship("Project", back_populates="activities")

    def __repr__(self):
        return f"<ActivityLogEntry(id={self.id}, action_type={self.action_type})>"
