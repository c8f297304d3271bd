"""Project member model"""

import enum
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from vaultsync.models.base import BaseModel


class MemberRole(str, enum.Enum):
    """Role of a member within one project"""
    OWNER = "owner"
    MANAGER = "manager"
    WORKER = "worker"
    CLIENT = "client"


class MemberStatus(str, enum.Enum):
    """Membership lifecycle; removed is terminal"""
    INVITED = "invited"
    ACTIVE = "active"
    REMOVED = "removed"


class ProjectMember(BaseModel):
    """Membership of a user (or an invited email) in a project"""

    __tablename__ = "project_members"

    project_id = Column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(64), nullable=True, index=True)
    invited_email = Column(String(255), nullable=True)
    role = Column(String(20), default=MemberRole.WORKER.value, nullable=False)
    status = Column(String(20), default=MemberStatus.INVITED.value, nullable=False)
    invited_by = Column(String(64), nullable=True)
    user_name_snapshot = Column(String(255), nullable=True)
    user_email_snapshot = Column(String(255), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    accepted_at = Column(DateTime, nullable=True)

    # Relationships
    project = relationship("Project", back_populates="members")

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "role IN ('owner', 'manager', 'worker', 'client')",
            name="check_member_role",
        ),
        CheckConstraint(
            "status IN ('invited', 'active', 'removed')",
            name="check_member_status",
        ),
    )

    def __repr__(self):
        return f"<ProjectMember(id={self.id}, role={self.role}, status={self.status})>"
