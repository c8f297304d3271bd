"""Local store models package"""

from vaultsync.models.base import BaseModel
from vaultsync.models.project import Project, ProjectStatus, ProjectVisibility
from vaultsync.models.folder import Folder
from vaultsync.models.media import MediaItem, MediaType
from vaultsync.models.note import Note
from vaultsync.models.project_member import ProjectMember, MemberRole, MemberStatus
from vaultsync.models.public_profile import ProjectPublicProfile, MAX_HIGHLIGHTS
from vaultsync.models.activity import ActivityLogEntry

# Export all models
__all__ = [
    "BaseModel",
    "Project",
    "ProjectStatus",
    "ProjectVisibility",
    "Folder",
    "MediaItem",
    "MediaType",
    "Note",
    "ProjectMember",
    "MemberRole",
    "MemberStatus",
    "ProjectPublicProfile",
    "MAX_HIGHLIGHTS",
    "ActivityLogEntry",
]
