"""Pydantic schemas for remote rows and engine records"""

from vaultsync.schemas.activity import ActivityRow
from vaultsync.schemas.auth import AuthSession, AuthUser
from vaultsync.schemas.media import FolderRow, MediaMetadata, MediaRow, NoteRow, StorageMetadata
from vaultsync.schemas.project import (
    ProjectMemberRow,
    ProjectRow,
    PublicProfileRow,
    SetProjectVisibilityResult,
    VisibilityFeedSyncSummary,
)
from vaultsync.schemas.results import SideEffectResult
from vaultsync.schemas.retry_queue import StorageUploadRetryEntry

__all__ = [
    "ActivityRow",
    "AuthSession",
    "AuthUser",
    "FolderRow",
    "MediaMetadata",
    "MediaRow",
    "NoteRow",
    "StorageMetadata",
    "ProjectMemberRow",
    "ProjectRow",
    "PublicProfileRow",
    "SetProjectVisibilityResult",
    "SideEffectResult",
    "VisibilityFeedSyncSummary",
    "StorageUploadRetryEntry",
]
