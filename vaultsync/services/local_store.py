"""Local store CRUD over the SQLite models"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, sessionmaker

from vaultsync.database import session_scope
from vaultsync.errors import NotFoundError, ValidationError
from vaultsync.models import (
    ActivityLogEntry,
    Folder,
    MediaItem,
    MemberRole,
    MemberStatus,
    Note,
    Project,
    ProjectMember,
    ProjectPublicProfile,
    ProjectStatus,
    ProjectVisibility,
)
from vaultsync.schemas.common import clean_text
from vaultsync.schemas.media import MediaMetadata, normalize_media_type
from vaultsync.schemas.project import normalize_highlights, normalize_slug
from vaultsync.services.identity import new_local_id

logger = logging.getLogger(__name__)

PROJECT_UPDATABLE_FIELDS = (
    "name",
    "client",
    "location",
    "organization_id",
    "start_date",
    "end_date",
    "budget",
)

PUBLIC_PROFILE_TEXT_FIELDS = (
    "public_title",
    "summary",
    "city",
    "region",
    "category",
    "hero_comment",
    "contact_email",
    "contact_phone",
    "website_url",
)


def latest_note_content(session: Session, media_id: str) -> Optional[str]:
    """Trimmed content of the most recently updated note linked to a media item"""
    note = session.execute(
        select(Note)
        .where(Note.media_id == media_id)
        .order_by(Note.updated_at.desc(), Note.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    if note is None:
        return None
    return (note.content or "").strip() or None


def refresh_media_note(session: Session, media_id: Optional[str]) -> None:
    """Recompute MediaItem.note from its linked notes"""
    if not media_id:
        return
    media = session.get(MediaItem, media_id)
    if media is not None:
        session.flush()
        media.note = latest_note_content(session, media_id)


class LocalStore:
    """
    Synchronous CRUD over the on-device database.

    Every public method runs in its own transaction and returns detached
    model instances.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # Projects

    def get_project(self, project_id: str) -> Optional[Project]:
        with session_scope(self.session_factory) as session:
            return session.get(Project, project_id)

    def list_projects(self, search: Optional[str] = None) -> List[Project]:
        with session_scope(self.session_factory) as session:
            query = select(Project).order_by(Project.updated_at.desc())
            if search and search.strip():
                pattern = f"%{search.strip()}%"
                query = query.where(
                    or_(
                        Project.name.ilike(pattern),
                        Project.client.ilike(pattern),
                        Project.location.ilike(pattern),
                    )
                )
            return list(session.execute(query).scalars())

    def create_project(
        self,
        name: str,
        client: Optional[str] = None,
        location: Optional[str] = None,
        organization_id: Optional[str] = None,
        owner_user_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        budget: Optional[float] = None,
    ) -> Project:
        """
        Create a device-local project.

        Raises:
            ValidationError: If the name is blank
        """
        trimmed_name = (name or "").strip()
        if not trimmed_name:
            raise ValidationError("Project name is required")

        now = datetime.utcnow()
        project = Project(
            id=new_local_id(),
            owner_user_id=owner_user_id,
            organization_id=organization_id,
            name=trimmed_name,
            client=clean_text(client),
            location=clean_text(location),
            status=ProjectStatus.NEUTRAL.value,
            visibility=ProjectVisibility.PRIVATE.value,
            progress=0,
            start_date=start_date or now,
            end_date=end_date,
            budget=budget,
            created_at=now,
            updated_at=now,
        )
        with session_scope(self.session_factory) as session:
            session.add(project)
        logger.info(f"Created local project {project.id}")
        return project

    def update_project(self, project_id: str, **changes: Any) -> Optional[Project]:
        """Apply field changes to a project; unknown fields are rejected"""
        unknown = set(changes) - set(PROJECT_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unsupported project fields: {', '.join(sorted(unknown))}")

        with session_scope(self.session_factory) as session:
            project = session.get(Project, project_id)
            if project is None:
                return None
            for field, value in changes.items():
                if field == "name":
                    value = (value or "").strip()
                    if not value:
                        raise ValidationError("Project name is required")
                elif field in ("client", "location"):
                    value = clean_text(value)
                setattr(project, field, value)
            project.updated_at = datetime.utcnow()
            return project

    def delete_project(self, project_id: str) -> None:
        """Delete a project and everything it owns"""
        with session_scope(self.session_factory) as session:
            project = session.get(Project, project_id)
            if project is not None:
                session.delete(project)

    def set_project_visibility(
        self, project_id: str, visibility: str, slug: Optional[str] = None
    ) -> Project:
        """
        Publish or unpublish a project.

        Raises:
            NotFoundError: If the project does not exist
            ValidationError: If publishing without a slug
        """
        if visibility not in (ProjectVisibility.PUBLIC.value, ProjectVisibility.PRIVATE.value):
            raise ValidationError(f"Invalid visibility: {visibility}")

        with session_scope(self.session_factory) as session:
            project = session.get(Project, project_id)
            if project is None:
                raise NotFoundError("Project not found")

            now = datetime.utcnow()
            next_slug = normalize_slug(slug) or normalize_slug(project.public_slug)
            if visibility == ProjectVisibility.PUBLIC.value:
                if not next_slug:
                    raise ValidationError("Public slug is required to publish this project")
                project.public_slug = next_slug
                project.public_published_at = project.public_published_at or now
            project.visibility = visibility
            project.public_updated_at = now
            project.updated_at = now
            return project

    def set_project_completion_state(self, project_id: str, completed: bool) -> Optional[Project]:
        with session_scope(self.session_factory) as session:
            project = session.get(Project, project_id)
            if project is None:
                return None
            project.status_override = ProjectStatus.COMPLETED.value if completed else None
            project.updated_at = datetime.utcnow()
            return project

    # Public profiles

    def get_public_profile(self, project_id: str) -> Optional[ProjectPublicProfile]:
        with session_scope(self.session_factory) as session:
            return session.get(ProjectPublicProfile, project_id)

    def upsert_public_profile(self, project_id: str, **changes: Any) -> ProjectPublicProfile:
        """
        Create or update a project's public profile.

        Text fields are trimmed (blank becomes null); highlights are trimmed,
        emptied entries dropped and capped at MAX_HIGHLIGHTS.
        """
        allowed = set(PUBLIC_PROFILE_TEXT_FIELDS) | {"hero_media_id", "highlights"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unsupported profile fields: {', '.join(sorted(unknown))}")

        with session_scope(self.session_factory) as session:
            if session.get(Project, project_id) is None:
                raise NotFoundError("Project not found")
            now = datetime.utcnow()
            profile = session.get(ProjectPublicProfile, project_id)
            if profile is None:
                profile = ProjectPublicProfile(project_id=project_id, highlights=[], created_at=now)
                session.add(profile)
            for field, value in changes.items():
                if field == "highlights":
                    profile.highlights = normalize_highlights(value)
                elif field == "hero_media_id":
                    profile.hero_media_id = value or None
                else:
                    setattr(profile, field, clean_text(value))
            profile.updated_at = now
            return profile

    # Folders

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        with session_scope(self.session_factory) as session:
            return session.get(Folder, folder_id)

    def list_folders(self, project_id: str) -> List[Folder]:
        with session_scope(self.session_factory) as session:
            return list(
                session.execute(
                    select(Folder).where(Folder.project_id == project_id).order_by(Folder.created_at)
                ).scalars()
            )

    def create_folder(self, project_id: str, name: str) -> Folder:
        trimmed_name = (name or "").strip()
        if not trimmed_name:
            raise ValidationError("Folder name is required")
        folder = Folder(id=new_local_id(), project_id=project_id, name=trimmed_name)
        with session_scope(self.session_factory) as session:
            if session.get(Project, project_id) is None:
                raise NotFoundError("Project not found")
            session.add(folder)
        return folder

    def rename_folder(self, folder_id: str, name: str) -> Optional[Folder]:
        trimmed_name = (name or "").strip()
        if not trimmed_name:
            raise ValidationError("Folder name is required")
        with session_scope(self.session_factory) as session:
            folder = session.get(Folder, folder_id)
            if folder is None:
                return None
            folder.name = trimmed_name
            return folder

    def delete_folder(self, folder_id: str) -> None:
        """Delete a folder; its media move back to the project root"""
        with session_scope(self.session_factory) as session:
            for media in session.execute(
                select(MediaItem).where(MediaItem.folder_id == folder_id)
            ).scalars():
                media.folder_id = None
            folder = session.get(Folder, folder_id)
            if folder is not None:
                session.delete(folder)

    # Media

    def get_media(self, media_id: str) -> Optional[MediaItem]:
        with session_scope(self.session_factory) as session:
            return session.get(MediaItem, media_id)

    def list_media(
        self,
        project_id: str,
        media_type: Optional[str] = None,
        folder_id: Optional[str] = None,
    ) -> List[MediaItem]:
        """Media of a project, newest first, optionally filtered by type or folder"""
        with session_scope(self.session_factory) as session:
            query = select(MediaItem).where(MediaItem.project_id == project_id)
            if media_type:
                query = query.where(MediaItem.type == media_type)
            if folder_id:
                query = query.where(MediaItem.folder_id == folder_id)
            return list(session.execute(query.order_by(MediaItem.created_at.desc())).scalars())

    def create_media(
        self,
        project_id: str,
        uri: str,
        media_type: str = "photo",
        thumb_uri: Optional[str] = None,
        note: Optional[str] = None,
        folder_id: Optional[str] = None,
        metadata: Any = None,
        uploaded_by_user_id: Optional[str] = None,
    ) -> MediaItem:
        """
        Create a device-local media item.

        A non-blank note also creates a linked Note so the projection holds.
        """
        if not (uri or "").strip():
            raise ValidationError("Media uri is required")

        now = datetime.utcnow()
        kind = normalize_media_type(media_type)
        trimmed_thumb = clean_text(thumb_uri)
        media = MediaItem(
            id=new_local_id(),
            project_id=project_id,
            folder_id=clean_text(folder_id),
            uploaded_by_user_id=uploaded_by_user_id,
            type=kind,
            uri=uri.strip(),
            thumb_uri=trimmed_thumb or (uri.strip() if kind == "photo" else None),
            note=None,
            media_metadata=MediaMetadata.from_raw(metadata).to_payload(),
            created_at=now,
        )
        with session_scope(self.session_factory) as session:
            if session.get(Project, project_id) is None:
                raise NotFoundError("Project not found")
            session.add(media)
            trimmed_note = clean_text(note)
            if trimmed_note:
                session.add(
                    Note(
                        id=new_local_id(),
                        project_id=project_id,
                        media_id=media.id,
                        author_user_id=uploaded_by_user_id,
                        content=trimmed_note,
                        created_at=now,
                        updated_at=now,
                    )
                )
                media.note = trimmed_note
        return media

    def update_media_note(
        self, media_id: str, note: Optional[str], author_user_id: Optional[str] = None
    ) -> Optional[MediaItem]:
        """
        Set the note shown on a media item.

        Updates the latest linked Note, creates one, or deletes it when the
        new text is blank.
        """
        trimmed = clean_text(note)
        with session_scope(self.session_factory) as session:
            media = session.get(MediaItem, media_id)
            if media is None:
                return None
            latest = session.execute(
                select(Note)
                .where(Note.media_id == media_id)
                .order_by(Note.updated_at.desc(), Note.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            now = datetime.utcnow()
            if trimmed:
                if latest is not None:
                    latest.content = trimmed
                    latest.updated_at = now
                else:
                    session.add(
                        Note(
                            id=new_local_id(),
                            project_id=media.project_id,
                            media_id=media_id,
                            author_user_id=author_user_id,
                            content=trimmed,
                            created_at=now,
                            updated_at=now,
                        )
                    )
            elif latest is not None:
                session.delete(latest)
            refresh_media_note(session, media_id)
            return media

    def update_media_thumbnail(self, media_id: str, thumb_uri: Optional[str]) -> Optional[MediaItem]:
        with session_scope(self.session_factory) as session:
            media = session.get(MediaItem, media_id)
            if media is None:
                return None
            media.thumb_uri = clean_text(thumb_uri)
            return media

    def move_media_to_folder(self, media_id: str, folder_id: Optional[str]) -> Optional[MediaItem]:
        with session_scope(self.session_factory) as session:
            media = session.get(MediaItem, media_id)
            if media is None:
                return None
            media.folder_id = clean_text(folder_id)
            return media

    def delete_media(self, media_id: str) -> Optional[MediaItem]:
        """Delete a media item and its linked notes; returns the deleted row"""
        with session_scope(self.session_factory) as session:
            media = session.get(MediaItem, media_id)
            if media is None:
                return None
            for note in session.execute(select(Note).where(Note.media_id == media_id)).scalars():
                session.delete(note)
            session.delete(media)
            return media

    # Notes

    def get_note(self, note_id: str) -> Optional[Note]:
        with session_scope(self.session_factory) as session:
            return session.get(Note, note_id)

    def list_notes(self, project_id: str, media_id: Optional[str] = None) -> List[Note]:
        """Notes of a project, most recently updated first"""
        with session_scope(self.session_factory) as session:
            query = select(Note).where(Note.project_id == project_id)
            if media_id:
                query = query.where(Note.media_id == media_id)
            return list(session.execute(query.order_by(Note.updated_at.desc())).scalars())

    def create_note(
        self,
        project_id: str,
        content: str,
        title: Optional[str] = None,
        media_id: Optional[str] = None,
        author_user_id: Optional[str] = None,
    ) -> Note:
        trimmed = (content or "").strip()
        if not trimmed:
            raise ValidationError("Note content is required")

        now = datetime.utcnow()
        note = Note(
            id=new_local_id(),
            project_id=project_id,
            media_id=clean_text(media_id),
            author_user_id=author_user_id,
            title=clean_text(title),
            content=trimmed,
            created_at=now,
            updated_at=now,
        )
        with session_scope(self.session_factory) as session:
            if session.get(Project, project_id) is None:
                raise NotFoundError("Project not found")
            if note.media_id:
                media = session.get(MediaItem, note.media_id)
                if media is None or media.project_id != project_id:
                    raise ValidationError("Linked media not found")
            session.add(note)
            refresh_media_note(session, note.media_id)
        return note

    def update_note(self, note_id: str, content: str, title: Optional[str] = None) -> Optional[Note]:
        trimmed = (content or "").strip()
        if not trimmed:
            raise ValidationError("Note content is required")
        with session_scope(self.session_factory) as session:
            note = session.get(Note, note_id)
            if note is None:
                return None
            note.content = trimmed
            note.title = clean_text(title)
            note.updated_at = datetime.utcnow()
            refresh_media_note(session, note.media_id)
            return note

    def delete_note(self, note_id: str) -> None:
        with session_scope(self.session_factory) as session:
            note = session.get(Note, note_id)
            if note is None:
                return
            media_id = note.media_id
            session.delete(note)
            refresh_media_note(session, media_id)

    # Members

    def list_members(self, project_id: str, include_removed: bool = False) -> List[ProjectMember]:
        with session_scope(self.session_factory) as session:
            query = select(ProjectMember).where(ProjectMember.project_id == project_id)
            if not include_removed:
                query = query.where(ProjectMember.status != MemberStatus.REMOVED.value)
            return list(session.execute(query.order_by(ProjectMember.created_at)).scalars())

    def get_member(self, project_id: str, member_id: str) -> Optional[ProjectMember]:
        with session_scope(self.session_factory) as session:
            member = session.get(ProjectMember, member_id)
            if member is None or member.project_id != project_id:
                return None
            return member

    def upsert_member(
        self,
        project_id: str,
        user_id: str,
        role: str = MemberRole.WORKER.value,
        status: str = MemberStatus.ACTIVE.value,
        invited_by: Optional[str] = None,
        invited_email: Optional[str] = None,
        user_name_snapshot: Optional[str] = None,
        user_email_snapshot: Optional[str] = None,
    ) -> ProjectMember:
        """
        Add a user to a project or update their live membership.

        A removed membership is never revived; a fresh row is created instead.
        """
        with session_scope(self.session_factory) as session:
            if session.get(Project, project_id) is None:
                raise NotFoundError("Project not found")
            now = datetime.utcnow()
            member = session.execute(
                select(ProjectMember)
                .where(
                    ProjectMember.project_id == project_id,
                    ProjectMember.user_id == user_id,
                    ProjectMember.status != MemberStatus.REMOVED.value,
                )
                .order_by(ProjectMember.created_at)
                .limit(1)
            ).scalar_one_or_none()
            if member is None:
                member = ProjectMember(id=new_local_id(), project_id=project_id, user_id=user_id, created_at=now)
                session.add(member)
            member.role = role
            member.status = status
            member.invited_by = invited_by
            member.invited_email = invited_email or member.invited_email
            member.user_name_snapshot = user_name_snapshot or member.user_name_snapshot
            member.user_email_snapshot = user_email_snapshot or member.user_email_snapshot
            member.updated_at = now
            if status == MemberStatus.ACTIVE.value and member.accepted_at is None:
                member.accepted_at = now
            return member

    def set_member_role(self, project_id: str, member_id: str, role: str) -> Optional[ProjectMember]:
        with session_scope(self.session_factory) as session:
            member = session.get(ProjectMember, member_id)
            if member is None or member.project_id != project_id:
                return None
            member.role = role
            member.updated_at = datetime.utcnow()
            return member

    def remove_member(self, project_id: str, member_id: str) -> None:
        with session_scope(self.session_factory) as session:
            member = session.get(ProjectMember, member_id)
            if member is None or member.project_id != project_id:
                return
            member.status = MemberStatus.REMOVED.value
            member.updated_at = datetime.utcnow()

    # Activity

    def list_activity(self, project_id: str, limit: int = 100) -> List[ActivityLogEntry]:
        with session_scope(self.session_factory) as session:
            return list(
                session.execute(
                    select(ActivityLogEntry)
                    .where(ActivityLogEntry.project_id == project_id)
                    .order_by(ActivityLogEntry.created_at.desc())
                    .limit(limit)
                ).scalars()
            )

    def get_activity(self, activity_id: str) -> Optional[ActivityLogEntry]:
        with session_scope(self.session_factory) as session:
            return session.get(ActivityLogEntry, activity_id)

    def create_activity(
        self,
        project_id: str,
        action_type: str,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        actor_user_id: Optional[str] = None,
        actor_name_snapshot: Optional[str] = None,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            id=new_local_id(),
            project_id=project_id,
            action_type=(action_type or "").strip(),
            reference_id=clean_text(reference_id),
            actor_user_id=actor_user_id,
            actor_name_snapshot=actor_name_snapshot,
            activity_metadata=metadata,
            created_at=datetime.utcnow(),
        )
        with session_scope(self.session_factory) as session:
            if session.get(Project, project_id) is None:
                raise NotFoundError("Project not found")
            session.add(entry)
        return entry

    def update_activity(self, activity_id: str, **changes: Any) -> Optional[ActivityLogEntry]:
        """Change action_type, reference_id or metadata of an entry"""
        unknown = set(changes) - {"action_type", "reference_id", "metadata"}
        if unknown:
            raise ValidationError(f"Unsupported activity fields: {', '.join(sorted(unknown))}")
        with session_scope(self.session_factory) as session:
            entry = session.get(ActivityLogEntry, activity_id)
            if entry is None:
                return None
            if "action_type" in changes:
                entry.action_type = (changes["action_type"] or "").strip()
            if "reference_id" in changes:
                entry.reference_id = clean_text(changes["reference_id"])
            if "metadata" in changes:
                entry.activity_metadata = changes["metadata"]
            return entry

    def delete_activity(self, activity_id: str) -> None:
        with session_scope(self.session_factory) as session:
            entry = session.get(ActivityLogEntry, activity_id)
            if entry is not None:
                session.delete(entry)
