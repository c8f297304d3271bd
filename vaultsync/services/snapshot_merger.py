"""Apply remote snapshots to the local store"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from vaultsync.database import session_scope
from vaultsync.models import (
    ActivityLogEntry,
    Folder,
    MediaItem,
    MemberStatus,
    Note,
    Project,
    ProjectMember,
    ProjectPublicProfile,
)
from vaultsync.schemas import (
    ActivityRow,
    FolderRow,
    MediaRow,
    NoteRow,
    ProjectMemberRow,
    ProjectRow,
    PublicProfileRow,
)
from vaultsync.services.identity import RemoteId, classify_id
from vaultsync.services.local_store import latest_note_content, refresh_media_note

logger = logging.getLogger(__name__)


def _upsert(session: Session, model, key: str, values: dict):
    """Replace the row with the given primary key, or insert it"""
    instance = session.get(model, key)
    if instance is None:
        instance = model(**values)
        session.add(instance)
    else:
        for field, value in values.items():
            setattr(instance, field, value)
    return instance


def _prunable(ids: Iterable[str], keep: Set[str]) -> List[str]:
    """Backend-identified ids missing from the snapshot; local-only ids are never pruned"""
    return [
        row_id for row_id in ids if isinstance(classify_id(row_id), RemoteId) and row_id not in keep
    ]


class SnapshotMerger:
    """
    Writes backend snapshots into the local store.

    Each entry point runs in a single transaction: either every row of the
    snapshot is applied or none is. Rows whose project is not present
    locally are skipped.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def merge_projects_and_activity(
        self,
        projects: List[ProjectRow],
        activities: List[ActivityRow],
        prune_missing: bool = False,
    ) -> None:
        """
        Merge projects and their latest activity.

        With prune_missing, backend-identified projects absent from the snapshot
        are deleted (with everything they own), and backend-identified activity
        entries of snapshot projects are deleted when absent but newer than the
        oldest entry the snapshot returned for that project. A project with no
        entries in the snapshot keeps all of its activity.

        Args:
            projects: Every project visible to the current actor
            activities: Latest activity of those projects
            prune_missing: Whether absence means deletion
        """
        with session_scope(self.session_factory) as session:
            project_ids = set()
            for row in projects:
                project_ids.add(row.id)
                _upsert(session, Project, row.id, row.model_dump())

            if prune_missing:
                local_ids = session.execute(select(Project.id)).scalars().all()
                for project_id in _prunable(local_ids, project_ids):
                    project = session.get(Project, project_id)
                    logger.info(f"Pruning project {project_id} missing from backend")
                    session.delete(project)
            session.flush()

            activity_ids_by_project: Dict[str, Set[str]] = defaultdict(set)
            oldest_by_project: Dict[str, datetime] = {}
            for row in activities:
                if session.get(Project, row.project_id) is None:
                    continue
                values = row.model_dump(exclude={"metadata"})
                values["activity_metadata"] = row.metadata
                _upsert(session, ActivityLogEntry, row.id, values)
                activity_ids_by_project[row.project_id].add(row.id)
                oldest = oldest_by_project.get(row.project_id)
                if oldest is None or row.created_at < oldest:
                    oldest_by_project[row.project_id] = row.created_at

            if prune_missing:
                for project_id, oldest in oldest_by_project.items():
                    query = select(ActivityLogEntry).where(
                        ActivityLogEntry.project_id == project_id,
                        ActivityLogEntry.created_at >= oldest,
                    )
                    keep = activity_ids_by_project[project_id]
                    for entry in session.execute(query).scalars().all():
                        if isinstance(classify_id(entry.id), RemoteId) and entry.id not in keep:
                            session.delete(entry)

        logger.debug(f"Merged {len(projects)} projects and {len(activities)} activity entries")

    def merge_activity(self, activities: List[ActivityRow]) -> None:
        """Merge individual activity rows without pruning"""
        self.merge_projects_and_activity([], activities, prune_missing=False)

    def merge_project_content(
        self,
        project_id: str,
        folders: List[FolderRow],
        media: List[MediaRow],
        prune_missing: bool = False,
    ) -> None:
        """
        Merge the folders and media of one project.

        MediaItem.note is taken from local notes when any are linked, otherwise
        from the remote row.
        """
        with session_scope(self.session_factory) as session:
            if session.get(Project, project_id) is None:
                logger.debug(f"Skipping content merge for unknown project {project_id}")
                return

            folder_ids = set()
            for row in folders:
                if row.project_id != project_id:
                    continue
                folder_ids.add(row.id)
                _upsert(session, Folder, row.id, row.model_dump())

            media_ids = set()
            for row in media:
                if row.project_id != project_id:
                    continue
                media_ids.add(row.id)
                values = row.model_dump(exclude={"metadata"})
                values["media_metadata"] = row.metadata.to_payload()
                values["note"] = (row.note or "").strip() or None
                item = _upsert(session, MediaItem, row.id, values)
                session.flush()
                local_note = latest_note_content(session, row.id)
                if local_note is not None:
                    item.note = local_note

            if prune_missing:
                local_folders = session.execute(
                    select(Folder).where(Folder.project_id == project_id)
                ).scalars().all()
                pruned_folders = set(_prunable([f.id for f in local_folders], folder_ids))
                for folder in local_folders:
                    if folder.id in pruned_folders:
                        session.delete(folder)

                local_media = session.execute(
                    select(MediaItem).where(MediaItem.project_id == project_id)
                ).scalars().all()
                pruned_media = set(_prunable([m.id for m in local_media], media_ids))
                for item in local_media:
                    if item.id in pruned_media:
                        for note in session.execute(select(Note).where(Note.media_id == item.id)).scalars():
                            session.delete(note)
                        session.delete(item)
                    elif item.folder_id in pruned_folders:
                        item.folder_id = None

    def merge_project_notes(
        self,
        project_id: str,
        notes: List[NoteRow],
        prune_missing: bool = False,
    ) -> None:
        """Merge the notes of one project and recompute affected media notes"""
        with session_scope(self.session_factory) as session:
            if session.get(Project, project_id) is None:
                logger.debug(f"Skipping notes merge for unknown project {project_id}")
                return

            affected_media: Set[str] = set()
            note_ids = set()
            for row in notes:
                if row.project_id != project_id:
                    continue
                note_ids.add(row.id)
                existing = session.get(Note, row.id)
                if existing is not None and existing.media_id:
                    affected_media.add(existing.media_id)
                if row.media_id:
                    affected_media.add(row.media_id)
                _upsert(session, Note, row.id, row.model_dump())

            if prune_missing:
                local_notes = session.execute(
                    select(Note).where(Note.project_id == project_id)
                ).scalars().all()
                pruned = set(_prunable([n.id for n in local_notes], note_ids))
                for note in local_notes:
                    if note.id in pruned:
                        if note.media_id:
                            affected_media.add(note.media_id)
                        session.delete(note)

            session.flush()
            for media_id in affected_media:
                refresh_media_note(session, media_id)

    def merge_project_members(
        self,
        project_id: str,
        members: List[ProjectMemberRow],
        prune_missing: bool = False,
    ) -> None:
        """
        Merge the members of one project.

        A member removed locally stays removed even if the snapshot still
        reports it as live.
        """
        with session_scope(self.session_factory) as session:
            if session.get(Project, project_id) is None:
                logger.debug(f"Skipping members merge for unknown project {project_id}")
                return

            member_ids = set()
            for row in members:
                if row.project_id != project_id:
                    continue
                member_ids.add(row.id)
                existing = session.get(ProjectMember, row.id)
                if (
                    existing is not None
                    and existing.status == MemberStatus.REMOVED.value
                    and row.status != MemberStatus.REMOVED.value
                ):
                    continue
                _upsert(session, ProjectMember, row.id, row.model_dump())

            if prune_missing:
                local_members = session.execute(
                    select(ProjectMember).where(ProjectMember.project_id == project_id)
                ).scalars().all()
                pruned = set(_prunable([m.id for m in local_members], member_ids))
                for member in local_members:
                    if member.id in pruned:
                        session.delete(member)

    def merge_project_public_profile(
        self, project_id: str, profile: Optional[PublicProfileRow]
    ) -> None:
        """Replace the local public profile; None deletes it"""
        with session_scope(self.session_factory) as session:
            if session.get(Project, project_id) is None:
                return
            existing = session.get(ProjectPublicProfile, project_id)
            if profile is None:
                if existing is not None:
                    session.delete(existing)
                return
            values = profile.model_dump()
            values["project_id"] = project_id
            _upsert(session, ProjectPublicProfile, project_id, values)
