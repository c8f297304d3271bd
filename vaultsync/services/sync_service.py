"""Pull-side sync passes: refresh the local store from the backend"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional

from vaultsync.config import settings
from vaultsync.errors import AuthenticationError, BackendError, is_recoverable_auth_session_error
from vaultsync.monitoring.metrics import metrics_collector
from vaultsync.schemas import (
    ActivityRow,
    AuthUser,
    FolderRow,
    MediaRow,
    NoteRow,
    ProjectMemberRow,
    ProjectRow,
    PublicProfileRow,
    SideEffectResult,
)
from vaultsync.services import tables
from vaultsync.services.backend_client import BackendClient, chunked, eq, in_
from vaultsync.services.identity import LocalId, classify_id
from vaultsync.services.media_uploader import MediaAssetUploader
from vaultsync.services.snapshot_merger import SnapshotMerger

logger = logging.getLogger(__name__)


class SyncService:
    """
    Runs the "sync now" passes.

    A pass that starts without a usable session (missing session or a
    refresh token the backend no longer accepts) is skipped and returns
    False. Backend failures inside a pass raise BackendError.
    """

    def __init__(
        self,
        backend: BackendClient,
        merger: SnapshotMerger,
        uploader: MediaAssetUploader,
        chunk_size: Optional[int] = None,
        activity_limit: Optional[int] = None,
    ):
        self.backend = backend
        self.merger = merger
        self.uploader = uploader
        self.chunk_size = chunk_size or settings.query_chunk_size
        self.activity_limit = activity_limit or settings.activity_sync_limit

    async def _user_or_none(self, action_label: str) -> Optional[AuthUser]:
        try:
            return await self.backend.require_user(action_label)
        except AuthenticationError as e:
            if is_recoverable_auth_session_error(str(e)):
                logger.info(f"Backend {action_label} skipped: {e}")
                return None
            raise

    async def _run(self, pass_name: str, coro) -> bool:
        try:
            ran = await coro
        except BackendError:
            metrics_collector.record_sync_pass(pass_name, "failure")
            raise
        metrics_collector.record_sync_pass(pass_name, "success" if ran else "skipped")
        return ran

    async def sync_projects_and_activity(self) -> bool:
        """
        Refresh every project the actor owns or is an active member of, with
        their members and latest activity.

        Returns:
            False if the pass was skipped for lack of a session
        """
        return await self._run("projects_and_activity", self._sync_projects_and_activity())

    async def _sync_projects_and_activity(self) -> bool:
        user = await self._user_or_none("sync projects and activity")
        if user is None:
            return False

        owned_rows = await self.backend.select(
            tables.PROJECTS,
            tables.PROJECT_COLUMNS,
            [eq("owner_user_id", user.id)],
            order="updated_at",
            ascending=False,
        )
        membership_rows = await self.backend.select(
            tables.PROJECT_MEMBERS,
            "project_id",
            [eq("user_id", user.id), eq("status", "active")],
        )
        assigned_ids = list(
            dict.fromkeys(
                row["project_id"].strip()
                for row in membership_rows
                if isinstance(row.get("project_id"), str) and row["project_id"].strip()
            )
        )
        assigned_rows = []
        for chunk in chunked(assigned_ids, self.chunk_size):
            assigned_rows.extend(
                await self.backend.select(tables.PROJECTS, tables.PROJECT_COLUMNS, [in_("id", chunk)])
            )

        projects_by_id: Dict[str, ProjectRow] = {}
        for raw in owned_rows + assigned_rows:
            if isinstance(raw.get("id"), str) and raw["id"].strip():
                projects_by_id[raw["id"]] = ProjectRow.model_validate(raw)
        projects = sorted(projects_by_id.values(), key=lambda p: p.updated_at, reverse=True)
        project_ids = [project.id for project in projects]

        member_rows: List[dict] = []
        activity_rows: List[dict] = []
        for chunk in chunked(project_ids, self.chunk_size):
            member_rows.extend(
                await self.backend.select(
                    tables.PROJECT_MEMBERS,
                    tables.PROJECT_MEMBER_COLUMNS,
                    [in_("project_id", chunk)],
                    order="created_at",
                )
            )
            activity_rows.extend(
                await self.backend.select(
                    tables.ACTIVITY_LOG,
                    tables.ACTIVITY_COLUMNS,
                    [in_("project_id", chunk)],
                    order="created_at",
                    ascending=False,
                    limit=self.activity_limit,
                )
            )

        self.merger.merge_projects_and_activity(
            projects,
            [ActivityRow.model_validate(row) for row in activity_rows],
            prune_missing=True,
        )

        members_by_project: Dict[str, List[ProjectMemberRow]] = defaultdict(list)
        for raw in member_rows:
            member = ProjectMemberRow.model_validate(raw)
            members_by_project[member.project_id.strip()].append(member)
        for project_id in project_ids:
            self.merger.merge_project_members(
                project_id, members_by_project.get(project_id, []), prune_missing=True
            )

        logger.info(f"Synced {len(projects)} projects and {len(activity_rows)} activity entries")
        return True

    async def sync_project_content(self, project_id: str) -> bool:
        """
        Refresh folders, media, notes and members of one project.

        Media rows still pointing at local files are swept through the
        uploader first, honoring the retry queue's backoff.
        """
        return await self._run("project_content", self._sync_project_content(project_id))

    async def _sync_project_content(self, project_id: str) -> bool:
        if isinstance(classify_id(project_id), LocalId):
            return False
        user = await self._user_or_none("sync project content")
        if user is None:
            return False

        folder_rows = await self.backend.select(
            tables.FOLDERS, tables.FOLDER_COLUMNS, [eq("project_id", project_id)], order="created_at"
        )
        media_rows = await self.backend.select(
            tables.MEDIA,
            tables.MEDIA_COLUMNS,
            [eq("project_id", project_id)],
            order="created_at",
            ascending=False,
        )
        note_rows = await self.backend.select(
            tables.NOTES,
            tables.NOTE_COLUMNS,
            [eq("project_id", project_id)],
            order="updated_at",
            ascending=False,
        )

        await self._sync_members(project_id)

        media = [MediaRow.model_validate(row) for row in media_rows]
        media = await self.uploader.backfill_project_media(user.id, project_id, media)

        self.merger.merge_project_content(
            project_id,
            [FolderRow.model_validate(row) for row in folder_rows],
            [self.uploader.resolve_row_uris(row) for row in media],
            prune_missing=True,
        )
        self.merger.merge_project_notes(
            project_id, [NoteRow.model_validate(row) for row in note_rows], prune_missing=True
        )
        return True

    async def _sync_members(self, project_id: str) -> None:
        rows = await self.backend.select(
            tables.PROJECT_MEMBERS,
            tables.PROJECT_MEMBER_COLUMNS,
            [eq("project_id", project_id)],
            order="created_at",
        )
        self.merger.merge_project_members(
            project_id, [ProjectMemberRow.model_validate(row) for row in rows], prune_missing=True
        )

    async def sync_project_members(self, project_id: str) -> bool:
        return await self._run("project_members", self._sync_project_members(project_id))

    async def _sync_project_members(self, project_id: str) -> bool:
        if isinstance(classify_id(project_id), LocalId):
            return False
        if await self._user_or_none("sync project members") is None:
            return False
        await self._sync_members(project_id)
        return True

    async def sync_project_notes(self, project_id: str) -> bool:
        return await self._run("project_notes", self._sync_project_notes(project_id))

    async def _sync_project_notes(self, project_id: str) -> bool:
        if isinstance(classify_id(project_id), LocalId):
            return False
        if await self._user_or_none("sync project notes") is None:
            return False
        rows = await self.backend.select(
            tables.NOTES,
            tables.NOTE_COLUMNS,
            [eq("project_id", project_id)],
            order="updated_at",
            ascending=False,
        )
        self.merger.merge_project_notes(
            project_id, [NoteRow.model_validate(row) for row in rows], prune_missing=True
        )
        return True

    async def sync_public_profile(self, project_id: str) -> SideEffectResult:
        """Refresh one project's public profile; a missing backend row deletes the local one"""
        normalized = (project_id or "").strip()
        if not normalized:
            return SideEffectResult.success()
        try:
            row = await self.backend.select_one(
                tables.PUBLIC_PROFILES, tables.PUBLIC_PROFILE_COLUMNS, [eq("project_id", normalized)]
            )
        except BackendError as e:
            logger.warning(f"Public profile sync warning for project {normalized}: {e}")
            metrics_collector.record_sync_pass("public_profile", "failure")
            return SideEffectResult.failure(e)

        profile = PublicProfileRow.model_validate(row) if row else None
        self.merger.merge_project_public_profile(normalized, profile)
        metrics_collector.record_sync_pass("public_profile", "success")
        return SideEffectResult.success()
