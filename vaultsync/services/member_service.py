"""Project membership mutations"""

import logging
from typing import Optional

from vaultsync.errors import NotFoundError, ValidationError
from vaultsync.models import MemberRole, MemberStatus, ProjectMember
from vaultsync.schemas.common import clean_text, utc_now_iso
from vaultsync.schemas.project import MEMBER_ROLES
from vaultsync.services import tables
from vaultsync.services.backend_client import eq, neq
from vaultsync.services.base_service import MutationService
from vaultsync.services.identity import LocalId, RemoteId, classify_id

logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = (MemberRole.MANAGER.value, MemberRole.WORKER.value, MemberRole.CLIENT.value)


def _lower(value: Optional[str]) -> Optional[str]:
    cleaned = clean_text(value)
    return cleaned.lower() if cleaned else None


class MemberService(MutationService):
    """Add organization teammates to projects, change their role, remove them"""

    async def add_member_from_organization(
        self,
        project_id: str,
        user_id: str,
        role: Optional[str] = None,
        invited_by: Optional[str] = None,
        invited_email: Optional[str] = None,
        user_name_snapshot: Optional[str] = None,
        user_email_snapshot: Optional[str] = None,
    ) -> ProjectMember:
        """
        Add an organization member to a project as an active member.

        Owners cannot be added this way; any other role than manager, worker
        or client becomes worker. A live membership row of the user is updated in
        place; a removed one is left alone and a fresh row is inserted.

        Raises:
            ValidationError: If ids are blank or the user is not an active
                member of the project's organization
            NotFoundError: If the project does not exist
        """
        project_id = (project_id or "").strip()
        user_id = (user_id or "").strip()
        if not project_id or not user_id:
            raise ValidationError("Project id and member user id are required")

        resolved_role = role if role in ASSIGNABLE_ROLES else MemberRole.WORKER.value
        invited_by = clean_text(invited_by)
        invited_email = _lower(invited_email)
        user_name_snapshot = clean_text(user_name_snapshot)
        user_email_snapshot = _lower(user_email_snapshot) if user_email_snapshot is not None else invited_email

        if any(isinstance(classify_id(value), LocalId) for value in (project_id, user_id)):
            return self.local_store.upsert_member(
                project_id,
                user_id,
                role=resolved_role,
                status=MemberStatus.ACTIVE.value,
                invited_by=invited_by,
                invited_email=invited_email,
                user_name_snapshot=user_name_snapshot,
                user_email_snapshot=user_email_snapshot,
            )

        user = await self.backend.require_user("add project member")
        invited_by_id = invited_by if isinstance(classify_id(invited_by), RemoteId) else user.id

        project = await self._lookup(tables.PROJECTS, "id, organization_id", id=project_id)
        if project is None:
            raise NotFoundError("Project not found")

        organization_id = clean_text(project.get("organization_id"))
        if organization_id:
            org_member = await self.backend.select_one(
                tables.ORGANIZATION_MEMBERS,
                "id",
                [eq("organization_id", organization_id), eq("user_id", user_id), eq("status", "active")],
            )
            if org_member is None:
                raise ValidationError("Selected teammate is not active in this organization")

        existing = await self.backend.select_one(
            tables.PROJECT_MEMBERS,
            tables.PROJECT_MEMBER_COLUMNS,
            [
                eq("project_id", project_id),
                eq("user_id", user_id),
                neq("status", MemberStatus.REMOVED.value),
            ],
            order="created_at",
        )
        now = utc_now_iso()
        if existing is not None:
            rows = await self.backend.update(
                tables.PROJECT_MEMBERS,
                {
                    "role": resolved_role,
                    "status": MemberStatus.ACTIVE.value,
                    "invited_by": invited_by_id,
                    "invited_email": invited_email or existing.get("invited_email"),
                    "user_name_snapshot": user_name_snapshot or existing.get("user_name_snapshot"),
                    "user_email_snapshot": user_email_snapshot
                    or existing.get("user_email_snapshot")
                    or existing.get("invited_email"),
                    "accepted_at": existing.get("accepted_at") or now,
                },
                [eq("id", existing["id"])],
            )
            persisted = self._first(rows, "Unable to update project member")
        else:
            rows = await self.backend.insert(
                tables.PROJECT_MEMBERS,
                {
                    "project_id": project_id,
                    "user_id": user_id,
                    "invited_email": invited_email,
                    "role": resolved_role,
                    "status": MemberStatus.ACTIVE.value,
                    "invited_by": invited_by_id,
                    "user_name_snapshot": user_name_snapshot,
                    "user_email_snapshot": user_email_snapshot,
                    "accepted_at": now,
                },
            )
            persisted = self._first(rows, "Unable to add project member")

        await self.sync.sync_project_members(project_id)
        members = self.local_store.list_members(project_id, include_removed=True)
        member = next((m for m in members if m.id == persisted.get("id")), None) or next(
            (m for m in members if m.user_id == user_id and m.status != MemberStatus.REMOVED.value),
            None,
        )
        if member is None:
            raise NotFoundError("Project member was added remotely but not available locally yet")
        logger.info(f"Added user {user_id} to project {project_id} as {resolved_role}")
        return member

    async def set_member_role(self, project_id: str, member_id: str, role: str) -> Optional[ProjectMember]:
        """Change a member's role; unknown roles become worker"""
        project_id = (project_id or "").strip()
        member_id = (member_id or "").strip()
        if not project_id or not member_id:
            raise ValidationError("Project id and member id are required")
        resolved_role = role if role in MEMBER_ROLES else MemberRole.WORKER.value

        if any(isinstance(classify_id(value), LocalId) for value in (project_id, member_id)):
            return self.local_store.set_member_role(project_id, member_id, resolved_role)

        await self.backend.require_user("update project member role")
        await self.backend.update(
            tables.PROJECT_MEMBERS,
            {"role": resolved_role},
            [eq("project_id", project_id), eq("id", member_id)],
            returning=False,
        )
        await self.sync.sync_project_members(project_id)
        return self.local_store.get_member(project_id, member_id)

    async def remove_member(self, project_id: str, member_id: str) -> None:
        """Mark a member removed; removal is final for that membership row"""
        project_id = (project_id or "").strip()
        member_id = (member_id or "").strip()
        if not project_id or not member_id:
            raise ValidationError("Project id and member id are required")

        if any(isinstance(classify_id(value), LocalId) for value in (project_id, member_id)):
            self.local_store.remove_member(project_id, member_id)
            return

        await self.backend.require_user("remove project member")
        await self.backend.update(
            tables.PROJECT_MEMBERS,
            {"status": MemberStatus.REMOVED.value},
            [eq("project_id", project_id), eq("id", member_id)],
            returning=False,
        )
        self.local_store.remove_member(project_id, member_id)
        await self.sync.sync_project_members(project_id)
