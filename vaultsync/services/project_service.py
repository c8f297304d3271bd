"""Project mutations"""

import logging
from datetime import datetime
from typing import Any, Optional

from vaultsync.errors import BackendError, NotFoundError, ValidationError
from vaultsync.models import Project
from vaultsync.schemas.common import clean_text, to_iso, utc_now_iso
from vaultsync.schemas.project import (
    SetProjectVisibilityResult,
    VisibilityFeedSyncSummary,
    normalize_slug,
)
from vaultsync.services import tables
from vaultsync.services.backend_client import eq
from vaultsync.services.base_service import MutationService
from vaultsync.services.identity import LocalId, classify_id
from vaultsync.services.local_store import PROJECT_UPDATABLE_FIELDS
from vaultsync.services.visibility_sync import VisibilityFanOut

logger = logging.getLogger(__name__)

DATE_FIELDS = ("start_date", "end_date")


def _remote_value(field: str, value: Any) -> Any:
    if field == "name":
        return (value or "").strip()
    if field in ("client", "location"):
        return clean_text(value)
    if field in DATE_FIELDS:
        return to_iso(value) if isinstance(value, datetime) else value
    return value


class ProjectService(MutationService):
    """Create, edit, publish and delete projects"""

    def __init__(self, *args, fan_out: VisibilityFanOut, **kwargs):
        super().__init__(*args, **kwargs)
        self.fan_out = fan_out

    async def create_project(
        self,
        name: str,
        client: Optional[str] = None,
        location: Optional[str] = None,
        organization_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        budget: Optional[float] = None,
        offline: bool = False,
    ) -> Project:
        """
        Create a project.

        Args:
            name: Project name (required)
            client: Client name
            location: Site location
            organization_id: Owning organization
            start_date: Start date (default: now)
            end_date: Planned end date
            budget: Budget amount
            offline: Create a device-local project without contacting the backend

        Returns:
            The local project

        Raises:
            ValidationError: If the name is blank
            AuthenticationError: If creating remotely without a session
            NotFoundError: If the created project did not reach the local store
        """
        trimmed_name = (name or "").strip()
        if not trimmed_name:
            raise ValidationError("Project name is required")

        if offline:
            return self.local_store.create_project(
                trimmed_name,
                client=client,
                location=location,
                organization_id=organization_id,
                start_date=start_date,
                end_date=end_date,
                budget=budget,
            )

        user = await self.backend.require_user("create project")
        result = await self.backend.rpc(
            "create_project",
            {
                "p_name": trimmed_name,
                "p_client": clean_text(client),
                "p_location": clean_text(location),
                "p_organization_id": organization_id,
                "p_start_date": to_iso(start_date or datetime.utcnow()),
                "p_end_date": to_iso(end_date),
                "p_budget": budget,
            },
        )
        created = result[0] if isinstance(result, list) and result else result
        if not isinstance(created, dict) or not created.get("id"):
            raise BackendError("Unable to create project")

        project_id = created["id"]
        logger.info(f"Created project {project_id}")
        await self.activity.log(
            user, project_id, "project_created", project_id, {"name": trimmed_name, "progress": 0}
        )
        await self.sync.sync_projects_and_activity()

        project = self.local_store.get_project(project_id)
        if project is None:
            raise NotFoundError("Project was created remotely but not available locally yet")
        return project

    async def update_project(self, project_id: str, **changes: Any) -> Optional[Project]:
        """
        Update project fields.

        Only the fields passed are changed; see PROJECT_UPDATABLE_FIELDS.
        """
        if isinstance(classify_id(project_id), LocalId):
            return self.local_store.update_project(project_id, **changes)

        unknown = set(changes) - set(PROJECT_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unsupported project fields: {', '.join(sorted(unknown))}")

        user = await self.backend.require_user("update project")
        updates = {field: _remote_value(field, value) for field, value in changes.items()}
        if not updates:
            return self.local_store.get_project(project_id)
        if "name" in updates and not updates["name"]:
            raise ValidationError("Project name is required")

        await self.backend.update(
            tables.PROJECTS,
            updates,
            [eq("id", project_id), eq("owner_user_id", user.id)],
            returning=False,
        )
        await self.activity.log(
            user, project_id, "project_updated", project_id, {"fields": list(updates)}
        )
        await self.sync.sync_projects_and_activity()
        return self.local_store.get_project(project_id)

    async def delete_project(self, project_id: str) -> None:
        if isinstance(classify_id(project_id), LocalId):
            self.local_store.delete_project(project_id)
            return

        user = await self.backend.require_user("delete project")
        await self.backend.delete(
            tables.PROJECTS, [eq("id", project_id), eq("owner_user_id", user.id)]
        )
        self.local_store.delete_project(project_id)
        logger.info(f"Deleted project {project_id}")

    async def set_project_visibility(
        self, project_id: str, visibility: str, slug: Optional[str] = None
    ) -> SetProjectVisibilityResult:
        """
        Publish or unpublish a project and fan the change out to the public feed.

        Publishing keeps the first publication timestamp and requires a slug,
        either passed in or already stored. Activity is recorded only when the
        visibility actually changes.

        Raises:
            NotFoundError: If the project does not exist
            ValidationError: If publishing without a slug
        """
        if visibility not in ("public", "private"):
            raise ValidationError(f"Invalid visibility: {visibility}")

        if isinstance(classify_id(project_id), LocalId):
            project = self.local_store.set_project_visibility(project_id, visibility, slug)
            return SetProjectVisibilityResult(
                project=project, sync=VisibilityFeedSyncSummary(visibility=visibility)
            )

        user = await self.backend.require_user("set project visibility")
        existing = await self._lookup(
            tables.PROJECTS,
            "id, organization_id, visibility, public_slug, public_published_at",
            id=project_id,
        )
        if existing is None:
            raise NotFoundError("Project not found")

        current_visibility = "public" if existing.get("visibility") == "public" else "private"
        next_slug = normalize_slug(slug) or normalize_slug(existing.get("public_slug"))
        now = utc_now_iso()
        updates = {"visibility": visibility, "public_updated_at": now}
        if visibility == "public":
            if not next_slug:
                raise ValidationError("Public slug is required to publish this project")
            updates["public_slug"] = next_slug
            updates["public_published_at"] = existing.get("public_published_at") or now

        await self.backend.update(tables.PROJECTS, updates, [eq("id", project_id)], returning=False)

        if current_visibility != visibility:
            if visibility == "public":
                await self.activity.log(
                    user, project_id, "project_published", project_id, {"public_slug": next_slug}
                )
            else:
                await self.activity.log(user, project_id, "project_unpublished", project_id, None)

        summary = await self.fan_out.sync_project_visibility(
            user.id, project_id, existing.get("organization_id"), visibility
        )
        await self.sync.sync_projects_and_activity()
        await self.sync.sync_public_profile(project_id)

        project = self.local_store.get_project(project_id)
        if project is None:
            raise NotFoundError("Project visibility updated remotely but not available locally yet")
        return SetProjectVisibilityResult(project=project, sync=summary)

    async def set_project_completion_state(self, project_id: str, completed: bool) -> Optional[Project]:
        """Mark a project completed, or reopen it"""
        if isinstance(classify_id(project_id), LocalId):
            return self.local_store.set_project_completion_state(project_id, completed)

        user = await self.backend.require_user("update project completion state")
        await self.backend.update(
            tables.PROJECTS,
            {"status_override": "completed" if completed else None},
            [eq("id", project_id), eq("owner_user_id", user.id)],
            returning=False,
        )
        action_type = "project_marked_completed" if completed else "project_reopened"
        await self.activity.log(user, project_id, action_type, project_id, None)
        await self.sync.sync_projects_and_activity()
        return self.local_store.get_project(project_id)
