"""Public profile mutations"""

from typing import Any, Optional

from vaultsync.errors import ValidationError
from vaultsync.models import ProjectPublicProfile
from vaultsync.schemas.common import clean_text
from vaultsync.schemas.project import normalize_highlights
from vaultsync.services import tables
from vaultsync.services.backend_client import eq
from vaultsync.services.base_service import MutationService
from vaultsync.services.identity import LocalId, classify_id
from vaultsync.services.local_store import PUBLIC_PROFILE_TEXT_FIELDS


class PublicProfileService(MutationService):

    async def upsert_public_profile(self, project_id: str, **changes: Any) -> Optional[ProjectPublicProfile]:
        """
        Create or update the public profile of a project.

        Only the fields passed are written. Text is trimmed (blank becomes
        null); highlights are trimmed, empties dropped and capped.

        Returns:
            The local profile after the change
        """
        if isinstance(classify_id(project_id), LocalId):
            return self.local_store.upsert_public_profile(project_id, **changes)

        allowed = set(PUBLIC_PROFILE_TEXT_FIELDS) | {"hero_media_id", "highlights"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unsupported profile fields: {', '.join(sorted(unknown))}")

        user = await self.backend.require_user("update project public profile")
        updates = {}
        for field, value in changes.items():
            if field == "highlights":
                updates["highlights_json"] = normalize_highlights(value)
            elif field == "hero_media_id":
                updates["hero_media_id"] = value or None
            else:
                updates[field] = clean_text(value)

        if not updates:
            return self.local_store.get_public_profile(project_id)

        existing = await self._lookup(tables.PUBLIC_PROFILES, "project_id", project_id=project_id)
        if existing is not None:
            await self.backend.update(
                tables.PUBLIC_PROFILES, updates, [eq("project_id", project_id)], returning=False
            )
        else:
            await self.backend.insert(
                tables.PUBLIC_PROFILES, {"project_id": project_id, **updates}, returning=False
            )

        await self.activity.log(
            user, project_id, "project_public_profile_updated", project_id, {"fields": list(updates)}
        )
        await self.sync.sync_public_profile(project_id)
        await self.sync.sync_projects_and_activity()
        return self.local_store.get_public_profile(project_id)
