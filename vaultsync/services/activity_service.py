"""Explicit activity log mutations"""

from typing import Any, Dict, Optional

from vaultsync.errors import NotFoundError
from vaultsync.models import ActivityLogEntry
from vaultsync.schemas import ActivityRow
from vaultsync.schemas.common import clean_text
from vaultsync.services import tables
from vaultsync.services.backend_client import eq
from vaultsync.services.base_service import MutationService
from vaultsync.services.identity import LocalId, classify_id

_UNSET: Any = object()


class ActivityService(MutationService):

    async def create_activity(
        self,
        project_id: str,
        action_type: str,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ActivityLogEntry:
        if isinstance(classify_id(project_id), LocalId):
            return self.local_store.create_activity(project_id, action_type, reference_id, metadata)

        user = await self.backend.require_user("create activity")
        rows = await self.backend.insert(
            tables.ACTIVITY_LOG,
            {
                "project_id": project_id,
                "action_type": action_type,
                "reference_id": clean_text(reference_id),
                "actor_user_id": user.id,
                "actor_name_snapshot": user.actor_name,
                "metadata": metadata,
            },
        )
        created = ActivityRow.model_validate(self._first(rows, "Unable to create activity"))
        self.merger.merge_activity([created])

        entry = self.local_store.get_activity(created.id)
        if entry is None:
            raise NotFoundError("Activity was created remotely but not available locally yet")
        return entry

    async def update_activity(
        self,
        activity_id: str,
        action_type: Optional[str] = _UNSET,
        reference_id: Optional[str] = _UNSET,
        metadata: Optional[Dict[str, Any]] = _UNSET,
    ) -> Optional[ActivityLogEntry]:
        """
        Change some fields of an activity entry.

        Only the arguments actually passed are written; passing None clears
        reference_id or metadata.

        Returns:
            The local entry, or None if nothing changed or the entry is gone
        """
        changes: Dict[str, Any] = {}
        if action_type is not _UNSET:
            changes["action_type"] = (action_type or "").strip()
        if reference_id is not _UNSET:
            changes["reference_id"] = clean_text(reference_id)
        if metadata is not _UNSET:
            changes["metadata"] = metadata

        if isinstance(classify_id(activity_id), LocalId):
            return self.local_store.update_activity(activity_id, **changes)

        await self.backend.require_user("update activity")
        if not changes:
            return None

        rows = await self.backend.update(tables.ACTIVITY_LOG, changes, [eq("id", activity_id)])
        if not rows:
            return None
        self.merger.merge_activity([ActivityRow.model_validate(rows[0])])
        return self.local_store.get_activity(activity_id)

    async def delete_activity(self, activity_id: str) -> None:
        if isinstance(classify_id(activity_id), LocalId):
            self.local_store.delete_activity(activity_id)
            return

        await self.backend.require_user("delete activity")
        await self.backend.delete(tables.ACTIVITY_LOG, [eq("id", activity_id)])
        self.local_store.delete_activity(activity_id)
