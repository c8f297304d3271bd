"""Folder mutations"""

from vaultsync.errors import NotFoundError, ValidationError
from vaultsync.models import Folder
from vaultsync.schemas import FolderRow
from vaultsync.services import tables
from vaultsync.services.backend_client import eq
from vaultsync.services.base_service import MutationService
from vaultsync.services.identity import LocalId, classify_id


class FolderService(MutationService):
    """Create, rename and delete folders"""

    async def create_folder(self, project_id: str, name: str) -> Folder:
        if isinstance(classify_id(project_id), LocalId):
            return self.local_store.create_folder(project_id, name)

        user = await self.backend.require_user("create folder")
        trimmed_name = (name or "").strip()
        if not trimmed_name:
            raise ValidationError("Folder name is required")

        rows = await self.backend.insert(
            tables.FOLDERS,
            {"project_id": project_id, "name": trimmed_name, "created_by_user_id": user.id},
        )
        row = FolderRow.model_validate(self._first(rows, "Unable to create folder"))

        await self.activity.log(user, project_id, "folder_created", row.id, {"name": trimmed_name})
        self.merger.merge_project_content(project_id, [row], [])

        folder = self.local_store.get_folder(row.id)
        if folder is None:
            raise NotFoundError("Folder was created remotely but not available locally yet")
        return folder

    async def rename_folder(self, folder_id: str, name: str) -> None:
        """
        Rename a folder.

        Raises:
            ValidationError: If the name is blank
            NotFoundError: If a backend folder does not exist
        """
        if isinstance(classify_id(folder_id), LocalId):
            self.local_store.rename_folder(folder_id, name)
            return

        user = await self.backend.require_user("rename folder")
        trimmed_name = (name or "").strip()
        if not trimmed_name:
            raise ValidationError("Folder name is required")

        existing = await self._lookup(tables.FOLDERS, "id, project_id, name", id=folder_id)
        if existing is None or not existing.get("project_id"):
            raise NotFoundError("Folder not found")

        rows = await self.backend.update(tables.FOLDERS, {"name": trimmed_name}, [eq("id", folder_id)])
        row = FolderRow.model_validate(self._first(rows, "Unable to rename folder"))

        await self.activity.log(
            user,
            existing["project_id"],
            "folder_renamed",
            folder_id,
            {"from": existing.get("name") or None, "to": trimmed_name},
        )
        self.merger.merge_project_content(existing["project_id"], [row], [])

    async def delete_folder(self, folder_id: str) -> None:
        """Delete a folder; its media stay in the project without a folder"""
        if isinstance(classify_id(folder_id), LocalId):
            self.local_store.delete_folder(folder_id)
            return

        user = await self.backend.require_user("delete folder")
        existing = await self._lookup(tables.FOLDERS, "id, project_id, name", id=folder_id)
        if existing is None or not existing.get("project_id"):
            return

        await self.backend.delete(tables.FOLDERS, [eq("id", folder_id)])
        await self.activity.log(
            user, existing["project_id"], "folder_deleted", folder_id, {"name": existing.get("name") or None}
        )
        await self.sync.sync_project_content(existing["project_id"])
