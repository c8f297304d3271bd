"""Note mutations"""

from typing import Optional

from vaultsync.errors import CrossReferenceError, NotFoundError, ValidationError
from vaultsync.models import Note
from vaultsync.schemas import MediaRow, NoteRow
from vaultsync.schemas.common import clean_text
from vaultsync.services import tables
from vaultsync.services.backend_client import eq
from vaultsync.services.base_service import MutationService
from vaultsync.services.identity import LocalId, classify_id


class NoteService(MutationService):
    """
    Project notes, optionally linked to a media item.

    Writing a linked note also refreshes the note shown on the media item.
    """

    async def _set_media_note(self, project_id: str, media_id: str, content: Optional[str]) -> None:
        rows = await self.backend.update(tables.MEDIA, {"note": content}, [eq("id", media_id)])
        if rows:
            self.merger.merge_project_content(project_id, [], [MediaRow.model_validate(rows[0])])

    async def create_note(
        self,
        project_id: str,
        content: str,
        title: Optional[str] = None,
        media_id: Optional[str] = None,
    ) -> Note:
        """
        Create a note.

        Raises:
            ValidationError: If the content is blank
            CrossReferenceError: If the linked media is not in the project
        """
        trimmed = (content or "").strip()
        if not trimmed:
            raise ValidationError("Note content is required")
        trimmed_title = clean_text(title)
        linked_media_id = clean_text(media_id)

        if isinstance(classify_id(project_id), LocalId):
            return self.local_store.create_note(
                project_id, trimmed, title=trimmed_title, media_id=linked_media_id
            )

        user = await self.backend.require_user("create project note")
        if linked_media_id:
            if isinstance(classify_id(linked_media_id), LocalId):
                raise CrossReferenceError("Invalid linked media id")
            media = await self._lookup(tables.MEDIA, "id, project_id", id=linked_media_id)
            if media is None or media.get("project_id") != project_id:
                raise CrossReferenceError("Linked media not found")

        rows = await self.backend.insert(
            tables.NOTES,
            {
                "project_id": project_id,
                "media_id": linked_media_id,
                "author_user_id": user.id,
                "title": trimmed_title,
                "content": trimmed,
            },
        )
        created = NoteRow.model_validate(self._first(rows, "Unable to create note"))

        if linked_media_id:
            await self._set_media_note(project_id, linked_media_id, trimmed)

        await self.activity.log(
            user,
            project_id,
            "note_added",
            linked_media_id or created.id,
            {
                "has_note": True,
                "note_scope": "media" if linked_media_id else "project",
                "media_id": linked_media_id,
                "title": trimmed_title,
            },
        )
        self.merger.merge_project_notes(project_id, [created])

        note = self.local_store.get_note(created.id)
        if note is None:
            raise NotFoundError("Note was created remotely but not available locally yet")
        return note

    async def update_note(self, note_id: str, content: str, title: Optional[str] = None) -> Optional[Note]:
        """Change a note's content and title; returns None when the note does not exist"""
        trimmed = (content or "").strip()
        if not trimmed:
            raise ValidationError("Note content is required")
        trimmed_title = clean_text(title)

        if isinstance(classify_id(note_id), LocalId):
            return self.local_store.update_note(note_id, trimmed, title=trimmed_title)

        user = await self.backend.require_user("update project note")
        existing = await self._lookup(tables.NOTES, "id, project_id, media_id", id=note_id)
        if existing is None or not existing.get("project_id"):
            return None
        project_id = existing["project_id"]
        linked_media_id = clean_text(existing.get("media_id"))

        rows = await self.backend.update(
            tables.NOTES,
            {"title": trimmed_title, "content": trimmed, "author_user_id": user.id},
            [eq("id", note_id)],
        )
        updated = NoteRow.model_validate(self._first(rows, "Unable to update note"))

        if linked_media_id:
            await self._set_media_note(project_id, linked_media_id, trimmed)

        await self.activity.log(
            user,
            project_id,
            "note_updated",
            linked_media_id or note_id,
            {
                "has_note": True,
                "note_scope": "media" if linked_media_id else "project",
                "media_id": linked_media_id,
                "title": trimmed_title,
            },
        )
        self.merger.merge_project_notes(project_id, [updated])
        return self.local_store.get_note(note_id)

    async def delete_note(self, note_id: str) -> None:
        """Delete a note; a linked media item falls back to its next latest note"""
        if isinstance(classify_id(note_id), LocalId):
            self.local_store.delete_note(note_id)
            return

        user = await self.backend.require_user("delete project note")
        existing = await self._lookup(tables.NOTES, "id, project_id, media_id", id=note_id)
        if existing is None or not existing.get("project_id"):
            return
        project_id = existing["project_id"]
        linked_media_id = clean_text(existing.get("media_id"))

        await self.backend.delete(tables.NOTES, [eq("id", note_id)])

        if linked_media_id:
            latest = await self.backend.select_one(
                tables.NOTES,
                "content",
                [eq("project_id", project_id), eq("media_id", linked_media_id)],
                order="updated_at",
                ascending=False,
            )
            await self._set_media_note(
                project_id, linked_media_id, clean_text((latest or {}).get("content"))
            )

        await self.activity.log(
            user,
            project_id,
            "note_removed",
            linked_media_id or note_id,
            {
                "has_note": False,
                "note_scope": "media" if linked_media_id else "project",
                "media_id": linked_media_id,
            },
        )
        await self.sync.sync_project_notes(project_id)
