"""Media mutations"""

import logging
from typing import Any, Optional

from vaultsync.errors import NotFoundError, ValidationError
from vaultsync.models import MediaItem
from vaultsync.schemas import MediaMetadata, MediaRow, NoteRow
from vaultsync.schemas.common import clean_text
from vaultsync.schemas.media import normalize_media_type
from vaultsync.services import tables
from vaultsync.services.backend_client import eq
from vaultsync.services.base_service import MutationService
from vaultsync.services.identity import LocalId, classify_id
from vaultsync.services.media_uploader import MediaAssetUploader, UploadOutcome
from vaultsync.services.visibility_sync import VisibilityFanOut

logger = logging.getLogger(__name__)


class MediaService(MutationService):
    """
    Capture, annotate, move and delete media.

    Media created in a backend project is inserted with its local URI first,
    then handed to the uploader; an upload that fails never fails the
    capture itself.
    """

    def __init__(self, *args, uploader: MediaAssetUploader, fan_out: VisibilityFanOut, **kwargs):
        super().__init__(*args, **kwargs)
        self.uploader = uploader
        self.fan_out = fan_out

    def _merge_media(self, row: MediaRow) -> None:
        self.merger.merge_project_content(row.project_id, [], [self.uploader.resolve_row_uris(row)])

    async def create_media(
        self,
        project_id: str,
        uri: str,
        media_type: str = "photo",
        thumb_uri: Optional[str] = None,
        note: Optional[str] = None,
        folder_id: Optional[str] = None,
        metadata: Any = None,
    ) -> MediaItem:
        """
        Add a captured photo, video or document to a project.

        Args:
            project_id: Owning project
            uri: Local file URI (or an already remote URL)
            media_type: photo, video or doc
            thumb_uri: Thumbnail URI
            note: Caption shown on the media
            folder_id: Folder to file it in
            metadata: Free-form metadata (object or JSON text)

        Returns:
            The local media item

        Raises:
            ValidationError: If the URI is blank
            AuthenticationError: If the project is remote and nobody is signed in
        """
        if not (uri or "").strip():
            raise ValidationError("Media uri is required")

        if isinstance(classify_id(project_id), LocalId):
            return self.local_store.create_media(
                project_id,
                uri,
                media_type=media_type,
                thumb_uri=thumb_uri,
                note=note,
                folder_id=folder_id,
                metadata=metadata,
            )

        user = await self.backend.require_user("create media")
        kind = normalize_media_type(media_type)
        resolved_folder_id = clean_text(folder_id)
        typed_metadata = MediaMetadata.from_raw(metadata)

        rows = await self.backend.insert(
            tables.MEDIA,
            {
                "project_id": project_id,
                "folder_id": resolved_folder_id,
                "uploaded_by_user_id": user.id,
                "type": kind,
                "uri": uri.strip(),
                "thumb_uri": clean_text(thumb_uri),
                "note": clean_text(note),
                "metadata": typed_metadata.to_payload(),
            },
        )
        created = MediaRow.model_validate(self._first(rows, "Unable to create media"))

        result = await self.uploader.sync_media(user.id, created)

        await self.activity.log(
            user,
            project_id,
            "media_added",
            created.id,
            {
                "type": kind,
                "folder_id": resolved_folder_id,
                "has_note": bool(clean_text(note)),
                "storage_synced": result.outcome == UploadOutcome.SYNCED,
                "document_kind": typed_metadata.get_text("document_kind"),
                "capture_kind": typed_metadata.get_text("capture_kind"),
            },
        )
        await self.fan_out.publish_media_if_project_public(user.id, project_id, created.id, note)

        self._merge_media(result.row)
        media = self.local_store.get_media(created.id)
        if media is None:
            raise NotFoundError("Media was created remotely but not available locally yet")
        return media

    async def update_media_note(self, media_id: str, note: Optional[str]) -> None:
        """
        Set, change or clear the note of a media item.

        The latest linked note row is updated, created or deleted to match,
        and the activity records whether a note was added, updated or removed.

        Raises:
            NotFoundError: If a backend media item does not exist
        """
        if isinstance(classify_id(media_id), LocalId):
            self.local_store.update_media_note(media_id, note)
            return

        user = await self.backend.require_user("update media note")
        existing = await self._lookup(tables.MEDIA, "id, project_id, note", id=media_id)
        if existing is None or not existing.get("project_id"):
            raise NotFoundError("Media not found")
        project_id = existing["project_id"]

        trimmed = clean_text(note)
        previous_note = await self.backend.select_one(
            tables.NOTES,
            tables.NOTE_COLUMNS,
            [eq("project_id", project_id), eq("media_id", media_id)],
            order="updated_at",
            ascending=False,
        )

        latest: Optional[NoteRow] = NoteRow.model_validate(previous_note) if previous_note else None
        if trimmed:
            if latest is not None:
                rows = await self.backend.update(
                    tables.NOTES, {"content": trimmed, "author_user_id": user.id}, [eq("id", latest.id)]
                )
                latest = NoteRow.model_validate(self._first(rows, "Unable to update note"))
            else:
                rows = await self.backend.insert(
                    tables.NOTES,
                    {
                        "project_id": project_id,
                        "media_id": media_id,
                        "author_user_id": user.id,
                        "title": None,
                        "content": trimmed,
                    },
                )
                latest = NoteRow.model_validate(self._first(rows, "Unable to create note"))
        else:
            if latest is not None:
                await self.backend.delete(tables.NOTES, [eq("id", latest.id)])
            latest = None

        rows = await self.backend.update(tables.MEDIA, {"note": trimmed}, [eq("id", media_id)])
        updated = MediaRow.model_validate(self._first(rows, "Unable to update media note"))

        previous_has_note = bool(
            (previous_note and clean_text(previous_note.get("content"))) or clean_text(existing.get("note"))
        )
        next_has_note = trimmed is not None
        if not previous_has_note and next_has_note:
            action_type = "note_added"
        elif previous_has_note and not next_has_note:
            action_type = "note_removed"
        else:
            action_type = "note_updated"

        await self.activity.log(
            user,
            project_id,
            action_type,
            media_id,
            {"has_note": next_has_note, "note_scope": "media", "media_id": media_id},
        )

        self._merge_media(updated)
        if latest is not None:
            self.merger.merge_project_notes(project_id, [latest])
        else:
            await self.sync.sync_project_notes(project_id)

    async def move_media_to_folder(self, media_id: str, folder_id: Optional[str]) -> None:
        """Move a media item into a folder, or to the project root with None"""
        if isinstance(classify_id(media_id), LocalId):
            self.local_store.move_media_to_folder(media_id, folder_id)
            return

        user = await self.backend.require_user("move media")
        existing = await self._lookup(tables.MEDIA, "id, project_id, folder_id", id=media_id)
        if existing is None or not existing.get("project_id"):
            raise NotFoundError("Media not found")

        resolved_folder_id = clean_text(folder_id)
        rows = await self.backend.update(
            tables.MEDIA, {"folder_id": resolved_folder_id}, [eq("id", media_id)]
        )
        updated = MediaRow.model_validate(self._first(rows, "Unable to move media"))

        await self.activity.log(
            user,
            existing["project_id"],
            "media_moved",
            media_id,
            {"from_folder_id": existing.get("folder_id") or None, "to_folder_id": resolved_folder_id},
        )
        self._merge_media(updated)

    async def update_media_thumbnail(self, media_id: str, thumb_uri: Optional[str]) -> None:
        """
        Replace the thumbnail of a media item.

        A local thumbnail of a backend media item is uploaded under a new
        object path; if that upload fails the local URI is stored instead.
        """
        if isinstance(classify_id(media_id), LocalId):
            self.local_store.update_media_thumbnail(media_id, thumb_uri)
            return

        user = await self.backend.require_user("update media thumbnail")
        raw = await self._lookup(tables.MEDIA, tables.MEDIA_COLUMNS, id=media_id)
        if raw is None:
            return
        existing = MediaRow.model_validate(raw)

        next_thumb, next_metadata = await self.uploader.upload_thumbnail_replacement(
            user.id, existing.project_id, existing.id, thumb_uri, existing.metadata
        )
        rows = await self.backend.update(
            tables.MEDIA,
            {"thumb_uri": next_thumb, "metadata": next_metadata.to_payload()},
            [eq("id", media_id)],
        )
        if not rows:
            return
        self._merge_media(MediaRow.model_validate(rows[0]))

    async def delete_media(self, media_id: str) -> None:
        """
        Delete a media item with its notes, storage objects and retry entry.

        Storage cleanup is best-effort; a failure is logged and the row is
        deleted anyway.
        """
        if isinstance(classify_id(media_id), LocalId):
            self.local_store.delete_media(media_id)
            await self.uploader.retry_queue.delete(media_id)
            return

        user = await self.backend.require_user("delete media")
        raw = await self._lookup(
            tables.MEDIA, "id, project_id, type, folder_id, uri, thumb_uri, metadata", id=media_id
        )
        if raw is None or not raw.get("project_id"):
            return
        existing = MediaRow.model_validate(raw)

        await self.backend.delete(tables.NOTES, [eq("media_id", media_id)])
        self.uploader.remove_storage_objects(existing)
        await self.backend.delete(tables.MEDIA, [eq("id", media_id)])
        await self.uploader.retry_queue.delete(media_id)
        self.local_store.delete_media(media_id)

        await self.activity.log(
            user,
            existing.project_id,
            "media_deleted",
            media_id,
            {"type": raw.get("type") or None, "folder_id": existing.folder_id},
        )
        logger.info(f"Deleted media {media_id} from project {existing.project_id}")
        await self.sync.sync_project_content(existing.project_id)
