"""Upload locally captured media to object storage"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from vaultsync.config import settings
from vaultsync.errors import (
    BackendError,
    LocalFileNotFoundError,
    StorageConfigurationError,
    StorageError,
    StoragePayloadTooLargeError,
    StorageTransientError,
)
from vaultsync.monitoring.metrics import MetricsTimer, metrics_collector
from vaultsync.schemas.common import ms_to_iso, utc_now_iso
from vaultsync.schemas.media import MediaMetadata, MediaRow
from vaultsync.schemas.results import SideEffectResult
from vaultsync.schemas.retry_queue import MAX_LAST_ERROR_LENGTH, StorageUploadRetryEntry
from vaultsync.services.backend_client import BackendClient, eq
from vaultsync.services.local_files import LocalFileSystem
from vaultsync.services.storage_service import (
    StorageService,
    build_storage_object_path,
    default_extension,
    file_extension_from_uri,
    infer_content_type,
    is_remote_uri,
)
from vaultsync.services.tables import MEDIA
from vaultsync.workers.upload_retry_queue import StorageUploadRetryQueue

logger = logging.getLogger(__name__)

PAYLOAD_TOO_LARGE_REASON = "payload_too_large"


class UploadOutcome(str, enum.Enum):
    """What happened to one media item during a sync attempt"""
    SYNCED = "synced"
    ALREADY_SYNCED = "already_synced"
    PENDING = "pending"
    BLOCKED = "blocked"
    MISSING_SOURCE = "missing_source"
    DEFERRED = "deferred"


@dataclass
class SyncedStorageMedia:
    """URIs and metadata after the assets of one media item were handled"""

    uri: str
    thumb_uri: Optional[str]
    metadata: MediaMetadata
    uploaded: bool


@dataclass
class MediaSyncResult:
    """Outcome of syncing one media item, with the row as it now stands"""

    media_id: str
    outcome: UploadOutcome
    row: MediaRow
    retry_entry: Optional[StorageUploadRetryEntry] = None
    error: Optional[str] = None
    side_effects: List[SideEffectResult] = field(default_factory=list)


def blocked_storage_patch(message: str) -> dict:
    now = utc_now_iso()
    return {
        "upload_pending": False,
        "upload_attempts": None,
        "upload_next_retry_at": None,
        "upload_last_error": message[:MAX_LAST_ERROR_LENGTH],
        "upload_last_error_at": now,
        "upload_blocked": True,
        "upload_block_reason": PAYLOAD_TOO_LARGE_REASON,
        "upload_blocked_at": now,
    }


def pending_storage_patch(entry: StorageUploadRetryEntry) -> dict:
    return {
        "upload_pending": True,
        "upload_attempts": entry.attempts,
        "upload_next_retry_at": ms_to_iso(entry.next_retry_at),
        "upload_last_error": entry.last_error,
        "upload_last_error_at": ms_to_iso(entry.updated_at),
        "upload_blocked": False,
        "upload_block_reason": None,
        "upload_blocked_at": None,
    }


class MediaAssetUploader:
    """
    Moves local media binaries into object storage.

    Upload strategy:
    - Stream the file to the storage HTTP API with the session's token
    - On a transient failure, photos up to the fallback cap are re-sent in one
      in-memory upload; videos and documents never are
    - Oversized objects are marked blocked and never retried
    - Other failures go to the retry queue with exponential backoff
    """

    def __init__(
        self,
        storage: StorageService,
        files: LocalFileSystem,
        retry_queue: StorageUploadRetryQueue,
        backend: BackendClient,
        max_fallback_bytes: Optional[int] = None,
    ):
        """
        Initialize uploader.

        Args:
            storage: Object storage service
            files: Device file access
            retry_queue: Durable retry queue shared by every upload path
            backend: Backend client used to persist new URIs and metadata
            max_fallback_bytes: Size cap of the in-memory fallback (default: 8 MiB)
        """
        self.storage = storage
        self.files = files
        self.retry_queue = retry_queue
        self.backend = backend
        self.max_fallback_bytes = max_fallback_bytes or settings.max_fallback_upload_bytes

    def _allows_fallback(self, media_type: str, size: Optional[int]) -> bool:
        return media_type == "photo" and size is not None and 0 < size <= self.max_fallback_bytes

    async def upload_local_file(
        self,
        local_uri: str,
        object_path: str,
        media_type: str,
        extension: str,
    ) -> Tuple[str, str]:
        """
        Upload one local file.

        Args:
            local_uri: Source file URI
            object_path: Destination object path
            media_type: photo, video or doc; decides fallback eligibility
            extension: Extension used to infer the content type

        Returns:
            (object path, public URL)

        Raises:
            LocalFileNotFoundError: If the source file is gone
            StoragePayloadTooLargeError: If storage rejects the object size
            StorageError: On any other upload failure
        """
        if not await self.files.exists(local_uri):
            raise LocalFileNotFoundError(f"Local file not found: {local_uri}")
        size = await self.files.size(local_uri)
        content_type = infer_content_type(extension, media_type)

        try:
            session = await self.backend.get_session()
            if session is None or not session.access_token:
                raise StorageTransientError("Unable to resolve auth session for storage upload")
            await self.storage.stream_upload(local_uri, object_path, content_type, session.access_token)
        except (StorageTransientError, StorageConfigurationError) as e:
            if not self._allows_fallback(media_type, size):
                raise
            logger.warning(f"Streaming upload of {object_path} failed, retrying in memory: {e}")
            payload = await self.files.read_bytes(local_uri)
            try:
                self.storage.upload(object_path, payload, content_type)
            except StorageError:
                metrics_collector.record_fallback_upload(success=False)
                raise
            metrics_collector.record_fallback_upload(success=True)

        public_url = self.storage.get_public_url(object_path)
        if not public_url or not is_remote_uri(public_url):
            raise StorageTransientError("Unable to generate media public URL")
        return object_path, public_url

    async def upload_media_assets(
        self,
        user_id: str,
        project_id: str,
        media_id: str,
        media_type: str,
        uri: str,
        thumb_uri: Optional[str],
        metadata: MediaMetadata,
    ) -> SyncedStorageMedia:
        """
        Upload a media item's asset and thumbnail where they are still local.

        A thumbnail identical to the asset URI reuses the asset's upload; a
        photo without thumbnail uses the asset URL as thumbnail.
        """
        trimmed_uri = uri.strip()
        trimmed_thumb = (thumb_uri or "").strip() or None

        next_uri = trimmed_uri
        next_thumb = trimmed_thumb
        uploaded = False

        if not is_remote_uri(trimmed_uri):
            extension = file_extension_from_uri(trimmed_uri, default_extension(media_type))
            object_path = build_storage_object_path(user_id, project_id, media_id, "media", extension)
            file_path, next_uri = await self.upload_local_file(
                trimmed_uri, object_path, media_type, extension
            )
            uploaded = True
        else:
            file_path = self.storage.parse_object_path(trimmed_uri)

        if trimmed_thumb:
            if trimmed_thumb == trimmed_uri:
                next_thumb = next_uri
                thumb_path = file_path
            elif not is_remote_uri(trimmed_thumb):
                thumb_extension = file_extension_from_uri(trimmed_thumb, "jpg")
                thumb_object_path = build_storage_object_path(
                    user_id, project_id, f"{media_id}-thumb", "thumbs", thumb_extension
                )
                thumb_path, next_thumb = await self.upload_local_file(
                    trimmed_thumb, thumb_object_path, "photo", thumb_extension
                )
                uploaded = True
            else:
                thumb_path = self.storage.parse_object_path(trimmed_thumb)
        elif media_type == "photo":
            next_thumb = next_uri
            thumb_path = file_path
        else:
            thumb_path = None

        synced_metadata = metadata.with_storage(
            bucket=self.storage.bucket,
            file_path=file_path,
            thumb_path=thumb_path,
            source_uri=trimmed_uri,
            source_thumb_uri=trimmed_thumb,
            synced_at=utc_now_iso(),
            upload_pending=False,
            upload_attempts=None,
            upload_next_retry_at=None,
            upload_last_error=None,
            upload_last_error_at=None,
            upload_blocked=False,
            upload_block_reason=None,
            upload_blocked_at=None,
        )
        return SyncedStorageMedia(
            uri=next_uri, thumb_uri=next_thumb, metadata=synced_metadata, uploaded=uploaded
        )

    async def _update_remote_row(self, media_id: str, values: dict) -> Optional[MediaRow]:
        rows = await self.backend.update(MEDIA, values, [eq("id", media_id)])
        return MediaRow.model_validate(rows[0]) if rows else None

    async def _persist_markers(self, row: MediaRow, metadata: MediaMetadata) -> Tuple[MediaRow, SideEffectResult]:
        """Best-effort write of pending/blocked markers to the backend row"""
        fallback = row.model_copy(update={"metadata": metadata})
        try:
            updated = await self._update_remote_row(row.id, {"metadata": metadata.to_payload()})
        except BackendError as e:
            logger.warning(f"Unable to record upload state of media {row.id}: {e}")
            metrics_collector.record_side_effect_failure("upload_markers")
            return fallback, SideEffectResult.failure(e)
        return updated or fallback, SideEffectResult.success()

    async def sync_media(
        self,
        user_id: str,
        row: MediaRow,
        respect_backoff: bool = False,
    ) -> MediaSyncResult:
        """
        Bring one media item into object storage.

        Args:
            user_id: Uploading user, part of the object path
            row: Backend row of the media item
            respect_backoff: Skip items whose retry entry is not due yet

        Returns:
            MediaSyncResult describing the outcome and the current row
        """
        if is_remote_uri(row.uri):
            await self.retry_queue.delete(row.id)
            return MediaSyncResult(row.id, UploadOutcome.ALREADY_SYNCED, row)

        if row.metadata.is_upload_blocked or (
            row.metadata.storage is not None
            and row.metadata.storage.upload_block_reason == PAYLOAD_TOO_LARGE_REASON
        ):
            await self.retry_queue.delete(row.id)
            return MediaSyncResult(row.id, UploadOutcome.BLOCKED, row)

        if respect_backoff:
            entry = await self.retry_queue.get_entry(row.id)
            if entry is not None and not self.retry_queue.is_due(entry, self.retry_queue.clock()):
                return MediaSyncResult(row.id, UploadOutcome.DEFERRED, row, retry_entry=entry)

        if not await self.files.exists(row.uri):
            await self.retry_queue.delete(row.id)
            logger.info(f"Local source of media {row.id} is gone, nothing to upload")
            return MediaSyncResult(row.id, UploadOutcome.MISSING_SOURCE, row)

        try:
            with MetricsTimer(lambda d: metrics_collector.record_upload(row.type, "attempt", d)):
                synced = await self.upload_media_assets(
                    user_id, row.project_id, row.id, row.type, row.uri, row.thumb_uri, row.metadata
                )
                updated = row
                if synced.uploaded:
                    updated = await self._update_remote_row(
                        row.id,
                        {
                            "uri": synced.uri,
                            "thumb_uri": synced.thumb_uri,
                            "metadata": synced.metadata.to_payload(),
                        },
                    ) or row.model_copy(
                        update={"uri": synced.uri, "thumb_uri": synced.thumb_uri, "metadata": synced.metadata}
                    )
        except LocalFileNotFoundError:
            await self.retry_queue.delete(row.id)
            metrics_collector.record_upload(row.type, UploadOutcome.MISSING_SOURCE.value)
            return MediaSyncResult(row.id, UploadOutcome.MISSING_SOURCE, row)
        except StoragePayloadTooLargeError as e:
            await self.retry_queue.delete(row.id)
            metadata = row.metadata.with_storage(**blocked_storage_patch(str(e)))
            blocked_row, side_effect = await self._persist_markers(row, metadata)
            metrics_collector.record_upload(row.type, UploadOutcome.BLOCKED.value)
            logger.warning(f"Media storage upload blocked (payload too large): {row.id}")
            return MediaSyncResult(
                row.id, UploadOutcome.BLOCKED, blocked_row, error=str(e), side_effects=[side_effect]
            )
        except (StorageError, BackendError) as e:
            entry = await self.retry_queue.record_failure(
                row.id, row.project_id, row.type, str(e) or "storage_upload_failed"
            )
            metadata = row.metadata.with_storage(**pending_storage_patch(entry))
            pending_row, side_effect = await self._persist_markers(row, metadata)
            metrics_collector.record_upload(row.type, UploadOutcome.PENDING.value)
            delay_seconds = max(0, (entry.next_retry_at - self.retry_queue.clock()) // 1000)
            logger.warning(
                f"Media storage upload warning for {row.id}: {e} "
                f"(queued retry in {delay_seconds}s, attempt {entry.attempts})"
            )
            return MediaSyncResult(
                row.id,
                UploadOutcome.PENDING,
                pending_row,
                retry_entry=entry,
                error=str(e),
                side_effects=[side_effect],
            )

        await self.retry_queue.delete(row.id)
        outcome = UploadOutcome.SYNCED if synced.uploaded else UploadOutcome.ALREADY_SYNCED
        metrics_collector.record_upload(row.type, outcome.value)
        return MediaSyncResult(row.id, outcome, updated)

    async def sync_media_batch(
        self, user_id: str, rows: List[MediaRow], respect_backoff: bool = True
    ) -> List[MediaSyncResult]:
        """Sync several media items concurrently; duplicate ids are handled once"""
        unique = list({row.id: row for row in rows}.values())
        return list(
            await asyncio.gather(
                *(self.sync_media(user_id, row, respect_backoff=respect_backoff) for row in unique)
            )
        )

    async def backfill_project_media(
        self, user_id: str, project_id: str, rows: List[MediaRow]
    ) -> List[MediaRow]:
        """
        Retry pending uploads found in a project content snapshot.

        Only rows uploaded by the current user are attempted, since local
        paths from other devices are meaningless here. Rows that already
        point at storage clear their retry entry.

        Returns:
            The snapshot with uploaded rows replaced by their updated versions
        """
        next_rows = list(rows)
        candidates = []
        for index, row in enumerate(next_rows):
            if row.project_id != project_id:
                continue
            if is_remote_uri(row.uri):
                await self.retry_queue.delete(row.id)
                continue
            if row.uploaded_by_user_id != user_id:
                continue
            candidates.append((index, row))

        if not candidates:
            return next_rows

        results = await self.sync_media_batch(user_id, [row for _, row in candidates])
        by_id = {result.media_id: result for result in results}
        for index, row in candidates:
            next_rows[index] = by_id[row.id].row
        return next_rows

    async def upload_thumbnail_replacement(
        self,
        user_id: str,
        project_id: str,
        media_id: str,
        thumb_uri: Optional[str],
        metadata: MediaMetadata,
    ) -> Tuple[Optional[str], MediaMetadata]:
        """
        Upload a new thumbnail under a timestamped path.

        A failed upload is logged and the local thumbnail URI kept.

        Returns:
            (thumbnail URI, metadata)
        """
        next_thumb = (thumb_uri or "").strip() or None
        if next_thumb is None:
            return None, metadata

        if is_remote_uri(next_thumb):
            return next_thumb, metadata.with_storage(
                bucket=self.storage.bucket,
                thumb_path=self.storage.parse_object_path(next_thumb),
                synced_at=utc_now_iso(),
            )

        extension = file_extension_from_uri(next_thumb, "jpg")
        object_path = build_storage_object_path(
            user_id, project_id, f"{media_id}-thumb-{int(time.time() * 1000)}", "thumbs", extension
        )
        try:
            thumb_path, public_url = await self.upload_local_file(next_thumb, object_path, "photo", extension)
        except StorageError as e:
            logger.warning(f"Thumbnail storage upload warning for media {media_id}: {e}")
            return next_thumb, metadata

        return public_url, metadata.with_storage(
            bucket=self.storage.bucket,
            thumb_path=thumb_path,
            source_thumb_uri=next_thumb,
            synced_at=utc_now_iso(),
        )

    def storage_object_paths(self, row: MediaRow) -> List[str]:
        """Object paths owned by a media item, from metadata and from its URLs"""
        storage = row.metadata.storage
        candidates = [
            storage.file_path if storage else None,
            storage.thumb_path if storage else None,
            self.storage.parse_object_path(row.uri),
            self.storage.parse_object_path(row.thumb_uri),
        ]
        paths = [c.strip() for c in candidates if isinstance(c, str) and c.strip()]
        return list(dict.fromkeys(paths))

    def remove_storage_objects(self, row: MediaRow) -> SideEffectResult:
        """Best-effort removal of a deleted media item's objects"""
        paths = self.storage_object_paths(row)
        if not paths:
            return SideEffectResult.success()
        try:
            self.storage.remove(paths)
        except StorageError as e:
            logger.warning(f"Storage delete warning for media {row.id}: {e}")
            metrics_collector.record_side_effect_failure("storage_remove")
            return SideEffectResult.failure(e)
        return SideEffectResult.success()

    def resolve_row_uris(self, row: MediaRow) -> MediaRow:
        """
        Point a remote row's URIs at storage when its metadata says where the
        objects live.

        Rows still pending or blocked keep their local URIs. Otherwise a row
        without recorded paths falls back to the deterministic object path of
        its uploader. Photos without thumbnail use the asset URI.
        """
        storage = row.metadata.storage
        bucket = (storage.bucket or "").strip() if storage and storage.bucket else ""
        bucket = bucket or self.storage.bucket
        unsettled = bool(storage and (storage.upload_pending or storage.upload_blocked))
        uploader = (row.uploaded_by_user_id or "").strip()

        uri = row.uri
        if not is_remote_uri(uri) and storage and storage.file_path:
            uri = self.storage.get_public_url(storage.file_path, bucket) or uri
        elif not is_remote_uri(uri) and not unsettled and uploader and storage and storage.synced_at:
            guessed = build_storage_object_path(
                uploader,
                row.project_id,
                row.id,
                "media",
                file_extension_from_uri(row.uri, default_extension(row.type)),
            )
            uri = self.storage.get_public_url(guessed, bucket) or uri

        thumb_uri = row.thumb_uri
        if thumb_uri and not is_remote_uri(thumb_uri) and storage and storage.thumb_path:
            thumb_uri = self.storage.get_public_url(storage.thumb_path, bucket) or thumb_uri

        if row.type == "photo" and not (thumb_uri or "").strip():
            thumb_uri = uri

        if uri == row.uri and thumb_uri == row.thumb_uri:
            return row
        return row.model_copy(update={"uri": uri, "thumb_uri": thumb_uri})
