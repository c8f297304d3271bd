"""Unit tests for media asset uploads"""

import pytest
from botocore.exceptions import ClientError

from vaultsync.errors import BackendError
from vaultsync.schemas import MediaRow
from vaultsync.services.media_uploader import UploadOutcome

USER_ID = "11111111-1111-4111-8111-111111111111"
OTHER_USER_ID = "22222222-2222-4222-8222-222222222222"
PROJECT_ID = "33333333-3333-4333-8333-333333333333"
PUBLIC_PREFIX = "https://storage.test/storage/v1/object/public/media/"


def seed_media(backend, uri, media_type="photo", thumb_uri=None, uploaded_by=USER_ID, metadata=None):
    row = backend.add(
        "media",
        project_id=PROJECT_ID,
        uploaded_by_user_id=uploaded_by,
        type=media_type,
        uri=uri,
        thumb_uri=thumb_uri,
        note=None,
        metadata=metadata or {},
    )
    return MediaRow.model_validate(row)


class TestSyncMedia:
    """Test syncing one media item"""

    @pytest.mark.asyncio
    async def test_local_photo_is_uploaded(self, uploader, backend, storage_endpoint, local_file, retry_queue):
        """Test a local photo lands in storage and the backend row points at it"""
        row = seed_media(backend, local_file("site.jpg"))

        result = await uploader.sync_media(USER_ID, row)

        expected_path = f"users/{USER_ID}/projects/{PROJECT_ID}/media/{row.id}.jpg"
        assert result.outcome == UploadOutcome.SYNCED
        assert result.row.uri == PUBLIC_PREFIX + expected_path
        assert result.row.thumb_uri == result.row.uri
        storage = result.row.metadata.storage
        assert storage.file_path == expected_path
        assert storage.thumb_path == expected_path
        assert storage.bucket == "media"
        assert storage.source_uri == row.uri
        assert storage.synced_at is not None
        assert storage.upload_pending is False
        assert backend.rows("media", id=row.id)[0]["uri"] == result.row.uri
        assert len(storage_endpoint.requests) == 1
        assert await retry_queue.get_entry(row.id) is None

    @pytest.mark.asyncio
    async def test_sync_is_idempotent(self, uploader, backend, storage_endpoint, local_file):
        """Test a second sync of an uploaded row does not upload again"""
        row = seed_media(backend, local_file("site.jpg"))

        first = await uploader.sync_media(USER_ID, row)
        second = await uploader.sync_media(USER_ID, first.row)

        assert second.outcome == UploadOutcome.ALREADY_SYNCED
        assert second.row == first.row
        assert len(storage_endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_extra_metadata_is_preserved(self, uploader, backend, local_file):
        row = seed_media(backend, local_file("site.jpg"), metadata={"capture_kind": "walkthrough"})

        result = await uploader.sync_media(USER_ID, row)

        assert result.row.metadata.get_text("capture_kind") == "walkthrough"

    @pytest.mark.asyncio
    async def test_separate_local_thumbnail_is_uploaded(self, uploader, backend, storage_endpoint, local_file):
        row = seed_media(backend, local_file("clip.mp4"), media_type="video", thumb_uri=local_file("poster.png"))

        result = await uploader.sync_media(USER_ID, row)

        thumb_path = f"users/{USER_ID}/projects/{PROJECT_ID}/thumbs/{row.id}-thumb.png"
        assert result.outcome == UploadOutcome.SYNCED
        assert result.row.thumb_uri == PUBLIC_PREFIX + thumb_path
        assert result.row.metadata.storage.thumb_path == thumb_path
        assert len(storage_endpoint.requests) == 2

    @pytest.mark.asyncio
    async def test_video_without_thumbnail_keeps_none(self, uploader, backend, local_file):
        row = seed_media(backend, local_file("clip.mp4"), media_type="video")

        result = await uploader.sync_media(USER_ID, row)

        assert result.row.thumb_uri is None
        assert result.row.metadata.storage.thumb_path is None

    @pytest.mark.asyncio
    async def test_payload_too_large_blocks_without_retry(
        self, uploader, backend, storage_endpoint, local_file, retry_queue
    ):
        """Test a 413 marks the row blocked and never queues a retry"""
        storage_endpoint.respond(413, "Payload too large")
        row = seed_media(backend, local_file("huge.mov"), media_type="video")

        result = await uploader.sync_media(USER_ID, row)

        assert result.outcome == UploadOutcome.BLOCKED
        assert await retry_queue.get_entry(row.id) is None
        storage = result.row.metadata.storage
        assert storage.upload_blocked is True
        assert storage.upload_block_reason == "payload_too_large"
        assert storage.upload_pending is False
        assert backend.rows("media", id=row.id)[0]["metadata"]["storage"]["upload_blocked"] is True

        again = await uploader.sync_media(USER_ID, result.row)
        assert again.outcome == UploadOutcome.BLOCKED
        assert len(storage_endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_transient_failure_is_queued(
        self, uploader, backend, storage_endpoint, local_file, retry_queue, mock_s3_client, clock
    ):
        """Test a failed video upload is queued and marked pending, with no fallback"""
        storage_endpoint.respond(500, "boom")
        row = seed_media(backend, local_file("clip.mp4"), media_type="video")

        result = await uploader.sync_media(USER_ID, row)

        assert result.outcome == UploadOutcome.PENDING
        assert result.retry_entry.attempts == 1
        assert result.retry_entry.next_retry_at == clock.now + 15_000
        assert result.row.metadata.storage.upload_pending is True
        assert result.row.metadata.storage.upload_attempts == 1
        assert result.row.uri == row.uri
        assert (await retry_queue.get_entry(row.id)).project_id == PROJECT_ID
        mock_s3_client.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_small_photo_falls_back_to_in_memory_upload(
        self, uploader, backend, storage_endpoint, local_file, mock_s3_client
    ):
        storage_endpoint.respond(500, "boom")
        row = seed_media(backend, local_file("site.jpg", size=512))

        result = await uploader.sync_media(USER_ID, row)

        assert result.outcome == UploadOutcome.SYNCED
        mock_s3_client.put_object.assert_called_once()
        assert mock_s3_client.put_object.call_args.kwargs["Body"] == b"x" * 512

    @pytest.mark.asyncio
    async def test_large_photo_does_not_fall_back(
        self, uploader, backend, storage_endpoint, local_file, mock_s3_client
    ):
        """Test photos above the fallback cap are queued instead"""
        storage_endpoint.respond(500, "boom")
        row = seed_media(backend, local_file("site.jpg", size=2048))

        result = await uploader.sync_media(USER_ID, row)

        assert result.outcome == UploadOutcome.PENDING
        mock_s3_client.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_source_clears_retry_entry(self, uploader, backend, retry_queue, storage_endpoint):
        row = seed_media(backend, "file:///nowhere/site.jpg")
        await retry_queue.record_failure(row.id, PROJECT_ID, "photo", "boom")

        result = await uploader.sync_media(USER_ID, row)

        assert result.outcome == UploadOutcome.MISSING_SOURCE
        assert await retry_queue.get_entry(row.id) is None
        assert storage_endpoint.requests == []

    @pytest.mark.asyncio
    async def test_remote_row_is_already_synced(self, uploader, backend, retry_queue):
        row = seed_media(backend, PUBLIC_PREFIX + "users/u/projects/p/media/m.jpg")
        await retry_queue.record_failure(row.id, PROJECT_ID, "photo", "boom")

        result = await uploader.sync_media(USER_ID, row)

        assert result.outcome == UploadOutcome.ALREADY_SYNCED
        assert await retry_queue.get_entry(row.id) is None

    @pytest.mark.asyncio
    async def test_backoff_defers_until_due(self, uploader, backend, local_file, retry_queue, clock, storage_endpoint):
        """Test an entry that is not due yet is skipped when honoring backoff"""
        row = seed_media(backend, local_file("site.jpg"))
        await retry_queue.record_failure(row.id, PROJECT_ID, "photo", "boom")

        deferred = await uploader.sync_media(USER_ID, row, respect_backoff=True)
        assert deferred.outcome == UploadOutcome.DEFERRED
        assert storage_endpoint.requests == []

        clock.advance(15)
        synced = await uploader.sync_media(USER_ID, row, respect_backoff=True)
        assert synced.outcome == UploadOutcome.SYNCED
        assert await retry_queue.get_entry(row.id) is None

    @pytest.mark.asyncio
    async def test_marker_write_failure_is_reported(self, uploader, backend, storage_endpoint, local_file):
        """Test a failed metadata write does not change the outcome"""
        storage_endpoint.respond(500, "boom")
        row = seed_media(backend, local_file("clip.mp4"), media_type="video")
        backend.fail("update", "media")

        result = await uploader.sync_media(USER_ID, row)

        assert result.outcome == UploadOutcome.PENDING
        assert result.side_effects[0].ok is False
        assert result.row.metadata.storage.upload_pending is True

    @pytest.mark.asyncio
    async def test_backend_failure_after_upload_is_queued(self, uploader, backend, local_file, retry_queue):
        row = seed_media(backend, local_file("site.jpg"))
        backend.fail("update", "media", BackendError("Unable to update media", status_code=503))

        result = await uploader.sync_media(USER_ID, row)

        assert result.outcome == UploadOutcome.PENDING
        assert (await retry_queue.get_entry(row.id)).last_error == "Unable to update media"


class TestBackfill:
    """Test the project content backfill"""

    @pytest.mark.asyncio
    async def test_only_own_local_rows_are_attempted(self, uploader, backend, local_file, storage_endpoint):
        mine = seed_media(backend, local_file("mine.jpg"))
        theirs = seed_media(backend, local_file("theirs.jpg"), uploaded_by=OTHER_USER_ID)
        remote = seed_media(backend, PUBLIC_PREFIX + "users/u/projects/p/media/r.jpg")

        rows = await uploader.backfill_project_media(USER_ID, PROJECT_ID, [mine, theirs, remote])

        assert rows[0].uri.startswith(PUBLIC_PREFIX)
        assert rows[1] == theirs
        assert rows[2] == remote
        assert len(storage_endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_duplicate_rows_upload_once(self, uploader, backend, local_file, storage_endpoint):
        row = seed_media(backend, local_file("site.jpg"))

        results = await uploader.sync_media_batch(USER_ID, [row, row])

        assert len(results) == 1
        assert len(storage_endpoint.requests) == 1


class TestThumbnailReplacement:
    """Test thumbnail replacement uploads"""

    @pytest.mark.asyncio
    async def test_local_thumbnail_gets_timestamped_path(self, uploader, local_file):
        row_metadata = MediaRow(id="m1", project_id=PROJECT_ID, uri="https://x.test/a.jpg").metadata

        thumb, metadata = await uploader.upload_thumbnail_replacement(
            USER_ID, PROJECT_ID, "m1", local_file("new-thumb.jpg"), row_metadata
        )

        assert thumb.startswith(PUBLIC_PREFIX + f"users/{USER_ID}/projects/{PROJECT_ID}/thumbs/m1-thumb-")
        assert metadata.storage.thumb_path in thumb

    @pytest.mark.asyncio
    async def test_failed_upload_keeps_local_uri(self, uploader, storage_endpoint, local_file):
        storage_endpoint.respond(500, "boom")
        local_thumb = local_file("new-thumb.jpg", size=4096)
        metadata = MediaRow(id="m1", project_id=PROJECT_ID, uri="https://x.test/a.jpg").metadata

        thumb, next_metadata = await uploader.upload_thumbnail_replacement(
            USER_ID, PROJECT_ID, "m1", local_thumb, metadata
        )

        assert thumb == local_thumb
        assert next_metadata is metadata

    @pytest.mark.asyncio
    async def test_cleared_thumbnail(self, uploader):
        metadata = MediaRow(id="m1", project_id=PROJECT_ID, uri="https://x.test/a.jpg").metadata
        assert await uploader.upload_thumbnail_replacement(USER_ID, PROJECT_ID, "m1", "  ", metadata) == (
            None,
            metadata,
        )


class TestResolveRowUris:
    """Test URI resolution of remote rows"""

    def test_recorded_file_path_wins(self, uploader):
        row = MediaRow(
            id="m1",
            project_id=PROJECT_ID,
            uri="file:///device/site.jpg",
            metadata={"storage": {"file_path": "users/u/projects/p/media/m1.jpg"}},
        )

        resolved = uploader.resolve_row_uris(row)

        assert resolved.uri == PUBLIC_PREFIX + "users/u/projects/p/media/m1.jpg"
        assert resolved.thumb_uri == resolved.uri

    def test_pending_row_keeps_local_uri(self, uploader):
        row = MediaRow(
            id="m1",
            project_id=PROJECT_ID,
            uploaded_by_user_id=USER_ID,
            uri="file:///device/site.jpg",
            thumb_uri="file:///device/site.jpg",
            metadata={"storage": {"upload_pending": True, "synced_at": "2024-01-01T00:00:00Z"}},
        )

        assert uploader.resolve_row_uris(row) == row

    def test_synced_row_without_path_uses_uploader_path(self, uploader):
        row = MediaRow(
            id="m1",
            project_id=PROJECT_ID,
            uploaded_by_user_id=USER_ID,
            type="video",
            uri="file:///device/clip.mov",
            metadata={"storage": {"synced_at": "2024-01-01T00:00:00Z"}},
        )

        resolved = uploader.resolve_row_uris(row)

        assert resolved.uri == PUBLIC_PREFIX + f"users/{USER_ID}/projects/{PROJECT_ID}/media/m1.mov"
        assert resolved.thumb_uri is None


class TestStorageCleanup:
    """Test object removal for deleted media"""

    def test_paths_from_metadata_and_urls(self, uploader):
        row = MediaRow(
            id="m1",
            project_id=PROJECT_ID,
            uri=PUBLIC_PREFIX + "users/u/projects/p/media/m1.jpg",
            thumb_uri=PUBLIC_PREFIX + "users/u/projects/p/thumbs/m1-thumb.jpg",
            metadata={"storage": {"file_path": "users/u/projects/p/media/m1.jpg"}},
        )

        assert uploader.storage_object_paths(row) == [
            "users/u/projects/p/media/m1.jpg",
            "users/u/projects/p/thumbs/m1-thumb.jpg",
        ]

    def test_remove_failure_is_reported(self, uploader, mock_s3_client):
        mock_s3_client.delete_objects.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "DeleteObjects"
        )
        row = MediaRow(id="m1", project_id=PROJECT_ID, uri=PUBLIC_PREFIX + "a/m1.jpg")

        result = uploader.remove_storage_objects(row)

        assert result.ok is False
        assert result.error
