"""Unit tests for media and note mutations"""

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError

from vaultsync.errors import CrossReferenceError, NotFoundError, ValidationError

USER_ID = "11111111-1111-4111-8111-111111111111"
PUBLIC_PREFIX = "https://storage.test/storage/v1/object/public/media/"


@pytest_asyncio.fixture
async def project_id(backend, sync):
    row = backend.add("projects", owner_user_id=USER_ID, name="Harbor Lofts", status="active")
    await sync.sync_projects_and_activity()
    return row["id"]


@pytest_asyncio.fixture
async def media_id(backend, sync, project_id):
    """Uploaded photo already present locally"""
    row = backend.add(
        "media",
        project_id=project_id,
        uploaded_by_user_id=USER_ID,
        type="photo",
        uri=PUBLIC_PREFIX + "users/u/projects/p/media/a.jpg",
        metadata={"storage": {"bucket": "media", "file_path": "users/u/projects/p/media/a.jpg"}},
    )
    await sync.sync_project_content(project_id)
    return row["id"]


def activity(backend, action_type):
    return [row for row in backend.rows("activity_log") if row["action_type"] == action_type]


class TestCreateMedia:
    """Test media capture"""

    @pytest.mark.asyncio
    async def test_remote_capture_is_uploaded(self, media_service, backend, local_store, project_id, local_file):
        media = await media_service.create_media(project_id, local_file(), note=" Crack ")

        assert media.uri.startswith(PUBLIC_PREFIX)
        assert media.note == "Crack"
        remote = backend.rows("media", id=media.id)[0]
        assert remote["uri"] == media.uri
        assert remote["uploaded_by_user_id"] == USER_ID
        entry = activity(backend, "media_added")[0]
        assert entry["metadata"]["storage_synced"] is True
        assert entry["metadata"]["has_note"] is True

    @pytest.mark.asyncio
    async def test_failed_upload_still_captures(
        self, media_service, backend, storage_endpoint, retry_queue, project_id, local_file
    ):
        storage_endpoint.respond(500, "boom")

        media = await media_service.create_media(project_id, local_file("clip.mp4"), media_type="video")

        assert media.uri.startswith("file://")
        assert await retry_queue.get_entry(media.id) is not None
        assert activity(backend, "media_added")[0]["metadata"]["storage_synced"] is False

    @pytest.mark.asyncio
    async def test_public_project_publishes_capture(self, media_service, backend, project_id, local_file):
        backend.rows("projects", id=project_id)[0].update(visibility="public", public_slug="harbor")

        media = await media_service.create_media(project_id, local_file(), note="Crack")

        post = backend.rows("public_media_posts", media_id=media.id)[0]
        assert post["status"] == "published"
        assert post["caption"] == "Crack"

    @pytest.mark.asyncio
    async def test_local_project_capture(self, media_service, local_store, backend):
        project = local_store.create_project("Garage")

        media = await media_service.create_media(project.id, "file:///a.jpg", note="Crack")

        assert media.uri == "file:///a.jpg"
        assert [n.content for n in local_store.list_notes(project.id, media_id=media.id)] == ["Crack"]
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_blank_uri_rejected(self, media_service, project_id):
        with pytest.raises(ValidationError):
            await media_service.create_media(project_id, "  ")


class TestUpdateMediaNote:
    """Test the media note projection on the backend"""

    @pytest.mark.asyncio
    async def test_add_change_clear(self, media_service, backend, local_store, project_id, media_id):
        await media_service.update_media_note(media_id, " Crack ")
        assert [n["content"] for n in backend.rows("notes", media_id=media_id)] == ["Crack"]
        assert local_store.get_media(media_id).note == "Crack"

        await media_service.update_media_note(media_id, "Wider crack")
        assert [n["content"] for n in backend.rows("notes", media_id=media_id)] == ["Wider crack"]
        assert local_store.get_media(media_id).note == "Wider crack"

        await media_service.update_media_note(media_id, "")
        assert backend.rows("notes", media_id=media_id) == []
        assert backend.rows("media", id=media_id)[0]["note"] is None
        assert local_store.get_media(media_id).note is None
        assert local_store.list_notes(project_id, media_id=media_id) == []

        types = [row["action_type"] for row in backend.rows("activity_log", reference_id=media_id)]
        assert types == ["note_added", "note_updated", "note_removed"]

    @pytest.mark.asyncio
    async def test_missing_media(self, media_service):
        with pytest.raises(NotFoundError):
            await media_service.update_media_note("55555555-5555-4555-8555-555555555555", "x")


class TestMoveAndThumbnail:
    """Test folder moves and thumbnail replacement"""

    @pytest.mark.asyncio
    async def test_move_to_folder_and_back(
        self, media_service, folder_service, backend, local_store, project_id, media_id
    ):
        folder = await folder_service.create_folder(project_id, "Framing")

        await media_service.move_media_to_folder(media_id, folder.id)
        assert local_store.get_media(media_id).folder_id == folder.id

        await media_service.move_media_to_folder(media_id, None)
        assert local_store.get_media(media_id).folder_id is None
        moves = activity(backend, "media_moved")
        assert moves[0]["metadata"] == {"from_folder_id": None, "to_folder_id": folder.id}
        assert moves[1]["metadata"] == {"from_folder_id": folder.id, "to_folder_id": None}

    @pytest.mark.asyncio
    async def test_local_thumbnail_is_uploaded(
        self, media_service, backend, local_store, storage_endpoint, media_id, local_file
    ):
        await media_service.update_media_thumbnail(media_id, local_file("thumb.jpg"))

        thumb_uri = local_store.get_media(media_id).thumb_uri
        assert thumb_uri.startswith(PUBLIC_PREFIX)
        assert f"/thumbs/{media_id}-thumb-" in thumb_uri
        assert backend.rows("media", id=media_id)[0]["metadata"]["storage"]["file_path"]

    @pytest.mark.asyncio
    async def test_failed_thumbnail_upload_keeps_local_uri(
        self, media_service, local_store, storage_endpoint, mock_s3_client, media_id, local_file
    ):
        storage_endpoint.respond(500, "boom")
        mock_s3_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "ServiceUnavailable", "Message": "down"}}, "PutObject"
        )
        thumb = local_file("thumb.jpg")

        await media_service.update_media_thumbnail(media_id, thumb)

        assert local_store.get_media(media_id).thumb_uri == thumb


class TestDeleteMedia:
    """Test media deletion"""

    @pytest.mark.asyncio
    async def test_remote_delete(self, media_service, backend, local_store, mock_s3_client, project_id, media_id):
        backend.add("notes", project_id=project_id, media_id=media_id, content="Crack")

        await media_service.delete_media(media_id)

        assert backend.rows("media", id=media_id) == []
        assert backend.rows("notes", media_id=media_id) == []
        assert local_store.get_media(media_id) is None
        deleted = mock_s3_client.delete_objects.call_args.kwargs["Delete"]["Objects"]
        assert deleted == [{"Key": "users/u/projects/p/media/a.jpg"}]
        assert len(activity(backend, "media_deleted")) == 1

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_block_delete(
        self, media_service, backend, local_store, mock_s3_client, media_id
    ):
        mock_s3_client.delete_objects.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "DeleteObjects"
        )

        await media_service.delete_media(media_id)

        assert backend.rows("media", id=media_id) == []
        assert local_store.get_media(media_id) is None

    @pytest.mark.asyncio
    async def test_local_delete_clears_retry_entry(self, media_service, local_store, retry_queue):
        project = local_store.create_project("Garage")
        media = local_store.create_media(project.id, "file:///a.jpg")
        await retry_queue.record_failure(media.id, project.id, "photo", "boom")

        await media_service.delete_media(media.id)

        assert local_store.get_media(media.id) is None
        assert await retry_queue.get_entry(media.id) is None


class TestNoteService:
    """Test note mutations"""

    @pytest.mark.asyncio
    async def test_linked_note_updates_media(self, note_service, backend, local_store, project_id, media_id):
        note = await note_service.create_note(project_id, " Crack ", title=" Slab ", media_id=media_id)

        assert note.content == "Crack"
        assert note.title == "Slab"
        assert backend.rows("media", id=media_id)[0]["note"] == "Crack"
        assert local_store.get_media(media_id).note == "Crack"
        entry = activity(backend, "note_added")[0]
        assert entry["reference_id"] == media_id
        assert entry["metadata"]["note_scope"] == "media"

    @pytest.mark.asyncio
    async def test_project_note(self, note_service, backend, project_id):
        note = await note_service.create_note(project_id, "Site walk done")

        assert note.media_id is None
        assert activity(backend, "note_added")[0]["metadata"]["note_scope"] == "project"

    @pytest.mark.asyncio
    async def test_media_of_other_project_rejected(self, note_service, backend, project_id):
        other = backend.add("media", project_id="44444444-4444-4444-8444-444444444444", uri="https://cdn.test/a.jpg")

        with pytest.raises(CrossReferenceError):
            await note_service.create_note(project_id, "x", media_id=other["id"])
        assert backend.rows("notes") == []

    @pytest.mark.asyncio
    async def test_local_media_id_rejected_for_remote_project(self, note_service, project_id):
        with pytest.raises(CrossReferenceError):
            await note_service.create_note(project_id, "x", media_id="1700000000000-abcdefgh")

    @pytest.mark.asyncio
    async def test_blank_content_rejected(self, note_service, project_id):
        with pytest.raises(ValidationError):
            await note_service.create_note(project_id, " ")

    @pytest.mark.asyncio
    async def test_update_note(self, note_service, backend, local_store, project_id, media_id):
        note = await note_service.create_note(project_id, "Crack", media_id=media_id)

        updated = await note_service.update_note(note.id, "Wider crack", title="Slab")

        assert updated.content == "Wider crack"
        assert local_store.get_media(media_id).note == "Wider crack"
        assert len(activity(backend, "note_updated")) == 1

    @pytest.mark.asyncio
    async def test_update_missing_note(self, note_service):
        assert await note_service.update_note("77777777-7777-4777-8777-777777777777", "x") is None

    @pytest.mark.asyncio
    async def test_delete_falls_back_to_previous_note(
        self, note_service, backend, local_store, project_id, media_id
    ):
        backend.add(
            "notes", project_id=project_id, media_id=media_id, content="older", updated_at="2024-01-01T00:00:00Z"
        )
        newer = backend.add(
            "notes", project_id=project_id, media_id=media_id, content="newer", updated_at="2024-02-01T00:00:00Z"
        )

        await note_service.delete_note(newer["id"])

        assert backend.rows("media", id=media_id)[0]["note"] == "older"
        assert local_store.get_media(media_id).note == "older"
        assert [n.content for n in local_store.list_notes(project_id)] == ["older"]
        assert len(activity(backend, "note_removed")) == 1
