"""Unit tests for local store CRUD"""

import pytest

from vaultsync.errors import NotFoundError, ValidationError
from vaultsync.models import MAX_HIGHLIGHTS


@pytest.fixture
def project(local_store):
    return local_store.create_project("  Harbor Lofts ", client=" ACME ", location="")


class TestProjects:
    """Test local project operations"""

    def test_create_project_trims_fields(self, project):
        assert project.name == "Harbor Lofts"
        assert project.client == "ACME"
        assert project.location is None
        assert project.visibility == "private"
        assert project.start_date is not None

    def test_blank_name_rejected(self, local_store):
        with pytest.raises(ValidationError):
            local_store.create_project("   ")

    def test_update_project(self, local_store, project):
        updated = local_store.update_project(project.id, name="Harbor Lofts II", budget=125000.0)

        assert updated.name == "Harbor Lofts II"
        assert updated.budget == 125000.0

    def test_update_unknown_field_rejected(self, local_store, project):
        with pytest.raises(ValidationError):
            local_store.update_project(project.id, visibility="public")

    def test_search_matches_name_client_location(self, local_store, project):
        local_store.create_project("Garage", location="Springfield")

        assert [p.id for p in local_store.list_projects("acme")] == [project.id]
        assert len(local_store.list_projects("spring")) == 1
        assert len(local_store.list_projects()) == 2

    def test_publish_requires_slug(self, local_store, project):
        with pytest.raises(ValidationError):
            local_store.set_project_visibility(project.id, "public")

    def test_publish_keeps_first_publication_time(self, local_store, project):
        published = local_store.set_project_visibility(project.id, "public", " Harbor-Lofts ")
        local_store.set_project_visibility(project.id, "private")
        republished = local_store.set_project_visibility(project.id, "public")

        assert published.public_slug == "harbor-lofts"
        assert republished.public_slug == "harbor-lofts"
        assert republished.public_published_at == published.public_published_at

    def test_visibility_of_missing_project(self, local_store):
        with pytest.raises(NotFoundError):
            local_store.set_project_visibility("nope", "private")

    def test_completion_state(self, local_store, project):
        completed = local_store.set_project_completion_state(project.id, True)
        assert completed.effective_status == "completed"

        reopened = local_store.set_project_completion_state(project.id, False)
        assert reopened.effective_status == reopened.status

    def test_delete_project_cascades(self, local_store, project):
        media = local_store.create_media(project.id, "file:///a.jpg", note="Crack")
        local_store.create_activity(project.id, "media_added", media.id)

        local_store.delete_project(project.id)

        assert local_store.get_project(project.id) is None
        assert local_store.get_media(media.id) is None
        assert local_store.list_notes(project.id) == []
        assert local_store.list_activity(project.id) == []


class TestPublicProfile:
    """Test local public profile upserts"""

    def test_upsert_normalizes_fields(self, local_store, project):
        profile = local_store.upsert_public_profile(
            project.id,
            summary="  Four storeys ",
            city="",
            highlights=[" a ", "", "b"] + [f"h{i}" for i in range(10)],
        )

        assert profile.summary == "Four storeys"
        assert profile.city is None
        assert profile.highlights[:2] == ["a", "b"]
        assert len(profile.highlights) == MAX_HIGHLIGHTS

    def test_upsert_updates_existing(self, local_store, project):
        local_store.upsert_public_profile(project.id, summary="first")
        local_store.upsert_public_profile(project.id, region="North")

        profile = local_store.get_public_profile(project.id)
        assert profile.summary == "first"
        assert profile.region == "North"

    def test_unknown_field_rejected(self, local_store, project):
        with pytest.raises(ValidationError):
            local_store.upsert_public_profile(project.id, slug="x")


class TestFolders:
    """Test local folders"""

    def test_delete_folder_moves_media_to_root(self, local_store, project):
        folder = local_store.create_folder(project.id, " Framing ")
        media = local_store.create_media(project.id, "file:///a.jpg", folder_id=folder.id)

        local_store.delete_folder(folder.id)

        assert local_store.get_folder(folder.id) is None
        assert local_store.get_media(media.id).folder_id is None

    def test_rename_folder(self, local_store, project):
        folder = local_store.create_folder(project.id, "Framing")
        assert local_store.rename_folder(folder.id, " Drywall ").name == "Drywall"

    def test_folder_requires_project(self, local_store):
        with pytest.raises(NotFoundError):
            local_store.create_folder("nope", "Framing")


class TestMediaAndNotes:
    """Test local media and the media note projection"""

    def test_photo_defaults_thumbnail_to_uri(self, local_store, project):
        photo = local_store.create_media(project.id, " file:///a.jpg ")
        video = local_store.create_media(project.id, "file:///b.mp4", media_type="video")
        unknown = local_store.create_media(project.id, "file:///c.bin", media_type="hologram")

        assert photo.uri == "file:///a.jpg"
        assert photo.thumb_uri == "file:///a.jpg"
        assert video.thumb_uri is None
        assert unknown.type == "photo"

    def test_media_filters(self, local_store, project):
        local_store.create_media(project.id, "file:///a.jpg")
        local_store.create_media(project.id, "file:///b.mp4", media_type="video")

        assert len(local_store.list_media(project.id)) == 2
        assert [m.type for m in local_store.list_media(project.id, media_type="video")] == ["video"]

    def test_create_media_with_note_creates_linked_note(self, local_store, project):
        media = local_store.create_media(project.id, "file:///a.jpg", note=" Crack in slab ")

        notes = local_store.list_notes(project.id, media_id=media.id)
        assert [n.content for n in notes] == ["Crack in slab"]
        assert local_store.get_media(media.id).note == "Crack in slab"

    def test_update_media_note_round_trip(self, local_store, project):
        """Test set, change and clear keep exactly one linked note in step"""
        media = local_store.create_media(project.id, "file:///a.jpg")

        local_store.update_media_note(media.id, "first")
        local_store.update_media_note(media.id, "second")
        assert len(local_store.list_notes(project.id, media_id=media.id)) == 1
        assert local_store.get_media(media.id).note == "second"

        local_store.update_media_note(media.id, "   ")
        assert local_store.list_notes(project.id, media_id=media.id) == []
        assert local_store.get_media(media.id).note is None

    def test_deleting_note_falls_back_to_previous(self, local_store, project):
        media = local_store.create_media(project.id, "file:///a.jpg")
        first = local_store.create_note(project.id, "first", media_id=media.id)
        second = local_store.create_note(project.id, "second", media_id=media.id)
        assert local_store.get_media(media.id).note == "second"

        local_store.delete_note(second.id)

        assert local_store.get_media(media.id).note == first.content

    def test_note_for_media_of_other_project_rejected(self, local_store, project):
        other = local_store.create_project("Garage")
        media = local_store.create_media(other.id, "file:///a.jpg")

        with pytest.raises(ValidationError):
            local_store.create_note(project.id, "x", media_id=media.id)

    def test_blank_note_rejected(self, local_store, project):
        with pytest.raises(ValidationError):
            local_store.create_note(project.id, "  ")

    def test_delete_media_removes_linked_notes(self, local_store, project):
        media = local_store.create_media(project.id, "file:///a.jpg", note="Crack")

        deleted = local_store.delete_media(media.id)

        assert deleted.id == media.id
        assert local_store.list_notes(project.id) == []


class TestMembers:
    """Test local memberships"""

    def test_upsert_member_reuses_live_row(self, local_store, project):
        first = local_store.upsert_member(project.id, "user-1", role="manager")
        second = local_store.upsert_member(project.id, "user-1", role="client")

        assert first.id == second.id
        assert second.role == "client"
        assert second.accepted_at is not None

    def test_removed_member_is_not_revived(self, local_store, project):
        first = local_store.upsert_member(project.id, "user-1")
        local_store.remove_member(project.id, first.id)

        again = local_store.upsert_member(project.id, "user-1")

        assert again.id != first.id
        assert local_store.get_member(project.id, first.id).status == "removed"
        assert [m.id for m in local_store.list_members(project.id)] == [again.id]

    def test_member_of_other_project_not_returned(self, local_store, project):
        other = local_store.create_project("Garage")
        member = local_store.upsert_member(other.id, "user-1")

        assert local_store.get_member(project.id, member.id) is None
        assert local_store.set_member_role(project.id, member.id, "client") is None


class TestActivity:
    """Test local activity entries"""

    def test_activity_crud(self, local_store, project):
        entry = local_store.create_activity(project.id, " media_added ", "ref", {"type": "photo"})
        assert entry.action_type == "media_added"

        updated = local_store.update_activity(entry.id, reference_id="  ", metadata=None)
        assert updated.reference_id is None
        assert updated.activity_metadata is None

        local_store.delete_activity(entry.id)
        assert local_store.get_activity(entry.id) is None

    def test_unknown_activity_field_rejected(self, local_store, project):
        entry = local_store.create_activity(project.id, "media_added")
        with pytest.raises(ValidationError):
            local_store.update_activity(entry.id, actor_user_id="x")

    def test_missing_action_type_stored_blank(self, local_store, project):
        entry = local_store.create_activity(project.id, None)

        assert local_store.get_activity(entry.id).action_type == ""
