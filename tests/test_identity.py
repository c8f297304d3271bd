"""Unit tests for id classification"""

from vaultsync.services.identity import LocalId, RemoteId, classify_id, is_remote_id, new_local_id


class TestClassifyId:
    """Test local vs backend id classification"""

    def test_uuid_is_remote(self):
        """Test a v4 UUID is a backend id"""
        assert is_remote_id("3f2b8c1e-9a4d-4e7f-8b21-0c5d6e7f8a9b") is True

    def test_surrounding_whitespace_is_ignored(self):
        """Test the value is trimmed before matching"""
        result = classify_id("  3f2b8c1e-9a4d-4e7f-8b21-0c5d6e7f8a9b ")
        assert result == RemoteId("3f2b8c1e-9a4d-4e7f-8b21-0c5d6e7f8a9b")
        assert result.is_remote is True

    def test_uppercase_uuid_is_remote(self):
        assert is_remote_id("3F2B8C1E-9A4D-4E7F-8B21-0C5D6E7F8A9B") is True

    def test_invalid_version_is_local(self):
        """Test version digits outside 1-5 do not count as backend ids"""
        assert is_remote_id("3f2b8c1e-9a4d-6e7f-8b21-0c5d6e7f8a9b") is False

    def test_invalid_variant_is_local(self):
        assert is_remote_id("3f2b8c1e-9a4d-4e7f-cb21-0c5d6e7f8a9b") is False

    def test_empty_and_missing_ids_are_local(self):
        """Test classification never raises"""
        assert classify_id(None) == LocalId("")
        assert classify_id("") == LocalId("")
        assert classify_id("project-1").is_remote is False

    def test_minted_ids_are_local(self):
        """Test ids minted on the device are never mistaken for backend ids"""
        minted = {new_local_id() for _ in range(20)}
        assert len(minted) == 20
        assert not any(is_remote_id(value) for value in minted)
