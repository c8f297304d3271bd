"""Folder, media and note schemas"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from vaultsync.schemas.common import timestamp_or_now, to_metadata_payload

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("photo", "video", "doc")


def normalize_media_type(value: Any) -> str:
    """Unknown media types are treated as photos"""
    return value if value in MEDIA_TYPES else "photo"


class StorageMetadata(BaseModel):
    """Object storage sub-record embedded in media metadata"""

    model_config = ConfigDict(extra="allow")

    bucket: Optional[str] = None
    file_path: Optional[str] = None
    thumb_path: Optional[str] = None
    source_uri: Optional[str] = None
    source_thumb_uri: Optional[str] = None
    synced_at: Optional[str] = None
    upload_pending: Optional[bool] = None
    upload_attempts: Optional[int] = None
    upload_next_retry_at: Optional[str] = None
    upload_last_error: Optional[str] = None
    upload_last_error_at: Optional[str] = None
    upload_blocked: Optional[bool] = None
    upload_block_reason: Optional[str] = None
    upload_blocked_at: Optional[str] = None


class MediaMetadata(BaseModel):
    """
    Typed view of the media metadata bag.

    Only `storage` is interpreted; every other key is kept as an extra field
    and written back unchanged.
    """

    model_config = ConfigDict(extra="allow")

    storage: Optional[StorageMetadata] = None

    @classmethod
    def from_raw(cls, value: Any) -> "MediaMetadata":
        """Build metadata from whatever the backend or caller handed over"""
        if isinstance(value, MediaMetadata):
            return value
        payload = to_metadata_payload(value)
        storage = payload.get("storage")
        if storage is not None and not isinstance(storage, dict):
            payload.pop("storage")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Malformed storage metadata, keeping it untyped: {e}")
            storage_raw = payload.pop("storage", None) or {}
            metadata = cls.model_validate(payload)
            metadata.storage = StorageMetadata.model_construct(**storage_raw)
            return metadata

    def with_storage(self, **patch: Any) -> "MediaMetadata":
        """Return a copy with the storage sub-record patched"""
        existing = self.storage.model_dump(exclude_unset=True) if self.storage else {}
        payload = self.to_payload()
        payload["storage"] = {**existing, **patch}
        return MediaMetadata.model_validate(payload)

    def to_payload(self) -> Dict[str, Any]:
        """JSON object for the backend and the local store"""
        return self.model_dump(mode="json", exclude_unset=True)

    @property
    def is_upload_blocked(self) -> bool:
        return bool(self.storage and self.storage.upload_blocked)

    @property
    def synced_at(self) -> Optional[str]:
        return self.storage.synced_at if self.storage else None

    def get_text(self, key: str) -> Optional[str]:
        """Trimmed, lower-cased string value of an extra key"""
        value = (self.model_extra or {}).get(key)
        if isinstance(value, str):
            return value.strip().lower() or None
        return None


class FolderRow(BaseModel):
    """Folder row as returned by the backend"""

    model_config = ConfigDict(extra="ignore")

    id: str
    project_id: str
    name: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, v: Any) -> datetime:
        return timestamp_or_now(v)


class MediaRow(BaseModel):
    """Media row as returned by the backend"""

    model_config = ConfigDict(extra="ignore")

    id: str
    project_id: str
    folder_id: Optional[str] = None
    uploaded_by_user_id: Optional[str] = None
    type: str = "photo"
    uri: str
    thumb_uri: Optional[str] = None
    note: Optional[str] = None
    metadata: MediaMetadata = Field(default_factory=MediaMetadata)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v: Any) -> str:
        return normalize_media_type(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def validate_metadata(cls, v: Any) -> MediaMetadata:
        return MediaMetadata.from_raw(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, v: Any) -> datetime:
        return timestamp_or_now(v)


class NoteRow(BaseModel):
    """Note row as returned by the backend"""

    model_config = ConfigDict(extra="ignore")

    id: str
    project_id: str
    media_id: Optional[str] = None
    author_user_id: Optional[str] = None
    title: Optional[str] = None
    content: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> datetime:
        return timestamp_or_now(v)
