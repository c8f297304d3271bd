"""Storage upload retry queue entry schema"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MAX_LAST_ERROR_LENGTH = 280


class StorageUploadRetryEntry(BaseModel):
    """
    One pending upload, keyed by media id in the persisted map.

    Serialized with camelCase keys (mediaId, nextRetryAt, ...) and epoch
    millisecond timestamps.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    media_id: str = Field(..., description="Media item whose binary is pending")
    project_id: str = Field(..., description="Owning project")
    media_type: str = Field(default="photo", description="photo, video or doc")
    attempts: int = Field(default=1, ge=1)
    next_retry_at: int = Field(..., description="Epoch ms of the next allowed attempt")
    last_error: str = Field(default="upload_failed", max_length=MAX_LAST_ERROR_LENGTH)
    updated_at: int = Field(..., description="Epoch ms of the last change")

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)
