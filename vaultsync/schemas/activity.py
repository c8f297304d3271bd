"""Activity log schemas"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vaultsync.schemas.common import timestamp_or_now, to_metadata_payload


class ActivityRow(BaseModel):
    """Activity log row as returned by the backend"""

    model_config = ConfigDict(extra="ignore")

    id: str
    project_id: str
    action_type: str
    reference_id: Optional[str] = None
    actor_user_id: Optional[str] = None
    actor_name_snapshot: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("metadata", mode="before")
    @classmethod
    def validate_metadata(cls, v: Any) -> Optional[Dict[str, Any]]:
        if v is None:
            return None
        return to_metadata_payload(v) or None

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, v: Any) -> datetime:
        return timestamp_or_now(v)
