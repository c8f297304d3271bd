"""Project, membership and public profile schemas"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from vaultsync.models.public_profile import MAX_HIGHLIGHTS
from vaultsync.schemas.common import clean_text, parse_timestamp, timestamp_or_now

PROJECT_STATUSES = ("active", "delayed", "completed", "neutral")
MEMBER_ROLES = ("owner", "manager", "worker", "client")
MEMBER_STATUSES = ("invited", "active", "removed")


def normalize_slug(value: Any) -> Optional[str]:
    """Public slugs are trimmed and lower-cased; blank means no slug"""
    if not isinstance(value, str):
        return None
    return value.strip().lower() or None


def normalize_highlights(value: Any) -> List[str]:
    """Trim highlights, drop empties and keep at most MAX_HIGHLIGHTS"""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    if not isinstance(value, list):
        return []
    cleaned = [item.strip() for item in value if isinstance(item, str) and item.strip()]
    return cleaned[:MAX_HIGHLIGHTS]


def parse_budget(value: Any) -> Optional[float]:
    """Budget arrives as a number or a numeric string"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


class ProjectRow(BaseModel):
    """Project row as returned by the backend"""

    model_config = ConfigDict(extra="ignore")

    id: str
    owner_user_id: Optional[str] = None
    organization_id: Optional[str] = None
    name: str
    client: Optional[str] = None
    location: Optional[str] = None
    status: str = "neutral"
    status_override: Optional[str] = None
    visibility: str = "private"
    public_slug: Optional[str] = None
    public_published_at: Optional[datetime] = None
    public_updated_at: Optional[datetime] = None
    progress: int = 0
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    budget: Optional[float] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> str:
        return v if v in PROJECT_STATUSES else "neutral"

    @field_validator("status_override", mode="before")
    @classmethod
    def validate_status_override(cls, v: Any) -> Optional[str]:
        return v if v in PROJECT_STATUSES else None

    @field_validator("visibility", mode="before")
    @classmethod
    def validate_visibility(cls, v: Any) -> str:
        return "public" if v == "public" else "private"

    @field_validator("public_slug", mode="before")
    @classmethod
    def validate_slug(cls, v: Any) -> Optional[str]:
        return normalize_slug(v)

    @field_validator("progress", mode="before")
    @classmethod
    def validate_progress(cls, v: Any) -> int:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return 0
        return int(v)

    @field_validator("budget", mode="before")
    @classmethod
    def validate_budget(cls, v: Any) -> Optional[float]:
        return parse_budget(v)

    @field_validator(
        "public_published_at", "public_updated_at", "start_date", "end_date", mode="before"
    )
    @classmethod
    def parse_optional_timestamps(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> datetime:
        return timestamp_or_now(v)

    @model_validator(mode="after")
    def demote_public_without_slug(self) -> "ProjectRow":
        # A public project needs a slug to be addressable
        if self.visibility == "public" and not self.public_slug:
            self.visibility = "private"
        return self


class ProjectMemberRow(BaseModel):
    """Project membership row as returned by the backend"""

    model_config = ConfigDict(extra="ignore")

    id: str
    project_id: str
    user_id: Optional[str] = None
    invited_email: Optional[str] = None
    role: str = "worker"
    status: str = "invited"
    invited_by: Optional[str] = None
    user_name_snapshot: Optional[str] = None
    user_email_snapshot: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    accepted_at: Optional[datetime] = None

    @field_validator("role", mode="before")
    @classmethod
    def validate_role(cls, v: Any) -> str:
        return v if v in MEMBER_ROLES else "worker"

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> str:
        return v if v in MEMBER_STATUSES else "invited"

    @field_validator("invited_email", "user_email_snapshot", mode="before")
    @classmethod
    def validate_email(cls, v: Any) -> Optional[str]:
        cleaned = clean_text(v)
        return cleaned.lower() if cleaned else None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> datetime:
        return timestamp_or_now(v)

    @field_validator("accepted_at", mode="before")
    @classmethod
    def parse_accepted_at(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)

    @model_validator(mode="after")
    def derive_accepted_at(self) -> "ProjectMemberRow":
        if self.accepted_at is None and self.status == "active":
            self.accepted_at = self.updated_at
        return self


class PublicProfileRow(BaseModel):
    """Public profile row as returned by the backend"""

    model_config = ConfigDict(extra="ignore")

    project_id: str
    public_title: Optional[str] = None
    summary: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    category: Optional[str] = None
    hero_media_id: Optional[str] = None
    hero_comment: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    website_url: Optional[str] = None
    highlights: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("highlights_json", "highlights"),
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator(
        "public_title",
        "summary",
        "city",
        "region",
        "category",
        "hero_media_id",
        "hero_comment",
        "contact_email",
        "contact_phone",
        "website_url",
        mode="before",
    )
    @classmethod
    def validate_text(cls, v: Any) -> Optional[str]:
        return clean_text(v)

    @field_validator("highlights", mode="before")
    @classmethod
    def validate_highlights(cls, v: Any) -> List[str]:
        return normalize_highlights(v)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> datetime:
        return timestamp_or_now(v)


class VisibilityFeedSyncSummary(BaseModel):
    """Counts reported by one public feed fan-out"""

    visibility: str
    total_media: int = 0
    inserted: int = 0
    republished: int = 0
    updated_published: int = 0
    unpublished: int = 0
    skipped_removed: int = 0


@dataclass
class SetProjectVisibilityResult:
    """Updated local project plus the fan-out summary"""

    project: Any
    sync: VisibilityFeedSyncSummary
