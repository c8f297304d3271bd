"""Authenticated actor schemas"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class AuthUser(BaseModel):
    """The signed-in user as reported by the backend auth service"""

    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def actor_name(self) -> Optional[str]:
        """Display name snapshot stored on activity entries"""
        name = self.user_metadata.get("full_name")
        if not isinstance(name, str):
            name = self.user_metadata.get("name")
        if not isinstance(name, str):
            name = None
        fallback = self.email.split("@")[0] if self.email else None
        resolved = (name or fallback or "").strip()
        return resolved or None


class AuthSession(BaseModel):
    """Access token plus the user it belongs to"""

    access_token: str
    user: AuthUser
