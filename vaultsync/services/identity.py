"""Classify entity ids as device-local or backend-identified"""

import random
import re
import string
import time
from dataclasses import dataclass
from typing import Optional, Union

# Backend ids are RFC 4122 UUIDs (versions 1-5)
REMOTE_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class LocalId:
    """Id minted on this device, unknown to the backend"""

    value: str

    @property
    def is_remote(self) -> bool:
        return False


@dataclass(frozen=True)
class RemoteId:
    """Id assigned by the backend"""

    value: str

    @property
    def is_remote(self) -> bool:
        return True


EntityId = Union[LocalId, RemoteId]


def is_remote_id(value: Optional[str]) -> bool:
    """True if the trimmed value has the backend UUID shape"""
    if not value:
        return False
    return bool(REMOTE_ID_PATTERN.match(value.strip()))


def classify_id(value: Optional[str]) -> EntityId:
    """
    Classify an id. Empty or missing ids are local; never raises.

    Args:
        value: Raw id as stored locally or received from a caller

    Returns:
        RemoteId for backend UUIDs, LocalId otherwise
    """
    raw = value or ""
    if is_remote_id(raw):
        return RemoteId(raw.strip())
    return LocalId(raw)


def new_local_id(prefix: str = "") -> str:
    """Mint a device-local id (millisecond timestamp plus random suffix)"""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    return f"{prefix}{int(time.time() * 1000)}-{suffix}"
