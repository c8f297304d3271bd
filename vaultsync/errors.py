"""Exception hierarchy for the reconciliation engine"""

from typing import Optional


class SyncEngineError(Exception):
    """Base exception for engine errors"""
    pass


class ValidationError(SyncEngineError):
    """Missing required field or malformed input, never retried"""
    pass


class AuthenticationError(ValidationError):
    """No authenticated actor for an operation that needs one"""
    pass


class CrossReferenceError(ValidationError):
    """A referenced entity does not belong to the expected parent"""
    pass


class NotFoundError(SyncEngineError):
    """Entity not found locally or remotely"""
    pass


class BackendError(SyncEngineError):
    """Backend API request failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StorageError(SyncEngineError):
    """Base exception for object storage failures"""
    pass


class StorageConfigurationError(StorageError):
    """Storage endpoint or credentials are missing"""
    pass


class StorageTransientError(StorageError):
    """Upload failed in a way that is worth retrying later"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StoragePayloadTooLargeError(StorageError):
    """Object exceeded the storage size limit, permanent"""
    pass


class LocalFileNotFoundError(StorageError):
    """The local source file of an upload no longer exists"""
    pass


# Markers the storage API uses when an object is over the size limit
PAYLOAD_TOO_LARGE_MARKERS = (
    "payload too large",
    'statuscode":"413',
    "statuscode:413",
    "http upload failed (413)",
    "exceeded the maximum allowed size",
)


def is_payload_too_large_message(message: Optional[str]) -> bool:
    """Check whether an error message or response body reports an oversized object"""
    if not message:
        return False
    normalized = message.lower()
    return any(marker in normalized for marker in PAYLOAD_TOO_LARGE_MARKERS)


RECOVERABLE_AUTH_SESSION_MARKERS = (
    "auth session missing",
    "invalid refresh token",
    "refresh token not found",
)


def is_recoverable_auth_session_error(message: Optional[str]) -> bool:
    """Session problems that should skip a background sync instead of failing it"""
    normalized = (message or "").strip().lower()
    if not normalized:
        return False
    return any(marker in normalized for marker in RECOVERABLE_AUTH_SESSION_MARKERS)
