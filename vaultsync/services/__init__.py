"""Services package"""

from .backend_client import BackendClient
from .local_store import LocalStore
from .snapshot_merger import SnapshotMerger
from .storage_service import StorageService

__all__ = ["BackendClient", "LocalStore", "SnapshotMerger", "StorageService"]
