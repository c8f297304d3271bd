"""Shared plumbing of the mutation services"""

from typing import Any, Dict, Optional

from vaultsync.errors import BackendError
from vaultsync.services.activity_logger import ActivityLogger
from vaultsync.services.backend_client import BackendClient, eq
from vaultsync.services.local_store import LocalStore
from vaultsync.services.snapshot_merger import SnapshotMerger
from vaultsync.services.sync_service import SyncService


class MutationService:
    """
    Base for the per-entity mutation services.

    Ids that are not backend UUIDs are handled by the local store alone;
    backend ids go through the backend, then the result is merged back.
    """

    def __init__(
        self,
        local_store: LocalStore,
        backend: BackendClient,
        merger: SnapshotMerger,
        activity: ActivityLogger,
        sync: SyncService,
    ):
        self.local_store = local_store
        self.backend = backend
        self.merger = merger
        self.activity = activity
        self.sync = sync

    async def _lookup(self, table: str, columns: str, **match: Any) -> Optional[Dict[str, Any]]:
        """Single row matching all column values, or None"""
        return await self.backend.select_one(table, columns, [eq(k, v) for k, v in match.items()])

    @staticmethod
    def _first(rows, message: str) -> Dict[str, Any]:
        """First returned row of a write; an empty result is a backend failure"""
        if not rows:
            raise BackendError(message)
        return rows[0]
