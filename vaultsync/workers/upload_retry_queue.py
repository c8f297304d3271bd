"""Durable retry queue for media uploads that failed transiently"""

import asyncio
import json
import logging
import math
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional

from vaultsync.config import settings
from vaultsync.monitoring.metrics import metrics_collector
from vaultsync.schemas.media import normalize_media_type
from vaultsync.schemas.retry_queue import MAX_LAST_ERROR_LENGTH, StorageUploadRetryEntry
from vaultsync.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_LAST_ERROR = "upload_failed"

RetryQueueState = Dict[str, StorageUploadRetryEntry]


def now_ms() -> int:
    """Current time in epoch milliseconds"""
    return int(time.time() * 1000)


def _as_int(value, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if isinstance(value, float) and not math.isfinite(value):
        return default
    return int(value)


class StorageUploadRetryQueue:
    """
    Persistent map of media id -> retry entry with exponential backoff.

    Backoff schedule:
    - Attempt 1: 15 seconds
    - Attempt 2: 30 seconds
    - Attempt 3: 60 seconds
    - ...capped at 30 minutes, attempts capped at 12

    All access goes through a single asyncio.Lock. Code running inside
    transaction() must mutate the yielded state instead of calling get/put/delete.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: Optional[str] = None,
        base_delay_seconds: Optional[float] = None,
        max_delay_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize retry queue.

        Args:
            store: Durable key-value store holding the JSON blob
            key: Storage key (default: settings.retry_queue_key)
            base_delay_seconds: Delay after the first failure (default: 15)
            max_delay_seconds: Delay cap (default: 1800)
            max_attempts: Attempt counter cap (default: 12)
            clock: Returns the current epoch milliseconds
        """
        self.store = store
        self.key = key or settings.retry_queue_key
        self.base_delay_ms = int((base_delay_seconds or settings.retry_base_delay_seconds) * 1000)
        self.max_delay_ms = int((max_delay_seconds or settings.retry_max_delay_seconds) * 1000)
        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.clock = clock
        self._lock = asyncio.Lock()

    def calculate_delay_ms(self, attempts: int) -> int:
        """
        Calculate delay before the next attempt.

        Formula: min(max_delay, base_delay * 2 ^ (attempts - 1))

        Args:
            attempts: Number of failed attempts so far (1-indexed)

        Returns:
            Delay in milliseconds
        """
        exponent = max(0, attempts - 1)
        # Cap the exponent so huge counters cannot overflow the float math
        delay = self.base_delay_ms * (2 ** min(exponent, 32))
        return int(min(self.max_delay_ms, delay))

    @staticmethod
    def is_due(entry: StorageUploadRetryEntry, now: int) -> bool:
        """An entry may be retried once its next_retry_at has passed"""
        return entry.next_retry_at <= now

    def build_entry(
        self,
        media_id: str,
        project_id: str,
        media_type: str,
        error_message: Optional[str],
        previous: Optional[StorageUploadRetryEntry] = None,
    ) -> StorageUploadRetryEntry:
        """Entry recording one more failed attempt"""
        now = self.clock()
        previous_attempts = previous.attempts if previous else 0
        attempts = min(self.max_attempts, max(1, previous_attempts + 1))
        message = (error_message or "").strip() or DEFAULT_LAST_ERROR
        return StorageUploadRetryEntry(
            media_id=media_id,
            project_id=project_id,
            media_type=normalize_media_type(media_type),
            attempts=attempts,
            next_retry_at=now + self.calculate_delay_ms(attempts),
            last_error=message[:MAX_LAST_ERROR_LENGTH],
            updated_at=now,
        )

    def _normalize(self, raw: Optional[str]) -> RetryQueueState:
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Discarding unreadable upload retry queue: {e}")
            return {}
        if not isinstance(parsed, dict):
            return {}

        now = self.clock()
        state: RetryQueueState = {}
        for key, value in parsed.items():
            if not isinstance(value, dict):
                continue
            project_id = value.get("projectId")
            if not isinstance(project_id, str) or not project_id.strip():
                continue
            media_id = value.get("mediaId")
            if not isinstance(media_id, str) or not media_id.strip():
                media_id = key
            last_error = value.get("lastError")
            if not isinstance(last_error, str) or not last_error.strip():
                last_error = DEFAULT_LAST_ERROR
            state[media_id] = StorageUploadRetryEntry(
                media_id=media_id,
                project_id=project_id,
                media_type=normalize_media_type(value.get("mediaType")),
                attempts=max(1, _as_int(value.get("attempts"), 1)),
                next_retry_at=_as_int(value.get("nextRetryAt"), now),
                last_error=last_error[:MAX_LAST_ERROR_LENGTH],
                updated_at=_as_int(value.get("updatedAt"), now),
            )
        return state

    def _serialize(self, state: RetryQueueState) -> str:
        return json.dumps({media_id: entry.to_json() for media_id, entry in state.items()})

    async def _read(self) -> RetryQueueState:
        return self._normalize(await self.store.get(self.key))

    async def _write(self, state: RetryQueueState) -> None:
        if state:
            await self.store.set(self.key, self._serialize(state))
        else:
            await self.store.delete(self.key)
        metrics_collector.record_retry_queue_size(len(state))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[RetryQueueState]:
        """
        Read-modify-write under the queue lock.

        The yielded dict may be mutated freely; it is persisted on exit only
        if it changed, and discarded if the block raises.
        """
        async with self._lock:
            state = await self._read()
            before = self._serialize(state)
            yield state
            if self._serialize(state) != before:
                await self._write(state)

    async def get(self) -> RetryQueueState:
        """Snapshot of all entries"""
        async with self._lock:
            return await self._read()

    async def get_entry(self, media_id: str) -> Optional[StorageUploadRetryEntry]:
        return (await self.get()).get(media_id)

    async def put(self, entry: StorageUploadRetryEntry) -> None:
        async with self.transaction() as state:
            state[entry.media_id] = entry

    async def delete(self, media_id: str) -> bool:
        """Remove an entry; returns True if it existed"""
        async with self.transaction() as state:
            return state.pop(media_id, None) is not None

    async def record_failure(
        self,
        media_id: str,
        project_id: str,
        media_type: str,
        error_message: Optional[str],
    ) -> StorageUploadRetryEntry:
        """Create or bump the entry for a failed upload"""
        async with self.transaction() as state:
            entry = self.build_entry(
                media_id, project_id, media_type, error_message, previous=state.get(media_id)
            )
            state[media_id] = entry
        logger.info(
            f"Upload of media {media_id} queued for retry "
            f"(attempt {entry.attempts}, next at {entry.next_retry_at})"
        )
        return entry
