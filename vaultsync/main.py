"""Engine entry point: wires the services into one container"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from vaultsync.config import Settings, settings as default_settings
from vaultsync.database import create_local_engine, create_session_factory, init_local_store
from vaultsync.schemas.auth import AuthSession
from vaultsync.services.activity_logger import ActivityLogger
from vaultsync.services.activity_service import ActivityService
from vaultsync.services.backend_client import BackendClient, SessionProvider
from vaultsync.services.folder_service import FolderService
from vaultsync.services.kv_store import JsonFileKeyValueStore, KeyValueStore, RedisKeyValueStore
from vaultsync.services.local_files import LocalFileSystem
from vaultsync.services.local_store import LocalStore
from vaultsync.services.media_service import MediaService
from vaultsync.services.media_uploader import MediaAssetUploader
from vaultsync.services.member_service import MemberService
from vaultsync.services.note_service import NoteService
from vaultsync.services.project_service import ProjectService
from vaultsync.services.public_profile_service import PublicProfileService
from vaultsync.services.snapshot_merger import SnapshotMerger
from vaultsync.services.storage_service import StorageService
from vaultsync.services.sync_service import SyncService
from vaultsync.services.visibility_sync import VisibilityFanOut
from vaultsync.workers.upload_retry_queue import StorageUploadRetryQueue

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for the engine"""
    logging.basicConfig(
        level=getattr(logging, (level or default_settings.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@dataclass
class SyncEngine:
    """All engine services sharing one local store, backend client and retry queue"""

    local_store: LocalStore
    backend: BackendClient
    storage: StorageService
    retry_queue: StorageUploadRetryQueue
    uploader: MediaAssetUploader
    merger: SnapshotMerger
    fan_out: VisibilityFanOut
    sync: SyncService
    projects: ProjectService
    public_profiles: PublicProfileService
    folders: FolderService
    media: MediaService
    notes: NoteService
    members: MemberService
    activity: ActivityService
    kv_store: KeyValueStore

    async def close(self) -> None:
        """Release network clients"""
        await self.backend.close()
        await self.storage.close()
        if isinstance(self.kv_store, RedisKeyValueStore):
            await self.kv_store.close()


def create_kv_store(config: Settings) -> KeyValueStore:
    """Redis when a URL is configured, otherwise a JSON file on the device"""
    if config.redis_url:
        return RedisKeyValueStore(redis_url=config.redis_url)
    return JsonFileKeyValueStore(config.retry_queue_path)


def create_sync_engine(
    config: Optional[Settings] = None,
    session: Optional[AuthSession] = None,
    session_provider: Optional[SessionProvider] = None,
    kv_store: Optional[KeyValueStore] = None,
    backend_transport: Optional[httpx.AsyncBaseTransport] = None,
    storage_http_client: Optional[httpx.AsyncClient] = None,
    s3_client=None,
) -> SyncEngine:
    """
    Build a ready-to-use engine.

    Args:
        config: Settings (default: the global settings)
        session: Fixed auth session
        session_provider: Coroutine returning the current session
        kv_store: Durable store of the retry queue (default: from config)
        backend_transport: httpx transport for the backend client (tests)
        storage_http_client: httpx client for streaming uploads (tests)
        s3_client: Pre-built boto3 S3 client

    Returns:
        SyncEngine
    """
    config = config or default_settings

    engine = create_local_engine(config.local_database_url)
    init_local_store(engine)
    session_factory = create_session_factory(engine)

    local_store = LocalStore(session_factory)
    merger = SnapshotMerger(session_factory)
    backend = BackendClient(
        base_url=config.backend_url,
        anon_key=config.backend_anon_key,
        session=session,
        session_provider=session_provider,
        timeout=config.http_timeout_seconds,
        transport=backend_transport,
    )
    storage = StorageService(
        bucket=config.storage_bucket,
        storage_url=config.resolved_storage_url,
        anon_key=config.backend_anon_key,
        s3_client=s3_client,
        http_client=storage_http_client,
    )
    kv_store = kv_store or create_kv_store(config)
    retry_queue = StorageUploadRetryQueue(
        kv_store,
        key=config.retry_queue_key,
        base_delay_seconds=config.retry_base_delay_seconds,
        max_delay_seconds=config.retry_max_delay_seconds,
        max_attempts=config.retry_max_attempts,
    )
    uploader = MediaAssetUploader(
        storage,
        LocalFileSystem(),
        retry_queue,
        backend,
        max_fallback_bytes=config.max_fallback_upload_bytes,
    )
    fan_out = VisibilityFanOut(backend, local_store, insert_chunk_size=config.public_post_insert_chunk_size)
    sync = SyncService(
        backend,
        merger,
        uploader,
        chunk_size=config.query_chunk_size,
        activity_limit=config.activity_sync_limit,
    )

    common = dict(
        local_store=local_store,
        backend=backend,
        merger=merger,
        activity=ActivityLogger(backend),
        sync=sync,
    )
    logger.info(f"Sync engine ready (backend {config.backend_url}, bucket {config.storage_bucket})")
    return SyncEngine(
        local_store=local_store,
        backend=backend,
        storage=storage,
        retry_queue=retry_queue,
        uploader=uploader,
        merger=merger,
        fan_out=fan_out,
        sync=sync,
        projects=ProjectService(fan_out=fan_out, **common),
        public_profiles=PublicProfileService(**common),
        folders=FolderService(**common),
        media=MediaService(uploader=uploader, fan_out=fan_out, **common),
        notes=NoteService(**common),
        members=MemberService(**common),
        activity=ActivityService(**common),
        kv_store=kv_store,
    )
