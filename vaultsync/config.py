"""Engine configuration using Pydantic Settings"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables"""

    # Environment
    environment: str = "development"

    # Local store
    local_database_url: str = "sqlite:///buildvault.db"

    # Backend (PostgREST-compatible API)
    backend_url: str = "http://localhost:54321"
    backend_anon_key: str = ""
    http_timeout_seconds: float = 30.0
    query_chunk_size: int = 100
    activity_sync_limit: int = 5000

    # Object storage
    storage_bucket: str = "buildvault-media"
    storage_url: Optional[str] = None
    storage_region: str = "us-east-1"
    storage_endpoint_url: Optional[str] = None
    storage_access_key_id: Optional[str] = None
    storage_secret_access_key: Optional[str] = None
    storage_cache_control: str = "31536000"
    upload_write_timeout_seconds: float = 600.0
    max_fallback_upload_bytes: int = 8 * 1024 * 1024

    # Upload retry queue
    redis_url: Optional[str] = None
    retry_queue_key: str = "@buildvault/storage-upload-retry/v1"
    retry_queue_path: str = ".buildvault/storage-upload-retry.json"
    retry_base_delay_seconds: float = 15.0
    retry_max_delay_seconds: float = 30 * 60.0
    retry_max_attempts: int = 12

    # Public feed fan-out
    public_post_insert_chunk_size: int = 200

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="VAULTSYNC_",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def resolved_storage_url(self) -> str:
        """Storage HTTP endpoint, defaulting to the backend host"""
        return (self.storage_url or self.backend_url).rstrip("/")


# Global settings instance
settings = Settings()
