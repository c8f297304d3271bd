"""Object storage service for media assets"""

import logging
import re
from typing import AsyncIterator, List, Optional
from urllib.parse import quote, unquote, urlparse

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from vaultsync.config import settings
from vaultsync.errors import (
    StorageConfigurationError,
    StorageError,
    StoragePayloadTooLargeError,
    StorageTransientError,
    is_payload_too_large_message,
)
from vaultsync.services.local_files import to_local_path

logger = logging.getLogger(__name__)

REMOTE_URI_PATTERN = re.compile(r"^https?://", re.IGNORECASE)

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heif",
    "gif": "image/gif",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "m4v": "video/x-m4v",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "csv": "text/csv",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}

DEFAULT_CONTENT_TYPES = {
    "photo": "image/jpeg",
    "video": "video/mp4",
    "doc": "application/octet-stream",
}

DEFAULT_EXTENSIONS = {"photo": "jpg", "video": "mp4", "doc": "bin"}

STREAM_CHUNK_SIZE = 64 * 1024


def is_remote_uri(uri: Optional[str]) -> bool:
    """True for http(s) URLs"""
    if not uri:
        return False
    return bool(REMOTE_URI_PATTERN.match(uri.strip()))


def strip_uri_params(uri: str) -> str:
    return uri.split("#")[0].split("?")[0]


def file_extension_from_uri(uri: str, fallback: str) -> str:
    """Lower-cased extension of the URI path, ignoring query and fragment"""
    match = re.search(r"\.([a-z0-9]+)$", strip_uri_params(uri).lower())
    return match.group(1) if match else fallback


def default_extension(media_type: str) -> str:
    return DEFAULT_EXTENSIONS.get(media_type, "bin")


def infer_content_type(extension: str, media_type: str) -> str:
    """Content type from the extension, falling back on the media type"""
    ext = extension.lower()
    if ext in CONTENT_TYPES:
        return CONTENT_TYPES[ext]
    return DEFAULT_CONTENT_TYPES.get(media_type, "application/octet-stream")


def build_storage_object_path(
    user_id: str, project_id: str, media_id: str, kind: str, extension: str
) -> str:
    """
    Generate the object path following the structure:
    users/{user_id}/projects/{project_id}/{kind}/{media_id}.{extension}

    Args:
        user_id: Uploading user
        project_id: Owning project
        media_id: Media id, suffixed with `-thumb` for thumbnails
        kind: "media" or "thumbs"
        extension: File extension; sanitized to [a-z0-9]

    Returns:
        Object path inside the bucket
    """
    safe_extension = re.sub(r"[^a-z0-9]", "", extension.lower()) or "bin"
    return f"users/{user_id}/projects/{project_id}/{kind}/{media_id}.{safe_extension}"


def encode_storage_path(path: str) -> str:
    return "/".join(quote(segment, safe="") for segment in path.split("/"))


def parse_storage_object_path(uri: Optional[str], bucket: str) -> Optional[str]:
    """Object path from a public or signed storage URL of the given bucket"""
    if not is_remote_uri(uri):
        return None
    try:
        pathname = unquote(urlparse(uri.strip()).path)
    except ValueError:
        return None
    for segment in (
        f"/storage/v1/object/public/{bucket}/",
        f"/storage/v1/object/sign/{bucket}/",
    ):
        if segment in pathname:
            return pathname.split(segment, 1)[1] or None
    return None


class StorageService:
    """Service for object storage operations on the media bucket"""

    def __init__(
        self,
        bucket: Optional[str] = None,
        storage_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        s3_client=None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize storage service.

        Args:
            bucket: Bucket name (default: settings.storage_bucket)
            storage_url: Storage HTTP endpoint used for public URLs and streaming uploads
            anon_key: Public API key sent with streaming uploads
            s3_client: Pre-built boto3 S3 client
            http_client: Pre-built httpx client for streaming uploads
        """
        self.bucket = bucket or settings.storage_bucket
        self.storage_url = (storage_url or settings.resolved_storage_url).rstrip("/")
        self.anon_key = anon_key if anon_key is not None else settings.backend_anon_key
        self.cache_control = settings.storage_cache_control
        self._s3_client = s3_client
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout_seconds, write=settings.upload_write_timeout_seconds)
        )

    @property
    def s3_client(self):
        """S3 client, created on first use"""
        if self._s3_client is None:
            retry_config = Config(
                retries={
                    "max_attempts": 3,
                    "mode": "standard",
                },
                connect_timeout=5,
                read_timeout=60,
            )

            client_kwargs = {
                "region_name": settings.storage_region,
                "config": retry_config,
            }

            if settings.storage_access_key_id and settings.storage_secret_access_key:
                client_kwargs["aws_access_key_id"] = settings.storage_access_key_id
                client_kwargs["aws_secret_access_key"] = settings.storage_secret_access_key

            # S3-compatible endpoint of the storage API
            if settings.storage_endpoint_url:
                client_kwargs["endpoint_url"] = settings.storage_endpoint_url

            try:
                self._s3_client = boto3.client("s3", **client_kwargs)
                logger.info(f"S3 client initialized for bucket: {self.bucket}")
            except (BotoCoreError, ValueError) as e:
                logger.error(f"Failed to initialize S3 client: {e}")
                raise StorageConfigurationError(f"Failed to initialize S3 client: {e}")
        return self._s3_client

    def get_public_url(self, path: str, bucket: Optional[str] = None) -> Optional[str]:
        """
        Public URL of an object.

        Returns:
            URL string, or None when bucket or path is blank
        """
        normalized_bucket = (bucket or self.bucket).strip()
        normalized_path = (path or "").strip()
        if not normalized_bucket or not normalized_path:
            return None
        return (
            f"{self.storage_url}/storage/v1/object/public/"
            f"{normalized_bucket}/{encode_storage_path(normalized_path)}"
        )

    def parse_object_path(self, uri: Optional[str]) -> Optional[str]:
        """Object path inside this service's bucket, parsed from a storage URL"""
        return parse_storage_object_path(uri, self.bucket)

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        """
        Upload bytes, overwriting any existing object.

        Args:
            path: Object path
            data: Object body
            content_type: Content type of the object

        Returns:
            Public URL of the uploaded object

        Raises:
            StoragePayloadTooLargeError: If the object exceeds the size limit
            StorageTransientError: If the upload fails otherwise
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
                CacheControl=f"max-age={self.cache_control}",
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            logger.error(f"Error uploading bytes: {error_code} - {e}")
            if status == 413 or error_code == "EntityTooLarge" or is_payload_too_large_message(str(e)):
                raise StoragePayloadTooLargeError(f"Storage payload too large (413): {error_code}")
            raise StorageTransientError(f"Failed to upload bytes: {error_code}", status_code=status)
        except BotoCoreError as e:
            logger.error(f"Unexpected error uploading bytes: {e}")
            raise StorageTransientError(f"Failed to upload bytes: {e}")

        logger.info(f"Uploaded {len(data)} bytes to {path}")
        return self.get_public_url(path)

    def remove(self, paths: List[str]) -> None:
        """
        Delete objects.

        Raises:
            StorageError: If the delete request fails
        """
        keys = [p for p in dict.fromkeys(path.strip() for path in paths) if p]
        if not keys:
            return
        try:
            self.s3_client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
            )
            logger.info(f"Deleted {len(keys)} objects from {self.bucket}")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error deleting objects: {e}")
            raise StorageError(f"Failed to delete objects: {e}")

    async def _iter_file(self, local_uri: str) -> AsyncIterator[bytes]:
        with to_local_path(local_uri).open("rb") as f:
            while True:
                chunk = f.read(STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    async def stream_upload(
        self,
        local_uri: str,
        object_path: str,
        content_type: str,
        access_token: str,
    ) -> None:
        """
        Stream a local file to the storage HTTP API without loading it in memory.

        Args:
            local_uri: Source file URI
            object_path: Destination object path
            content_type: Content type of the object
            access_token: Bearer token of the current session

        Raises:
            StorageConfigurationError: If the storage endpoint or key is missing
            StoragePayloadTooLargeError: On 413 or an oversized-object response body
            StorageTransientError: On any other failure
        """
        if not self.storage_url or not self.anon_key:
            raise StorageConfigurationError("Storage upload configuration is missing")

        upload_url = f"{self.storage_url}/storage/v1/object/{self.bucket}/{encode_storage_path(object_path)}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "apikey": self.anon_key,
            "x-upsert": "true",
            "content-type": content_type,
            "cache-control": self.cache_control,
        }

        try:
            response = await self.http_client.post(
                upload_url, content=self._iter_file(local_uri), headers=headers
            )
        except httpx.HTTPError as e:
            logger.warning(f"Streaming upload of {object_path} failed: {e}")
            raise StorageTransientError(f"Storage HTTP upload failed: {e}")

        if response.is_success:
            return

        body = response.text[:300] if response.text else ""
        if (
            response.status_code == 413
            or is_payload_too_large_message(body)
            or is_payload_too_large_message(f"status={response.status_code} {body}")
        ):
            detail = body or "object exceeded maximum allowed size"
            raise StoragePayloadTooLargeError(f"Storage payload too large (413): {detail}")

        suffix = f": {body}" if body else ""
        raise StorageTransientError(
            f"Storage HTTP upload failed ({response.status_code}){suffix}",
            status_code=response.status_code,
        )

    async def close(self):
        await self.http_client.aclose()
