"""Access to media files stored on the device"""

import asyncio
import base64
from pathlib import Path
from typing import BinaryIO, Optional
from urllib.parse import unquote

from vaultsync.errors import LocalFileNotFoundError

FILE_SCHEME = "file://"


def to_local_path(uri: str) -> Path:
    """Resolve a `file://` URI or a bare path to a filesystem path"""
    value = uri.strip()
    if value.startswith(FILE_SCHEME):
        value = unquote(value[len(FILE_SCHEME):])
    return Path(value)


class LocalFileSystem:
    """Device file access used by the uploader"""

    async def exists(self, uri: Optional[str]) -> bool:
        """True if the URI points at a regular file"""
        if not uri:
            return False
        try:
            return to_local_path(uri).is_file()
        except OSError:
            return False

    async def size(self, uri: str) -> Optional[int]:
        """File size in bytes, or None if it cannot be determined"""
        try:
            return to_local_path(uri).stat().st_size
        except OSError:
            return None

    async def read_bytes(self, uri: str) -> bytes:
        """
        Read a whole file.

        Raises:
            LocalFileNotFoundError: If the file does not exist
        """
        path = to_local_path(uri)
        if not path.is_file():
            raise LocalFileNotFoundError(f"Local file not found: {uri}")
        return await asyncio.to_thread(path.read_bytes)

    async def read_base64(self, uri: str) -> str:
        return base64.b64encode(await self.read_bytes(uri)).decode("ascii")

    def open(self, uri: str) -> BinaryIO:
        """Open a file for streaming reads"""
        path = to_local_path(uri)
        if not path.is_file():
            raise LocalFileNotFoundError(f"Local file not found: {uri}")
        return path.open("rb")
