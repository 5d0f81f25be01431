"""
Byte storage for generated images.

Objects are addressed by a relative path such as `images/{user_id}/{file}`.
`put` returns the public locator clients use to fetch the object; `delete`
is idempotent, so removing an object that is already gone is not an error.
"""
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from fastapi.concurrency import run_in_threadpool

from app.errors import StorageError

logger = logging.getLogger(__name__)


class ByteStorage(ABC):
    """Interface the dispatcher and repair tooling write images through."""

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store bytes and return their public locator."""

    @abstractmethod
    async def get(self, path: str) -> Optional[bytes]:
        """Read bytes back, or None if the object does not exist."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove an object. Missing objects are ignored."""

    @abstractmethod
    def public_url(self, path: str) -> str:
        """Public locator for a path."""


class LocalByteStorage(ByteStorage):
    """
    Filesystem-backed storage served by the app's /media static mount.

    The content type is not stored; the static file server derives it from the
    extension, which the dispatcher always picks from the image bytes.
    """

    def __init__(self, root_dir: str, public_base_url: str = "/media"):
        self.root = Path(root_dir).resolve()
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise StorageError(f"Storage path escapes the storage root: {path}")
        return target

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{path.lstrip('/')}"

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)

        def _write():
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".part")
            tmp.write_bytes(data)
            os.replace(tmp, target)

        try:
            await run_in_threadpool(_write)
        except OSError as e:
            logger.error("Failed to store object", extra={"path": path, "error": str(e)})
            raise StorageError(f"Failed to store image: {e}") from e

        logger.debug("Stored object", extra={"path": path, "bytes": len(data), "content_type": content_type})
        return self.public_url(path)

    async def get(self, path: str) -> Optional[bytes]:
        target = self._resolve(path)

        def _read():
            try:
                return target.read_bytes()
            except FileNotFoundError:
                return None

        try:
            return await run_in_threadpool(_read)
        except OSError as e:
            raise StorageError(f"Failed to read image: {e}") from e

    async def delete(self, path: str) -> None:
        target = self._resolve(path)

        def _unlink():
            try:
                target.unlink()
            except FileNotFoundError:
                logger.info("Object already deleted", extra={"path": path})

        try:
            await run_in_threadpool(_unlink)
        except OSError as e:
            raise StorageError(f"Failed to delete image: {e}") from e
