"""Local-disk file storage for uploaded documents.

Files are written under ``settings.upload_dir`` with a random UUID name
that keeps the original extension, optionally inside a sub-folder.  The
stored value is the path relative to the upload root; :meth:`url_for`
turns it into the public ``/uploads/...`` URL served by the API.
"""

from __future__ import annotations

import asyncio
import uuid
from functools import lru_cache
from pathlib import Path
from typing import Optional

import structlog

from mc_exchange.config.settings import get_settings
from mc_exchange.core.exceptions import BadRequestError

logger = structlog.get_logger(__name__)


class LocalStorage:
    """Write, delete and locate files below a root directory.

    Args:
        root: Upload directory; created on first use.
        base_url: Prefix for public URLs.
    """

    def __init__(self, root: str | Path, base_url: str = "/uploads") -> None:
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")

    def _resolve(self, relative_path: str) -> Path:
        path = (self.root / relative_path).resolve()
        if self.root not in path.parents:
            raise BadRequestError("Invalid file path")
        return path

    async def save(self, data: bytes, filename: str, folder: Optional[str] = None) -> str:
        """Store *data* and return its path relative to the root."""
        suffix = Path(filename).suffix.lower()
        relative = Path(folder or "") / f"{uuid.uuid4()}{suffix}"
        target = self._resolve(str(relative))

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("file_stored", path=str(relative), size=len(data))
        return relative.as_posix()

    async def delete(self, relative_path: str) -> bool:
        target = self._resolve(relative_path)
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error("file_delete_failed", path=relative_path, error=str(exc))
            return False
        logger.debug("file_deleted", path=relative_path)
        return True

    async def exists(self, relative_path: str) -> bool:
        return await asyncio.to_thread(self._resolve(relative_path).is_file)

    def path_for(self, relative_path: str) -> Path:
        return self._resolve(relative_path)

    def url_for(self, relative_path: str) -> str:
        return f"{self.base_url}/{relative_path}"

    def relative_from_url(self, url: str) -> str:
        prefix = f"{self.base_url}/"
        return url[len(prefix):] if url.startswith(prefix) else Path(url).name


@lru_cache(maxsize=1)
def get_storage() -> LocalStorage:
    return LocalStorage(get_settings().upload_dir)
