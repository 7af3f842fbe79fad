"""Local filesystem backend.

Files are written under a root directory and served by the application's
static mount, so URLs are relative (``/image_library/pictures/x.webp``).
Writes can additionally be mirrored into other roots, e.g. the public
directory of a second app in the same checkout. Mirroring is best effort:
failures are logged and never reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, List, Optional

from image_library.errors import MirrorFailed
from image_library.keys import normalize_key
from image_library.storage.base import StorageBackend
from image_library.storage.progress import ProgressReporter

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class LocalFilesystemBackend(StorageBackend):
    def __init__(
        self,
        root: str,
        base_url: str = "/image_library",
        mirrors: Optional[Iterable[str]] = None,
        *,
        name: str = "local",
        required: bool = True,
        chunk_size: int = CHUNK_SIZE,
        retry_backoff: float = 0.5,
    ) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.mirrors = [Path(m) for m in (mirrors or [])]
        self.name = name
        self.required = required
        self.chunk_size = chunk_size
        self.retry_backoff = retry_backoff

    def _resolve_path(self, key: str, root: Optional[Path] = None) -> Path:
        base = (root or self.root).resolve()
        path = (base / normalize_key(key)).resolve()
        if path != base and base not in path.parents:
            raise ValueError(f"Key {key!r} escapes storage root {base}")
        return path

    async def _write(self, key: str, data: bytes, content_type: str, reporter: Optional[ProgressReporter]) -> None:
        await asyncio.to_thread(self._write_sync, key, data, reporter)

    def _write_sync(self, key: str, data: bytes, reporter: Optional[ProgressReporter]) -> None:
        path = self._resolve_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        partial = path.with_name(path.name + ".part")
        try:
            with open(partial, "wb") as f:
                view = memoryview(data)
                for offset in range(0, len(data), self.chunk_size):
                    chunk = view[offset:offset + self.chunk_size]
                    f.write(chunk)
                    if reporter:
                        reporter.advance(len(chunk))
                f.flush()
                os.fsync(f.fileno())
            os.replace(partial, path)
        except OSError:
            partial.unlink(missing_ok=True)
            raise
        self._mirror(key, path)

    def _mirror(self, key: str, source_path: Path) -> None:
        for mirror_root in self.mirrors:
            try:
                self._copy_to_mirror(key, source_path, mirror_root)
            except MirrorFailed as exc:
                logger.warning("%s", exc)

    def _copy_to_mirror(self, key: str, source_path: Path, mirror_root: Path) -> None:
        try:
            dest = self._resolve_path(key, mirror_root)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source_path, dest)
        except (OSError, ValueError) as exc:
            raise MirrorFailed(f"Could not mirror {key} to {mirror_root}: {exc}") from exc

    def resolve_url(self, key: str) -> str:
        return f"{self.base_url}/{normalize_key(key)}"

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete_sync, key)

    def _delete_sync(self, key: str) -> bool:
        try:
            path = self._resolve_path(key)
            if not path.is_file():
                return False
            path.unlink()
        except (OSError, ValueError) as exc:
            logger.warning("Failed to delete %s from %s: %s", key, self.name, exc)
            return False
        for mirror_root in self.mirrors:
            try:
                self._resolve_path(key, mirror_root).unlink(missing_ok=True)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to delete mirrored %s from %s: %s", key, mirror_root, exc)
        return True

    async def fetch(self, key: str) -> bytes:
        return await asyncio.to_thread(self._resolve_path(key).read_bytes)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._exists_sync, key)

    def _exists_sync(self, key: str) -> bool:
        try:
            path = self._resolve_path(key)
        except ValueError:
            return False
        return path.is_file()

    async def list_keys(self, prefix: str = "") -> List[str]:
        return await asyncio.to_thread(self._list_sync, prefix)

    def _list_sync(self, prefix: str) -> List[str]:
        base = self._resolve_path(prefix) if prefix else self.root.resolve()
        if not base.is_dir():
            return []
        root = self.root.resolve()
        files = [p for p in base.rglob("*") if p.is_file() and not p.name.endswith(".part")]
        # Most recently written first
        files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return [p.relative_to(root).as_posix() for p in files]
