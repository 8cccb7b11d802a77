"""
Filesystem-based storage adapter.

Stores objects as regular files under a base directory. Object keys map
one-to-one onto relative paths below that directory.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from datetime import datetime, timezone

from .base import (
    DEFAULT_URL_EXPIRY_SECONDS,
    ConnectionTestResult,
    StorageAdapter,
    StorageObject,
    UploadRequest,
    UploadResult,
)
from .exceptions import StorageError, StorageNotFoundError, StorageValidationError

log = logging.getLogger(__name__)

LOCAL_URL_PREFIX = "/api/storage/"
DEFAULT_LOCAL_PATH = "./storage"

# Attempts at recreating a parent directory pruned by a concurrent delete.
MAX_WRITE_ATTEMPTS = 3


class LocalStorageAdapter(StorageAdapter):
    """
    Storage adapter backed by the local filesystem.

    Directory structure mirrors the key namespace:
    {base_path}/tenants/{tenant_id}/{category}/...

    Files are served by an HTTP route mounted at ``/api/storage/``; this
    adapter only produces URLs pointing at it.
    """

    def __init__(self, base_path: str = DEFAULT_LOCAL_PATH):
        if not base_path:
            raise ValueError("base_path cannot be empty")

        self.base_path = os.path.realpath(os.path.abspath(base_path))
        os.makedirs(self.base_path, exist_ok=True)
        log.info("LocalStorageAdapter initialized at: %s", self.base_path)

    @property
    def backend_name(self) -> str:
        return "local"

    def _resolve_path(self, key: str, allow_root: bool = False) -> str:
        """Map a key to an absolute path, rejecting anything outside base_path."""
        if not key or "\x00" in key:
            raise StorageValidationError("Storage key must be a non-empty string", key=key)
        if key.startswith(("/", "\\")) or os.path.isabs(key):
            raise StorageValidationError(f"Storage key must be relative: {key!r}", key=key)

        # No segments the filesystem would normalise away ("a//b", "a/./b",
        # "a/b/"); a listing prefix may end with a single "/".
        segments = (key[:-1] if allow_root and key.endswith("/") else key).split("/")
        if any(segment in ("", ".", "..") for segment in segments):
            raise StorageValidationError(f"Storage key has empty or relative segments: {key!r}", key=key)

        full_path = os.path.realpath(os.path.join(self.base_path, key))
        inside = full_path.startswith(self.base_path + os.sep) or (allow_root and full_path == self.base_path)
        if not inside:
            log.warning("[LocalStorage] Path traversal rejected for key: %s", key)
            raise StorageValidationError(f"Storage key resolves outside the storage root: {key!r}", key=key)
        return full_path

    def _url_for(self, key: str) -> str:
        return f"{LOCAL_URL_PREFIX}{key}"

    async def upload(self, request: UploadRequest) -> UploadResult:
        full_path = self._resolve_path(request.key)
        content = request.read_payload()

        def _write() -> int:
            directory = os.path.dirname(full_path)
            for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
                os.makedirs(directory, exist_ok=True)
                try:
                    with open(full_path, "wb") as f:
                        f.write(content)
                        f.flush()
                        os.fsync(f.fileno())
                except FileNotFoundError:
                    # A delete of the last sibling removed the directory between
                    # makedirs and open.
                    if attempt == MAX_WRITE_ATTEMPTS:
                        raise
                    log.debug("[LocalStorage:Upload] Parent of %s vanished, retrying", request.key)
                    continue
                return os.stat(full_path).st_size

        try:
            size = await asyncio.to_thread(_write)
        except FileNotFoundError as e:
            raise StorageError(
                f"Could not write {request.key}: parent directory kept disappearing",
                key=request.key,
                cause=e,
            ) from e
        log.debug("[LocalStorage:Upload] Wrote %s (%d bytes)", request.key, size)
        return UploadResult(key=request.key, url=self._url_for(request.key), size=size)

    async def download(self, key: str) -> bytes:
        full_path = self._resolve_path(key)

        def _read() -> bytes:
            with open(full_path, "rb") as f:
                return f.read()

        try:
            return await asyncio.to_thread(_read)
        except (FileNotFoundError, IsADirectoryError) as e:
            raise StorageNotFoundError(f"Object not found: {key}", key=key, cause=e) from e

    async def delete(self, key: str) -> None:
        full_path = self._resolve_path(key)
        removed = await asyncio.to_thread(self._delete_file, full_path)
        if removed:
            log.debug("[LocalStorage:Delete] Removed %s", key)

    def _delete_file(self, full_path: str) -> bool:
        try:
            os.unlink(full_path)
        except FileNotFoundError:
            return False
        self._remove_empty_parents(os.path.dirname(full_path))
        return True

    def _remove_empty_parents(self, directory: str) -> None:
        """Walk upward removing empty directories, never touching base_path itself."""
        while directory != self.base_path and directory.startswith(self.base_path + os.sep):
            try:
                os.rmdir(directory)
            except OSError:
                # Not empty, or already removed by a concurrent delete.
                return
            log.debug("[LocalStorage:Delete] Removed empty directory: %s", directory)
            directory = os.path.dirname(directory)

    async def delete_many(self, keys: list[str]) -> None:
        if not keys:
            return
        # Validate everything up front so a bad key cannot leave a partial delete.
        paths = [self._resolve_path(key) for key in keys]
        await asyncio.gather(*(asyncio.to_thread(self._delete_file, path) for path in paths))
        log.debug("[LocalStorage:DeleteMany] Processed %d keys", len(keys))

    async def get_url(self, key: str, expires_in: int = DEFAULT_URL_EXPIRY_SECONDS) -> str:
        self._resolve_path(key)
        return self._url_for(key)

    async def exists(self, key: str) -> bool:
        full_path = self._resolve_path(key)
        return await asyncio.to_thread(os.path.isfile, full_path)

    async def list(self, prefix: str) -> list[StorageObject]:
        prefix_path = self._resolve_path(prefix, allow_root=True) if prefix else self.base_path

        def _walk() -> list[StorageObject]:
            # "a/b/" walks a/b; "a/b" may be a directory or a partial name inside a/.
            if not prefix or prefix.endswith("/") or os.path.isdir(prefix_path):
                walk_root = prefix_path
            else:
                walk_root = os.path.dirname(prefix_path)

            objects = []
            for dirpath, _dirnames, filenames in os.walk(walk_root):
                for filename in filenames:
                    file_path = os.path.join(dirpath, filename)
                    if not os.path.isfile(file_path):
                        continue
                    key = os.path.relpath(file_path, self.base_path).replace(os.sep, "/")
                    if not key.startswith(prefix):
                        continue
                    stats = os.stat(file_path)
                    objects.append(
                        StorageObject(
                            key=key,
                            size=stats.st_size,
                            last_modified=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
                        )
                    )
            objects.sort(key=lambda obj: obj.key)
            return objects

        objects = await asyncio.to_thread(_walk)
        log.debug("[LocalStorage:List] Found %d objects under %r", len(objects), prefix)
        return objects

    async def test_connection(self) -> ConnectionTestResult:
        probe_dir = os.path.join(self.base_path, f".connection-test-{uuid.uuid4().hex}")
        probe_file = os.path.join(probe_dir, "probe.txt")
        expected = b"connection-test"

        def _probe() -> None:
            os.makedirs(probe_dir, exist_ok=True)
            try:
                with open(probe_file, "wb") as f:
                    f.write(expected)
                with open(probe_file, "rb") as f:
                    if f.read() != expected:
                        raise OSError("Read-back content did not match what was written")
            finally:
                if os.path.exists(probe_file):
                    os.unlink(probe_file)
                os.rmdir(probe_dir)

        try:
            await asyncio.to_thread(_probe)
            return ConnectionTestResult.ok()
        except Exception as e:
            log.warning("[LocalStorage:TestConnection] Probe failed at %s: %s", self.base_path, e)
            return ConnectionTestResult.failed(str(e) or "Failed to access local storage")
