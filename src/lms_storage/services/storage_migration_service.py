"""
Storage migration between backends.

Switching the active backend does not move existing objects. This service
copies every object under a prefix from one adapter to another, keeping
keys unchanged, and reports progress as it goes.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from ..storage.base import StorageAdapter, StorageObject, UploadRequest

log = logging.getLogger(__name__)


class MigrationStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MigrationProgress:
    total: int = 0
    completed: int = 0
    failed: int = 0
    current: str = ""
    status: MigrationStatus = MigrationStatus.IDLE
    errors: list[str] = field(default_factory=list)

    def snapshot(self) -> "MigrationProgress":
        return replace(self, errors=list(self.errors))


@dataclass(frozen=True)
class MigrationEstimate:
    file_count: int
    total_bytes: int


ProgressCallback = Callable[[MigrationProgress], None]


class StorageMigrationService:
    """Copies objects from ``source`` to ``target``.

    A failure on one object is recorded in ``progress.errors`` and the run
    continues; a failure to list the source aborts the run and propagates.
    """

    def __init__(
        self,
        source: StorageAdapter,
        target: StorageAdapter,
        delete_source: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        is_public: Optional[Callable[[str], bool]] = None,
    ):
        self._source = source
        self._target = target
        self._delete_source = delete_source
        self._on_progress = on_progress
        self._is_public = is_public or (lambda key: False)
        self._progress = MigrationProgress()

    @property
    def progress(self) -> MigrationProgress:
        return self._progress.snapshot()

    def _notify(self) -> None:
        if self._on_progress:
            self._on_progress(self._progress.snapshot())

    async def estimate(self, prefix: str) -> MigrationEstimate:
        objects = await self._source.list(prefix)
        return MigrationEstimate(
            file_count=len(objects),
            total_bytes=sum(obj.size for obj in objects),
        )

    async def migrate(self, prefix: str) -> MigrationProgress:
        log_prefix = f"[StorageMigration:{self._source.backend_name}->{self._target.backend_name}] "
        started = time.monotonic()

        self._progress = MigrationProgress(status=MigrationStatus.RUNNING)
        self._notify()

        try:
            objects = await self._source.list(prefix)
        except Exception as e:
            self._progress.status = MigrationStatus.FAILED
            self._progress.errors.append(str(e))
            self._notify()
            log.error("%sCould not list source objects under %r: %s", log_prefix, prefix, e)
            raise

        self._progress.total = len(objects)
        self._notify()

        for obj in objects:
            self._progress.current = obj.key
            self._notify()
            try:
                await self._migrate_object(obj)
                self._progress.completed += 1
            except Exception as e:
                self._progress.failed += 1
                self._progress.errors.append(f"{obj.key}: {e}")
                log.warning("%sFailed to migrate %s: %s", log_prefix, obj.key, e)
            self._notify()

        self._progress.current = ""
        self._progress.status = MigrationStatus.FAILED if self._progress.failed else MigrationStatus.COMPLETED
        self._notify()

        log.info(
            "%sMigrated %d/%d objects (%d failed) in %.2fs",
            log_prefix,
            self._progress.completed,
            self._progress.total,
            self._progress.failed,
            time.monotonic() - started,
        )
        return self._progress.snapshot()

    async def _migrate_object(self, obj: StorageObject) -> None:
        content = await self._source.download(obj.key)
        await self._target.upload(
            UploadRequest(
                key=obj.key,
                payload=content,
                metadata={"migrated_at": datetime.now(timezone.utc).isoformat()},
                is_public=self._is_public(obj.key),
            )
        )
        if self._delete_source:
            await self._source.delete(obj.key)
