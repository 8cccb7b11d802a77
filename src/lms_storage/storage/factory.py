"""Factory for storage adapters and the process-wide active adapter handle."""

import asyncio
import logging
from typing import Optional, Union

from .base import ConnectionTestResult, StorageAdapter
from .config import LocalStorageConfig, RemoteStorageConfig
from .local_storage import LocalStorageAdapter
from .resolver import StorageConfigResolver
from .s3_storage import S3StorageAdapter

log = logging.getLogger(__name__)


def create_storage_adapter(config: Union[LocalStorageConfig, RemoteStorageConfig]) -> StorageAdapter:
    """Create the adapter matching ``config``.

    Raises:
        ValueError: If the config variant is not recognised.
    """
    if isinstance(config, RemoteStorageConfig):
        return S3StorageAdapter(
            bucket=config.bucket,
            account_id=config.account_id,
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
            public_url=config.public_url,
            endpoint_url=config.endpoint_url,
            region=config.region,
        )
    if isinstance(config, LocalStorageConfig):
        return LocalStorageAdapter(base_path=config.path)

    raise ValueError(f"Unsupported storage config: {type(config).__name__}")


async def check_storage_config(config: Union[LocalStorageConfig, RemoteStorageConfig]) -> ConnectionTestResult:
    """Probe a candidate configuration before it is saved.

    Builds a throwaway adapter, so the active handle is never affected.
    Never raises: construction failures are reported like probe failures.
    """
    try:
        adapter = create_storage_adapter(config)
    except Exception as e:
        log.warning("[StorageFactory:CheckConfig] Could not build %s adapter: %s", config.type, e)
        return ConnectionTestResult.failed(str(e) or f"Failed to create {config.type} storage adapter")
    return await adapter.test_connection()


class StorageHandle:
    """Holds at most one constructed adapter and rebuilds it on demand.

    ``get_active()`` builds the adapter from the resolver on first use and
    returns the cached instance afterwards. ``reset()`` drops the cached
    instance so the next ``get_active()`` re-resolves configuration; callers
    still holding the previous adapter can keep using it until they finish.
    """

    def __init__(self, resolver: Optional[StorageConfigResolver] = None):
        self._resolver = resolver or StorageConfigResolver()
        self._adapter: Optional[StorageAdapter] = None
        self._generation = 0
        self._build_lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._adapter is not None

    async def get_active(self) -> StorageAdapter:
        adapter = self._adapter
        if adapter is not None:
            return adapter

        async with self._build_lock:
            adapter = self._adapter
            if adapter is not None:
                return adapter

            generation = self._generation
            config = await self._resolver.resolve()
            adapter = await asyncio.to_thread(create_storage_adapter, config)

            # A reset() that landed while we were building wins; hand this
            # caller its adapter but don't cache a possibly stale one.
            if generation == self._generation:
                self._adapter = adapter
                log.info("[StorageHandle] Activated %s storage adapter", adapter.backend_name)
            return adapter

    def reset(self) -> None:
        self._generation += 1
        self._adapter = None
        log.info("[StorageHandle] Reset; next access will re-resolve storage configuration")
