"""
Persisted per-tenant storage settings.

The settings store itself (database table, key-value service) lives outside
this package; it only has to satisfy ``SettingsStore``.
"""

import logging
from typing import TYPE_CHECKING, Any, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from .config import (
    LocalStorageConfig,
    RemoteStorageConfig,
    StorageType,
    build_remote_config,
)
from .local_storage import DEFAULT_LOCAL_PATH

if TYPE_CHECKING:
    from .factory import StorageHandle

log = logging.getLogger(__name__)


class TenantStorageSettings(BaseModel):
    """Storage section of a tenant settings record.

    Accepts both the snake_case field names and the camelCase column names
    (``storageType``, ``storageRemoteBucket``, ...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    storage_type: StorageType = StorageType.LOCAL
    storage_local_path: Optional[str] = None
    storage_remote_account_id: Optional[str] = None
    storage_remote_access_key_id: Optional[str] = None
    storage_remote_secret_access_key: Optional[str] = None
    storage_remote_bucket: Optional[str] = None
    storage_remote_public_url: Optional[str] = None
    storage_remote_endpoint_url: Optional[str] = None

    @field_validator("storage_type", mode="before")
    @classmethod
    def _parse_storage_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            return StorageType.parse(v)
        return v

    def to_storage_config(self) -> Union[LocalStorageConfig, RemoteStorageConfig]:
        """Convert the record to a backend config.

        Raises:
            StorageConfigurationError: If remote storage is selected with any
                required field left blank.
        """
        if self.storage_type is StorageType.REMOTE:
            return build_remote_config(
                account_id=self.storage_remote_account_id,
                access_key_id=self.storage_remote_access_key_id,
                secret_access_key=self.storage_remote_secret_access_key,
                bucket=self.storage_remote_bucket,
                public_url=self.storage_remote_public_url,
                endpoint_url=self.storage_remote_endpoint_url,
                source="tenant settings",
            )
        return LocalStorageConfig(path=self.storage_local_path or DEFAULT_LOCAL_PATH)


class SettingsStore(Protocol):
    """Persistence collaborator for tenant storage settings."""

    async def get_storage_settings(self, tenant_id: Optional[str]) -> Optional[TenantStorageSettings]:
        """Return the tenant's settings record, or None if none was saved."""
        ...

    async def save_storage_settings(self, tenant_id: str, settings: TenantStorageSettings) -> None:
        """Create or replace the tenant's settings record."""
        ...


async def update_storage_settings(
    store: SettingsStore,
    tenant_id: str,
    settings: TenantStorageSettings,
    handle: "StorageHandle",
) -> None:
    """Validate, persist and activate new storage settings.

    The record is validated before anything is written, so an incomplete
    remote configuration is rejected without touching the store. After a
    successful save the handle is reset and the next storage operation
    uses the new backend.

    Raises:
        StorageConfigurationError: If the settings are incomplete.
    """
    config = settings.to_storage_config()
    await store.save_storage_settings(tenant_id, settings)
    handle.reset()
    log.info("[StorageSettings:%s] Saved %s storage settings and reset the active adapter", tenant_id, config.type)
