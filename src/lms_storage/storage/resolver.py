"""
Resolution of the active storage configuration.

Precedence, most to least authoritative:
1. The tenant's persisted settings record.
2. Environment variables (no record, no store, or the store is down).
   A record that exists but fails validation is an error, not a fallback.
3. Local storage under ``./storage``.
"""

import logging
import os
from collections.abc import Mapping
from typing import Optional, Union

from pydantic import ValidationError

from .config import LocalStorageConfig, RemoteStorageConfig, config_from_env
from .exceptions import StorageConfigurationError
from .settings import SettingsStore

log = logging.getLogger(__name__)


class StorageConfigResolver:
    """Determines which backend and credentials are active."""

    def __init__(
        self,
        settings_store: Optional[SettingsStore] = None,
        tenant_id: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._settings_store = settings_store
        self._tenant_id = tenant_id
        self._environ = environ

    async def resolve(self) -> Union[LocalStorageConfig, RemoteStorageConfig]:
        """Return the active configuration.

        Raises:
            StorageConfigurationError: If remote storage is selected (in the
                settings record or the environment) without complete
                credentials. Incomplete remote settings never fall back to
                local storage.
            StorageConfigurationError: If the stored record is corrupt
                (unknown storage type, wrongly typed fields).
        """
        log_prefix = f"[StorageConfigResolver:{self._tenant_id or '-'}] "

        if self._settings_store is not None:
            try:
                settings = await self._settings_store.get_storage_settings(self._tenant_id)
            except StorageConfigurationError:
                raise
            except ValidationError as e:
                # A corrupt record is a configuration error, not an outage.
                raise StorageConfigurationError(
                    f"Stored storage settings for tenant {self._tenant_id!r} are invalid: {e}",
                    cause=e,
                ) from e
            except Exception as e:
                log.warning(
                    "%sSettings store unavailable, falling back to environment: %s",
                    log_prefix,
                    e,
                )
                settings = None

            if settings is not None:
                config = settings.to_storage_config()
                log.debug("%sUsing %s storage from tenant settings", log_prefix, config.type)
                return config

        config = config_from_env(os.environ if self._environ is None else self._environ)
        log.debug("%sUsing %s storage from environment/defaults", log_prefix, config.type)
        return config
