"""Object storage abstraction supporting the local filesystem and S3-compatible stores."""

from .base import (
    DEFAULT_URL_EXPIRY_SECONDS,
    ConnectionTestResult,
    StorageAdapter,
    StorageObject,
    UploadRequest,
    UploadResult,
)
from .config import (
    LocalStorageConfig,
    RemoteStorageConfig,
    StorageConfig,
    StorageType,
    config_from_env,
)
from .exceptions import (
    StorageConfigurationError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
    StorageValidationError,
)
from .factory import StorageHandle, check_storage_config, create_storage_adapter
from .local_storage import LocalStorageAdapter
from .resolver import StorageConfigResolver
from .s3_storage import S3StorageAdapter
from .settings import SettingsStore, TenantStorageSettings, update_storage_settings

__all__ = [
    "DEFAULT_URL_EXPIRY_SECONDS",
    "ConnectionTestResult",
    "StorageAdapter",
    "StorageObject",
    "UploadRequest",
    "UploadResult",
    "LocalStorageConfig",
    "RemoteStorageConfig",
    "StorageConfig",
    "StorageType",
    "config_from_env",
    "StorageError",
    "StorageNotFoundError",
    "StorageConnectionError",
    "StoragePermissionError",
    "StorageConfigurationError",
    "StorageValidationError",
    "StorageHandle",
    "check_storage_config",
    "create_storage_adapter",
    "LocalStorageAdapter",
    "S3StorageAdapter",
    "StorageConfigResolver",
    "SettingsStore",
    "TenantStorageSettings",
    "update_storage_settings",
]
