"""Domain services built on the storage layer."""

from .image_optimizer import (
    ImageOptimizationOptions,
    OptimizationResult,
    optimize_image,
    optimize_upload,
)
from .storage_migration_service import (
    MigrationEstimate,
    MigrationProgress,
    MigrationStatus,
    StorageMigrationService,
)
from .tenant_storage_service import (
    DocumentType,
    FileUpload,
    MaterialType,
    StorageCategory,
    TenantStorageService,
    build_key,
    tenant_prefix,
)

__all__ = [
    "ImageOptimizationOptions",
    "OptimizationResult",
    "optimize_image",
    "optimize_upload",
    "MigrationEstimate",
    "MigrationProgress",
    "MigrationStatus",
    "StorageMigrationService",
    "DocumentType",
    "FileUpload",
    "MaterialType",
    "StorageCategory",
    "TenantStorageService",
    "build_key",
    "tenant_prefix",
]
