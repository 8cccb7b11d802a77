"""Common exception hierarchy for storage adapters."""


class StorageError(Exception):
    """Base exception for all storage operations."""

    def __init__(self, message: str, key: str | None = None, cause: Exception | None = None):
        self.key = key
        self.cause = cause
        super().__init__(message)


class StorageNotFoundError(StorageError):
    """Raised when a requested key does not exist."""


class StorageConnectionError(StorageError):
    """Raised when the storage backend is unreachable or rejects the request."""


class StoragePermissionError(StorageConnectionError):
    """Raised when credentials are invalid or access is denied."""


class StorageConfigurationError(StorageError):
    """Raised when the selected backend is missing required settings."""

    def __init__(self, message: str, missing_fields: list[str] | None = None, cause: Exception | None = None):
        self.missing_fields = missing_fields or []
        super().__init__(message, cause=cause)


class StorageValidationError(StorageError):
    """Raised when a key or argument is rejected before any I/O happens."""
