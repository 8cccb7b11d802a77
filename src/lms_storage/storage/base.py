"""Abstract base class and value types shared by storage adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO

DEFAULT_URL_EXPIRY_SECONDS = 3600


@dataclass(frozen=True)
class StorageObject:
    """Metadata for a stored object as observed at listing time."""

    key: str
    size: int
    last_modified: datetime
    etag: str | None = None


@dataclass(frozen=True)
class UploadRequest:
    """Everything an adapter needs to store one object."""

    key: str
    payload: bytes | bytearray | memoryview | BinaryIO
    content_type: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)
    is_public: bool = False

    def read_payload(self) -> bytes:
        """Return the payload as bytes, reading file-like payloads from their current position."""
        if isinstance(self.payload, (bytes, bytearray, memoryview)):
            return bytes(self.payload)
        return self.payload.read()


@dataclass(frozen=True)
class UploadResult:
    key: str
    url: str
    size: int
    etag: str | None = None


@dataclass(frozen=True)
class ConnectionTestResult:
    """Outcome of a connectivity probe. Never raised, always returned."""

    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> "ConnectionTestResult":
        return cls(success=True)

    @classmethod
    def failed(cls, message: str) -> "ConnectionTestResult":
        return cls(success=False, error=message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            result["error"] = self.error
        return result


class StorageAdapter(ABC):
    """Backend-agnostic interface for binary asset storage.

    Every adapter must behave identically from the caller's point of view:
    ``delete`` and ``delete_many`` are idempotent, ``exists`` never raises
    for a missing key, ``list`` returns the complete result set and
    ``test_connection`` never raises.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Short identifier of the backend (e.g. "local", "s3")."""

    @abstractmethod
    async def upload(self, request: UploadRequest) -> UploadResult:
        """Store the payload under ``request.key``, overwriting any existing object."""

    @abstractmethod
    async def download(self, key: str) -> bytes:
        """Return the object content. Raises StorageNotFoundError if missing."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a single object. No-op if the key doesn't exist."""

    @abstractmethod
    async def delete_many(self, keys: list[str]) -> None:
        """Delete every key in ``keys``. Keys that are already absent are not an error."""

    @abstractmethod
    async def get_url(self, key: str, expires_in: int = DEFAULT_URL_EXPIRY_SECONDS) -> str:
        """Return an access URL for ``key``.

        Backends with a public base URL return a stable URL; otherwise the
        URL is signed and usable for ``expires_in`` seconds.
        """

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return whether an object is stored at ``key``."""

    @abstractmethod
    async def list(self, prefix: str) -> list[StorageObject]:
        """Return every object whose key starts with ``prefix``."""

    @abstractmethod
    async def test_connection(self) -> ConnectionTestResult:
        """Probe the backend and report the outcome without raising."""
