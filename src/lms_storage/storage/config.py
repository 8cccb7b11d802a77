"""
Storage backend configuration models.

A configuration is exactly one of two variants, discriminated by ``type``:
``LocalStorageConfig`` or ``RemoteStorageConfig``. Switching variants does
not migrate objects already stored in the previous backend.
"""

import os
from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import StorageConfigurationError
from .local_storage import DEFAULT_LOCAL_PATH

ENV_STORAGE_TYPE = "STORAGE_TYPE"
ENV_STORAGE_PATH = "STORAGE_PATH"
ENV_REMOTE_ACCOUNT_ID = "REMOTE_ACCOUNT_ID"
ENV_REMOTE_ACCESS_KEY_ID = "REMOTE_ACCESS_KEY_ID"
ENV_REMOTE_SECRET_ACCESS_KEY = "REMOTE_SECRET_ACCESS_KEY"
ENV_REMOTE_BUCKET = "REMOTE_BUCKET"
ENV_REMOTE_PUBLIC_URL = "REMOTE_PUBLIC_URL"
ENV_REMOTE_ENDPOINT_URL = "REMOTE_ENDPOINT_URL"

REMOTE_REQUIRED_FIELDS = ("account_id", "access_key_id", "secret_access_key", "bucket")


class StorageType(str, Enum):
    """Backend selector as persisted in tenant settings."""

    LOCAL = "LOCAL"
    REMOTE = "REMOTE"

    @classmethod
    def parse(cls, value: str) -> "StorageType":
        try:
            return cls(value.strip().upper())
        except ValueError as e:
            supported = ", ".join(member.value.lower() for member in cls)
            raise StorageConfigurationError(
                f"Unsupported storage type: {value!r}. Supported: {supported}", cause=e
            ) from e


class LocalStorageConfig(BaseModel):
    """Filesystem backend rooted at ``path``."""

    model_config = ConfigDict(frozen=True)

    type: Literal["local"] = "local"
    path: str = Field(default=DEFAULT_LOCAL_PATH, min_length=1)


class RemoteStorageConfig(BaseModel):
    """S3-compatible backend.

    Credentials and bucket are always required. The endpoint is either
    derived from ``account_id`` (Cloudflare R2) or given explicitly as
    ``endpoint_url`` (MinIO, AWS S3), so one of the two must be set.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["remote"] = "remote"
    account_id: Optional[str] = Field(default=None, min_length=1)
    access_key_id: str = Field(min_length=1)
    secret_access_key: str = Field(min_length=1, repr=False)
    bucket: str = Field(min_length=1)
    public_url: Optional[str] = None
    endpoint_url: Optional[str] = None
    region: str = "auto"

    @model_validator(mode="after")
    def _require_endpoint_source(self) -> "RemoteStorageConfig":
        if not self.account_id and not self.endpoint_url:
            raise ValueError("either account_id or endpoint_url must be set")
        return self


StorageConfig = Annotated[
    Union[LocalStorageConfig, RemoteStorageConfig],
    Field(discriminator="type"),
]


def _blank(value: str | None) -> bool:
    return not (value or "").strip()


def build_remote_config(
    account_id: str | None,
    access_key_id: str | None,
    secret_access_key: str | None,
    bucket: str | None,
    public_url: str | None = None,
    endpoint_url: str | None = None,
    source: str = "settings",
) -> RemoteStorageConfig:
    """Build a remote config, failing fast if any required field is blank.

    ``account_id`` may be left blank when ``endpoint_url`` is given.

    Raises:
        StorageConfigurationError: Listing every missing field.
    """
    values = {
        "account_id": account_id,
        "access_key_id": access_key_id,
        "secret_access_key": secret_access_key,
        "bucket": bucket,
    }
    endpoint_url = None if _blank(endpoint_url) else endpoint_url.strip()
    missing = [
        name
        for name in REMOTE_REQUIRED_FIELDS
        if _blank(values[name]) and not (name == "account_id" and endpoint_url)
    ]
    if missing:
        raise StorageConfigurationError(
            f"Remote storage selected in {source} but required fields are missing: {', '.join(missing)}",
            missing_fields=missing,
        )

    try:
        return RemoteStorageConfig(
            **{name: None if _blank(value) else value.strip() for name, value in values.items()},
            public_url=public_url or None,
            endpoint_url=endpoint_url,
        )
    except ValidationError as e:
        raise StorageConfigurationError(f"Invalid remote storage configuration in {source}: {e}", cause=e) from e


def config_from_env(environ: Mapping[str, str] | None = None) -> Union[LocalStorageConfig, RemoteStorageConfig]:
    """Read the storage configuration from environment variables.

    Defaults to local storage under ``./storage`` when nothing is set.
    """
    env = os.environ if environ is None else environ
    storage_type = StorageType.parse(env.get(ENV_STORAGE_TYPE) or StorageType.LOCAL.value)

    if storage_type is StorageType.REMOTE:
        return build_remote_config(
            account_id=env.get(ENV_REMOTE_ACCOUNT_ID),
            access_key_id=env.get(ENV_REMOTE_ACCESS_KEY_ID),
            secret_access_key=env.get(ENV_REMOTE_SECRET_ACCESS_KEY),
            bucket=env.get(ENV_REMOTE_BUCKET),
            public_url=env.get(ENV_REMOTE_PUBLIC_URL),
            endpoint_url=env.get(ENV_REMOTE_ENDPOINT_URL),
            source="environment",
        )

    return LocalStorageConfig(path=env.get(ENV_STORAGE_PATH) or DEFAULT_LOCAL_PATH)
