"""Shared fixtures for storage unit tests."""

import pytest
from s3_fakes import FakeS3Client

from lms_storage.storage.local_storage import LocalStorageAdapter
from lms_storage.storage.s3_storage import S3StorageAdapter


@pytest.fixture()
def fake_s3():
    return FakeS3Client()


@pytest.fixture()
def s3_adapter(fake_s3):
    return S3StorageAdapter(bucket="school-assets", s3_client=fake_s3)


@pytest.fixture()
def public_s3_adapter(fake_s3):
    return S3StorageAdapter(
        bucket="school-assets",
        public_url="https://cdn.example.com/",
        s3_client=fake_s3,
    )


@pytest.fixture()
def storage_root(tmp_path):
    return tmp_path / "storage"


@pytest.fixture()
def local_adapter(storage_root):
    return LocalStorageAdapter(base_path=str(storage_root))
