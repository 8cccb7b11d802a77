"""
Tenant-scoped storage service.

Builds hierarchical, tenant-isolated object keys of the form
``tenants/<tenant_id>/<category>/<subpath>`` and implements the domain
upload and cascade-delete operations on top of the active storage adapter.

The tenant id always comes from the injected ``tenant_provider`` (the
authenticated session), never from method arguments.
"""

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import BinaryIO, Optional, Union

from ..storage.base import (
    DEFAULT_URL_EXPIRY_SECONDS,
    StorageObject,
    UploadRequest,
    UploadResult,
)
from ..storage.exceptions import StorageValidationError
from ..storage.factory import StorageHandle

log = logging.getLogger(__name__)

TENANT_ROOT = "tenants"

TenantProvider = Callable[[], Awaitable[str]]


class StorageCategory(str, Enum):
    STUDENTS = "students"
    TEACHERS = "teachers"
    COURSES = "courses"
    ASSIGNMENTS = "assignments"
    EXAMS = "exams"
    LIBRARY = "library"
    NOTICES = "notices"
    REPORTS = "reports"
    QUESTIONS = "questions"


class DocumentType(str, Enum):
    BIRTH_CERTIFICATE = "birth_certificate"
    TRANSFER_CERTIFICATE = "transfer_certificate"
    MARKSHEET = "marksheet"
    OTHER = "other"


class MaterialType(str, Enum):
    NOTES = "notes"
    SYLLABUS = "syllabus"
    VIDEO = "video"
    OTHER = "other"


def _coerce(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError as e:
        raise StorageValidationError(f"Invalid {enum_cls.__name__}: {value!r}") from e


def _validate_tenant_id(tenant_id: str) -> str:
    if not tenant_id or "/" in tenant_id or "\\" in tenant_id or tenant_id in (".", ".."):
        raise StorageValidationError(f"Invalid tenant id: {tenant_id!r}")
    return tenant_id


def tenant_prefix(tenant_id: str) -> str:
    """Return the key prefix that every object of ``tenant_id`` lives under."""
    return f"{TENANT_ROOT}/{_validate_tenant_id(tenant_id)}/"


def build_key(tenant_id: str, category: Union[StorageCategory, str], subpath: str) -> str:
    """Build ``tenants/<tenant_id>/<category>/<subpath>``.

    Raises:
        StorageValidationError: For an unknown category, a tenant id that
            could escape its namespace, or a subpath that is absolute or
            contains ``.``/``..`` segments.
    """
    try:
        category = StorageCategory(category)
    except ValueError as e:
        raise StorageValidationError(f"Unknown storage category: {category!r}") from e

    segments = subpath.split("/") if subpath else []
    if not segments or any(segment in ("", ".", "..") or "\\" in segment for segment in segments):
        raise StorageValidationError(f"Invalid storage subpath: {subpath!r}")

    return f"{tenant_prefix(tenant_id)}{category.value}/{subpath}"


@dataclass
class FileUpload:
    """A file received from a client, as handed over by the HTTP layer."""

    filename: str
    content: Union[bytes, BinaryIO]
    content_type: Optional[str] = None

    @property
    def extension(self) -> str:
        """Lower-cased text after the last dot of the filename, or ``bin``."""
        ext = os.path.splitext(os.path.basename(self.filename))[1].lstrip(".").lower()
        return ext or "bin"


class TenantStorageService:
    """Domain-level file operations scoped to the caller's tenant."""

    def __init__(
        self,
        handle: StorageHandle,
        tenant_provider: TenantProvider,
        clock: Callable[[], float] = time.time,
    ):
        self._handle = handle
        self._tenant_provider = tenant_provider
        self._clock = clock

    async def _tenant_id(self) -> str:
        return _validate_tenant_id(await self._tenant_provider())

    async def tenant_prefix(self) -> str:
        return tenant_prefix(await self._tenant_id())

    async def _upload(
        self,
        category: StorageCategory,
        subpath: str,
        file: FileUpload,
        is_public: bool,
        metadata: dict[str, str],
    ) -> UploadResult:
        tenant_id = await self._tenant_id()
        key = build_key(tenant_id, category, subpath)
        storage = await self._handle.get_active()

        metadata = {**metadata, "uploaded_at": self._now().isoformat()}
        result = await storage.upload(
            UploadRequest(
                key=key,
                payload=file.content,
                content_type=file.content_type,
                metadata=metadata,
                is_public=is_public,
            )
        )
        log.info(
            "[TenantStorage:%s:Upload] Stored %s (%d bytes, %s)",
            tenant_id,
            key,
            result.size,
            "public" if is_public else "private",
        )
        return result

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _timestamp_ms(self) -> int:
        return int(self._clock() * 1000)

    # Uploads

    async def upload_student_photo(self, student_id: str, file: FileUpload) -> UploadResult:
        """Upload a student's profile photo. Re-uploading replaces the previous photo."""
        return await self._upload(
            StorageCategory.STUDENTS,
            f"photos/{student_id}/profile.jpg",
            file,
            is_public=True,
            metadata={"student_id": student_id},
        )

    async def upload_student_document(
        self,
        student_id: str,
        document_type: Union[DocumentType, str],
        file: FileUpload,
    ) -> UploadResult:
        document_type = _coerce(DocumentType, document_type)
        return await self._upload(
            StorageCategory.STUDENTS,
            f"documents/{student_id}/{document_type.value}.{file.extension}",
            file,
            is_public=False,
            metadata={"student_id": student_id, "document_type": document_type.value},
        )

    async def upload_assignment_submission(
        self,
        assignment_id: str,
        student_id: str,
        file: FileUpload,
        version: int = 1,
    ) -> UploadResult:
        """Upload a submission; each version gets its own key so history is kept."""
        if version < 1:
            raise StorageValidationError(f"Submission version must be >= 1, got {version}")
        return await self._upload(
            StorageCategory.ASSIGNMENTS,
            f"{assignment_id}/submissions/{student_id}/submission_v{version}.{file.extension}",
            file,
            is_public=False,
            metadata={
                "assignment_id": assignment_id,
                "student_id": student_id,
                "version": str(version),
            },
        )

    async def upload_course_material(
        self,
        course_id: str,
        material_type: Union[MaterialType, str],
        file: FileUpload,
    ) -> UploadResult:
        material_type = _coerce(MaterialType, material_type)
        return await self._upload(
            StorageCategory.COURSES,
            f"{course_id}/materials/{material_type.value}_{self._timestamp_ms()}.{file.extension}",
            file,
            is_public=False,
            metadata={"course_id": course_id, "material_type": material_type.value},
        )

    async def upload_course_featured_image(self, course_id: str, file: FileUpload) -> UploadResult:
        return await self._upload(
            StorageCategory.COURSES,
            f"{course_id}/featured/{self._timestamp_ms()}.{file.extension}",
            file,
            is_public=True,
            metadata={"course_id": course_id, "role": "featured_image"},
        )

    async def upload_course_intro_video(
        self,
        course_id: str,
        file: FileUpload,
        duration: Optional[float] = None,
    ) -> UploadResult:
        return await self._upload(
            StorageCategory.COURSES,
            f"{course_id}/intro-video/{self._timestamp_ms()}.{file.extension}",
            file,
            is_public=True,
            metadata={"course_id": course_id, "role": "intro_video", "duration": str(duration or 0)},
        )

    async def upload_question_image(self, question_id: str, file: FileUpload) -> UploadResult:
        return await self._upload(
            StorageCategory.QUESTIONS,
            f"images/{question_id}/{self._timestamp_ms()}.{file.extension}",
            file,
            is_public=False,
            metadata={"question_id": question_id},
        )

    async def upload_question_audio(
        self,
        question_id: str,
        file: FileUpload,
        duration: Optional[float] = None,
    ) -> UploadResult:
        return await self._upload(
            StorageCategory.QUESTIONS,
            f"audio/{question_id}/{self._timestamp_ms()}.{file.extension}",
            file,
            is_public=False,
            metadata={"question_id": question_id, "duration": str(duration or 0)},
        )

    # Cascade deletes

    async def _delete_by_prefixes(self, prefixes: Iterable[str]) -> int:
        """List every prefix, then delete the union of keys in one bulk call.

        All cascade deletes go through here so they inherit the adapters'
        complete-listing and batching behaviour.
        """
        prefixes = list(prefixes)
        storage = await self._handle.get_active()

        listings = await asyncio.gather(*(storage.list(prefix) for prefix in prefixes))
        keys = sorted({obj.key for listing in listings for obj in listing})
        if keys:
            await storage.delete_many(keys)

        log.info("[TenantStorage:CascadeDelete] Deleted %d objects under %s", len(keys), ", ".join(prefixes))
        return len(keys)

    async def _entity_prefix(self, category: StorageCategory, subpath: str) -> str:
        return build_key(await self._tenant_id(), category, subpath) + "/"

    async def delete_student_files(self, student_id: str) -> int:
        return await self._delete_by_prefixes(
            [
                await self._entity_prefix(StorageCategory.STUDENTS, f"photos/{student_id}"),
                await self._entity_prefix(StorageCategory.STUDENTS, f"documents/{student_id}"),
            ]
        )

    async def delete_assignment_submissions(self, assignment_id: str, student_id: str) -> int:
        return await self._delete_by_prefixes(
            [await self._entity_prefix(StorageCategory.ASSIGNMENTS, f"{assignment_id}/submissions/{student_id}")]
        )

    async def delete_assignment_files(self, assignment_id: str) -> int:
        return await self._delete_by_prefixes(
            [await self._entity_prefix(StorageCategory.ASSIGNMENTS, assignment_id)]
        )

    async def delete_course_files(self, course_id: str) -> int:
        return await self._delete_by_prefixes(
            [await self._entity_prefix(StorageCategory.COURSES, course_id)]
        )

    async def delete_question_files(self, question_id: str) -> int:
        return await self._delete_by_prefixes(
            [
                await self._entity_prefix(StorageCategory.QUESTIONS, f"images/{question_id}"),
                await self._entity_prefix(StorageCategory.QUESTIONS, f"audio/{question_id}"),
            ]
        )

    # Key-level helpers, restricted to the caller's own namespace

    async def _scoped(self, key: str) -> str:
        prefix = await self.tenant_prefix()
        if not key.startswith(prefix) or ".." in key.split("/"):
            raise StorageValidationError(f"Key is outside the current tenant's namespace: {key!r}", key=key)
        return key

    async def get_signed_url(self, key: str, expires_in: int = DEFAULT_URL_EXPIRY_SECONDS) -> str:
        key = await self._scoped(key)
        storage = await self._handle.get_active()
        return await storage.get_url(key, expires_in)

    async def download_file(self, key: str) -> bytes:
        key = await self._scoped(key)
        storage = await self._handle.get_active()
        return await storage.download(key)

    async def delete_file(self, key: str) -> None:
        key = await self._scoped(key)
        storage = await self._handle.get_active()
        await storage.delete(key)

    async def file_exists(self, key: str) -> bool:
        key = await self._scoped(key)
        storage = await self._handle.get_active()
        return await storage.exists(key)

    async def list_files(self, prefix: str) -> list[StorageObject]:
        prefix = await self._scoped(prefix)
        storage = await self._handle.get_active()
        return await storage.list(prefix)
