"""Tests for the tenant-scoped storage service."""

import io
from unittest.mock import AsyncMock, MagicMock

import pytest

from lms_storage.services.tenant_storage_service import (
    DocumentType,
    FileUpload,
    MaterialType,
    StorageCategory,
    TenantStorageService,
    build_key,
    tenant_prefix,
)
from lms_storage.storage.base import UploadRequest, UploadResult
from lms_storage.storage.exceptions import StorageValidationError
from lms_storage.storage.factory import StorageHandle
from lms_storage.storage.resolver import StorageConfigResolver

FIXED_CLOCK = 1700000000.5
FIXED_MS = 1700000000500


def tenant(tenant_id):
    async def provider():
        return tenant_id
    return provider


def adapter_handle(adapter):
    handle = MagicMock(spec=StorageHandle)
    handle.get_active = AsyncMock(return_value=adapter)
    return handle


@pytest.fixture()
def local_handle(storage_root):
    return StorageHandle(StorageConfigResolver(environ={"STORAGE_PATH": str(storage_root)}))


@pytest.fixture()
def service(local_handle):
    return TenantStorageService(local_handle, tenant("T1"), clock=lambda: FIXED_CLOCK)


@pytest.fixture()
def other_tenant_service(local_handle):
    return TenantStorageService(local_handle, tenant("T2"), clock=lambda: FIXED_CLOCK)


@pytest.fixture()
def recording_adapter():
    adapter = AsyncMock()
    adapter.upload.side_effect = lambda request: UploadResult(
        key=request.key, url=f"/api/storage/{request.key}", size=len(request.read_payload())
    )
    return adapter


@pytest.fixture()
def recording_service(recording_adapter):
    return TenantStorageService(adapter_handle(recording_adapter), tenant("T1"), clock=lambda: FIXED_CLOCK)


def _uploaded(recording_adapter) -> UploadRequest:
    return recording_adapter.upload.call_args.args[0]


class TestKeyBuilding:
    def test_build_key_layout(self):
        assert build_key("T1", StorageCategory.STUDENTS, "photos/S1/profile.jpg") == (
            "tenants/T1/students/photos/S1/profile.jpg"
        )

    def test_build_key_accepts_category_value(self):
        assert build_key("T1", "notices", "n1.pdf") == "tenants/T1/notices/n1.pdf"

    def test_keys_of_different_tenants_never_share_prefix(self):
        key_a = build_key("A", StorageCategory.REPORTS, "r.pdf")
        key_b = build_key("AB", StorageCategory.REPORTS, "r.pdf")

        assert not key_b.startswith(tenant_prefix("A"))
        assert key_a.startswith(tenant_prefix("A"))

    @pytest.mark.parametrize("tenant_id", ["", "a/b", "..", ".", "a\\b"])
    def test_invalid_tenant_ids_rejected(self, tenant_id):
        with pytest.raises(StorageValidationError):
            build_key(tenant_id, StorageCategory.STUDENTS, "x")

    @pytest.mark.parametrize("subpath", ["", "../T2/secret", "a/../../b", "/abs", "a//b", "a\\b", "./x"])
    def test_invalid_subpaths_rejected(self, subpath):
        with pytest.raises(StorageValidationError):
            build_key("T1", StorageCategory.STUDENTS, subpath)

    def test_unknown_category_rejected(self):
        with pytest.raises(StorageValidationError, match="Unknown storage category"):
            build_key("T1", "payroll", "x")


class TestFileUpload:
    @pytest.mark.parametrize(
        "filename,expected",
        [("Report.PDF", "pdf"), ("archive.tar.gz", "gz"), ("README", "bin"), ("dir.v2/noext", "bin")],
    )
    def test_extension(self, filename, expected):
        assert FileUpload(filename=filename, content=b"").extension == expected


class TestUploads:
    @pytest.mark.asyncio
    async def test_student_photo_on_local_storage(self, service, storage_root):
        result = await service.upload_student_photo("S1", FileUpload("me.png", b"\x89PNG", "image/png"))

        assert result.key == "tenants/T1/students/photos/S1/profile.jpg"
        assert result.url == "/api/storage/tenants/T1/students/photos/S1/profile.jpg"
        assert (storage_root / "tenants" / "T1" / "students" / "photos" / "S1" / "profile.jpg").read_bytes() == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_student_photo_replaces_previous(self, service):
        await service.upload_student_photo("S1", FileUpload("a.jpg", b"old"))
        await service.upload_student_photo("S1", FileUpload("b.jpg", b"new"))

        assert await service.download_file("tenants/T1/students/photos/S1/profile.jpg") == b"new"

    @pytest.mark.asyncio
    async def test_student_photo_is_public_with_metadata(self, recording_service, recording_adapter):
        await recording_service.upload_student_photo("S1", FileUpload("me.jpg", b"img", "image/jpeg"))

        request = _uploaded(recording_adapter)
        assert request.is_public is True
        assert request.content_type == "image/jpeg"
        assert request.metadata["student_id"] == "S1"
        assert request.metadata["uploaded_at"] == "2023-11-14T22:13:20.500000+00:00"

    @pytest.mark.asyncio
    async def test_student_document(self, recording_service, recording_adapter):
        result = await recording_service.upload_student_document(
            "S1", DocumentType.MARKSHEET, FileUpload("scan.PDF", b"%PDF")
        )

        assert result.key == "tenants/T1/students/documents/S1/marksheet.pdf"
        assert _uploaded(recording_adapter).is_public is False

    @pytest.mark.asyncio
    async def test_student_document_type_from_string(self, recording_service):
        result = await recording_service.upload_student_document(
            "S1", "birth_certificate", FileUpload("bc.jpg", b"x")
        )
        assert result.key == "tenants/T1/students/documents/S1/birth_certificate.jpg"

    @pytest.mark.asyncio
    async def test_student_document_unknown_type_rejected(self, recording_service, recording_adapter):
        with pytest.raises(StorageValidationError):
            await recording_service.upload_student_document("S1", "passport", FileUpload("p.pdf", b"x"))
        recording_adapter.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_assignment_submission_versions(self, recording_service, recording_adapter):
        first = await recording_service.upload_assignment_submission("A1", "S1", FileUpload("essay.docx", b"v1"))
        third = await recording_service.upload_assignment_submission(
            "A1", "S1", FileUpload("essay.docx", b"v3"), version=3
        )

        assert first.key == "tenants/T1/assignments/A1/submissions/S1/submission_v1.docx"
        assert third.key == "tenants/T1/assignments/A1/submissions/S1/submission_v3.docx"
        assert _uploaded(recording_adapter).metadata["version"] == "3"
        assert _uploaded(recording_adapter).is_public is False

    @pytest.mark.asyncio
    async def test_assignment_submission_rejects_version_zero(self, recording_service):
        with pytest.raises(StorageValidationError):
            await recording_service.upload_assignment_submission("A1", "S1", FileUpload("e.pdf", b"x"), version=0)

    @pytest.mark.asyncio
    async def test_course_material(self, recording_service, recording_adapter):
        result = await recording_service.upload_course_material("C1", MaterialType.NOTES, FileUpload("week1.pdf", b"x"))

        assert result.key == f"tenants/T1/courses/C1/materials/notes_{FIXED_MS}.pdf"
        assert _uploaded(recording_adapter).is_public is False

    @pytest.mark.asyncio
    async def test_course_featured_image_is_public(self, recording_service, recording_adapter):
        result = await recording_service.upload_course_featured_image("C1", FileUpload("cover.webp", b"x"))

        assert result.key == f"tenants/T1/courses/C1/featured/{FIXED_MS}.webp"
        assert _uploaded(recording_adapter).is_public is True

    @pytest.mark.asyncio
    async def test_course_intro_video_is_public(self, recording_service, recording_adapter):
        result = await recording_service.upload_course_intro_video("C1", FileUpload("intro.mp4", b"x"), duration=42.5)

        request = _uploaded(recording_adapter)
        assert result.key == f"tenants/T1/courses/C1/intro-video/{FIXED_MS}.mp4"
        assert request.is_public is True
        assert request.metadata["duration"] == "42.5"

    @pytest.mark.asyncio
    async def test_question_image_and_audio(self, recording_service, recording_adapter):
        image = await recording_service.upload_question_image("Q1", FileUpload("diagram.png", b"x"))
        audio = await recording_service.upload_question_audio("Q1", FileUpload("prompt.mp3", io.BytesIO(b"x")))

        assert image.key == f"tenants/T1/questions/images/Q1/{FIXED_MS}.png"
        assert audio.key == f"tenants/T1/questions/audio/Q1/{FIXED_MS}.mp3"
        assert _uploaded(recording_adapter).is_public is False

    @pytest.mark.asyncio
    async def test_tenant_id_taken_from_provider(self, recording_adapter):
        svc = TenantStorageService(adapter_handle(recording_adapter), tenant("school-42"), clock=lambda: FIXED_CLOCK)

        result = await svc.upload_student_photo("S1", FileUpload("p.jpg", b"x"))

        assert result.key.startswith("tenants/school-42/")

    @pytest.mark.asyncio
    async def test_invalid_tenant_from_provider_rejected(self, recording_adapter):
        svc = TenantStorageService(adapter_handle(recording_adapter), tenant("../evil"))

        with pytest.raises(StorageValidationError):
            await svc.upload_student_photo("S1", FileUpload("p.jpg", b"x"))
        recording_adapter.upload.assert_not_called()


class TestCascadeDeletes:
    @pytest.mark.asyncio
    async def test_delete_student_files_only_touches_that_student(self, service, other_tenant_service):
        await service.upload_student_photo("S1", FileUpload("p.jpg", b"x"))
        await service.upload_student_document("S1", "marksheet", FileUpload("m.pdf", b"x"))
        await service.upload_student_document("S1", "other", FileUpload("o.pdf", b"x"))
        await service.upload_student_photo("S2", FileUpload("p.jpg", b"x"))
        await service.upload_student_photo("S10", FileUpload("p.jpg", b"x"))
        await other_tenant_service.upload_student_photo("S1", FileUpload("p.jpg", b"x"))

        deleted = await service.delete_student_files("S1")

        assert deleted == 3
        remaining = [obj.key for obj in await service.list_files("tenants/T1/students/")]
        assert remaining == [
            "tenants/T1/students/photos/S10/profile.jpg",
            "tenants/T1/students/photos/S2/profile.jpg",
        ]
        assert await other_tenant_service.file_exists("tenants/T2/students/photos/S1/profile.jpg") is True

    @pytest.mark.asyncio
    async def test_delete_student_files_without_files_returns_zero(self, service):
        assert await service.delete_student_files("nobody") == 0

    @pytest.mark.asyncio
    async def test_delete_assignment_submissions_for_one_student(self, service):
        await service.upload_assignment_submission("A1", "S1", FileUpload("a.pdf", b"1"))
        await service.upload_assignment_submission("A1", "S1", FileUpload("a.pdf", b"2"), version=2)
        await service.upload_assignment_submission("A1", "S2", FileUpload("a.pdf", b"x"))

        assert await service.delete_assignment_submissions("A1", "S1") == 2
        assert [obj.key for obj in await service.list_files("tenants/T1/assignments/")] == [
            "tenants/T1/assignments/A1/submissions/S2/submission_v1.pdf"
        ]

    @pytest.mark.asyncio
    async def test_delete_assignment_files(self, service):
        await service.upload_assignment_submission("A1", "S1", FileUpload("a.pdf", b"1"))
        await service.upload_assignment_submission("A1", "S2", FileUpload("a.pdf", b"2"))
        await service.upload_assignment_submission("A2", "S1", FileUpload("a.pdf", b"3"))

        assert await service.delete_assignment_files("A1") == 2
        assert await service.file_exists("tenants/T1/assignments/A2/submissions/S1/submission_v1.pdf") is True

    @pytest.mark.asyncio
    async def test_delete_course_files_covers_all_course_assets(self, service):
        await service.upload_course_material("C1", "syllabus", FileUpload("s.pdf", b"x"))
        await service.upload_course_featured_image("C1", FileUpload("f.jpg", b"x"))
        await service.upload_course_intro_video("C1", FileUpload("v.mp4", b"x"))
        await service.upload_course_material("C2", "notes", FileUpload("n.pdf", b"x"))

        assert await service.delete_course_files("C1") == 3
        assert len(await service.list_files("tenants/T1/courses/")) == 1

    @pytest.mark.asyncio
    async def test_delete_question_files(self, service):
        await service.upload_question_image("Q1", FileUpload("i.png", b"x"))
        await service.upload_question_audio("Q1", FileUpload("a.mp3", b"x"))
        await service.upload_question_image("Q2", FileUpload("i.png", b"x"))

        assert await service.delete_question_files("Q1") == 2
        assert [obj.key for obj in await service.list_files("tenants/T1/questions/")] == [
            f"tenants/T1/questions/images/Q2/{FIXED_MS}.png"
        ]

    @pytest.mark.asyncio
    async def test_remote_cascade_deletes_every_page_in_batches(self, s3_adapter, fake_s3):
        for i in range(2500):
            fake_s3.put_object(Bucket="school-assets", Key=f"tenants/T1/courses/C1/materials/notes_{i}.pdf", Body=b"x")
        fake_s3.put_object(Bucket="school-assets", Key="tenants/T1/courses/C10/featured/1.jpg", Body=b"x")
        fake_s3.put_object(Bucket="school-assets", Key="tenants/T2/courses/C1/featured/1.jpg", Body=b"x")
        svc = TenantStorageService(adapter_handle(s3_adapter), tenant("T1"))

        deleted = await svc.delete_course_files("C1")

        assert deleted == 2500
        assert fake_s3.calls["list_objects_v2"] == 3
        assert fake_s3.delete_batches == [1000, 1000, 500]
        assert sorted(fake_s3.objects) == [
            "tenants/T1/courses/C10/featured/1.jpg",
            "tenants/T2/courses/C1/featured/1.jpg",
        ]


class TestScopedHelpers:
    @pytest.mark.asyncio
    async def test_signed_url_for_own_key(self, recording_service, recording_adapter):
        recording_adapter.get_url.return_value = "https://signed"

        url = await recording_service.get_signed_url("tenants/T1/reports/r.pdf", expires_in=120)

        assert url == "https://signed"
        recording_adapter.get_url.assert_awaited_once_with("tenants/T1/reports/r.pdf", 120)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "key",
        [
            "tenants/T2/reports/r.pdf",
            "tenants/T1/../T2/reports/r.pdf",
            "reports/r.pdf",
            "tenants/T10/reports/r.pdf",
        ],
    )
    async def test_foreign_keys_rejected(self, recording_service, recording_adapter, key):
        with pytest.raises(StorageValidationError):
            await recording_service.download_file(key)
        with pytest.raises(StorageValidationError):
            await recording_service.delete_file(key)
        recording_adapter.download.assert_not_called()
        recording_adapter.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_tenant_prefix(self, recording_service):
        assert await recording_service.tenant_prefix() == "tenants/T1/"

    @pytest.mark.asyncio
    async def test_delete_file_then_exists(self, service):
        result = await service.upload_question_image("Q1", FileUpload("i.png", b"x"))

        await service.delete_file(result.key)

        assert await service.file_exists(result.key) is False
