"""Tests for version data models and their backend JSON representation."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from casedocs.versions.models import (
    Actor,
    DocumentSlot,
    DocumentVersion,
    FileMetadata,
    FileUpload,
    RetentionStatus,
    VerificationStatus,
    parse_timestamp,
)


@pytest.fixture
def api_item():
    """A version as returned by the backend."""
    return {
        "_id": "665f1c2e9b1d",
        "caseId": "case-1",
        "documentType": "passport_copy",
        "version": 2,
        "uploadedBy": {"userId": "client-1", "userRole": "end_user"},
        "status": "superseded",
        "metadata": {
            "originalFileName": "passport.pdf",
            "fileSize": 2048,
            "mimeType": "application/pdf",
            "format": "pdf",
        },
        "verificationStatus": "rejected",
        "rejectionReason": "Blurry scan",
        "verifiedBy": "employee-1",
        "verifiedAt": "2024-05-02T10:00:00.000Z",
        "notes": "Second attempt",
        "createdAt": "2024-05-01T09:30:00.000Z",
        "updatedAt": "2024-05-02T10:00:00.000Z",
    }


class TestDocumentSlot:
    """Tests for DocumentSlot."""

    def test_key(self):
        slot = DocumentSlot(case_id="case-1", document_type="passport_copy")
        assert slot.key == "case-1/passport_copy"
        assert str(slot) == "case-1/passport_copy"

    def test_hashable_and_equal_by_value(self):
        a = DocumentSlot(case_id="case-1", document_type="passport_copy")
        b = DocumentSlot(case_id="case-1", document_type="passport_copy")
        assert a == b
        assert len({a, b}) == 1

    def test_requires_non_empty_fields(self):
        with pytest.raises(PydanticValidationError):
            DocumentSlot(case_id="", document_type="passport_copy")


class TestFileUpload:
    def test_size_and_extension(self):
        upload = FileUpload(filename="Scan.Final.PDF", content=b"12345", content_type="application/pdf")
        assert upload.size == 5
        assert upload.extension == "pdf"

    def test_no_extension(self):
        upload = FileUpload(filename="README", content=b"x", content_type="text/plain")
        assert upload.extension == ""


class TestDocumentVersion:
    """Tests for DocumentVersion."""

    def test_from_api_item(self, api_item):
        """Test parsing of the backend representation."""
        version = DocumentVersion.from_api_item(api_item)

        assert version.version_id == "665f1c2e9b1d"
        assert version.slot == DocumentSlot(case_id="case-1", document_type="passport_copy")
        assert version.version_number == 2
        assert version.retention_status == RetentionStatus.SUPERSEDED
        assert version.verification_status == VerificationStatus.REJECTED
        assert version.rejection_reason == "Blurry scan"
        assert version.uploaded_by == Actor(user_id="client-1", role="end_user")
        assert version.metadata.original_filename == "passport.pdf"
        assert version.created_at == datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
        assert version.verified_by == "employee-1"
        assert not version.is_active
        assert not version.is_deleted

    def test_to_api_item_restores_backend_shape(self, api_item):
        version = DocumentVersion.from_api_item(api_item)
        item = version.to_api_item()

        assert item["_id"] == api_item["_id"]
        assert item["metadata"] == api_item["metadata"]
        assert item["uploadedBy"] == api_item["uploadedBy"]
        assert item["status"] == "superseded"
        assert item["verificationStatus"] == "rejected"
        assert item["rejectionReason"] == "Blurry scan"
        assert parse_timestamp(item["createdAt"]) == version.created_at

    def test_defaults_for_new_version(self):
        """Test a new version is active and pending."""
        version = DocumentVersion(
            version_id="v1",
            slot=DocumentSlot(case_id="case-1", document_type="passport_copy"),
            version_number=1,
            metadata=FileMetadata(
                original_filename="passport.pdf",
                file_size=10,
                content_type="application/pdf",
            ),
            uploaded_by=Actor(user_id="client-1"),
        )

        assert version.is_active
        assert version.verification_status == VerificationStatus.PENDING
        item = version.to_api_item()
        assert "rejectionReason" not in item
        assert "verifiedAt" not in item

    def test_version_number_starts_at_one(self, api_item):
        api_item["version"] = 0
        with pytest.raises(PydanticValidationError):
            DocumentVersion.from_api_item(api_item)

    def test_versions_are_immutable(self, api_item):
        version = DocumentVersion.from_api_item(api_item)
        with pytest.raises(PydanticValidationError):
            version.retention_status = RetentionStatus.ACTIVE


class TestParseTimestamp:
    def test_parses_z_suffix(self):
        assert parse_timestamp("2024-05-01T09:30:00Z") == datetime(
            2024, 5, 1, 9, 30, tzinfo=timezone.utc
        )

    def test_none_and_empty(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
