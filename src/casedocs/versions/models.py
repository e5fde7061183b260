"""Data models for case document versions.

- Document slots (case + document type)
- Version records with independent retention and verification axes
- Upload payloads and download links
"""

import os
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # Backend emits JavaScript ISO strings ("...Z")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


class RetentionStatus(str, Enum):
    """Which version currently counts for a slot."""
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    DELETED = "deleted"


class VerificationStatus(str, Enum):
    """Reviewer judgment on a version's content."""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class DocumentSlot(BaseModel):
    """A required document type within a case.

    Grouping key for one version history; hashable so it can key
    locks and lookups.
    """
    model_config = ConfigDict(frozen=True)

    case_id: str = Field(..., min_length=1, description="Case identifier")
    document_type: str = Field(..., min_length=1, description="Document type, e.g. passport_copy")

    @property
    def key(self) -> str:
        return f"{self.case_id}/{self.document_type}"

    def __str__(self) -> str:
        return self.key


class Actor(BaseModel):
    """Identity of whoever performed an operation."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1, description="User identifier")
    role: str = Field(default="end_user", description="Role of the user (admin, employee, end_user, ...)")


class FileUpload(BaseModel):
    """A file selected for upload."""
    model_config = ConfigDict(frozen=True)

    filename: str = Field(..., description="Original file name")
    content: bytes = Field(..., repr=False, description="File content")
    content_type: str = Field(..., description="MIME type reported by the client")

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename)[1].lstrip(".").lower()


class FileMetadata(BaseModel):
    """Metadata recorded for an uploaded file."""
    model_config = ConfigDict(frozen=True)

    original_filename: str = Field(..., description="Original file name")
    file_size: int = Field(..., gt=0, description="File size in bytes")
    content_type: str = Field(..., description="MIME type")
    extension: str = Field(default="", description="Lower-case file extension without dot")


class DocumentVersion(BaseModel):
    """One uploaded file instance within a slot's version history.

    Instances are immutable snapshots. Stores produce new instances on
    every transition; nothing outside the store mutates a version.
    """
    model_config = ConfigDict(frozen=True)

    version_id: str = Field(..., description="Opaque version identifier")
    slot: DocumentSlot = Field(..., description="Owning document slot")
    version_number: int = Field(..., ge=1, description="Per-slot sequence number, assigned by the store")
    metadata: FileMetadata = Field(..., description="Uploaded file metadata")
    uploaded_by: Actor = Field(..., description="Uploader")
    notes: Optional[str] = Field(None, description="Free-text upload notes")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    retention_status: RetentionStatus = Field(default=RetentionStatus.ACTIVE)
    verification_status: VerificationStatus = Field(default=VerificationStatus.PENDING)
    rejection_reason: Optional[str] = Field(None, description="Reason, when rejected")
    verified_by: Optional[str] = Field(None, description="User who verified or rejected")
    verified_at: Optional[datetime] = Field(None, description="When verified or rejected")

    @property
    def is_active(self) -> bool:
        return self.retention_status == RetentionStatus.ACTIVE

    @property
    def is_deleted(self) -> bool:
        return self.retention_status == RetentionStatus.DELETED

    def to_api_item(self) -> dict[str, Any]:
        """Convert to the backend's JSON representation."""
        item: dict[str, Any] = {
            "_id": self.version_id,
            "caseId": self.slot.case_id,
            "documentType": self.slot.document_type,
            "version": self.version_number,
            "uploadedBy": {
                "userId": self.uploaded_by.user_id,
                "userRole": self.uploaded_by.role,
            },
            "status": self.retention_status.value,
            "metadata": {
                "originalFileName": self.metadata.original_filename,
                "fileSize": self.metadata.file_size,
                "mimeType": self.metadata.content_type,
                "format": self.metadata.extension,
            },
            "verificationStatus": self.verification_status.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.notes:
            item["notes"] = self.notes
        if self.rejection_reason:
            item["rejectionReason"] = self.rejection_reason
        if self.verified_by:
            item["verifiedBy"] = self.verified_by
        if self.verified_at:
            item["verifiedAt"] = self.verified_at.isoformat()
        return item

    @classmethod
    def from_api_item(cls, item: dict[str, Any]) -> "DocumentVersion":
        """Create from the backend's JSON representation."""
        uploaded_by = item.get("uploadedBy") or {}
        metadata = item.get("metadata") or {}
        created_at = parse_timestamp(item.get("createdAt")) or _utcnow()

        return cls(
            version_id=item["_id"],
            slot=DocumentSlot(
                case_id=item["caseId"],
                document_type=item["documentType"],
            ),
            version_number=item["version"],
            metadata=FileMetadata(
                original_filename=metadata["originalFileName"],
                file_size=metadata["fileSize"],
                content_type=metadata.get("mimeType", "application/octet-stream"),
                extension=metadata.get("format") or "",
            ),
            uploaded_by=Actor(
                user_id=uploaded_by.get("userId", "unknown"),
                role=uploaded_by.get("userRole", "end_user"),
            ),
            notes=item.get("notes"),
            created_at=created_at,
            updated_at=parse_timestamp(item.get("updatedAt")) or created_at,
            retention_status=RetentionStatus(item.get("status", "active")),
            verification_status=VerificationStatus(item.get("verificationStatus", "pending")),
            rejection_reason=item.get("rejectionReason"),
            verified_by=item.get("verifiedBy"),
            verified_at=parse_timestamp(item.get("verifiedAt")),
        )


class DownloadLink(BaseModel):
    """Short-lived URL for fetching a version's content."""
    version_id: str = Field(..., description="Version identifier")
    url: str = Field(..., description="Signed download URL")
    expires_at: Optional[datetime] = Field(None, description="Expiry of the URL, when known")
