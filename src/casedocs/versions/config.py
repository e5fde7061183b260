"""Configuration for document version control and batch uploads.

All limits are passed explicitly to the components that need them;
nothing here reads the environment.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

# Defaults mirror the case portal's upload dialogs
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
DEFAULT_ALLOWED_EXTENSIONS = frozenset({"pdf", "jpg", "jpeg", "png", "doc", "docx"})
DEFAULT_ALLOWED_CONTENT_TYPES = frozenset({
    "application/pdf",
    "image/jpeg",
    "image/png",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
})


class UploadPolicy(BaseModel):
    """Type and size allow-list applied before any upload is attempted."""

    max_file_size: int = Field(
        default=DEFAULT_MAX_FILE_SIZE, gt=0, description="Maximum file size in bytes"
    )
    allowed_extensions: frozenset[str] = Field(
        default=DEFAULT_ALLOWED_EXTENSIONS, description="Accepted lower-case extensions"
    )
    allowed_content_types: frozenset[str] = Field(
        default=DEFAULT_ALLOWED_CONTENT_TYPES, description="Accepted MIME types"
    )
    max_notes_length: int = Field(
        default=2000, gt=0, description="Maximum length of upload notes"
    )

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value):
        return frozenset(ext.lower().lstrip(".") for ext in value)

    @field_validator("allowed_content_types", mode="before")
    @classmethod
    def _normalize_content_types(cls, value):
        return frozenset(ct.lower() for ct in value)


class BatchConfig(BaseModel):
    """Configuration for the batch upload orchestrator."""

    concurrency_limit: int = Field(
        default=3, ge=1, description="Maximum uploads in flight at once"
    )
    max_files: int = Field(
        default=10, ge=1, description="Maximum files per batch"
    )
    upload_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description=(
            "Timeout in seconds for each store call of a file upload, not counting "
            "time queued behind other uploads to the slot (None for no limit)"
        ),
    )
    default_document_type: str = Field(
        default="supporting_document", description="Document type for untargeted bulk uploads"
    )


class StoreConfig(BaseModel):
    """Configuration for the REST version store."""

    base_url: str = Field(
        default="http://localhost:5002/api", description="Backend API base URL"
    )
    request_timeout: float = Field(
        default=30.0, gt=0, description="Per-request timeout in seconds"
    )
    upload_timeout: Optional[float] = Field(
        default=None, gt=0, description="Timeout for upload requests; falls back to request_timeout"
    )
    auth_token: Optional[str] = Field(
        default=None, description="Bearer token sent with every request"
    )
    chunk_size: int = Field(
        default=64 * 1024, gt=0, description="Upload chunk size in bytes (progress granularity)"
    )
