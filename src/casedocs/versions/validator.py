"""File and input validation for document version uploads.

- Non-empty file with filename and content type
- Extension and MIME type allow-list
- Size limit
- Content sniffing for formats with magic bytes
"""

from dataclasses import dataclass, field
from typing import Optional

from casedocs.core.errors import ValidationError
from casedocs.versions.config import UploadPolicy
from casedocs.versions.models import FileUpload


@dataclass
class FieldValidationError:
    """A validation failure for a specific field."""
    field_name: str
    error_message: str
    provided_value: Optional[str] = None
    allowed_values: Optional[list[str]] = None


@dataclass
class ValidationResult:
    """Result of file validation with field-level details."""
    valid: bool
    error_message: Optional[str] = None
    field_errors: list[FieldValidationError] = field(default_factory=list)

    def raise_for_errors(self) -> None:
        """Raise ValidationError if validation failed."""
        if self.valid:
            return
        first = self.field_errors[0] if self.field_errors else None
        raise ValidationError(
            self.error_message or "Validation failed",
            field=first.field_name if first else None,
            failed_checks=[err.field_name for err in self.field_errors],
        )


# Magic bytes for content sniffing
MAGIC_SIGNATURES = {
    "pdf": [b"%PDF"],
    "png": [b"\x89PNG\r\n\x1a\n"],
    "jpg": [b"\xff\xd8\xff"],
    "jpeg": [b"\xff\xd8\xff"],
    "doc": [b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"],  # OLE2 compound file
    "docx": [b"PK\x03\x04"],  # zip container
}


class FileValidator:
    """Validates files against an UploadPolicy."""

    def __init__(self, policy: Optional[UploadPolicy] = None):
        self.policy = policy or UploadPolicy()

    def validate(self, upload: FileUpload, notes: Optional[str] = None) -> ValidationResult:
        """Validate a file (and optional notes) before upload.

        Args:
            upload: File selected for upload
            notes: Optional upload notes

        Returns:
            ValidationResult with all failed checks
        """
        errors: list[FieldValidationError] = []

        if not upload.filename or not upload.filename.strip():
            errors.append(FieldValidationError("filename", "File name is required"))

        if not upload.content_type or not upload.content_type.strip():
            errors.append(FieldValidationError("content_type", "Content type is required"))
        elif upload.content_type.lower() not in self.policy.allowed_content_types:
            errors.append(
                FieldValidationError(
                    "content_type",
                    "Content type not allowed",
                    provided_value=upload.content_type,
                    allowed_values=sorted(self.policy.allowed_content_types),
                )
            )

        if upload.size <= 0:
            errors.append(FieldValidationError("size", "File is empty", provided_value="0"))
        elif upload.size > self.policy.max_file_size:
            errors.append(
                FieldValidationError(
                    "size",
                    f"File exceeds maximum size of {self._format_limit()}",
                    provided_value=str(upload.size),
                )
            )

        extension = upload.extension
        if upload.filename and extension not in self.policy.allowed_extensions:
            errors.append(
                FieldValidationError(
                    "extension",
                    "File type not allowed",
                    provided_value=extension or None,
                    allowed_values=sorted(self.policy.allowed_extensions),
                )
            )
        elif upload.size > 0 and not self._content_matches(upload.content, extension):
            errors.append(
                FieldValidationError(
                    "content",
                    f"File content does not look like a .{extension} file",
                    provided_value=extension,
                )
            )

        if notes is not None and len(notes) > self.policy.max_notes_length:
            errors.append(
                FieldValidationError(
                    "notes",
                    f"Notes exceed {self.policy.max_notes_length} characters",
                )
            )

        if errors:
            messages = []
            for err in errors:
                if err.allowed_values:
                    messages.append(
                        f"{err.error_message}. Must be one of: {', '.join(err.allowed_values)}"
                    )
                else:
                    messages.append(err.error_message)
            return ValidationResult(
                valid=False,
                error_message="; ".join(messages),
                field_errors=errors,
            )

        return ValidationResult(valid=True)

    def _content_matches(self, content: bytes, extension: str) -> bool:
        """Check magic bytes when the format has a known signature."""
        signatures = MAGIC_SIGNATURES.get(extension)
        if not signatures:
            return True
        return any(content.startswith(sig) for sig in signatures)

    def _format_limit(self) -> str:
        size = self.policy.max_file_size
        if size < 1024:
            return f"{size} B"
        if size < 1024 * 1024:
            return f"{size / 1024:.2f} KB"
        return f"{size / (1024 * 1024):.2f} MB"
