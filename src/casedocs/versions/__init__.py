"""Document version control for case documents.

- Version histories per (case, document type) slot
- Upload, delete and restore with optimistic concurrency
- Reviewer verification workflow
- Batch uploads with bounded concurrency and per-file results
"""

from casedocs.versions.models import (
    RetentionStatus,
    VerificationStatus,
    DocumentSlot,
    Actor,
    FileUpload,
    FileMetadata,
    DocumentVersion,
    DownloadLink,
)
from casedocs.versions.config import (
    UploadPolicy,
    BatchConfig,
    StoreConfig,
)
from casedocs.versions.validator import (
    FileValidator,
    FieldValidationError,
    ValidationResult,
)
from casedocs.versions.events import (
    VersionEventType,
    VersionEvent,
    EventBus,
)
from casedocs.versions.store import VersionStore, InMemoryVersionStore
from casedocs.versions.http_store import HttpVersionStore
from casedocs.versions.state_machine import VersionStateMachine, check_history
from casedocs.versions.verification import VerificationWorkflow, can_transition
from casedocs.versions.batch import (
    BatchFile,
    BatchOutcome,
    BatchUploadJob,
    BatchUploadOrchestrator,
    BatchUploadReport,
    FileUploadTicket,
    Fulfilled,
    JobState,
    Rejected,
    TicketStatus,
)

__all__ = [
    # Models
    "RetentionStatus",
    "VerificationStatus",
    "DocumentSlot",
    "Actor",
    "FileUpload",
    "FileMetadata",
    "DocumentVersion",
    "DownloadLink",
    # Configuration
    "UploadPolicy",
    "BatchConfig",
    "StoreConfig",
    # Validation
    "FileValidator",
    "FieldValidationError",
    "ValidationResult",
    # Events
    "VersionEventType",
    "VersionEvent",
    "EventBus",
    # Stores
    "VersionStore",
    "InMemoryVersionStore",
    "HttpVersionStore",
    # State machines
    "VersionStateMachine",
    "check_history",
    "VerificationWorkflow",
    "can_transition",
    # Batch uploads
    "BatchFile",
    "BatchOutcome",
    "BatchUploadJob",
    "BatchUploadOrchestrator",
    "BatchUploadReport",
    "FileUploadTicket",
    "Fulfilled",
    "JobState",
    "Rejected",
    "TicketStatus",
]
