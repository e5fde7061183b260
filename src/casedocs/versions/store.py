"""Version store adapter boundary.

Defines the VersionStore interface the state machine talks to, and an
in-memory implementation that behaves like the backend (used for local
development and tests).

Every write carries the caller's expectation of the current state; a store
must reject the write with ConflictError when that expectation is stale.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from casedocs.core import get_logger
from casedocs.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from casedocs.versions.models import (
    Actor,
    DocumentSlot,
    DocumentVersion,
    DownloadLink,
    FileMetadata,
    FileUpload,
    RetentionStatus,
    VerificationStatus,
)

logger = get_logger(__name__)

ProgressCallback = Callable[[int], None]


class VersionStore(ABC):
    """Persistence boundary for document versions.

    Implementations perform I/O only. Legality of transitions is decided
    by the state machine and verification workflow before a store method
    is called.
    """

    @abstractmethod
    async def create_version(
        self,
        slot: DocumentSlot,
        upload: FileUpload,
        uploader: Actor,
        notes: Optional[str],
        expected_version: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DocumentVersion:
        """Persist a new version at ``expected_version + 1``.

        The new version is active and pending; the previously active
        version of the slot, if any, becomes superseded.

        Args:
            slot: Target slot.
            upload: File to store.
            uploader: Who is uploading.
            notes: Optional upload notes.
            expected_version: Highest version number the caller observed
                (0 for an empty slot).
            on_progress: Called with upload percentage as bytes are sent.

        Raises:
            ConflictError: The slot advanced past ``expected_version``.
        """
        ...

    @abstractmethod
    async def list_versions(self, slot: DocumentSlot) -> list[DocumentVersion]:
        """Return every version of a slot, deleted ones included."""
        ...

    @abstractmethod
    async def get_version(self, version_id: str) -> DocumentVersion:
        """Fetch a single version.

        Raises:
            NotFoundError: No such version.
        """
        ...

    @abstractmethod
    async def delete_version(
        self,
        version_id: str,
        actor: Actor,
        expected_status: RetentionStatus,
    ) -> DocumentVersion:
        """Soft-delete a version whose retention is ``expected_status``."""
        ...

    @abstractmethod
    async def restore_version(
        self,
        version_id: str,
        actor: Actor,
        expected_status: RetentionStatus,
    ) -> DocumentVersion:
        """Make a version active, superseding the slot's current active one."""
        ...

    @abstractmethod
    async def set_verification(
        self,
        version_id: str,
        actor: Actor,
        status: VerificationStatus,
        reason: Optional[str],
        expected_status: VerificationStatus,
    ) -> DocumentVersion:
        """Record a verification decision on a version."""
        ...

    @abstractmethod
    async def get_download_url(self, version_id: str) -> DownloadLink:
        """Get a short-lived URL for a version's content."""
        ...

    async def get_verification(self, version_id: str) -> VerificationStatus:
        """Fetch the verification status of a version."""
        version = await self.get_version(version_id)
        return version.verification_status


class InMemoryVersionStore(VersionStore):
    """In-memory version store with backend semantics.

    Uploads are "transferred" in chunks, yielding to the event loop between
    chunks, so concurrent uploads interleave the way network uploads do.
    The optimistic concurrency check happens after the transfer, at write
    time.
    """

    def __init__(
        self,
        chunk_size: int = 64 * 1024,
        latency: float = 0.0,
        authorizer: Optional[Callable[[Actor, str], bool]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        url_ttl: timedelta = timedelta(minutes=15),
    ):
        """Initialize in-memory store.

        Args:
            chunk_size: Simulated transfer chunk size in bytes.
            latency: Simulated delay per chunk (and per call) in seconds.
            authorizer: Decides whether an actor may perform an operation
                ("upload", "delete", "restore", "verify"); allow all if None.
            clock: Time source.
            url_ttl: Lifetime of generated download URLs.
        """
        self.chunk_size = chunk_size
        self.latency = latency
        self.authorizer = authorizer
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.url_ttl = url_ttl
        self._versions: dict[str, DocumentVersion] = {}
        self._slots: dict[DocumentSlot, list[str]] = {}
        self._content: dict[str, bytes] = {}

    async def create_version(
        self,
        slot: DocumentSlot,
        upload: FileUpload,
        uploader: Actor,
        notes: Optional[str],
        expected_version: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DocumentVersion:
        self._authorize(uploader, "upload")
        await self._transfer(upload, on_progress)

        history = self._history(slot)
        current = history[-1].version_number if history else 0
        if current != expected_version:
            raise ConflictError(
                f"Slot {slot} advanced to version {current}",
                expected=str(expected_version),
                actual=str(current),
            )

        now = self.clock()
        for version in history:
            if version.is_active:
                self._put(version.model_copy(update={
                    "retention_status": RetentionStatus.SUPERSEDED,
                    "updated_at": now,
                }))

        version = DocumentVersion(
            version_id=str(uuid.uuid4()),
            slot=slot,
            version_number=current + 1,
            metadata=FileMetadata(
                original_filename=upload.filename,
                file_size=upload.size,
                content_type=upload.content_type,
                extension=upload.extension,
            ),
            uploaded_by=uploader,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self._slots.setdefault(slot, []).append(version.version_id)
        self._content[version.version_id] = upload.content
        self._put(version)
        return version

    async def list_versions(self, slot: DocumentSlot) -> list[DocumentVersion]:
        await self._delay()
        return self._history(slot)

    async def get_version(self, version_id: str) -> DocumentVersion:
        await self._delay()
        return self._get(version_id)

    async def delete_version(
        self,
        version_id: str,
        actor: Actor,
        expected_status: RetentionStatus,
    ) -> DocumentVersion:
        await self._delay()
        self._authorize(actor, "delete")
        version = self._get(version_id)
        self._check_retention(version, expected_status)
        return self._put(version.model_copy(update={
            "retention_status": RetentionStatus.DELETED,
            "updated_at": self.clock(),
        }))

    async def restore_version(
        self,
        version_id: str,
        actor: Actor,
        expected_status: RetentionStatus,
    ) -> DocumentVersion:
        await self._delay()
        self._authorize(actor, "restore")
        version = self._get(version_id)
        self._check_retention(version, expected_status)

        now = self.clock()
        for other in self._history(version.slot):
            if other.is_active and other.version_id != version_id:
                self._put(other.model_copy(update={
                    "retention_status": RetentionStatus.SUPERSEDED,
                    "updated_at": now,
                }))
        return self._put(version.model_copy(update={
            "retention_status": RetentionStatus.ACTIVE,
            "updated_at": now,
        }))

    async def set_verification(
        self,
        version_id: str,
        actor: Actor,
        status: VerificationStatus,
        reason: Optional[str],
        expected_status: VerificationStatus,
    ) -> DocumentVersion:
        await self._delay()
        self._authorize(actor, "verify")
        version = self._get(version_id)
        if version.verification_status != expected_status:
            raise ConflictError(
                f"Version {version_id} verification changed concurrently",
                expected=expected_status.value,
                actual=version.verification_status.value,
            )
        now = self.clock()
        return self._put(version.model_copy(update={
            "verification_status": status,
            "rejection_reason": reason if status == VerificationStatus.REJECTED else None,
            "verified_by": actor.user_id,
            "verified_at": now,
            "updated_at": now,
        }))

    async def get_download_url(self, version_id: str) -> DownloadLink:
        await self._delay()
        version = self._get(version_id)
        expires_at = self.clock() + self.url_ttl
        return DownloadLink(
            version_id=version_id,
            url=(
                f"memory://{version.slot.key}/{version_id}/"
                f"{version.metadata.original_filename}?expires={int(expires_at.timestamp())}"
            ),
            expires_at=expires_at,
        )

    def get_content(self, version_id: str) -> bytes:
        """Stored bytes of a version."""
        self._get(version_id)
        return self._content[version_id]

    async def _transfer(
        self,
        upload: FileUpload,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        total = upload.size
        sent = 0
        while sent < total:
            sent = min(total, sent + self.chunk_size)
            await self._delay()
            if on_progress:
                on_progress(round(sent * 100 / total))

    async def _delay(self) -> None:
        # Always yield so callers observe a real suspension point
        await asyncio.sleep(self.latency)

    def _authorize(self, actor: Actor, operation: str) -> None:
        if self.authorizer and not self.authorizer(actor, operation):
            logger.warning("operation_unauthorized", actor=actor.user_id, operation=operation)
            raise PermissionDeniedError(
                f"{actor.user_id} ({actor.role}) may not {operation}",
                actor=actor.user_id,
                operation=operation,
            )

    def _history(self, slot: DocumentSlot) -> list[DocumentVersion]:
        return [self._versions[vid] for vid in self._slots.get(slot, [])]

    def _get(self, version_id: str) -> DocumentVersion:
        version = self._versions.get(version_id)
        if version is None:
            raise NotFoundError(f"Version not found: {version_id}", version_id=version_id)
        return version

    def _put(self, version: DocumentVersion) -> DocumentVersion:
        self._versions[version.version_id] = version
        return version

    @staticmethod
    def _check_retention(version: DocumentVersion, expected: RetentionStatus) -> None:
        if version.retention_status != expected:
            raise ConflictError(
                f"Version {version.version_id} retention changed concurrently",
                expected=expected.value,
                actual=version.retention_status.value,
            )
