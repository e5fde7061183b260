"""Version state machine for document slots.

Enforces the version history rules of a slot:
- at most one active version
- version numbers 1..N in creation order, assigned by the store
- retention (active/superseded/deleted) and verification
  (pending/verified/rejected) change independently

Uploads to the same slot are serialized in-process and protected across
processes by an optimistic concurrency check that is retried once.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from casedocs.core import get_logger
from casedocs.core.errors import (
    ConflictError,
    InvalidStateError,
    InvariantViolationError,
)
from casedocs.core.resilience import (
    ErrorLogger,
    RetryConfig,
    RetryHandler,
    call_with_timeout,
)
from casedocs.versions.config import UploadPolicy
from casedocs.versions.events import EventBus, VersionEvent, VersionEventType
from casedocs.versions.models import (
    Actor,
    DocumentSlot,
    DocumentVersion,
    DownloadLink,
    FileUpload,
    RetentionStatus,
)
from casedocs.versions.store import ProgressCallback, VersionStore
from casedocs.versions.validator import FileValidator

logger = get_logger(__name__)

RESTORABLE_STATES = frozenset({RetentionStatus.SUPERSEDED, RetentionStatus.DELETED})


def check_history(
    versions: list[DocumentVersion],
    slot: Optional[DocumentSlot] = None,
) -> list[DocumentVersion]:
    """Validate a slot history snapshot and return it newest first.

    Raises:
        InvariantViolationError: More than one active version, or version
            numbers that are not exactly 1..N.
    """
    ordered = sorted(versions, key=lambda v: v.version_number, reverse=True)
    violations = []

    active = [v.version_id for v in ordered if v.is_active]
    if len(active) > 1:
        violations.append(f"multiple active versions: {', '.join(active)}")

    numbers = [v.version_number for v in ordered]
    if sorted(numbers) != list(range(1, len(numbers) + 1)):
        violations.append(f"version numbers not contiguous from 1: {sorted(numbers)}")

    if slot is not None:
        foreign = [v.version_id for v in ordered if v.slot != slot]
        if foreign:
            violations.append(f"versions from another slot: {', '.join(foreign)}")

    if violations:
        slot_key = slot.key if slot else None
        logger.error("history_invariant_violated", slot=slot_key, violations=violations)
        raise InvariantViolationError(
            "Version history is inconsistent",
            slot=slot_key,
            violations=violations,
        )
    return ordered


@dataclass
class _SlotLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class VersionStateMachine:
    """Applies upload, delete and restore intents to a slot's history."""

    def __init__(
        self,
        store: VersionStore,
        policy: Optional[UploadPolicy] = None,
        event_bus: Optional[EventBus] = None,
        error_logger: Optional[ErrorLogger] = None,
    ):
        """Initialize the state machine.

        Args:
            store: Version store adapter.
            policy: Upload allow-list; defaults apply if omitted.
            event_bus: Receives lifecycle events.
            error_logger: Error history for retried conflicts.
        """
        self.store = store
        self.validator = FileValidator(policy)
        self.event_bus = event_bus or EventBus()
        self._retry = RetryHandler(
            RetryConfig(max_retries=1, retryable_exceptions=(ConflictError,)),
            error_logger=error_logger,
        )
        self._slot_locks: dict[DocumentSlot, _SlotLock] = {}

    @asynccontextmanager
    async def _slot_lock(self, slot: DocumentSlot) -> AsyncIterator[None]:
        """Hold the slot's lock; the entry is dropped once nobody holds or awaits it."""
        entry = self._slot_locks.get(slot)
        if entry is None:
            entry = self._slot_locks[slot] = _SlotLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._slot_locks[slot]

    async def record_upload(
        self,
        slot: DocumentSlot,
        upload: FileUpload,
        uploader: Actor,
        notes: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        timeout: Optional[float] = None,
    ) -> DocumentVersion:
        """Upload a file as the new active version of a slot.

        Args:
            slot: Target slot.
            upload: File to upload.
            uploader: Who is uploading.
            notes: Optional free-text notes.
            on_progress: Receives upload percentage. A retried upload
                reports from 0 again.
            timeout: Seconds allowed for each store call once the slot lock
                is held. Time spent queued behind other uploads to the slot
                does not count.

        Returns:
            The new version (active, pending).

        Raises:
            ValidationError: The file fails the upload policy.
            ConflictError: The slot kept advancing concurrently after one retry.
            UploadTimeoutError: A store call exceeded ``timeout``; not retried.
        """
        self.validator.validate(upload, notes).raise_for_errors()

        async with self._slot_lock(slot):
            version = await self._retry.execute_with_retry(
                self._attempt_upload,
                slot,
                upload,
                uploader,
                notes,
                on_progress,
                timeout,
                component="version_state_machine.record_upload",
            )
            await self._recheck(slot)

        logger.info(
            "version_uploaded",
            slot=slot.key,
            version_id=version.version_id,
            version_number=version.version_number,
            file_name=upload.filename,
            file_size=upload.size,
        )
        await self.event_bus.publish(VersionEvent(
            event_type=VersionEventType.VERSION_UPLOADED,
            version_id=version.version_id,
            slot=slot,
            actor=uploader,
            to_status=version.retention_status.value,
            metadata={
                "versionNumber": version.version_number,
                "fileName": upload.filename,
                "fileSize": upload.size,
            },
        ))
        return version

    async def _attempt_upload(
        self,
        slot: DocumentSlot,
        upload: FileUpload,
        uploader: Actor,
        notes: Optional[str],
        on_progress: Optional[ProgressCallback],
        timeout: Optional[float],
    ) -> DocumentVersion:
        versions = await call_with_timeout(
            self.store.list_versions(slot), timeout, operation="list_versions"
        )
        history = check_history(versions, slot)
        current_max = history[0].version_number if history else 0

        version = await call_with_timeout(
            self.store.create_version(
                slot,
                upload,
                uploader,
                notes,
                expected_version=current_max,
                on_progress=on_progress,
            ),
            timeout,
            operation="create_version",
        )
        if version.version_number != current_max + 1 or not version.is_active:
            raise InvariantViolationError(
                "Store returned an unexpected version",
                slot=slot.key,
                violations=[
                    f"expected active version {current_max + 1}, got "
                    f"{version.retention_status.value} version {version.version_number}"
                ],
            )
        return version

    async def delete(self, version_id: str, actor: Actor) -> DocumentVersion:
        """Soft-delete a version.

        Deleting the active version leaves the slot without an active
        version until something is restored or uploaded.

        Raises:
            InvalidStateError: The version is already deleted.
            ConflictError: The version changed concurrently.
        """
        slot = (await self.store.get_version(version_id)).slot

        async with self._slot_lock(slot):
            version = await self.store.get_version(version_id)
            if version.is_deleted:
                raise InvalidStateError(
                    f"Version {version_id} is already deleted",
                    version_id=version_id,
                    current_state=version.retention_status.value,
                    requested=RetentionStatus.DELETED.value,
                )
            deleted = await self.store.delete_version(
                version_id, actor, expected_status=version.retention_status
            )
            await self._recheck(version.slot)

        logger.info(
            "version_deleted",
            slot=version.slot.key,
            version_id=version_id,
            was_active=version.is_active,
        )
        await self.event_bus.publish(VersionEvent(
            event_type=VersionEventType.VERSION_DELETED,
            version_id=version_id,
            slot=version.slot,
            actor=actor,
            from_status=version.retention_status.value,
            to_status=deleted.retention_status.value,
            metadata={"versionNumber": version.version_number},
        ))
        return deleted

    async def restore(self, version_id: str, actor: Actor) -> DocumentVersion:
        """Make a superseded or deleted version active again.

        The restored version wins over whichever version is currently
        active, regardless of version numbers. Verification status is
        carried over unchanged.

        Raises:
            InvalidStateError: The version is already active.
            ConflictError: The version changed concurrently.
        """
        slot = (await self.store.get_version(version_id)).slot

        async with self._slot_lock(slot):
            version = await self.store.get_version(version_id)
            if version.retention_status not in RESTORABLE_STATES:
                raise InvalidStateError(
                    f"Version {version_id} is already active",
                    version_id=version_id,
                    current_state=version.retention_status.value,
                    requested=RetentionStatus.ACTIVE.value,
                )
            current_active = await self.active_version(version.slot)
            restored = await self.store.restore_version(
                version_id, actor, expected_status=version.retention_status
            )
            await self._recheck(version.slot)

        superseded_id = current_active.version_id if current_active else None
        logger.info(
            "version_restored",
            slot=version.slot.key,
            version_id=version_id,
            superseded_version_id=superseded_id,
            verification_status=restored.verification_status.value,
        )
        await self.event_bus.publish(VersionEvent(
            event_type=VersionEventType.VERSION_RESTORED,
            version_id=version_id,
            slot=version.slot,
            actor=actor,
            from_status=version.retention_status.value,
            to_status=restored.retention_status.value,
            metadata={
                "versionNumber": version.version_number,
                "supersededVersionId": superseded_id,
                "verificationStatus": restored.verification_status.value,
            },
        ))
        return restored

    async def _recheck(self, slot: DocumentSlot) -> None:
        # Post-write snapshot must still satisfy the slot invariants
        check_history(await self.store.list_versions(slot), slot)

    async def list_history(self, slot: DocumentSlot) -> list[DocumentVersion]:
        """Snapshot of a slot's versions, newest first."""
        return check_history(await self.store.list_versions(slot), slot)

    async def get_version(self, version_id: str) -> DocumentVersion:
        return await self.store.get_version(version_id)

    async def active_version(self, slot: DocumentSlot) -> Optional[DocumentVersion]:
        """The slot's active version, or None."""
        for version in await self.list_history(slot):
            if version.is_active:
                return version
        return None

    async def download_url(self, version_id: str) -> DownloadLink:
        """Short-lived URL for downloading a version."""
        return await self.store.get_download_url(version_id)
