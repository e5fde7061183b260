"""Verification workflow for document versions.

Only the verification axis is handled here:
- pending -> verified
- pending -> rejected (reason required)

Verified and rejected are terminal for a version; a rejected document is
re-reviewed by uploading a new version. Authorization is enforced by the
store; this workflow surfaces its PermissionDeniedError unchanged.
"""

from typing import Optional

from casedocs.core import get_logger
from casedocs.core.errors import InvalidStateError, ValidationError
from casedocs.versions.events import EventBus, VersionEvent, VersionEventType
from casedocs.versions.models import Actor, DocumentVersion, VerificationStatus
from casedocs.versions.state_machine import VersionStateMachine

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[VerificationStatus, frozenset[VerificationStatus]] = {
    VerificationStatus.PENDING: frozenset({
        VerificationStatus.VERIFIED,
        VerificationStatus.REJECTED,
    }),
    VerificationStatus.VERIFIED: frozenset(),
    VerificationStatus.REJECTED: frozenset(),
}

EVENT_TYPES = {
    VerificationStatus.VERIFIED: VersionEventType.VERSION_VERIFIED,
    VerificationStatus.REJECTED: VersionEventType.VERSION_REJECTED,
}


def can_transition(current: VerificationStatus, target: VerificationStatus) -> bool:
    """Whether a verification transition is allowed."""
    return target in ALLOWED_TRANSITIONS[current]


class VerificationWorkflow:
    """Reviewer-facing operations on document versions."""

    def __init__(
        self,
        state_machine: VersionStateMachine,
        event_bus: Optional[EventBus] = None,
    ):
        """Initialize the workflow.

        Args:
            state_machine: State machine for the retention axis; its store
                is used for verification writes.
            event_bus: Receives verification events; defaults to the
                state machine's bus.
        """
        self.state_machine = state_machine
        self.store = state_machine.store
        self.event_bus = event_bus or state_machine.event_bus

    async def verify(self, version_id: str, actor: Actor) -> DocumentVersion:
        """Mark a pending version as verified."""
        return await self._transition(version_id, actor, VerificationStatus.VERIFIED)

    async def reject(self, version_id: str, actor: Actor, reason: str) -> DocumentVersion:
        """Reject a pending version.

        Raises:
            ValidationError: The reason is empty.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required", field="reason")
        return await self._transition(version_id, actor, VerificationStatus.REJECTED, reason)

    async def restore(self, version_id: str, actor: Actor) -> DocumentVersion:
        """Make a version active again, keeping its verification status."""
        return await self.state_machine.restore(version_id, actor)

    async def delete(self, version_id: str, actor: Actor) -> DocumentVersion:
        """Soft-delete a version; the slot may be left without an active version."""
        return await self.state_machine.delete(version_id, actor)

    async def _transition(
        self,
        version_id: str,
        actor: Actor,
        target: VerificationStatus,
        reason: Optional[str] = None,
    ) -> DocumentVersion:
        current = await self.store.get_version(version_id)
        source = current.verification_status

        if not can_transition(source, target):
            raise InvalidStateError(
                f"Cannot mark version {version_id} {target.value}: it is already {source.value}",
                version_id=version_id,
                current_state=source.value,
                requested=target.value,
            )

        updated = await self.store.set_verification(
            version_id, actor, target, reason, expected_status=source
        )

        logger.info(
            "verification_updated",
            slot=current.slot.key,
            version_id=version_id,
            from_status=source.value,
            to_status=target.value,
            actor=actor.user_id,
        )
        metadata = {"versionNumber": current.version_number}
        if reason:
            metadata["reason"] = reason
        await self.event_bus.publish(VersionEvent(
            event_type=EVENT_TYPES[target],
            version_id=version_id,
            slot=current.slot,
            actor=actor,
            from_status=source.value,
            to_status=target.value,
            metadata=metadata,
        ))
        return updated
