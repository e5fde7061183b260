"""Version lifecycle events for the case timeline.

The timeline itself lives elsewhere; this module only defines the event
shape and fans events out to whoever subscribed.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, Field

from casedocs.core import get_logger
from casedocs.versions.models import Actor, DocumentSlot

logger = get_logger(__name__)


class VersionEventType(str, Enum):
    """Types of version lifecycle events."""

    VERSION_UPLOADED = "version_uploaded"
    VERSION_VERIFIED = "version_verified"
    VERSION_REJECTED = "version_rejected"
    VERSION_DELETED = "version_deleted"
    VERSION_RESTORED = "version_restored"


class VersionEvent(BaseModel):
    """A single lifecycle transition of a document version."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: VersionEventType = Field(..., description="What happened")
    version_id: str = Field(..., description="Affected version")
    slot: DocumentSlot = Field(..., description="Slot the version belongs to")
    actor: Actor = Field(..., description="Who did it")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    from_status: Optional[str] = Field(None, description="Status before the transition")
    to_status: Optional[str] = Field(None, description="Status after the transition")
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_timeline_payload(self) -> dict[str, Any]:
        """Payload in the shape the timeline service consumes."""
        return {
            "eventType": self.event_type.value,
            "versionId": self.version_id,
            "slot": {
                "caseId": self.slot.case_id,
                "documentType": self.slot.document_type,
            },
            "actor": {
                "userId": self.actor.user_id,
                "role": self.actor.role,
            },
            "timestamp": self.timestamp.isoformat(),
            "metadata": {
                **self.metadata,
                "fromStatus": self.from_status,
                "toStatus": self.to_status,
            },
        }


EventSubscriber = Callable[[VersionEvent], Union[None, Awaitable[None]]]


class EventBus:
    """Delivers version events to subscribers in subscription order.

    Subscribers may be plain or async callables. A failing subscriber is
    logged and does not affect other subscribers or the emitting operation;
    the state change it reports has already been persisted.
    """

    def __init__(self):
        self._subscribers: list[tuple[EventSubscriber, Optional[set[VersionEventType]]]] = []

    def subscribe(
        self,
        subscriber: EventSubscriber,
        event_types: Optional[list[VersionEventType]] = None,
    ) -> None:
        """Register a subscriber, optionally for specific event types only."""
        self._subscribers.append((subscriber, set(event_types) if event_types else None))

    def unsubscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers = [
            (sub, types) for sub, types in self._subscribers if sub is not subscriber
        ]

    async def publish(self, event: VersionEvent) -> int:
        """Deliver an event.

        Returns:
            Number of subscribers that received it without error.
        """
        delivered = 0
        for subscriber, event_types in list(self._subscribers):
            if event_types is not None and event.event_type not in event_types:
                continue
            try:
                result = subscriber(event)
                if asyncio.iscoroutine(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(
                    "event_delivery_failed",
                    event_type=event.event_type.value,
                    version_id=event.version_id,
                    subscriber=getattr(subscriber, "__name__", repr(subscriber)),
                    error=str(e),
                )

        logger.debug(
            "event_published",
            event_type=event.event_type.value,
            version_id=event.version_id,
            delivered=delivered,
        )
        return delivered
