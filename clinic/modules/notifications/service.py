# clinic/modules/notifications/service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

from fastapi import BackgroundTasks

from clinic.core.config import settings

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_APPROVED = "appointment_approved"
    APPOINTMENT_REJECTED = "appointment_rejected"
    APPOINTMENT_COMPLETED = "appointment_completed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_PENDING_CONFIRMATION = "payment_pending_confirmation"
    PAYMENT_CONFIRMED = "payment_confirmed"
    REFUND_REQUESTED = "refund_requested"
    REFUND_APPROVED = "refund_approved"
    REFUND_REJECTED = "refund_rejected"


@dataclass(frozen=True)
class Notification:
    event: NotificationEvent
    recipient_id: UUID
    context: Dict[str, Any] = field(default_factory=dict)


class Channel(Protocol):
    name: str

    async def send(self, notification: Notification) -> None: ...


class LoggingChannel:
    """Default channel: writes each notification to the application log."""

    name = "log"

    async def send(self, notification: Notification) -> None:
        logger.info(
            "notify %s -> %s %s",
            notification.event.value,
            notification.recipient_id,
            notification.context,
        )


class NotificationDispatcher:
    """
    Fan a notification out to every registered channel.

    Delivery is best effort: a failing channel is logged and skipped, and
    nothing is raised back to the caller.
    """

    def __init__(self, channels: Optional[List[Channel]] = None):
        self.channels: List[Channel] = list(channels) if channels is not None else [LoggingChannel()]

    def register(self, channel: Channel) -> None:
        self.channels.append(channel)

    def unregister(self, channel: Channel) -> None:
        if channel in self.channels:
            self.channels.remove(channel)

    async def dispatch(self, notification: Notification) -> int:
        delivered = 0
        for channel in list(self.channels):
            try:
                await channel.send(notification)
                delivered += 1
            except Exception:
                logger.exception(
                    "Notification %s to %s failed on channel %s",
                    notification.event.value,
                    notification.recipient_id,
                    getattr(channel, "name", type(channel).__name__),
                )
        return delivered

    def schedule(
        self,
        background_tasks: BackgroundTasks,
        event: NotificationEvent,
        recipient_id: UUID,
        **context: Any,
    ) -> None:
        """Queue a dispatch to run after the response has been sent."""
        if not settings.NOTIFICATIONS_ENABLED:
            return
        background_tasks.add_task(
            self.dispatch,
            Notification(event=event, recipient_id=recipient_id, context=context),
        )


dispatcher = NotificationDispatcher()


def notify(
    background_tasks: BackgroundTasks,
    event: NotificationEvent,
    recipient_id: UUID,
    **context: Any,
) -> None:
    dispatcher.schedule(background_tasks, event, recipient_id, **context)
