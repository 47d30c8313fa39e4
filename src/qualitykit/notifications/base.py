"""
Notification dispatch.

The dispatcher routes a rendered alert to a registered channel. Channels own
delivery; every failure reaches the caller as DispatchError so the alert
engine can log it and carry on with the tick.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from qualitykit.errors import DispatchError
from qualitykit.models import BaseQualityModel, ChannelType, IssueType, Priority, ensure_utc, utc_now

logger = logging.getLogger(__name__)


class DeliveryReceipt(BaseQualityModel):
    """Proof of delivery returned by a channel."""
    channel: ChannelType
    recipient: str
    delivered_at: datetime = Field(default_factory=utc_now)
    ticket_key: Optional[str] = Field(None, description="External ticket key for ticket channels")
    status: Optional[str] = Field(None, description="External ticket status")
    details: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("delivered_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class TicketRequest(BaseQualityModel):
    """Fields consumed by the ticket-creation channel."""
    summary: str = Field(..., min_length=1)
    description: str = ""
    issue_type: IssueType = Field(IssueType.BUG)
    priority: Priority = Field(Priority.MEDIUM)
    assignee: Optional[str] = None
    labels: List[str] = Field(default_factory=list)

    @field_validator("issue_type", "priority", mode="before")
    @classmethod
    def convert_title_case(cls, v: Any) -> Any:
        return v.title() if isinstance(v, str) else v

    @field_validator("labels", mode="before")
    @classmethod
    def convert_labels(cls, v: Any) -> List[str]:
        if v is None:
            return []
        # Labels form a set; keep first-seen order for stable payloads
        return list(dict.fromkeys(v))


class NotificationChannel(ABC):
    """A delivery mechanism for rendered alerts."""

    channel_type: ChannelType

    @abstractmethod
    def send(self, recipient: str, subject: str, body: str, **fields: Any) -> DeliveryReceipt:
        """
        Deliver one message.

        Raises:
            DispatchError: If delivery fails
        """
        pass


class NotificationDispatcher:
    """
    Routes notifications to registered channels.

    Example:
        dispatcher = NotificationDispatcher()
        dispatcher.register(EmailChannel(SmtpSettings.from_env()))
        dispatcher.register(JiraTicketChannel(JiraSettings.from_env()))
        receipt = dispatcher.send(ChannelType.TICKET, "DQ", "Duplicates found", "3 duplicate claim ids")
    """

    def __init__(self):
        self._channels: Dict[ChannelType, NotificationChannel] = {}
        self._lock = threading.Lock()

    def register(self, channel: NotificationChannel) -> None:
        """Register (or replace) the channel for its channel type."""
        with self._lock:
            self._channels[channel.channel_type] = channel
        logger.info(f"Registered {channel.channel_type.value} channel {type(channel).__name__}")

    def has_channel(self, channel: ChannelType) -> bool:
        with self._lock:
            return channel in self._channels

    def send(
        self,
        channel: ChannelType,
        recipient: str,
        subject: str,
        body: str,
        **ticket_fields: Any
    ) -> DeliveryReceipt:
        """
        Send a message through a channel.

        Args:
            channel: Target channel type
            recipient: Email address or ticket project
            subject: Subject line / ticket summary
            body: Message body / ticket description
            **ticket_fields: issue_type, priority, assignee, labels for ticket channels

        Returns:
            DeliveryReceipt; ticket channels include the ticket key

        Raises:
            DispatchError: If the channel is unknown or delivery fails
        """
        channel = ChannelType(channel)
        with self._lock:
            target = self._channels.get(channel)
        if target is None:
            raise DispatchError(channel.value, "no channel registered")

        try:
            receipt = target.send(recipient, subject, body, **ticket_fields)
        except DispatchError:
            raise
        except Exception as e:
            raise DispatchError(channel.value, f"{type(e).__name__}: {e}") from e

        logger.info(f"Dispatched '{subject}' via {channel.value} to {recipient or 'default recipient'}")
        return receipt
