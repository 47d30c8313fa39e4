"""
Outbound notification channels and the dispatcher that routes to them.
"""

from .base import DeliveryReceipt, NotificationChannel, NotificationDispatcher, TicketRequest
from .smtp import EmailChannel
from .jira import JiraTicketChannel, build_issue_payload

__all__ = [
    "DeliveryReceipt",
    "TicketRequest",
    "NotificationChannel",
    "NotificationDispatcher",
    "EmailChannel",
    "JiraTicketChannel",
    "build_issue_payload",
]
