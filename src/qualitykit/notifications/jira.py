"""
JIRA ticket channel.

Creates issues through the JIRA Cloud REST API (``POST /rest/api/3/issue``)
with the description in Atlassian Document Format. In demo mode the payload
is built but not sent, and a simulated ticket key is returned.
"""

import logging
import zlib
from typing import Any, Dict, Optional

import requests

from qualitykit.config import JiraSettings
from qualitykit.errors import DispatchError
from qualitykit.models import ChannelType

from .base import DeliveryReceipt, NotificationChannel, TicketRequest

logger = logging.getLogger(__name__)

INITIAL_STATUS = "To Do"
_TICKET_FIELDS = ("issue_type", "priority", "assignee", "labels")


def build_issue_payload(project_key: str, ticket: TicketRequest) -> Dict[str, Any]:
    """Build the create-issue payload for a ticket request."""
    payload: Dict[str, Any] = {
        "fields": {
            "project": {"key": project_key},
            "summary": ticket.summary,
            "description": {
                "type": "doc",
                "version": 1,
                "content": [
                    {
                        "type": "paragraph",
                        "content": [{"type": "text", "text": ticket.description}],
                    }
                ],
            },
            "issuetype": {"name": ticket.issue_type.value},
            "priority": {"name": ticket.priority.value},
        }
    }
    if ticket.assignee:
        payload["fields"]["assignee"] = {"accountId": ticket.assignee}
    if ticket.labels:
        payload["fields"]["labels"] = list(ticket.labels)
    return payload


class JiraTicketChannel(NotificationChannel):
    """
    Ticket-creation channel backed by JIRA Cloud.

    The recipient is the JIRA project key; an empty recipient uses the
    project from settings.
    """

    channel_type = ChannelType.TICKET

    def __init__(
        self,
        settings: JiraSettings,
        session: Optional[requests.Session] = None,
        demo_mode: Optional[bool] = None
    ):
        self.settings = settings
        self.session = session or requests.Session()
        self.demo_mode = settings.demo_mode if demo_mode is None else demo_mode

    def send(self, recipient: str, subject: str, body: str, **fields: Any) -> DeliveryReceipt:
        ticket = TicketRequest(
            summary=subject,
            description=body,
            **{k: v for k, v in fields.items() if k in _TICKET_FIELDS and v is not None},
        )
        return self.create_ticket(ticket, project_key=recipient or None)

    def create_ticket(self, ticket: TicketRequest, project_key: Optional[str] = None) -> DeliveryReceipt:
        """
        Create a ticket.

        Raises:
            DispatchError: On network, authentication, rate-limit or API errors
        """
        project = project_key or self.settings.project_key
        payload = build_issue_payload(project, ticket)

        if self.demo_mode:
            return self._simulate(project, ticket)

        try:
            response = self.session.post(
                self.settings.issue_endpoint,
                json=payload,
                auth=(self.settings.user_email, self.settings.api_token.get_secret_value()),
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                timeout=self.settings.timeout_seconds,
            )
        except requests.RequestException as e:
            raise DispatchError(self.channel_type.value, f"request to JIRA failed: {e}") from e

        if response.status_code in (401, 403):
            raise DispatchError(self.channel_type.value, f"JIRA rejected credentials ({response.status_code})")
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "unknown")
            raise DispatchError(self.channel_type.value, f"JIRA rate limit hit; retry after {retry_after}s")
        if response.status_code >= 400:
            raise DispatchError(
                self.channel_type.value,
                f"JIRA returned {response.status_code}: {response.text[:500]}",
            )

        try:
            data = response.json()
        except ValueError as e:
            raise DispatchError(self.channel_type.value, "JIRA returned a non-JSON response") from e

        key = data.get("key")
        if not key:
            raise DispatchError(self.channel_type.value, f"JIRA response has no issue key: {data}")

        logger.info(f"Created JIRA ticket {key}: {ticket.summary}")
        return DeliveryReceipt(
            channel=self.channel_type,
            recipient=project,
            ticket_key=key,
            status=INITIAL_STATUS,
            details={"id": data.get("id"), "self": data.get("self")},
        )

    def _simulate(self, project: str, ticket: TicketRequest) -> DeliveryReceipt:
        key = f"{project}-{zlib.crc32(ticket.summary.encode('utf-8')) % 10000}"
        description = ticket.description
        if len(description) > 200:
            description = description[:200] + "..."
        logger.info(f"[demo] JIRA ticket would be created: {key} {ticket.summary}")
        return DeliveryReceipt(
            channel=self.channel_type,
            recipient=project,
            ticket_key=key,
            status=INITIAL_STATUS,
            details={
                "demo_mode": True,
                "summary": ticket.summary,
                "description": description,
                "issue_type": ticket.issue_type.value,
                "priority": ticket.priority.value,
                "api_endpoint": self.settings.issue_endpoint,
            },
        )
