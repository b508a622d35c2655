"""Domain events published when an approval request changes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


class RequestAction:
    """Action names carried on RequestUpdated events."""

    CREATED = "created"
    UPDATED = "updated"
    LINE_ITEMS_ADDED = "line_items_added"
    ATTACHMENT_ADDED = "attachment_added"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAYMENT_COMPLETED = "payment_completed"
    DELETED = "deleted"


@dataclass(frozen=True)
class RequestUpdated:
    """An approval request changed; listeners should refresh."""

    action: str
    request_id: str
    approval_level: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    event_type = "approval_request_updated"

    def to_message(self) -> dict[str, Any]:
        """Wire format broadcast to dashboard sockets."""
        body: dict[str, Any] = {"action": self.action, "request_id": self.request_id}
        if self.approval_level is not None:
            body["approval_level"] = self.approval_level
        body.update(self.payload)
        return {
            "event": self.event_type,
            "payload": body,
            "timestamp": self.occurred_at.isoformat(),
        }
