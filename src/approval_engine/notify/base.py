"""Base protocol and types for outbound notification delivery.

All delivery adapters must implement the NotifyService protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence


@dataclass(frozen=True)
class SendResult:
    """Result of handing one message to the delivery service."""

    success: bool
    error: str | None = None


def recipients_of(to: str | Sequence[str]) -> list[str]:
    """Normalize a single address or list of addresses."""
    if isinstance(to, str):
        return [to] if to.strip() else []
    return [addr for addr in to if addr and addr.strip()]


class NotifyService(Protocol):
    """Protocol for email delivery adapters.

    Constructed once at process start and passed to the workflow by
    reference. Implementations report failure through ``SendResult``
    rather than raising where they can.
    """

    service_name: str

    async def send(
        self,
        to: str | Sequence[str],
        subject: str,
        html: str,
        text: str | None = None,
    ) -> SendResult:
        """Deliver one message to one or more addresses."""
        ...
