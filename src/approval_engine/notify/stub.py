"""In-memory delivery adapter for local development and testing.

Replace with SmtpNotifyService (or another adapter) in production.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from approval_engine.notify.base import SendResult, recipients_of


@dataclass(frozen=True)
class SentMessage:
    """A message captured by the stub."""

    to: tuple[str, ...]
    subject: str
    html: str
    text: str | None


class StubNotifyService:
    """Records every message instead of delivering it."""

    service_name = "stub"

    def __init__(
        self,
        failing_addresses: set[str] | None = None,
        raise_on_send: bool = False,
    ):
        """Initialize stub service.

        Args:
            failing_addresses: Addresses whose sends report failure.
            raise_on_send: If True, every send raises instead of returning.
        """
        self.failing_addresses = {a.lower() for a in failing_addresses or set()}
        self.raise_on_send = raise_on_send
        self.sent: list[SentMessage] = []

    async def send(
        self,
        to: str | Sequence[str],
        subject: str,
        html: str,
        text: str | None = None,
    ) -> SendResult:
        if self.raise_on_send:
            raise ConnectionError("stub delivery unavailable")

        addresses = recipients_of(to)
        if not addresses:
            return SendResult(success=False, error="No recipient address")
        failed = [a for a in addresses if a.lower() in self.failing_addresses]
        if failed:
            return SendResult(success=False, error=f"Rejected: {', '.join(failed)}")

        self.sent.append(SentMessage(tuple(addresses), subject, html, text))
        return SendResult(success=True)

    def sent_to(self, address: str) -> list[SentMessage]:
        """Messages delivered to an address."""
        address = address.lower()
        return [m for m in self.sent if address in (a.lower() for a in m.to)]

    def clear(self) -> None:
        self.sent.clear()
