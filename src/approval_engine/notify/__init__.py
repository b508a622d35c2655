"""Outbound notification delivery adapters."""

from approval_engine.notify.base import NotifyService, SendResult
from approval_engine.notify.smtp import SmtpNotifyService
from approval_engine.notify.stub import SentMessage, StubNotifyService

__all__ = [
    "NotifyService",
    "SendResult",
    "SmtpNotifyService",
    "StubNotifyService",
    "SentMessage",
]
