"""
Outbound delivery transports for email and SMS.

SmtpTransport sends real mail through smtplib in a worker thread.
SimulatedTransport only waits a configured delay; it is used whenever no
real transport is configured.
"""

from __future__ import annotations

import asyncio
import smtplib
import uuid
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from workrelay.config import settings
from workrelay.config.services import MailSettings
from workrelay.utility.logging_client import logger


@dataclass
class DeliveryResult:
    success: bool
    transport: str
    message_id: Optional[str] = None
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "transport": self.transport}
        if self.message_id:
            data["messageId"] = self.message_id
        if self.error:
            data["error"] = self.error
        data.update(self.extra)
        return data


@runtime_checkable
class DeliveryTransport(Protocol):
    name: str

    async def deliver(self, payload: Mapping[str, Any]) -> DeliveryResult: ...


class SimulatedTransport:
    """Pretends to deliver after `delay` seconds."""

    def __init__(self, channel: str, delay: float = 0.0) -> None:
        self.name = f"simulated-{channel}"
        self.channel = channel
        self.delay = delay

    async def deliver(self, payload: Mapping[str, Any]) -> DeliveryResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        target = payload.get("to")
        logger.info(f"(Simulated) {self.channel} to {target}", component=self.channel)
        return DeliveryResult(success=True, transport=self.name, message_id=f"sim-{uuid.uuid4().hex[:12]}")


class SmtpTransport:
    """
    SMTP email transport.

    Expects payload `{to, subject, body, html}`. The blocking smtplib session
    runs in a thread so the consumer's event loop is never blocked.
    """

    name = "smtp"

    def __init__(self, mail_settings: Optional[MailSettings] = None) -> None:
        self.settings = mail_settings or settings.mail
        self.default_from = self.settings.smtp_from or self.settings.smtp_user

    def is_configured(self) -> bool:
        return self.settings.configured

    async def deliver(self, payload: Mapping[str, Any]) -> DeliveryResult:
        if not self.is_configured():
            return DeliveryResult(success=False, transport=self.name, error="SMTP is not configured")

        try:
            message_id = await asyncio.to_thread(self._send, payload)
        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP authentication failed", component="email")
            return DeliveryResult(success=False, transport=self.name, error="SMTP authentication failed")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error: {type(e).__name__}: {e}", component="email")
            return DeliveryResult(success=False, transport=self.name, error=str(e) or type(e).__name__)

        logger.info(f"Email sent to {payload.get('to')}: {str(payload.get('subject', ''))[:50]}", component="email")
        return DeliveryResult(success=True, transport=self.name, message_id=message_id)

    def _send(self, payload: Mapping[str, Any]) -> str:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = str(payload.get("subject", ""))
        msg["From"] = payload.get("from") or self.default_from
        msg["To"] = str(payload["to"])
        message_id = f"<{uuid.uuid4().hex}@workrelay>"
        msg["Message-ID"] = message_id

        content_type = "html" if payload.get("html", True) else "plain"
        msg.attach(MIMEText(str(payload.get("body", "")), content_type, "utf-8"))

        with smtplib.SMTP(
            self.settings.smtp_host, self.settings.smtp_port, timeout=self.settings.smtp_timeout
        ) as server:
            if self.settings.smtp_use_tls:
                server.starttls()
            server.login(self.settings.smtp_user, self.settings.smtp_password)
            server.send_message(msg)
        return message_id


def mail_transport_from_settings() -> DeliveryTransport:
    """SMTP when configured, otherwise simulated delivery."""
    if settings.mail.configured:
        return SmtpTransport()
    return SimulatedTransport("email", settings.workers.email_simulate_delay)


def sms_transport_from_settings() -> DeliveryTransport:
    return SimulatedTransport("sms", settings.workers.sms_simulate_delay)
