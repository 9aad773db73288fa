"""
Notification Dispatcher

Sends one message to a customer over a set of channels and reports the
outcome of every channel separately:
- Email via SMTP
- SMS via MSG91 (India DLT compliant flow API)
- WhatsApp via the WhatsApp Business Cloud API

A channel that has no configured provider, or no recipient address, fails
for that channel only; the others are still attempted.
"""

import asyncio
import logging
import smtplib
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from typing import Iterable, List, Optional

import httpx

from ordercore.config import Settings, settings as default_settings
from ordercore.models.notification import NotificationChannel


logger = logging.getLogger(__name__)


@dataclass
class ChannelResult:
    channel: NotificationChannel
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"channel": self.channel.value, "success": self.success, "error": self.error}


@dataclass
class DispatchResult:
    """Per-channel outcome of one dispatch call."""
    order_id: uuid.UUID
    results: List[ChannelResult] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return bool(self.results) and all(r.success for r in self.results)

    @property
    def any_succeeded(self) -> bool:
        return any(r.success for r in self.results)

    @property
    def failed_channels(self) -> List[NotificationChannel]:
        return [r.channel for r in self.results if not r.success]

    def result_for(self, channel: NotificationChannel) -> Optional[ChannelResult]:
        for result in self.results:
            if result.channel == channel:
                return result
        return None


def normalize_indian_phone(phone: str) -> str:
    """Strip spaces, dashes and the +91/91 prefix, leaving the 10-digit number."""
    phone = phone.replace(" ", "").replace("-", "")
    if phone.startswith("+91"):
        phone = phone[3:]
    elif phone.startswith("91") and len(phone) == 12:
        phone = phone[2:]
    return phone


class NotificationDispatcher(ABC):
    """Interface the engines use to contact customers."""

    @abstractmethod
    async def send(
        self,
        order_id: uuid.UUID,
        message: str,
        channels: Iterable[NotificationChannel],
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> DispatchResult:
        """Send ``message`` on every channel and report each channel's outcome."""


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Logs messages instead of sending them. For local development."""

    async def send(
        self,
        order_id: uuid.UUID,
        message: str,
        channels: Iterable[NotificationChannel],
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> DispatchResult:
        result = DispatchResult(order_id=order_id)
        for channel in channels:
            recipient = email if channel == NotificationChannel.EMAIL else phone
            logger.info(f"[{channel.value.upper()}] Order {order_id} -> {recipient}: {message}")
            result.results.append(ChannelResult(channel=channel, success=True))
        return result


class ProviderNotificationDispatcher(NotificationDispatcher):
    """
    Dispatcher backed by real providers.

    Channels are sent concurrently. ``transport`` is handed to httpx and
    lets tests substitute ``httpx.MockTransport`` for the SMS and WhatsApp
    providers.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or default_settings
        self.transport = transport
        self.timeout = self.config.NOTIFICATION_HTTP_TIMEOUT

    async def send(
        self,
        order_id: uuid.UUID,
        message: str,
        channels: Iterable[NotificationChannel],
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> DispatchResult:
        channel_list = list(dict.fromkeys(channels))
        subject = subject or "An update about your order"

        async def send_one(channel: NotificationChannel) -> ChannelResult:
            try:
                if channel == NotificationChannel.EMAIL:
                    await self._send_email(email, subject, message)
                elif channel == NotificationChannel.SMS:
                    await self._send_sms(phone, message)
                elif channel == NotificationChannel.WHATSAPP:
                    await self._send_whatsapp(phone, message)
                else:
                    raise ValueError(f"Unsupported channel {channel}")
            except Exception as e:
                logger.error(f"{channel.value} notification for order {order_id} failed: {e}")
                return ChannelResult(channel=channel, success=False, error=str(e))
            logger.info(f"{channel.value} notification sent for order {order_id}")
            return ChannelResult(channel=channel, success=True)

        results = await asyncio.gather(*(send_one(channel) for channel in channel_list))
        return DispatchResult(order_id=order_id, results=list(results))

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout)

    # ==================== EMAIL ====================

    async def _send_email(self, to_email: Optional[str], subject: str, body: str) -> None:
        if not to_email:
            raise ValueError("No email address on the order")
        if not self.config.SMTP_USER or not self.config.SMTP_PASSWORD:
            raise RuntimeError("Email not configured. SMTP credentials missing.")
        # smtplib blocks; keep it off the event loop
        await asyncio.to_thread(self._send_email_sync, to_email, subject, body)

    def _send_email_sync(self, to_email: str, subject: str, body: str) -> None:
        sender = self.config.smtp_sender
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = f"{self.config.SMTP_FROM_NAME} <{sender}>"
        msg["To"] = to_email

        with smtplib.SMTP(self.config.SMTP_HOST, self.config.SMTP_PORT, timeout=self.timeout) as server:
            server.starttls()
            server.login(self.config.SMTP_USER, self.config.SMTP_PASSWORD)
            server.sendmail(sender, to_email, msg.as_string())

    # ==================== SMS (MSG91) ====================

    async def _send_sms(self, phone: Optional[str], message: str) -> None:
        if not phone:
            raise ValueError("No phone number on the order")
        if not self.config.MSG91_AUTH_KEY:
            raise RuntimeError("MSG91 auth key not configured")

        headers = {
            "authkey": self.config.MSG91_AUTH_KEY,
            "Content-Type": "application/json",
        }
        payload = {
            "template_id": self.config.MSG91_TEMPLATE_ID_ORDER_UPDATE,
            "sender": self.config.MSG91_SENDER_ID,
            "mobiles": f"91{normalize_indian_phone(phone)}",
            "VAR1": message,
        }

        async with self._client() as client:
            response = await client.post(self.config.MSG91_API_URL, json=payload, headers=headers)
        if response.status_code != 200:
            raise RuntimeError(f"MSG91 returned {response.status_code}: {response.text}")

    # ==================== WHATSAPP ====================

    async def _send_whatsapp(self, phone: Optional[str], message: str) -> None:
        if not phone:
            raise ValueError("No phone number on the order")
        if not self.config.WHATSAPP_ACCESS_TOKEN or not self.config.WHATSAPP_PHONE_NUMBER_ID:
            raise RuntimeError("WhatsApp Business API not configured")

        url = f"{self.config.WHATSAPP_API_URL.rstrip('/')}/{self.config.WHATSAPP_PHONE_NUMBER_ID}/messages"
        headers = {"Authorization": f"Bearer {self.config.WHATSAPP_ACCESS_TOKEN}"}
        payload = {
            "messaging_product": "whatsapp",
            "to": f"91{normalize_indian_phone(phone)}",
            "type": "text",
            "text": {"body": message},
        }

        async with self._client() as client:
            response = await client.post(url, json=payload, headers=headers)
        if response.status_code not in (200, 201):
            raise RuntimeError(f"WhatsApp API returned {response.status_code}: {response.text}")
