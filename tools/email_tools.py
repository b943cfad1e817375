from __future__ import annotations

import logging
import uuid
from typing import Dict, List, Protocol

import httpx

from models.schemas import DeliveryReceipt
from notifications.errors import DeliveryFailure
from settings import SETTINGS

logger = logging.getLogger(__name__)


class EmailProvider(Protocol):
    name: str

    async def send(self, to: str, subject: str, html: str) -> DeliveryReceipt:
        """Deliver one email or raise DeliveryFailure."""
        ...


class ResendEmailClient:
    name = "resend"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        from_email: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else SETTINGS.resend_api_key
        self.base_url = (base_url or SETTINGS.resend_base_url).rstrip("/")
        self.from_email = from_email or SETTINGS.from_email
        self.timeout_seconds = SETTINGS.email_send_timeout_seconds if timeout_seconds is None else timeout_seconds
        self._transport = transport

    def available(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: str, subject: str, html: str) -> DeliveryReceipt:
        if not self.api_key:
            raise DeliveryFailure("resend_api_key_missing")
        payload = {"from": self.from_email, "to": [to], "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/emails", json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise DeliveryFailure(f"resend_timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise DeliveryFailure(f"resend_transport_error: {exc}") from exc
        if resp.status_code >= 300:
            raise DeliveryFailure(f"resend_rejected status={resp.status_code} body={resp.text[:300]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise DeliveryFailure("resend_invalid_response") from exc
        message_id = str(data.get("id") or "")
        if not message_id:
            raise DeliveryFailure("resend_missing_message_id")
        return DeliveryReceipt(id=message_id, provider=self.name)


class OutboxEmailTools:
    """In-process outbox used when no provider key is configured."""

    name = "outbox"

    def __init__(self) -> None:
        self.sent: List[Dict[str, str]] = []
        self.rejected_recipients: set[str] = set()

    async def send(self, to: str, subject: str, html: str) -> DeliveryReceipt:
        if to.lower() in self.rejected_recipients:
            raise DeliveryFailure(f"recipient_rejected: {to}")
        message_id = f"outbox-{uuid.uuid4().hex[:12]}"
        self.sent.append({"id": message_id, "to": to, "subject": subject, "html": html})
        logger.info("outbox_email_queued", extra={"message_id": message_id, "subject": subject})
        return DeliveryReceipt(id=message_id, provider=self.name)

    def sent_to(self, email: str) -> List[Dict[str, str]]:
        return [m for m in self.sent if m["to"].lower() == email.lower()]


def build_email_provider() -> EmailProvider:
    client = ResendEmailClient()
    if client.available():
        return client
    logger.warning("email_provider_fallback_outbox", extra={"reason": "RESEND_API_KEY not set"})
    return OutboxEmailTools()
