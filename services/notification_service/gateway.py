from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx
import structlog

from services.order_service.enums import NotificationKind
from shared.config.settings import Settings
from .templates import render

logger = structlog.get_logger(__name__)

MAILERSEND_URL = "https://api.mailersend.com/v1/email"


@dataclass(frozen=True)
class NotificationResult:
    ok: bool
    reason: str = ""
    forced_from: Optional[str] = None


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: str  # base64
    disposition: str = "attachment"


class NotificationGateway(ABC):
    """Outbound transactional e-mail. Callers only care whether it was accepted."""

    @abstractmethod
    async def send(
        self,
        kind: NotificationKind,
        order,
        customer,
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> NotificationResult:
        ...


class MailerSendGateway(NotificationGateway):
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.settings = settings
        self.timeout = timeout
        self._client = client

    def resolve_recipient(self, email: str) -> tuple[str, Optional[str]]:
        original = (email or "").strip()
        if self.settings.mail_force_to:
            return self.settings.mail_force_to, original or None
        if not self.settings.is_production and self.settings.mail_test_to:
            return self.settings.mail_test_to, original or None
        return original, None

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> httpx.Response:
        return await client.post(
            MAILERSEND_URL,
            json=payload,
            headers={
                "Authorization": f"Bearer {self.settings.mailersend_api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )

    async def send(self, kind, order, customer, attachments=None) -> NotificationResult:
        if customer is None or not getattr(customer, "email", ""):
            return NotificationResult(ok=False, reason="missing_data")

        if not self.settings.mailersend_api_key:
            logger.error("mail_not_sent", kind=kind.value, reason="missing_api_key")
            return NotificationResult(ok=False, reason="missing_api_key")
        if not self.settings.mail_from_email:
            logger.error("mail_not_sent", kind=kind.value, reason="missing_from_email")
            return NotificationResult(ok=False, reason="missing_from_email")

        rendered = render(kind, order, customer, self.settings.public_base_url)
        if rendered is None:
            return NotificationResult(ok=False, reason="nothing_to_send")

        to_email, forced_from = self.resolve_recipient(customer.email)
        if not to_email:
            return NotificationResult(ok=False, reason="missing_to_email")

        subject = f"[DEV] {rendered.subject}" if forced_from else rendered.subject
        payload = {
            "from": {"email": self.settings.mail_from_email, "name": self.settings.mail_from_name},
            "to": [{"email": to_email}],
            "subject": subject,
            "text": rendered.text,
        }
        files = [a for a in attachments or () if a.filename.strip() and a.content.strip()]
        if files:
            payload["attachments"] = [
                {
                    "filename": a.filename.strip(),
                    "content": a.content.strip(),
                    "disposition": "inline" if a.disposition == "inline" else "attachment",
                }
                for a in files
            ]

        try:
            if self._client is not None:
                response = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, payload)
        except httpx.HTTPError as exc:
            logger.error("mail_send_failed", kind=kind.value, order_id=order.id, error=str(exc))
            return NotificationResult(ok=False, reason="network_error")

        if response.status_code == 202:
            logger.info("mail_sent", kind=kind.value, order_id=order.id, forced_from=forced_from)
            return NotificationResult(ok=True, forced_from=forced_from)

        logger.error(
            "mail_rejected",
            kind=kind.value,
            order_id=order.id,
            status_code=response.status_code,
            body=response.text[:1200],
        )
        return NotificationResult(ok=False, reason="mailersend_error")
