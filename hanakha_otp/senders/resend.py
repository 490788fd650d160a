"""
Resend Email Sender
===================
Direct email delivery through the Resend HTTP API.
"""

from typing import Optional
import httpx
import structlog

from ..errors import SenderError
from ..otp.codes import mask_destination
from .base import NotificationSender
from .templates import email_html, email_subject

logger = structlog.get_logger(__name__)


class ResendEmailSender(NotificationSender):
    """Email provider adapter for api.resend.com."""

    name = "resend"

    def __init__(
        self,
        api_key: str,
        from_address: str,
        site_name: str = "HanakhaDeals",
        validity_minutes: int = 10,
        timeout: float = 10.0,
        base_url: str = "https://api.resend.com",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.site_name = site_name
        self.validity_minutes = validity_minutes
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def send(self, user_id: str, destination: str, code: str) -> bool:
        payload = {
            "from": self.from_address,
            "to": [destination],
            "subject": email_subject(self.site_name),
            "html": email_html(code, self.site_name, self.validity_minutes),
        }

        try:
            response = await self._get_client().post(
                f"{self.base_url}/emails",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.TimeoutException:
            raise SenderError("Email API timed out", provider=self.name) from None
        except httpx.HTTPError as e:
            raise SenderError(f"Email API unreachable: {e}", provider=self.name) from e

        if response.status_code >= 500:
            raise SenderError("Email API error", provider=self.name, status_code=response.status_code)

        if response.status_code >= 400:
            logger.error(
                "Resend rejected email",
                status=response.status_code,
                destination=mask_destination(destination),
                body=response.text[:200],
            )
            return False

        logger.info("otp_email_sent", provider=self.name, destination=mask_destination(destination))
        return True
