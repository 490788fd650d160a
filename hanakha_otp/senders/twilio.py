"""
Twilio SMS Sender
=================
Direct SMS delivery through the Twilio Messages API.
"""

from base64 import b64encode
from typing import Optional
import httpx
import structlog

from ..errors import SenderError
from ..otp.codes import mask_destination
from .base import NotificationSender
from .templates import sms_text

logger = structlog.get_logger(__name__)


class TwilioSMSSender(NotificationSender):
    """
    Twilio SMS provider adapter.

    Uses a messaging service SID when configured, otherwise the from number.
    """

    name = "twilio"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: Optional[str] = None,
        messaging_service_sid: Optional[str] = None,
        site_name: str = "HanakhaDeals",
        validity_minutes: int = 10,
        timeout: float = 8.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not from_number and not messaging_service_sid:
            raise ValueError("Twilio needs a from number or a messaging service SID")
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.messaging_service_sid = messaging_service_sid
        self.site_name = site_name
        self.validity_minutes = validity_minutes
        self.timeout = timeout
        self.base_url = f"https://api.twilio.com/2010-04-01/Accounts/{account_sid}"
        self._client = client
        self._owns_client = client is None

    def _auth_header(self) -> str:
        auth = b64encode(f"{self.account_sid}:{self.auth_token}".encode()).decode()
        return f"Basic {auth}"

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
            "To": destination,
            "Body": sms_text(code, self.site_name, self.validity_minutes),
        }
        if self.messaging_service_sid:
            payload["MessagingServiceSid"] = self.messaging_service_sid
        else:
            payload["From"] = self.from_number

        try:
            response = await self._get_client().post(
                f"{self.base_url}/Messages.json",
                data=payload,
                headers={"Authorization": self._auth_header()},
            )
        except httpx.TimeoutException:
            raise SenderError("Twilio timed out", provider=self.name) from None
        except httpx.HTTPError as e:
            raise SenderError(f"Twilio unreachable: {e}", provider=self.name) from e

        if response.status_code == 201:
            data = response.json()
            logger.info(
                "otp_sms_sent",
                provider=self.name,
                sid=data.get("sid"),
                destination=mask_destination(destination),
            )
            return True

        if response.status_code >= 500:
            raise SenderError("Twilio server error", provider=self.name, status_code=response.status_code)

        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        logger.error(
            "Twilio send failed",
            status=response.status_code,
            error_code=error_data.get("code"),
            error=error_data.get("message", "Unknown error"),
            destination=mask_destination(destination),
        )
        return False
