"""
Managed Function Sender
=======================
Delivers OTPs through the hosted send-otp edge function.
"""

from typing import Optional
import httpx
import structlog

from ..errors import SenderError
from ..otp.codes import mask_destination
from .base import NotificationSender

logger = structlog.get_logger(__name__)


class ManagedFunctionSender(NotificationSender):
    """
    POSTs to {base_url}/functions/v1/send-otp.

    The function generates and stores its own record; this sender only cares
    whether the call was accepted.
    """

    name = "managed_function"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        channel: str,
        timeout: float = 8.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = f"{base_url.rstrip('/')}/functions/v1/send-otp"
        self.api_key = api_key
        self.channel = channel
        self.timeout = timeout
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
        client = self._get_client()
        try:
            response = await client.post(
                self.endpoint,
                json={
                    "user_id": user_id,
                    "contact_info": destination,
                    "otp_type": self.channel,
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.TimeoutException:
            raise SenderError("Edge function timed out", provider=self.name) from None
        except httpx.HTTPError as e:
            raise SenderError(f"Edge function unreachable: {e}", provider=self.name) from e

        if response.status_code >= 400:
            try:
                message = response.json().get("error") or f"HTTP {response.status_code}"
            except ValueError:
                message = f"HTTP {response.status_code}"
            raise SenderError(message, provider=self.name, status_code=response.status_code)

        logger.info(
            "otp_sent_via_edge_function",
            channel=self.channel,
            destination=mask_destination(destination),
        )
        return True
