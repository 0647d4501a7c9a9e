"""
SMS transport for a Twilio-compatible REST API.
"""
from typing import Optional

import httpx

from app.core.config import settings
from app.core.exceptions import DeliveryFailure
from app.core.logging import notify_logger as logger


class SmsTransport:
    def __init__(
        self,
        api_url: Optional[str] = None,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = (api_url or settings.SMS_API_URL).rstrip("/")
        self.account_sid = account_sid if account_sid is not None else settings.SMS_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else settings.SMS_AUTH_TOKEN
        self.from_number = from_number if from_number is not None else settings.SMS_FROM_NUMBER
        self.timeout = timeout or settings.SMS_TIMEOUT_SECONDS
        # Injected in tests (httpx.MockTransport)
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    @property
    def messages_url(self) -> str:
        return f"{self.api_url}/Accounts/{self.account_sid}/Messages.json"

    async def send(self, to_number: str, body: str) -> Optional[str]:
        """
        Send one SMS. Returns the provider message sid.

        Raises DeliveryFailure on timeouts, transport errors and non-2xx responses.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.messages_url,
                    data={"To": to_number, "From": self.from_number, "Body": body},
                    auth=(self.account_sid, self.auth_token),
                )
        except httpx.TimeoutException as e:
            logger.warning(f"[SMS] Timeout sending to {to_number}")
            raise DeliveryFailure("SMS gateway timed out") from e
        except httpx.RequestError as e:
            logger.warning(f"[SMS] Request error sending to {to_number}", error=e)
            raise DeliveryFailure(f"SMS gateway unreachable: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning(f"[SMS] Gateway rejected message to {to_number}: HTTP {response.status_code} - {response.text[:200]}")
            raise DeliveryFailure(f"SMS gateway returned HTTP {response.status_code}")

        try:
            sid = response.json().get("sid")
        except ValueError:
            sid = None
        logger.info(f"[SMS] Sent message to {to_number} (sid: {sid})")
        return sid
