"""
Twilio Client - Emergency SMS and voice calls over the REST API

Both operations return True when Twilio accepted the request and False
otherwise; the EscalationDispatcher turns False into a NotificationFailure.
"""

import logging
import re
from typing import Any, Optional

import httpx
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from safecall.config.settings import TwilioConfig
from safecall.services.interfaces import NotificationService

logger = logging.getLogger(__name__)


_TWIML_UNSAFE = re.compile(r"[<>&'\"]")


def sanitize_for_twiml(message: str) -> str:
    """Strip XML special characters and flatten newlines for <Say>."""
    return _TWIML_UNSAFE.sub("", message).replace("\n", ". ").strip()


def build_twiml(message: str) -> str:
    return (
        "<Response>"
        f'<Say voice="alice" rate="medium">{sanitize_for_twiml(message)}</Say>'
        '<Pause length="2"/>'
        '<Say voice="alice">This is an automated emergency notification from SafeCall. '
        "Please respond to this incident immediately.</Say>"
        "</Response>"
    )


class TwilioClient(NotificationService):
    """NotificationService backed by Twilio Messages and Calls."""

    API_VERSION = "2010-04-01"
    CALL_TIMEOUT_SECONDS = 30

    def __init__(
        self,
        settings: Optional[TwilioConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings or TwilioConfig()
        self._client = client or httpx.AsyncClient(
            base_url=self._settings.base_url,
            timeout=self._settings.timeout_seconds,
            transport=httpx.AsyncHTTPTransport(retries=0),
        )
        self._auth = httpx.BasicAuth(self._settings.account_sid or "", self._settings.auth_token or "")

    async def aclose(self) -> None:
        await self._client.aclose()

    def _path(self, resource: str) -> str:
        return f"/{self.API_VERSION}/Accounts/{self._settings.account_sid}/{resource}.json"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _create(self, resource: str, form: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post(self._path(resource), data=form, auth=self._auth)
        response.raise_for_status()
        return response.json()

    async def send_sms(self, phone_number: str, message: str) -> bool:
        try:
            result = await self._create("Messages", {
                "To": phone_number,
                "From": self._settings.from_number,
                "Body": message,
            })
        except (httpx.HTTPError, RetryError) as e:
            logger.error(f"[TwilioClient] SMS sending failed to {phone_number}: {e}")
            return False
        logger.info(f"[TwilioClient] SMS sent: {result.get('sid')}")
        return True

    async def make_call(self, phone_number: str, message: str) -> bool:
        try:
            result = await self._create("Calls", {
                "To": phone_number,
                "From": self._settings.from_number,
                "Twiml": build_twiml(message),
                "Timeout": str(self.CALL_TIMEOUT_SECONDS),
            })
        except (httpx.HTTPError, RetryError) as e:
            logger.error(f"[TwilioClient] Call initiation failed to {phone_number}: {e}")
            return False
        logger.info(f"[TwilioClient] Call initiated: {result.get('sid')}")
        return True
