"""
Delivery gateway: the boundary to the carrier API.

The dispatcher only sees DeliveryGateway.send(), which returns either a
DeliverySuccess(status, provider_id) or a DeliveryFailure(cause). Carrier
specific exceptions never leave this module.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Union

import httpx

from smsrelay.config import settings
from smsrelay.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliverySuccess:
    """The carrier answered. `status` is the carrier's raw status string."""
    status: str
    provider_id: Optional[str] = None


@dataclass(frozen=True)
class DeliveryFailure:
    cause: Exception

    @property
    def reason(self) -> str:
        return str(self.cause)


DeliveryOutcome = Union[DeliverySuccess, DeliveryFailure]


class DeliveryGateway(Protocol):
    def send(self, destination: str, body: str) -> DeliveryOutcome:
        ...


class TwilioAPIError(Exception):
    """Twilio rejected the request."""

    def __init__(self, message: str, status_code: int, code: Optional[int] = None):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class TwilioGateway:
    """Sends SMS through the Twilio Messages REST API."""

    API_VERSION = "2010-04-01"

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        base_url: str = "https://api.twilio.com",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "TwilioGateway":
        return cls(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_PHONE_NUMBER,
            base_url=settings.TWILIO_API_BASE_URL,
        )

    def check_configuration(self) -> None:
        """
        Raises:
            ConfigurationError: credentials or sender number missing
        """
        if not self.account_sid or not self.auth_token:
            raise ConfigurationError("Twilio credentials not configured")
        if not self.from_number:
            raise ConfigurationError("Twilio phone number not configured")

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/{self.API_VERSION}/Accounts/{self.account_sid}/Messages.json"

    def send(self, destination: str, body: str) -> DeliveryOutcome:
        """
        Submit one message to Twilio.

        Args:
            destination: Recipient phone number (+14155550100)
            body: Message text

        Returns:
            DeliverySuccess with Twilio's status and SID, or DeliveryFailure
        """
        try:
            self.check_configuration()
        except ConfigurationError as e:
            logger.error(f"Twilio gateway misconfigured: {e}")
            return DeliveryFailure(cause=e)

        data = {"From": self.from_number, "To": destination, "Body": body}
        logger.info(f"Sending SMS via Twilio to {destination}")

        try:
            with httpx.Client(transport=self._transport) as client:
                response = client.post(
                    self.messages_url,
                    data=data,
                    auth=(self.account_sid, self.auth_token),
                )
        except httpx.HTTPError as e:
            logger.error(f"Twilio transport error: {e}")
            return DeliveryFailure(cause=RuntimeError(f"SMS service error: {e}"))

        payload = _json_or_empty(response)

        if response.status_code not in (200, 201):
            error = TwilioAPIError(
                f"Twilio API error: {payload.get('message') or response.status_code}",
                status_code=response.status_code,
                code=payload.get("code"),
            )
            logger.error(f"{error} (http={response.status_code}, code={error.code})")
            return DeliveryFailure(cause=error)

        status = payload.get("status")
        if not isinstance(status, str) or not status:
            return DeliveryFailure(cause=RuntimeError("Twilio response did not include a status"))

        sid = payload.get("sid")
        provider_id = sid if isinstance(sid, str) and sid else None
        logger.info(f"Twilio accepted message: status={status}, sid={provider_id}")
        return DeliverySuccess(status=status, provider_id=provider_id)


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def get_delivery_gateway() -> DeliveryGateway:
    """FastAPI dependency; overridden in tests with a stub gateway."""
    return TwilioGateway.from_settings()
