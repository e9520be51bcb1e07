"""HTTP client for the SMS provider."""
import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from recurring_billing.config import settings
from recurring_billing.exceptions import BillingError

logger = structlog.get_logger(__name__)


class SmsDeliveryError(BillingError):
    """The SMS provider rejected or failed to accept a message."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(
            message,
            error_code="SMS_DELIVERY_FAILED",
            context={"status_code": status_code},
            recovery_hint="Check the SMS provider status and the recipient number",
        )
        self.status_code = status_code


class SmsServerError(SmsDeliveryError):
    """5xx from the provider; safe to retry."""

    retryable = True


class SmsGateway:
    """
    Send text messages through the provider's HTTP API.

    Transport errors and 5xx responses are retried with exponential
    backoff; 4xx responses fail immediately.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize SMS gateway.

        Args:
            base_url: Provider API base URL
            api_key: Provider API key
            sender: Sender number or alphanumeric id
            timeout: Request timeout in seconds
            max_attempts: Attempts per message, including the first
            backoff_seconds: Base of the exponential backoff
            client: Preconfigured client (tests inject a mock transport)
        """
        self.base_url = (base_url or settings.sms_gateway_url).rstrip("/")
        self.api_key = api_key or settings.sms_api_key
        self.sender = sender or settings.sms_sender
        self.max_attempts = max_attempts or settings.sms_max_attempts
        self.backoff_seconds = settings.sms_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout or settings.sms_timeout_seconds)

    async def send(self, phone_number: str, message: str) -> str:
        """
        Send one SMS.

        Args:
            phone_number: Recipient number (E.164)
            message: Message text

        Returns:
            Provider message ID

        Raises:
            SmsDeliveryError: Rejected by the provider or still failing after all attempts
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.backoff_seconds, max=30),
                retry=retry_if_exception_type((httpx.TransportError, SmsServerError)),
                reraise=True,
            ):
                with attempt:
                    return await self._post(phone_number, message, attempt.retry_state.attempt_number)
        except httpx.TransportError as e:
            raise SmsDeliveryError(f"SMS transport error: {e}") from e

    async def _post(self, phone_number: str, message: str, attempt_number: int) -> str:
        response = await self._client.post(
            f"{self.base_url}/messages",
            json={"to": phone_number, "from": self.sender, "text": message},
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "User-Agent": "RecurringBilling-SMS/1.0",
            },
        )

        if response.status_code >= 500:
            logger.warning(
                "sms_provider_unavailable",
                status_code=response.status_code,
                attempt=attempt_number,
            )
            raise SmsServerError(f"HTTP {response.status_code}: {response.text[:200]}", response.status_code)

        if response.status_code >= 400:
            logger.error("sms_rejected", status_code=response.status_code, body=response.text[:200])
            raise SmsDeliveryError(f"HTTP {response.status_code}: {response.text[:200]}", response.status_code)

        message_id = response.json().get("message_id", "")
        logger.info("sms_sent", message_id=message_id, attempt=attempt_number)
        return message_id

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()
