"""Waterpoint Gateway - SMS delivery of one-time codes.

Sends codes through the Africa's Talking messaging API. Delivery is
best-effort: failures are logged and reported in the result, never raised,
and issuance never waits for it.
"""

import asyncio
import logging
from dataclasses import dataclass

import httpx

from waterpoint.core.config import Settings
from waterpoint.utils.helpers import json_or_empty
from waterpoint.utils.phone import InvalidPhoneNumber, normalize_phone_number

logger = logging.getLogger(__name__)

# Africa's Talking per-recipient status code for an accepted message
STATUS_SUCCESS = 101


@dataclass
class DeliveryResult:
    """Outcome of an SMS delivery attempt."""

    success: bool
    attempts: int
    message_id: str | None = None
    error: str | None = None


def build_code_message(code: str, liters: int, ttl_minutes: int) -> str:
    return (
        f"Your Water Kiosk OTP is: {code}\n"
        f"Water: {liters}L\n"
        f"Valid for {ttl_minutes} minutes.\n"
        "Do not share this code."
    )


def first_recipient(body: dict) -> dict:
    """First entry of ``SMSMessageData.Recipients``, or {} if the body has none."""
    message_data = body.get("SMSMessageData")
    recipients = message_data.get("Recipients") if isinstance(message_data, dict) else None
    if isinstance(recipients, list) and recipients and isinstance(recipients[0], dict):
        return recipients[0]
    return {}


class NotificationDispatcher:
    """Best-effort SMS sender with bounded retries.

    Usage:
        dispatcher = NotificationDispatcher(settings)
        dispatcher.dispatch("254712345678", code, liters=10, ttl_minutes=10)
    """

    MESSAGING_PATH = "/version1/messaging"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._api_key = settings.sms_api_key
        self._username = settings.sms_username
        self._sender_id = settings.sms_sender_id
        self.max_retries = settings.sms_max_retries
        self.retry_delay = settings.sms_retry_delay_seconds
        self._client = client or httpx.AsyncClient(
            base_url=settings.sms_base_url,
            timeout=settings.http_timeout_seconds,
        )
        self._pending: set[asyncio.Task] = set()

    async def send_code(
        self,
        destination: str,
        code: str,
        liters: int,
        ttl_minutes: int,
    ) -> DeliveryResult:
        """Send a one-time code by SMS.

        Args:
            destination: Kenyan mobile number in any accepted format
            code: Plaintext one-time code
            liters: Liters the code authorizes
            ttl_minutes: Minutes until the code expires

        Returns:
            DeliveryResult; never raises
        """
        try:
            recipient = "+" + normalize_phone_number(destination)
        except InvalidPhoneNumber as e:
            logger.warning(f"SMS not sent, bad destination: {e}")
            return DeliveryResult(success=False, attempts=0, error=str(e))

        form = {
            "username": self._username,
            "to": recipient,
            "message": build_code_message(code, liters, ttl_minutes),
            "from": self._sender_id,
        }
        headers = {"apiKey": self._api_key, "Accept": "application/json"}

        last_error: str | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._client.post(self.MESSAGING_PATH, data=form, headers=headers)
                response.raise_for_status()
                first = first_recipient(json_or_empty(response))
                if first.get("statusCode") == STATUS_SUCCESS:
                    logger.info(f"OTP SMS delivered to {recipient[:7]}*** on attempt {attempt}")
                    return DeliveryResult(
                        success=True,
                        attempts=attempt,
                        message_id=first.get("messageId"),
                    )
                last_error = first.get("status") or "No recipients accepted"
            except httpx.TimeoutException:
                last_error = "Timeout"
            except (httpx.HTTPError, ValueError) as e:
                last_error = str(e)

            logger.warning(f"SMS attempt {attempt}/{self.max_retries} failed: {last_error}")
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * attempt)

        logger.error(f"SMS delivery failed after {self.max_retries} attempts: {last_error}")
        return DeliveryResult(success=False, attempts=self.max_retries, error=last_error)

    def dispatch(self, destination: str, code: str, liters: int, ttl_minutes: int) -> asyncio.Task:
        """Schedule ``send_code`` in the background and return immediately."""
        task = asyncio.create_task(self.send_code(destination, code, liters, ttl_minutes))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def aclose(self) -> None:
        """Wait briefly for in-flight deliveries, then close the HTTP client."""
        if self._pending:
            await asyncio.wait(list(self._pending), timeout=5)
        await self._client.aclose()
