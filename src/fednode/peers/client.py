"""HTTP delivery of ledger messages to the peer message gateway."""

import logging
from typing import Any

import httpx

from fednode.config import get_settings
from fednode.distribution.destinations import format_destinations
from fednode.errors import DeliveryError
from fednode.ledger.models import LedgerMessage

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"


def build_envelope(message: LedgerMessage) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "recordedTime": int(message.recorded_time),
        "messageId": message.message_id,
        "messageType": str(message.message_type),
        "message": message.payload,
    }
    if message.destinations:
        envelope["destination"] = format_destinations(message.destinations)
    return envelope


class DeliveryClient:
    def __init__(
        self,
        endpoint_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.endpoint_url = endpoint_url or settings.message_endpoint_url
        self.api_key = api_key if api_key is not None else settings.message_endpoint_api_key
        self.timeout_seconds = float(
            timeout_seconds or settings.message_endpoint_timeout_seconds
        )
        self._transport = transport

    async def deliver(self, message: LedgerMessage) -> None:
        """POST one message to the gateway; any non-2xx outcome raises DeliveryError."""
        headers = {API_KEY_HEADER: self.api_key} if self.api_key else {}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    self.endpoint_url, json=build_envelope(message), headers=headers
                )
        except httpx.HTTPError as exc:
            logger.warning("Delivery of %s failed: %s", message.message_id, exc)
            raise DeliveryError(f"message endpoint unreachable: {exc}") from exc

        status = response.status_code
        if status >= 500:
            logger.warning("Message endpoint error %d for %s", status, message.message_id)
            raise DeliveryError(f"message endpoint returned {status}", status_code=status)
        if status >= 400:
            logger.warning("Message endpoint rejected %s with %d", message.message_id, status)
            raise DeliveryError(
                f"message endpoint rejected message with {status}",
                status_code=status,
                retryable=False,
            )
        logger.debug("Delivered %s (%d)", message.message_id, status)
