"""Best-effort delivery of received events to subscriber callbacks."""

import logging
from dataclasses import dataclass

import httpx

from fednode.config import get_settings
from fednode.webhooks.store import WebhookRegistration, WebhookStore
from fednode.webhooks.tokens import TokenProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EventNotification:
    event_type: str
    event_uuid: str
    event_rdf: str


class WebhookNotifier:
    def __init__(
        self,
        store: WebhookStore | None = None,
        tokens: TokenProvider | None = None,
        timeout_seconds: float | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store or WebhookStore()
        self.tokens = tokens or TokenProvider(transport=transport)
        self.timeout_seconds = float(timeout_seconds or settings.webhook_timeout_seconds)
        self._transport = transport

    async def handle_event(self, notification: EventNotification) -> int:
        """Notify every matching subscriber; return how many accepted the call."""
        delivered = 0
        for registration in self.store.for_event_type(notification.event_type):
            try:
                if await self._notify(registration, notification):
                    delivered += 1
            except Exception as exc:
                logger.warning(
                    "Unable to notify webhook %s for event %s: %s",
                    registration.client_id,
                    notification.event_uuid,
                    exc,
                )
        return delivered

    async def _notify(
        self,
        registration: WebhookRegistration,
        notification: EventNotification,
    ) -> bool:
        headers = {"Location": f"/api/events/{notification.event_uuid}"}
        if registration.token_url:
            token = await self.tokens.bearer_token(registration)
            headers["Authorization"] = f"Bearer {token}"
        if registration.api_key:
            headers["X-API-KEY"] = registration.api_key
        body = {"eventType": notification.event_type, "eventUUID": notification.event_uuid}
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds, transport=self._transport
        ) as client:
            response = await client.post(registration.callback_url, json=body, headers=headers)
        if response.status_code >= 400:
            logger.warning(
                "Sending event %s to callback %s failed with %d",
                notification.event_uuid,
                registration.callback_url,
                response.status_code,
            )
            return False
        logger.info(
            "Notified webhook %s of %s event %s",
            registration.client_id,
            notification.event_type,
            notification.event_uuid,
        )
        return True
