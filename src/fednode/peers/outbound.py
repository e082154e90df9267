"""Outbound messages: record, deliver, then mark the outcome."""

import logging
import time
import uuid
from collections.abc import Callable

from fednode.enrichment.enricher import EnrichedEvent
from fednode.errors import DeliveryError
from fednode.ledger.models import (
    EventContent,
    FullEventRequestContent,
    LedgerMessage,
    MessageStatus,
    MessageType,
    distribution_mode_for,
    encode_content,
)
from fednode.ledger.store import MessageLedger
from fednode.logging import log_context
from fednode.peers.client import DeliveryClient

logger = logging.getLogger(__name__)


class OutboundDispatcher:
    def __init__(
        self,
        ledger: MessageLedger | None = None,
        client: DeliveryClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ledger = ledger or MessageLedger()
        self.client = client or DeliveryClient()
        self._clock = clock

    async def send_event(
        self,
        event: EnrichedEvent,
        destinations: frozenset[str],
    ) -> LedgerMessage:
        """Distribute a freshly enriched event; its UUID is the message id."""
        content = EventContent(
            event_uuid=event.event_uuid,
            event_type=event.event_type.name,
            event_rdf=event.transmitted_rdf,
            event_recorded=event.recorded_time,
        )
        return await self.send_event_content(
            content,
            destinations,
            message_id=event.event_uuid,
            original_json=event.event_json,
        )

    async def send_event_content(
        self,
        content: EventContent,
        destinations: frozenset[str],
        *,
        message_id: str | None = None,
        original_json: str | None = None,
    ) -> LedgerMessage:
        message = LedgerMessage(
            message_id=message_id or str(uuid.uuid4()),
            message_type=MessageType.EVENT,
            status=MessageStatus.CREATED,
            payload=encode_content(content),
            recorded_time=self._clock(),
            destinations=destinations,
            distribution_mode=distribution_mode_for(destinations),
            original_json=original_json,
            event_type=content.event_type,
            event_uuid=content.event_uuid,
        )
        return await self._dispatch(message)

    async def request_full_event(
        self,
        event_uuid: str,
        destination: str,
        event_type: str | None = None,
    ) -> LedgerMessage:
        destinations = frozenset({destination})
        message = LedgerMessage(
            message_id=str(uuid.uuid4()),
            message_type=MessageType.FULL_EVENT_REQUEST,
            status=MessageStatus.CREATED,
            payload=encode_content(FullEventRequestContent(event_uuid=event_uuid)),
            recorded_time=self._clock(),
            destinations=destinations,
            distribution_mode=distribution_mode_for(destinations),
            event_type=event_type,
            event_uuid=event_uuid,
        )
        return await self._dispatch(message)

    async def _dispatch(self, message: LedgerMessage) -> LedgerMessage:
        with log_context(message_id=message.message_id, message_type=str(message.message_type)):
            self.ledger.add_message(message)
            try:
                await self.client.deliver(message)
            except Exception as exc:
                self.ledger.update_message_status(message.message_id, MessageStatus.FAILED)
                message.status = MessageStatus.FAILED
                if isinstance(exc, DeliveryError):
                    exc.message_id = message.message_id
                raise
            self.ledger.update_message_status(message.message_id, MessageStatus.SEND)
            message.status = MessageStatus.SEND
            logger.info("Sent %s message to %s", message.message_type, message.distribution_mode)
            return message
