"""Applies messages received from peers to the ledger.

Every message is acknowledged to the sender; the outcome is only visible in
the status of the ledger row recorded for it.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from fednode.distribution.destinations import parse_destination
from fednode.enrichment.enricher import EventEnricher
from fednode.errors import AuthorizationError, FedNodeError, InvalidMessageError
from fednode.ledger.models import (
    EventContent,
    FullEventRequestContent,
    LedgerMessage,
    MessageStatus,
    MessageType,
    PeerEnvelope,
    decode_content,
)
from fednode.ledger.store import MessageLedger
from fednode.logging import log_context
from fednode.peers.outbound import OutboundDispatcher
from fednode.triplestore.client import TripleStoreClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReceiveResult:
    accepted: bool
    message_id: str | None = None
    status: MessageStatus | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "messageId": self.message_id,
            "status": str(self.status) if self.status else None,
            "reason": self.reason,
        }


class InboundMessageHandler:
    def __init__(
        self,
        ledger: MessageLedger | None = None,
        triple_store: TripleStoreClient | None = None,
        enricher: EventEnricher | None = None,
        dispatcher: OutboundDispatcher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ledger = ledger or MessageLedger()
        self.triple_store = triple_store or TripleStoreClient()
        self.enricher = enricher or EventEnricher()
        self.dispatcher = dispatcher or OutboundDispatcher(ledger=self.ledger)
        self._clock = clock

    async def receive(self, envelope: PeerEnvelope | dict[str, Any]) -> ReceiveResult:
        try:
            parsed = (
                envelope
                if isinstance(envelope, PeerEnvelope)
                else PeerEnvelope.model_validate(envelope)
            )
        except PydanticValidationError as exc:
            logger.warning("Rejected malformed peer envelope: %s", exc.error_count())
            return ReceiveResult(accepted=False, reason="malformed envelope")

        with log_context(message_id=parsed.message_id, message_type=str(parsed.message_type)):
            try:
                return await self._receive(parsed)
            except Exception:
                logger.exception("Failed to process inbound message %s", parsed.message_id)
                return ReceiveResult(
                    accepted=False, message_id=parsed.message_id, reason="processing failed"
                )

    async def _receive(self, envelope: PeerEnvelope) -> ReceiveResult:
        try:
            content = decode_content(envelope.message_type, envelope.message)
            if not envelope.origin:
                raise InvalidMessageError("message has no origin")
            origin = parse_destination(envelope.origin)
        except FedNodeError as exc:
            logger.warning("Rejected inbound message %s: %s", envelope.message_id, exc)
            return ReceiveResult(accepted=False, message_id=envelope.message_id, reason=str(exc))

        event_type: str | None = None
        if isinstance(content, EventContent):
            event_type = content.event_type
        else:
            original = self.ledger.find_by_message_id(content.event_uuid)
            event_type = original.event_type if original is not None else None

        message = self.ledger.add_message(
            LedgerMessage(
                message_id=envelope.message_id,
                message_type=envelope.message_type,
                status=MessageStatus.RECEIVED,
                payload=envelope.message,
                recorded_time=self._clock(),
                origin=origin,
                event_type=event_type,
                event_uuid=content.event_uuid,
            )
        )
        logger.info("Received %s message from %s", message.message_type, origin)

        if isinstance(content, EventContent):
            return await self._store_event(message, content)
        return await self._answer_full_event_request(message, content)

    async def _store_event(self, message: LedgerMessage, content: EventContent) -> ReceiveResult:
        try:
            await self.triple_store.insert(content.event_rdf)
        except Exception as exc:
            logger.warning("Could not store event %s: %s", content.event_uuid, exc)
            return self._finish(message, MessageStatus.INVALID, reason=str(exc))
        return ReceiveResult(
            accepted=True, message_id=message.message_id, status=MessageStatus.RECEIVED
        )

    async def _answer_full_event_request(
        self,
        message: LedgerMessage,
        content: FullEventRequestContent,
    ) -> ReceiveResult:
        requester = message.origin or ""
        try:
            original = self._authorize(content.event_uuid, requester)
        except AuthorizationError as exc:
            logger.warning("Refused full event request from %s: %s", requester, exc)
            return self._finish(message, MessageStatus.REFUSED, reason=str(exc))

        assert original.original_json is not None and original.event_type is not None
        try:
            full_rdf = await asyncio.to_thread(
                self.enricher.rebuild_full_event, original.original_json, original.event_type
            )
            previous = original.content()
            await self.dispatcher.send_event_content(
                EventContent(
                    event_uuid=content.event_uuid,
                    event_type=original.event_type,
                    event_rdf=full_rdf,
                    event_recorded=(
                        previous.event_recorded if isinstance(previous, EventContent) else None
                    ),
                ),
                frozenset({requester}),
                original_json=original.original_json,
            )
        except Exception as exc:
            logger.warning("Could not forward full event %s: %s", content.event_uuid, exc)
            return self._finish(message, MessageStatus.INVALID, reason=str(exc))
        return self._finish(message, MessageStatus.FORWARDED)

    def _authorize(self, event_uuid: str, requester: str) -> LedgerMessage:
        original = self.ledger.find_by_message_id(event_uuid)
        if original is None or original.message_type != MessageType.EVENT:
            raise AuthorizationError(f"event {event_uuid} was not sent by this node")
        if original.status != MessageStatus.SEND:
            raise AuthorizationError(f"event {event_uuid} is in status {original.status}")
        if requester not in original.destinations:
            raise AuthorizationError(f"{requester} is not a destination of event {event_uuid}")
        if not original.original_json or not original.event_type:
            raise AuthorizationError(f"event {event_uuid} has no stored original")
        return original

    def _finish(
        self,
        message: LedgerMessage,
        status: MessageStatus,
        *,
        reason: str | None = None,
    ) -> ReceiveResult:
        self.ledger.update_message_status(message.message_id, status)
        return ReceiveResult(
            accepted=status == MessageStatus.FORWARDED,
            message_id=message.message_id,
            status=status,
            reason=reason,
        )
