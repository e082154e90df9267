"""Operations exposed to the HTTP layer and the CLI."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fednode.distribution.destinations import parse_destination
from fednode.distribution.rules import DistributionRuleEngine
from fednode.enrichment.enricher import EnrichedEvent, EventEnricher
from fednode.errors import EventTypeNotFound, MessageNotFound, NotFoundError, ValidationError
from fednode.eventtypes.registry import EventTypeRegistry
from fednode.ledger.models import (
    EventContent,
    LedgerMessage,
    MessageView,
    PeerEnvelope,
)
from fednode.ledger.store import MessageLedger
from fednode.logging import bind_context, log_context
from fednode.peers.inbound import InboundMessageHandler, ReceiveResult
from fednode.peers.outbound import OutboundDispatcher
from fednode.triplestore.client import TripleStoreClient, check_read_query

logger = logging.getLogger(__name__)


class EventService:
    def __init__(
        self,
        registry: EventTypeRegistry | None = None,
        enricher: EventEnricher | None = None,
        rule_engine: DistributionRuleEngine | None = None,
        triple_store: TripleStoreClient | None = None,
        ledger: MessageLedger | None = None,
        dispatcher: OutboundDispatcher | None = None,
        inbound: InboundMessageHandler | None = None,
    ) -> None:
        self.registry = registry or EventTypeRegistry()
        self.enricher = enricher or EventEnricher(registry=self.registry)
        self.rule_engine = rule_engine or DistributionRuleEngine()
        self.triple_store = triple_store or TripleStoreClient()
        self.ledger = ledger or MessageLedger()
        self.dispatcher = dispatcher or OutboundDispatcher(ledger=self.ledger)
        self.inbound = inbound or InboundMessageHandler(
            ledger=self.ledger,
            triple_store=self.triple_store,
            enricher=self.enricher,
            dispatcher=self.dispatcher,
        )

    async def submit_event(
        self,
        payload: Any,
        event_type: str,
        destinations: frozenset[str] | None = None,
    ) -> EnrichedEvent:
        """Enrich, store and distribute an event.

        Delivery failures are raised after the ledger row is marked failed;
        the event stays in the triple store.
        """
        with log_context(event_type=event_type):
            event = await asyncio.to_thread(self.enricher.enrich, payload, event_type)
            bind_context(event_uuid=event.event_uuid)
            selected = self.rule_engine.select_destinations(event.event_rdf, destinations)
            await self.triple_store.insert(event.event_rdf)
            await self.dispatcher.send_event(event, selected)
            logger.info("Submitted %s event %s", event_type, event.event_uuid)
            return event

    async def validate_event(self, payload: Any, event_type: str) -> EnrichedEvent:
        return await asyncio.to_thread(self.enricher.enrich, payload, event_type)

    async def receive_message(self, envelope: PeerEnvelope | dict[str, Any]) -> ReceiveResult:
        return await self.inbound.receive(envelope)

    def list_messages(
        self,
        view: str | None = None,
        page: int = 1,
        size: int = 50,
    ) -> list[LedgerMessage]:
        selected: MessageView | None = None
        if view:
            try:
                selected = MessageView(view.lower())
            except ValueError as exc:
                raise ValidationError(f"unknown message view: {view}") from exc
        return self.ledger.list_messages(selected, page=page, size=size)

    def get_message(self, message_id: str) -> LedgerMessage:
        message = self.ledger.find_by_message_id(message_id)
        if message is None:
            raise MessageNotFound(f"message not found: {message_id}")
        return message

    async def get_event(self, event_uuid: str) -> EventContent:
        """Return the newest copy of an event sent or received by this node.

        A full event answered by a peer replaces the minimized copy received
        before it. Events this node minimized before sending are re-mapped so the caller
        sees the full graph.
        """
        message = self.ledger.find_latest_event(event_uuid)
        if message is None:
            raise NotFoundError(f"event not found: {event_uuid}")
        content = message.content()
        assert isinstance(content, EventContent)
        if message.origin is not None or not message.original_json or not message.event_type:
            return content
        try:
            event_type = self.registry.get(message.event_type)
        except EventTypeNotFound:
            return content
        if not event_type.minimize:
            return content
        full_rdf = await asyncio.to_thread(
            self.enricher.rebuild_full_event, message.original_json, message.event_type
        )
        return content.model_copy(update={"event_rdf": full_rdf})

    def list_events(self, page: int = 1, size: int = 25) -> list[EventContent]:
        events: list[EventContent] = []
        for message in self.ledger.list_events(page=page, size=size):
            content = message.content()
            if isinstance(content, EventContent):
                events.append(content)
        return events

    async def query_events(self, sparql: str) -> dict[str, Any]:
        """Run a read-only SPARQL query against the stored events."""
        check_read_query(sparql)
        return await self.triple_store.query(sparql)

    async def request_full_event(self, event_uuid: str, destination: str) -> str:
        """Ask the peer that sent us a minimized event for its full version."""
        peer = parse_destination(destination)
        received = self.ledger.find_latest_event(event_uuid)
        event_type = received.event_type if received is not None else None
        message = await self.dispatcher.request_full_event(event_uuid, peer, event_type)
        return message.message_id


_event_service: EventService | None = None


def get_event_service() -> EventService:
    global _event_service
    if _event_service is None:
        _event_service = EventService()
    return _event_service


def reset_event_service() -> None:
    global _event_service
    _event_service = None
