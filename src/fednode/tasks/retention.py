"""Scheduled purge of ledger rows and triples past their event type's retention."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from fednode.eventtypes.registry import EventType, EventTypeRegistry
from fednode.ledger.models import EventContent, FullEventRequestContent
from fednode.ledger.store import MessageLedger
from fednode.triplestore.client import TripleStoreClient

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class RetentionCleaner:
    def __init__(
        self,
        registry: EventTypeRegistry | None = None,
        ledger: MessageLedger | None = None,
        triple_store: TripleStoreClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry or EventTypeRegistry()
        self.ledger = ledger or MessageLedger()
        self.triple_store = triple_store or TripleStoreClient()
        self._clock = clock

    async def sweep(self) -> dict[str, int]:
        """Purge expired events of every type with a retention; return rows deleted per type."""
        deleted: dict[str, int] = {}
        for event_type in self.registry.list_all():
            if event_type.retention_days is None:
                continue
            try:
                deleted[event_type.name] = await self.purge(event_type)
            except Exception:
                logger.exception("Retention sweep failed for event type %s", event_type.name)
        return deleted

    async def purge(self, event_type: EventType) -> int:
        assert event_type.retention_days is not None
        cutoff = self._clock() - event_type.retention_days * SECONDS_PER_DAY
        rows = self.ledger.find_before(event_type.name, cutoff)
        if not rows:
            return 0
        for row in rows:
            event_uuid = row.message_id
            try:
                content = row.content()
                if isinstance(content, EventContent | FullEventRequestContent):
                    event_uuid = content.event_uuid
                await self.triple_store.delete_event(event_type.name, event_uuid)
            except Exception as exc:
                logger.warning(
                    "Could not delete triples of %s event %s: %s",
                    event_type.name,
                    event_uuid,
                    exc,
                )
        count = self.ledger.delete_messages(row.id for row in rows if row.id is not None)
        logger.info(
            "Purged %d %s messages recorded before %.0f", count, event_type.name, cutoff
        )
        return count


async def purge_expired_events() -> dict[str, int]:
    return await RetentionCleaner().sweep()
