"""Republishes events received from peers to local webhook subscribers.

The watermark lives in memory and starts at process start, so events
received while the node was down are not published after a restart.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from fednode.config import get_settings
from fednode.errors import InvalidMessageError
from fednode.ledger.models import EventContent
from fednode.ledger.store import MessageLedger
from fednode.webhooks.notifier import EventNotification, WebhookNotifier

logger = logging.getLogger(__name__)


class EventPublicationObserver:
    def __init__(
        self,
        ledger: MessageLedger | None = None,
        notifier: WebhookNotifier | None = None,
        batch_size: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ledger = ledger or MessageLedger()
        self.notifier = notifier or WebhookNotifier()
        self.batch_size = batch_size or get_settings().publication_batch_size
        self._clock = clock
        self.last_poll = clock()
        # Last row handled at last_poll; None means every row at last_poll was seen.
        self.last_id: int | None = None

    async def poll(self) -> int:
        """Publish one batch of newly received events and advance the watermark."""
        rows = self.ledger.find_received_events_after(
            self.last_poll, self.batch_size, after_id=self.last_id
        )
        if not rows:
            self.last_poll = self._clock()
            self.last_id = None
            return 0
        published = 0
        for row in rows:
            try:
                content = row.content()
            except InvalidMessageError as exc:
                logger.warning("Skipping undecodable ledger row %s: %s", row.message_id, exc)
                continue
            if not isinstance(content, EventContent):
                continue
            await self.notifier.handle_event(
                EventNotification(
                    event_type=content.event_type,
                    event_uuid=content.event_uuid,
                    event_rdf=content.event_rdf,
                )
            )
            published += 1
        self.last_poll = rows[-1].recorded_time
        self.last_id = rows[-1].id
        logger.info("Published %d received events", published)
        return published


_observer: EventPublicationObserver | None = None


def get_observer() -> EventPublicationObserver:
    global _observer
    if _observer is None:
        _observer = EventPublicationObserver()
    return _observer


def reset_observer() -> None:
    global _observer
    _observer = None


async def publish_received_events() -> int:
    return await get_observer().poll()
