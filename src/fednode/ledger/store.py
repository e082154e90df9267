"""Durable message ledger with an explicit status state machine."""

import logging
import sqlite3
from collections.abc import Iterable

from fednode.db.connection import get_conn
from fednode.distribution.destinations import format_destinations, parse_destinations
from fednode.errors import LedgerError
from fednode.ledger.models import (
    ALLOWED_TRANSITIONS,
    VIEW_STATUSES,
    DistributionMode,
    LedgerMessage,
    MessageStatus,
    MessageType,
    MessageView,
)

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, recorded_time, status, message_id, message_type, origin, destinations, "
    "distribution_mode, payload, original_json, event_type, event_uuid"
)


def _from_row(row: sqlite3.Row) -> LedgerMessage:
    mode = row["distribution_mode"]
    return LedgerMessage(
        id=int(row["id"]),
        recorded_time=float(row["recorded_time"]),
        status=MessageStatus(row["status"]),
        message_id=str(row["message_id"]),
        message_type=MessageType(row["message_type"]),
        origin=row["origin"],
        destinations=parse_destinations(row["destinations"]),
        distribution_mode=DistributionMode(mode) if mode else None,
        payload=str(row["payload"]),
        original_json=row["original_json"],
        event_type=row["event_type"],
        event_uuid=row["event_uuid"],
    )


class MessageLedger:
    def add_message(self, message: LedgerMessage) -> LedgerMessage:
        """Insert a new row; a message id already in the ledger is rejected."""
        with get_conn() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO ledger_messages(recorded_time, status, message_id, "
                    "message_type, origin, destinations, distribution_mode, payload, "
                    "original_json, event_type, event_uuid) VALUES(?,?,?,?,?,?,?,?,?,?,?)",
                    (
                        message.recorded_time,
                        str(message.status),
                        message.message_id,
                        str(message.message_type),
                        message.origin,
                        format_destinations(message.destinations),
                        str(message.distribution_mode) if message.distribution_mode else None,
                        message.payload,
                        message.original_json,
                        message.event_type,
                        message.event_uuid,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise LedgerError(f"message {message.message_id} is already recorded") from exc
        message.id = int(cursor.lastrowid or 0)
        return message

    def update_message_status(self, message_id: str, status: MessageStatus) -> bool:
        """Apply an allowed transition; return False when nothing changed.

        Unknown ids and disallowed transitions leave the ledger untouched.
        """
        sources = [
            str(source) for source, targets in ALLOWED_TRANSITIONS.items() if status in targets
        ]
        with get_conn() as conn:
            if sources:
                placeholders = ",".join("?" for _ in sources)
                cursor = conn.execute(
                    f"UPDATE ledger_messages SET status=? "
                    f"WHERE message_id=? AND status IN ({placeholders})",
                    (str(status), message_id, *sources),
                )
                if cursor.rowcount > 0:
                    return True
            row = conn.execute(
                "SELECT status FROM ledger_messages WHERE message_id=?", (message_id,)
            ).fetchone()
        if row is None:
            logger.debug("Status update for unknown message %s ignored", message_id)
        else:
            logger.warning(
                "Ignored status transition %s -> %s for message %s",
                row["status"],
                status,
                message_id,
            )
        return False

    def find_by_message_id(self, message_id: str) -> LedgerMessage | None:
        with get_conn() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM ledger_messages WHERE message_id=?", (message_id,)
            ).fetchone()
        return _from_row(row) if row is not None else None

    def find_latest_event(self, event_uuid: str) -> LedgerMessage | None:
        """Newest copy of an event, skipping copies that could not be stored.

        A full event answered by a peer is a later row for the same UUID, so
        it takes precedence over the minimized copy received first.
        """
        with get_conn() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM ledger_messages "
                "WHERE event_uuid=? AND message_type=? AND status!=? "
                "ORDER BY recorded_time DESC, id DESC LIMIT 1",
                (event_uuid, str(MessageType.EVENT), str(MessageStatus.INVALID)),
            ).fetchone()
        return _from_row(row) if row is not None else None

    def list_events(self, page: int = 1, size: int = 25) -> list[LedgerMessage]:
        """Events sent and received by this node, newest first; ``page`` is 1-based."""
        page = max(1, page)
        size = max(1, size)
        with get_conn() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM ledger_messages "
                "WHERE message_type=? AND status!=? "
                "ORDER BY recorded_time DESC, id DESC LIMIT ? OFFSET ?",
                (str(MessageType.EVENT), str(MessageStatus.INVALID), size, (page - 1) * size),
            ).fetchall()
        return [_from_row(row) for row in rows]

    def list_messages(
        self,
        view: MessageView | None = None,
        page: int = 1,
        size: int = 50,
    ) -> list[LedgerMessage]:
        """Newest first; ``page`` is 1-based."""
        page = max(1, page)
        size = max(1, size)
        params: list[object] = []
        where = ""
        if view is not None:
            statuses = sorted(str(status) for status in VIEW_STATUSES[view])
            where = f"WHERE status IN ({','.join('?' for _ in statuses)}) "
            params.extend(statuses)
        params.extend([size, (page - 1) * size])
        with get_conn() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM ledger_messages {where}"
                "ORDER BY recorded_time DESC, id DESC LIMIT ? OFFSET ?",
                params,
            ).fetchall()
        return [_from_row(row) for row in rows]

    def find_received_events_after(
        self,
        watermark: float,
        limit: int,
        after_id: int | None = None,
    ) -> list[LedgerMessage]:
        """Received events past the ``(recorded_time, id)`` position, oldest first.

        Without ``after_id`` every row recorded at ``watermark`` counts as seen.
        """
        with get_conn() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM ledger_messages "
                "WHERE message_type=? AND status=? "
                "AND (recorded_time>? OR (recorded_time=? AND id>?)) "
                "ORDER BY recorded_time ASC, id ASC LIMIT ?",
                (
                    str(MessageType.EVENT),
                    str(MessageStatus.RECEIVED),
                    watermark,
                    watermark,
                    after_id,
                    max(1, limit),
                ),
            ).fetchall()
        return [_from_row(row) for row in rows]

    def find_before(self, event_type: str, cutoff: float) -> list[LedgerMessage]:
        with get_conn() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM ledger_messages "
                "WHERE event_type=? AND recorded_time<? ORDER BY recorded_time ASC",
                (event_type, cutoff),
            ).fetchall()
        return [_from_row(row) for row in rows]

    def delete_messages(self, ids: Iterable[int]) -> int:
        id_list = list(ids)
        if not id_list:
            return 0
        deleted = 0
        with get_conn() as conn:
            # Stay well below sqlite's bound parameter limit.
            for start in range(0, len(id_list), 500):
                chunk = id_list[start : start + 500]
                cursor = conn.execute(
                    f"DELETE FROM ledger_messages WHERE id IN ({','.join('?' for _ in chunk)})",
                    chunk,
                )
                deleted += cursor.rowcount
        return deleted
