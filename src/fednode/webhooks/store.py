"""Webhook registrations of local subscribers."""

import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from fednode.db.connection import get_conn

ANY_EVENT_TYPE = "*"


@dataclass(slots=True)
class WebhookRegistration:
    client_id: str
    event_type: str
    callback_url: str
    api_key: str | None = None
    token_url: str | None = None
    refresh_url: str | None = None
    aud: str | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        # The API key is a secret shared with the subscriber; never echo it.
        return {
            "id": self.id,
            "clientId": self.client_id,
            "eventType": self.event_type,
            "callbackURL": self.callback_url,
            "tokenURL": self.token_url,
            "refreshURL": self.refresh_url,
            "aud": self.aud,
        }


def _from_row(row: sqlite3.Row) -> WebhookRegistration:
    return WebhookRegistration(
        id=int(row["id"]),
        client_id=str(row["client_id"]),
        event_type=str(row["event_type"]),
        callback_url=str(row["callback_url"]),
        api_key=row["api_key"],
        token_url=row["token_url"],
        refresh_url=row["refresh_url"],
        aud=row["aud"],
    )


class WebhookStore:
    def register(self, registration: WebhookRegistration) -> WebhookRegistration:
        with get_conn() as conn:
            cursor = conn.execute(
                "INSERT INTO webhooks(client_id, event_type, callback_url, api_key, token_url, "
                "refresh_url, aud, created_at) VALUES(?,?,?,?,?,?,?,?)",
                (
                    registration.client_id,
                    registration.event_type,
                    registration.callback_url,
                    registration.api_key,
                    registration.token_url,
                    registration.refresh_url,
                    registration.aud,
                    datetime.now(UTC).isoformat(),
                ),
            )
        registration.id = int(cursor.lastrowid or 0)
        return registration

    def unregister(self, client_id: str) -> int:
        with get_conn() as conn:
            cursor = conn.execute("DELETE FROM webhooks WHERE client_id=?", (client_id,))
        return cursor.rowcount

    def list_all(self) -> list[WebhookRegistration]:
        with get_conn() as conn:
            rows = conn.execute("SELECT * FROM webhooks ORDER BY id ASC").fetchall()
        return [_from_row(row) for row in rows]

    def for_event_type(self, event_type: str) -> list[WebhookRegistration]:
        with get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM webhooks WHERE event_type IN (?, ?) ORDER BY id ASC",
                (event_type, ANY_EVENT_TYPE),
            ).fetchall()
        return [_from_row(row) for row in rows]
