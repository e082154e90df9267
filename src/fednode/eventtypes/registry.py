"""Registered event types and their mapping, shape and schema documents."""

import json
import logging
import re
import sqlite3
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from rdflib import Graph

from fednode.db.connection import get_conn
from fednode.errors import ConfigurationError, EventTypeNotFound

logger = logging.getLogger(__name__)

# The name becomes the authority of every IRI generated for the event type.
_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_UUID_PLACEHOLDER_RE = re.compile(r"\{UUID\}|rml:reference\s+\"UUID\"")

_UPDATABLE_FIELDS = {
    "mapping",
    "minimal_mapping",
    "shape",
    "json_schema",
    "minimize",
    "retention_days",
}


@dataclass(frozen=True, slots=True)
class EventType:
    name: str
    mapping: str
    minimal_mapping: str | None = None
    shape: str | None = None
    json_schema: dict[str, Any] | None = None
    minimize: bool = False
    retention_days: int | None = None


def has_uuid_placeholder(mapping: str) -> bool:
    return _UUID_PLACEHOLDER_RE.search(mapping) is not None


def check_event_type(event_type: EventType) -> None:
    """Raise ConfigurationError when an event type definition is unusable."""
    if not _NAME_RE.match(event_type.name):
        raise ConfigurationError(
            f"event type name {event_type.name!r} may only contain "
            "letters, digits, '.', '_' and '-'"
        )
    if not event_type.mapping.strip():
        raise ConfigurationError(f"event type {event_type.name} has an empty mapping")
    if event_type.retention_days is not None and event_type.retention_days < 0:
        raise ConfigurationError("retention days must be zero or positive")
    if event_type.minimize:
        if not (event_type.minimal_mapping or "").strip():
            raise ConfigurationError(
                f"event type {event_type.name} enables minimize without a minimal mapping"
            )
        for label, doc in (
            ("mapping", event_type.mapping),
            ("minimal mapping", event_type.minimal_mapping or ""),
        ):
            if not has_uuid_placeholder(doc):
                raise ConfigurationError(
                    f"{label} of event type {event_type.name} must reference the UUID field"
                )
    if event_type.json_schema is not None:
        try:
            Draft202012Validator.check_schema(event_type.json_schema)
        except SchemaError as exc:
            raise ConfigurationError(f"invalid json schema: {exc.message}") from exc
    if event_type.shape:
        try:
            Graph().parse(data=event_type.shape, format="turtle")
        except Exception as exc:
            raise ConfigurationError(f"shape document is not valid turtle: {exc}") from exc


def _from_row(row: sqlite3.Row) -> EventType:
    raw_schema = row["json_schema"]
    return EventType(
        name=str(row["name"]),
        mapping=str(row["mapping"]),
        minimal_mapping=row["minimal_mapping"],
        shape=row["shape"],
        json_schema=json.loads(raw_schema) if raw_schema else None,
        minimize=bool(row["minimize"]),
        retention_days=int(row["retention_days"]) if row["retention_days"] is not None else None,
    )


class EventTypeRegistry:
    def add(self, event_type: EventType) -> EventType:
        check_event_type(event_type)
        now = datetime.now(UTC).isoformat()
        with get_conn() as conn:
            try:
                conn.execute(
                    "INSERT INTO event_types(name, mapping, minimal_mapping, shape, json_schema, "
                    "minimize, retention_days, created_at, updated_at) "
                    "VALUES(?,?,?,?,?,?,?,?,?)",
                    (
                        event_type.name,
                        event_type.mapping,
                        event_type.minimal_mapping,
                        event_type.shape,
                        json.dumps(event_type.json_schema)
                        if event_type.json_schema is not None
                        else None,
                        int(event_type.minimize),
                        event_type.retention_days,
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ConfigurationError(
                    f"event type {event_type.name} is already registered"
                ) from exc
        logger.info("Registered event type %s", event_type.name)
        return event_type

    def get(self, name: str) -> EventType:
        with get_conn() as conn:
            row = conn.execute("SELECT * FROM event_types WHERE name=?", (name,)).fetchone()
        if row is None:
            raise EventTypeNotFound(f"event type not found: {name}")
        return _from_row(row)

    def list_all(self) -> list[EventType]:
        with get_conn() as conn:
            rows = conn.execute("SELECT * FROM event_types ORDER BY name ASC").fetchall()
        return [_from_row(row) for row in rows]

    def update(self, name: str, **changes: Any) -> EventType:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            fields = ", ".join(sorted(unknown))
            raise ConfigurationError(f"cannot update event type fields: {fields}")
        updated = replace(self.get(name), **changes)
        check_event_type(updated)
        with get_conn() as conn:
            conn.execute(
                "UPDATE event_types SET mapping=?, minimal_mapping=?, shape=?, json_schema=?, "
                "minimize=?, retention_days=?, updated_at=? WHERE name=?",
                (
                    updated.mapping,
                    updated.minimal_mapping,
                    updated.shape,
                    json.dumps(updated.json_schema) if updated.json_schema is not None else None,
                    int(updated.minimize),
                    updated.retention_days,
                    datetime.now(UTC).isoformat(),
                    name,
                ),
            )
        logger.info("Updated event type %s (%s)", name, ", ".join(sorted(changes)))
        return updated

    def delete(self, name: str) -> None:
        with get_conn() as conn:
            cursor = conn.execute("DELETE FROM event_types WHERE name=?", (name,))
        if cursor.rowcount == 0:
            raise EventTypeNotFound(f"event type not found: {name}")
        logger.info("Deleted event type %s", name)

    def shape_documents(self) -> list[str]:
        """All shape documents currently known, across every event type."""
        with get_conn() as conn:
            rows = conn.execute(
                "SELECT shape FROM event_types WHERE shape IS NOT NULL AND shape != '' "
                "ORDER BY name ASC"
            ).fetchall()
        return [str(row["shape"]) for row in rows]
