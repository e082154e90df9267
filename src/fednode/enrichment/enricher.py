"""Per-submission enrichment pipeline: validate, map, stamp, rewrite, validate.

The enricher has no persistence or distribution side effects; the caller
decides what to do with the resulting EnrichedEvent.
"""

import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fednode.enrichment.mapping import MappingEngine, RMLMappingEngine, rewrite_blank_nodes
from fednode.enrichment.validation import JsonSchemaValidator, ShaclShapeValidator
from fednode.errors import FedNodeError, MappingError, ValidationError
from fednode.eventtypes.registry import EventType, EventTypeRegistry

logger = logging.getLogger(__name__)

UUID_FIELD = "UUID"
EVENT_TYPE_FIELD = "eventType"
RECORDED_TIME_FIELD = "recordedTime"


@dataclass(frozen=True, slots=True)
class EnrichedEvent:
    original_json: str
    event_json: str
    event_type: EventType
    event_uuid: str
    event_rdf: str
    minimized_rdf: str | None
    recorded_time: int

    @property
    def transmitted_rdf(self) -> str:
        """RDF sent to peers: the minimized graph when the type has one."""
        return self.minimized_rdf if self.minimized_rdf is not None else self.event_rdf


def _load_json(payload: str | bytes | Any) -> tuple[str, Any]:
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError(f"event is not UTF-8 encoded: {exc.reason}") from exc
    if isinstance(payload, str):
        try:
            return payload, json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"event is not valid JSON: {exc.msg}") from exc
    return json.dumps(payload), payload


class EventEnricher:
    def __init__(
        self,
        registry: EventTypeRegistry | None = None,
        mapping_engine: MappingEngine | None = None,
        schema_validator: JsonSchemaValidator | None = None,
        shape_validator: ShaclShapeValidator | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry or EventTypeRegistry()
        self.mapping_engine = mapping_engine or RMLMappingEngine()
        self.schema_validator = schema_validator or JsonSchemaValidator()
        self.shape_validator = shape_validator or ShaclShapeValidator()
        self._clock = clock

    def enrich(self, payload: str | bytes | Any, event_type_name: str) -> EnrichedEvent:
        event_type = self.registry.get(event_type_name)
        original_json, document = _load_json(payload)
        if event_type.json_schema is not None:
            self.schema_validator.validate(document, event_type.json_schema)
        if not isinstance(document, dict):
            raise ValidationError("event must be a JSON object")

        event_uuid = str(uuid.uuid4())
        recorded_time = int(self._clock())
        stamped = {
            **document,
            UUID_FIELD: event_uuid,
            EVENT_TYPE_FIELD: event_type.name,
            RECORDED_TIME_FIELD: recorded_time,
        }
        event_json = json.dumps(stamped)

        event_rdf = self._map(event_json, event_type.mapping, event_type.name, event_uuid)
        if event_type.shape:
            self.shape_validator.validate(event_rdf, self.registry.shape_documents())

        minimized_rdf = None
        if event_type.minimize and event_type.minimal_mapping:
            minimized_rdf = self._map(
                event_json, event_type.minimal_mapping, event_type.name, event_uuid
            )

        logger.debug("Enriched %s event %s", event_type.name, event_uuid)
        return EnrichedEvent(
            original_json=original_json,
            event_json=event_json,
            event_type=event_type,
            event_uuid=event_uuid,
            event_rdf=event_rdf,
            minimized_rdf=minimized_rdf,
            recorded_time=recorded_time,
        )

    def rebuild_full_event(self, event_json: str, event_type_name: str) -> str:
        """Re-map a stamped event with its full mapping, keeping its original UUID."""
        event_type = self.registry.get(event_type_name)
        document = json.loads(event_json)
        event_uuid = str(document[UUID_FIELD])
        return self._map(event_json, event_type.mapping, event_type.name, event_uuid)

    def _map(self, event_json: str, mapping: str, event_type: str, event_uuid: str) -> str:
        try:
            rdf = self.mapping_engine.map(event_json, mapping)
        except FedNodeError:
            raise
        except Exception as exc:
            raise MappingError(f"mapping failed for {event_type}: {exc}") from exc
        if not rdf or not rdf.strip():
            raise MappingError(f"mapping produced no RDF for {event_type}")
        return rewrite_blank_nodes(rdf, event_type, event_uuid)
