import json
from pathlib import Path

import httpx
import pytest

from fednode.config import get_settings
from fednode.db.migrations.runner import run_migrations
from fednode.enrichment.enricher import (
    EVENT_TYPE_FIELD,
    RECORDED_TIME_FIELD,
    UUID_FIELD,
    EventEnricher,
)
from fednode.events.service import EventService, reset_event_service
from fednode.eventtypes.registry import EventType, EventTypeRegistry
from fednode.ledger.store import MessageLedger
from fednode.peers.client import DeliveryClient
from fednode.peers.outbound import OutboundDispatcher
from fednode.tasks import reset_tasks
from fednode.tasks.publication import reset_observer
from fednode.triplestore.client import TripleStoreClient

NS = "http://example.org/ns#"
FULL_MAPPING = (
    '<#EventMap> rml:logicalSource [ rml:source "event.json" ] ;\n'
    '  rr:subjectMap [ rr:template "http://example.org/event/{UUID}" ] .\n'
)
MINIMAL_MAPPING = (
    '<#MinimalMap> rml:logicalSource [ rml:source "event.json" ] ;\n'
    '  rr:subjectMap [ rr:template "http://example.org/minimal/{UUID}" ] .\n'
)


class FakeMappingEngine:
    """Maps every JSON field onto one blank node, the way an RML engine numbers them."""

    def __init__(self) -> None:
        self.calls: list[tuple[dict[str, object], str]] = []
        self.output: str | None = None

    def map(self, payload: str, mapping: str) -> str:
        document = json.loads(payload)
        self.calls.append((document, mapping))
        if self.output is not None:
            return self.output
        lines = [
            f"_:0 <{NS}uuid> {json.dumps(str(document[UUID_FIELD]))} .",
            f"_:0 <{NS}eventType> {json.dumps(str(document[EVENT_TYPE_FIELD]))} .",
        ]
        if "MinimalMap" in mapping:
            return "\n".join(lines) + "\n"
        lines.append(f"_:0 <{NS}recordedTime> {json.dumps(str(document[RECORDED_TIME_FIELD]))} .")
        lines.append(f"_:0 <{NS}details> _:1 .")
        for key, value in document.items():
            if key in {UUID_FIELD, EVENT_TYPE_FIELD, RECORDED_TIME_FIELD}:
                continue
            lines.append(f"_:1 <{NS}{key}> {json.dumps(str(value))} .")
        return "\n".join(lines) + "\n"


class RecordingServer:
    """Collects requests sent through an httpx.MockTransport."""

    def __init__(self, status_code: int = 200, json_body: object | None = None) -> None:
        self.status_code = status_code
        self.json_body = json_body
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.json_body is not None:
            return httpx.Response(self.status_code, json=self.json_body)
        return httpx.Response(self.status_code)

    def json_bodies(self) -> list[object]:
        return [json.loads(request.content) for request in self.requests]


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("APP_DB", str(tmp_path / "test.db"))
    monkeypatch.setenv("NODE_IDENTITY", "O=NodeA,L=Amsterdam,C=NL")
    monkeypatch.setenv("MESSAGE_ENDPOINT_URL", "http://gateway.test/api/message")
    monkeypatch.setenv("MESSAGE_ENDPOINT_API_KEY", "gateway-key")
    monkeypatch.setenv("INBOUND_API_KEY", "test-inbound-key")
    monkeypatch.setenv("TRIPLESTORE_URL", "http://graphdb.test")
    monkeypatch.setenv("TRIPLESTORE_REPOSITORY", "federated")
    get_settings.cache_clear()
    run_migrations()
    reset_event_service()
    reset_tasks()
    reset_observer()
    yield
    get_settings.cache_clear()
    reset_event_service()
    reset_tasks()
    reset_observer()


@pytest.fixture
def mapping_engine() -> FakeMappingEngine:
    return FakeMappingEngine()


@pytest.fixture
def gateway() -> RecordingServer:
    return RecordingServer(status_code=200)


@pytest.fixture
def triple_store_server() -> RecordingServer:
    return RecordingServer(status_code=204)


@pytest.fixture
def registry() -> EventTypeRegistry:
    return EventTypeRegistry()


@pytest.fixture
def event_type(registry: EventTypeRegistry) -> EventType:
    return registry.add(EventType(name="test.v1", mapping=FULL_MAPPING))


@pytest.fixture
def minimized_event_type(registry: EventTypeRegistry) -> EventType:
    return registry.add(
        EventType(
            name="minimal.v1",
            mapping=FULL_MAPPING,
            minimal_mapping=MINIMAL_MAPPING,
            minimize=True,
        )
    )


@pytest.fixture
def enricher(registry: EventTypeRegistry, mapping_engine: FakeMappingEngine) -> EventEnricher:
    return EventEnricher(registry=registry, mapping_engine=mapping_engine)


@pytest.fixture
def ledger() -> MessageLedger:
    return MessageLedger()


@pytest.fixture
def dispatcher(ledger: MessageLedger, gateway: RecordingServer) -> OutboundDispatcher:
    return OutboundDispatcher(ledger=ledger, client=DeliveryClient(transport=gateway.transport))


@pytest.fixture
def triple_store(triple_store_server: RecordingServer) -> TripleStoreClient:
    return TripleStoreClient(transport=triple_store_server.transport)


@pytest.fixture
def service(
    registry: EventTypeRegistry,
    enricher: EventEnricher,
    triple_store: TripleStoreClient,
    ledger: MessageLedger,
    dispatcher: OutboundDispatcher,
) -> EventService:
    return EventService(
        registry=registry,
        enricher=enricher,
        triple_store=triple_store,
        ledger=ledger,
        dispatcher=dispatcher,
    )
