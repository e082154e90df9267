import httpx
import pytest

from fednode.distribution.rules import DistributionRuleStore, SparqlRule
from fednode.errors import DeliveryError, NoMatchingRuleError, ValidationError
from fednode.events.service import EventService
from fednode.eventtypes.registry import EventType
from fednode.ledger.models import (
    EventContent,
    FullEventRequestContent,
    MessageStatus,
    MessageType,
    decode_content,
    encode_content,
)
from fednode.tasks.publication import EventPublicationObserver
from fednode.webhooks.notifier import WebhookNotifier
from fednode.webhooks.store import WebhookRegistration, WebhookStore

PEER = "O=Carrier,L=Rotterdam,C=NL"


@pytest.mark.asyncio
async def test_submit_without_rules_broadcasts(
    service: EventService, event_type: EventType, gateway, triple_store_server
) -> None:
    event = await service.submit_event('{"weight": 10}', "test.v1")

    messages = service.list_messages()
    assert len(messages) == 1
    assert messages[0].message_id == event.event_uuid
    assert messages[0].message_type == MessageType.EVENT
    assert messages[0].status == MessageStatus.SEND
    assert messages[0].destinations == frozenset()

    assert triple_store_server.requests[0].content.decode() == event.event_rdf
    assert "destination" not in gateway.json_bodies()[0]

    content = await service.get_event(event.event_uuid)
    assert content.event_uuid == event.event_uuid
    assert event.event_uuid in content.event_rdf


@pytest.mark.asyncio
async def test_submit_with_unreachable_gateway_records_failure(
    service: EventService, event_type: EventType, gateway
) -> None:
    gateway.status_code = 502
    with pytest.raises(DeliveryError):
        await service.submit_event({"weight": 10}, "test.v1")

    [message] = service.list_messages(view="failed")
    assert message.status == MessageStatus.FAILED


@pytest.mark.asyncio
async def test_sparql_rule_routes_matching_events(
    service: EventService, event_type: EventType, gateway
) -> None:
    DistributionRuleStore().add(
        SparqlRule(query='ASK { ?s <http://example.org/ns#weight> "10" }', fixed=frozenset({PEER}))
    )

    await service.submit_event({"weight": 10}, "test.v1")
    assert gateway.json_bodies()[0]["destination"] == PEER

    with pytest.raises(NoMatchingRuleError):
        await service.submit_event({"weight": 3}, "test.v1")
    # Rejected before anything was recorded.
    assert len(service.list_messages()) == 1


@pytest.mark.asyncio
async def test_explicit_destinations_win(
    service: EventService, event_type: EventType, gateway
) -> None:
    event = await service.submit_event({"weight": 1}, "test.v1", frozenset({PEER}))
    message = service.get_message(event.event_uuid)
    assert message.destinations == frozenset({PEER})
    assert gateway.json_bodies()[0]["destination"] == PEER


@pytest.mark.asyncio
async def test_get_event_returns_full_graph_for_minimized_event(
    service: EventService, minimized_event_type: EventType, gateway
) -> None:
    event = await service.submit_event({"weight": 10}, "minimal.v1")

    sent = decode_content(MessageType.EVENT, gateway.json_bodies()[0]["message"])
    assert "weight" not in sent.event_rdf
    content = await service.get_event(event.event_uuid)
    assert "weight" in content.event_rdf


@pytest.mark.asyncio
async def test_received_event_reaches_webhook_subscriber(service: EventService, gateway) -> None:
    callbacks: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        callbacks.append(request)
        return httpx.Response(200)

    WebhookStore().register(
        WebhookRegistration(client_id="tms", event_type="test.v1", callback_url="http://tms/hook")
    )
    observer = EventPublicationObserver(
        ledger=service.ledger,
        notifier=WebhookNotifier(transport=httpx.MockTransport(handler)),
        clock=lambda: 0.0,
    )
    content = EventContent(event_uuid="remote-1", event_type="test.v1", event_rdf="<a> <b> <c> .")
    result = await service.receive_message(
        {
            "messageId": "remote-1",
            "messageType": "event",
            "message": encode_content(content),
            "origin": PEER,
        }
    )
    assert result.accepted is True

    assert await observer.poll() == 1
    assert [request.headers["location"] for request in callbacks] == ["/api/events/remote-1"]

    fetched = await service.get_event("remote-1")
    assert fetched.event_rdf == "<a> <b> <c> ."


@pytest.mark.asyncio
async def test_request_full_event_from_peer(service: EventService, gateway) -> None:
    content = EventContent(event_uuid="remote-2", event_type="test.v1", event_rdf="<a> <b> <c> .")
    await service.receive_message(
        {
            "messageId": "remote-2",
            "messageType": "event",
            "message": encode_content(content),
            "origin": PEER,
        }
    )

    message_id = await service.request_full_event("remote-2", "o=Carrier,l=Rotterdam,c=nl")

    request = service.get_message(message_id)
    assert request.message_type == MessageType.FULL_EVENT_REQUEST
    assert request.status == MessageStatus.SEND
    assert request.destinations == frozenset({PEER})
    assert request.event_type == "test.v1"
    body = gateway.json_bodies()[0]
    assert decode_content("fullevent", body["message"]) == FullEventRequestContent(
        event_uuid="remote-2"
    )


@pytest.mark.asyncio
async def test_full_event_answer_replaces_minimized_copy(service: EventService, gateway) -> None:
    minimized = EventContent(event_uuid="u-1", event_type="test.v1", event_rdf="<a> <b> <min> .")
    await service.receive_message(
        {
            "messageId": "u-1",
            "messageType": "event",
            "message": encode_content(minimized),
            "origin": PEER,
        }
    )
    await service.request_full_event("u-1", PEER)

    full = EventContent(event_uuid="u-1", event_type="test.v1", event_rdf="<a> <b> <full> .")
    result = await service.receive_message(
        {
            "messageId": "m-2",
            "messageType": "event",
            "message": encode_content(full),
            "origin": PEER,
        }
    )
    assert result.accepted is True

    content = await service.get_event("u-1")
    assert "<full>" in content.event_rdf
    assert [event.event_uuid for event in service.list_events()] == ["u-1", "u-1"]


@pytest.mark.asyncio
async def test_query_events_passes_select_to_triple_store(
    service: EventService, triple_store_server
) -> None:
    results = {"head": {"vars": ["s"]}, "results": {"bindings": []}}
    triple_store_server.status_code = 200
    triple_store_server.json_body = results

    answer = await service.query_events("SELECT ?s WHERE { ?s ?p ?o } LIMIT 1")

    assert answer == results
    request = triple_store_server.requests[0]
    assert request.method == "GET"
    assert request.url.params["query"].startswith("SELECT ?s")


@pytest.mark.asyncio
async def test_query_events_rejects_updates(service: EventService, triple_store_server) -> None:
    with pytest.raises(ValidationError, match="SELECT and ASK"):
        await service.query_events("CONSTRUCT { ?s ?p ?o } WHERE { ?s ?p ?o }")
    with pytest.raises(ValidationError, match="invalid sparql"):
        await service.query_events("DELETE WHERE { ?s ?p ?o }")
    assert triple_store_server.requests == []
