import base64
import json
from dataclasses import replace

import pytest

from fednode.errors import InvalidMessageError, LedgerError
from fednode.ledger.models import (
    DistributionMode,
    EventContent,
    FullEventRequestContent,
    LedgerMessage,
    MessageStatus,
    MessageType,
    MessageView,
    decode_content,
    encode_content,
)
from fednode.ledger.store import MessageLedger

PEER = "O=Carrier,L=Rotterdam,C=NL"


def _ids(items: list[LedgerMessage]) -> list[str]:
    return [item.message_id for item in items]


def _message(message_id: str, status: MessageStatus, recorded_time: float = 100.0) -> LedgerMessage:
    content = EventContent(event_uuid=message_id, event_type="test.v1", event_rdf="<a> <b> <c> .")
    return LedgerMessage(
        message_id=message_id,
        message_type=MessageType.EVENT,
        status=status,
        payload=encode_content(content),
        recorded_time=recorded_time,
        destinations=frozenset({PEER}),
        distribution_mode=DistributionMode.STATIC,
        event_type="test.v1",
    )


def test_content_encoding_uses_wire_names() -> None:
    encoded = encode_content(
        EventContent(event_uuid="u1", event_type="test.v1", event_rdf="rdf", event_recorded=5)
    )
    assert json.loads(base64.b64decode(encoded)) == {
        "eventUUID": "u1",
        "eventType": "test.v1",
        "eventRDF": "rdf",
        "eventRecorded": 5,
    }
    request = decode_content("fullevent", encode_content(FullEventRequestContent(event_uuid="u1")))
    assert request == FullEventRequestContent(event_uuid="u1")


@pytest.mark.parametrize(
    ("message_type", "payload"),
    [
        ("event", "not base64!"),
        ("event", base64.b64encode(b'{"eventUUID": "u1"}').decode()),
        ("unknown", base64.b64encode(b'{"eventUUID": "u1"}').decode()),
    ],
)
def test_decode_rejects_bad_payloads(message_type: str, payload: str) -> None:
    with pytest.raises(InvalidMessageError):
        decode_content(message_type, payload)


def test_add_and_find(ledger: MessageLedger) -> None:
    stored = ledger.add_message(_message("m1", MessageStatus.CREATED))
    assert stored.id is not None
    found = ledger.find_by_message_id("m1")
    assert found is not None
    assert found.destinations == frozenset({PEER})
    assert found.distribution_mode == DistributionMode.STATIC
    assert isinstance(found.content(), EventContent)
    assert ledger.find_by_message_id("missing") is None


def test_duplicate_message_id_rejected(ledger: MessageLedger) -> None:
    ledger.add_message(_message("m1", MessageStatus.CREATED))
    with pytest.raises(LedgerError):
        ledger.add_message(_message("m1", MessageStatus.CREATED))


def test_update_unknown_id_is_noop(ledger: MessageLedger) -> None:
    assert ledger.update_message_status("missing", MessageStatus.SEND) is False
    assert ledger.list_messages() == []


def test_transitions_follow_state_machine(ledger: MessageLedger) -> None:
    ledger.add_message(_message("m1", MessageStatus.CREATED))
    assert ledger.update_message_status("m1", MessageStatus.SEND) is True
    # SEND is terminal.
    assert ledger.update_message_status("m1", MessageStatus.FAILED) is False
    assert ledger.update_message_status("m1", MessageStatus.CREATED) is False
    assert ledger.find_by_message_id("m1").status == MessageStatus.SEND

    ledger.add_message(_message("m2", MessageStatus.RECEIVED))
    assert ledger.update_message_status("m2", MessageStatus.SEND) is False
    assert ledger.update_message_status("m2", MessageStatus.INVALID) is True
    assert ledger.update_message_status("m2", MessageStatus.FORWARDED) is False
    assert ledger.find_by_message_id("m2").status == MessageStatus.INVALID


def test_list_views_and_pages(ledger: MessageLedger) -> None:
    ledger.add_message(_message("sent", MessageStatus.SEND, 1.0))
    ledger.add_message(_message("failed", MessageStatus.FAILED, 2.0))
    ledger.add_message(_message("in1", MessageStatus.RECEIVED, 3.0))
    ledger.add_message(_message("in2", MessageStatus.FORWARDED, 4.0))
    ledger.add_message(_message("refused", MessageStatus.REFUSED, 5.0))

    assert _ids(ledger.list_messages()) == ["refused", "in2", "in1", "failed", "sent"]
    assert _ids(ledger.list_messages(MessageView.INCOMING)) == ["in2", "in1"]
    assert _ids(ledger.list_messages(MessageView.OUTGOING)) == ["sent"]
    assert _ids(ledger.list_messages(MessageView.FAILED)) == ["refused", "failed"]
    assert _ids(ledger.list_messages(page=1, size=2)) == ["refused", "in2"]
    assert _ids(ledger.list_messages(page=3, size=2)) == ["sent"]
    assert ledger.list_messages(page=4, size=2) == []


def test_received_events_after_watermark(ledger: MessageLedger) -> None:
    ledger.add_message(_message("old", MessageStatus.RECEIVED, 10.0))
    ledger.add_message(_message("new2", MessageStatus.RECEIVED, 30.0))
    ledger.add_message(_message("new1", MessageStatus.RECEIVED, 20.0))
    ledger.add_message(_message("bad", MessageStatus.INVALID, 25.0))
    ledger.add_message(_message("sent", MessageStatus.SEND, 26.0))

    rows = ledger.find_received_events_after(10.0, limit=500)
    assert [row.message_id for row in rows] == ["new1", "new2"]
    assert [row.message_id for row in ledger.find_received_events_after(10.0, 1)] == ["new1"]


def test_find_before_and_delete(ledger: MessageLedger) -> None:
    first = ledger.add_message(_message("a", MessageStatus.SEND, 10.0))
    second = ledger.add_message(_message("b", MessageStatus.SEND, 20.0))
    rows = ledger.find_before("test.v1", 15.0)
    assert [row.message_id for row in rows] == ["a"]
    assert ledger.find_before("other.v1", 100.0) == []
    assert ledger.delete_messages([first.id, second.id]) == 2
    assert ledger.delete_messages([]) == 0
    assert ledger.list_messages() == []


def test_received_events_after_position_breaks_ties_by_id(ledger: MessageLedger) -> None:
    first = ledger.add_message(_message("t1", MessageStatus.RECEIVED, 20.0))
    ledger.add_message(_message("t2", MessageStatus.RECEIVED, 20.0))
    ledger.add_message(_message("later", MessageStatus.RECEIVED, 21.0))

    rows = ledger.find_received_events_after(20.0, limit=500, after_id=first.id)
    assert [row.message_id for row in rows] == ["t2", "later"]
    assert [row.message_id for row in ledger.find_received_events_after(20.0, 500)] == ["later"]


def test_latest_event_and_event_listing(ledger: MessageLedger) -> None:
    ledger.add_message(replace(_message("u-1", MessageStatus.RECEIVED, 10.0), event_uuid="u-1"))
    ledger.add_message(replace(_message("m-2", MessageStatus.RECEIVED, 30.0), event_uuid="u-1"))
    ledger.add_message(replace(_message("m-3", MessageStatus.INVALID, 40.0), event_uuid="u-1"))
    ledger.add_message(replace(_message("u-2", MessageStatus.SEND, 20.0), event_uuid="u-2"))

    latest = ledger.find_latest_event("u-1")
    assert latest is not None and latest.message_id == "m-2"
    assert ledger.find_latest_event("missing") is None

    assert _ids(ledger.list_events()) == ["m-2", "u-2", "u-1"]
    assert _ids(ledger.list_events(page=2, size=2)) == ["u-1"]
