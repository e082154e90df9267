import json

import httpx
import pytest

from fednode.errors import DeliveryError
from fednode.ledger.models import (
    DistributionMode,
    FullEventRequestContent,
    LedgerMessage,
    MessageStatus,
    MessageType,
    encode_content,
)
from fednode.peers.client import DeliveryClient, build_envelope

PEERS = frozenset({"O=Carrier,L=Rotterdam,C=NL", "O=Shipper,L=Hamburg,C=DE"})


def _message() -> LedgerMessage:
    return LedgerMessage(
        message_id="m1",
        message_type=MessageType.FULL_EVENT_REQUEST,
        status=MessageStatus.CREATED,
        payload=encode_content(FullEventRequestContent(event_uuid="u1")),
        recorded_time=1700000000.75,
        destinations=PEERS,
        distribution_mode=DistributionMode.STATIC,
    )


def test_envelope_shape() -> None:
    envelope = build_envelope(_message())
    assert envelope == {
        "recordedTime": 1700000000,
        "messageId": "m1",
        "messageType": "fullevent",
        "message": _message().payload,
        "destination": "O=Carrier,L=Rotterdam,C=NL;O=Shipper,L=Hamburg,C=DE",
    }


def test_broadcast_envelope_has_no_destination() -> None:
    message = _message()
    message.destinations = frozenset()
    assert "destination" not in build_envelope(message)


@pytest.mark.asyncio
async def test_deliver_posts_with_api_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202)

    client = DeliveryClient(transport=httpx.MockTransport(handler))
    await client.deliver(_message())

    assert len(seen) == 1
    assert str(seen[0].url) == "http://gateway.test/api/message"
    assert seen[0].headers["x-api-key"] == "gateway-key"
    assert json.loads(seen[0].content)["messageId"] == "m1"


@pytest.mark.asyncio
@pytest.mark.parametrize(("status", "retryable"), [(400, False), (404, False), (503, True)])
async def test_error_statuses_raise_delivery_error(status: int, retryable: bool) -> None:
    client = DeliveryClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(status))
    )
    with pytest.raises(DeliveryError) as caught:
        await client.deliver(_message())
    assert caught.value.status_code == status
    assert caught.value.retryable is retryable


@pytest.mark.asyncio
async def test_transport_error_raises_delivery_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = DeliveryClient(transport=httpx.MockTransport(handler))
    with pytest.raises(DeliveryError) as caught:
        await client.deliver(_message())
    assert caught.value.status_code is None
