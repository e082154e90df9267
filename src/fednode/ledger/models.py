"""Ledger message types, payload variants and the peer wire envelope."""

import base64
import binascii
import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from fednode.distribution.destinations import format_destinations
from fednode.errors import InvalidMessageError


class MessageStatus(StrEnum):
    CREATED = "created"
    SEND = "send"
    FAILED = "failed"
    REFUSED = "refused"
    RECEIVED = "received"
    FORWARDED = "forwarded"
    INVALID = "invalid"


class MessageType(StrEnum):
    EVENT = "event"
    FULL_EVENT_REQUEST = "fullevent"


class DistributionMode(StrEnum):
    STATIC = "static"
    BROADCAST = "broadcast"


class MessageView(StrEnum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[MessageStatus, frozenset[MessageStatus]] = {
    MessageStatus.CREATED: frozenset({MessageStatus.SEND, MessageStatus.FAILED}),
    MessageStatus.RECEIVED: frozenset(
        {MessageStatus.INVALID, MessageStatus.FORWARDED, MessageStatus.REFUSED}
    ),
}

VIEW_STATUSES: dict[MessageView, frozenset[MessageStatus]] = {
    MessageView.INCOMING: frozenset({MessageStatus.RECEIVED, MessageStatus.FORWARDED}),
    MessageView.OUTGOING: frozenset({MessageStatus.SEND}),
    MessageView.FAILED: frozenset(
        {
            MessageStatus.CREATED,
            MessageStatus.INVALID,
            MessageStatus.FAILED,
            MessageStatus.REFUSED,
        }
    ),
}


def distribution_mode_for(destinations: frozenset[str]) -> DistributionMode:
    return DistributionMode.STATIC if destinations else DistributionMode.BROADCAST


class EventContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_uuid: str = Field(alias="eventUUID")
    event_type: str = Field(alias="eventType")
    event_rdf: str = Field(alias="eventRDF")
    event_recorded: int | None = Field(default=None, alias="eventRecorded")


class FullEventRequestContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_uuid: str = Field(alias="eventUUID")


MessageContent = EventContent | FullEventRequestContent

_CONTENT_TYPES: dict[MessageType, type[EventContent] | type[FullEventRequestContent]] = {
    MessageType.EVENT: EventContent,
    MessageType.FULL_EVENT_REQUEST: FullEventRequestContent,
}


def message_type_of(content: MessageContent) -> MessageType:
    for message_type, model in _CONTENT_TYPES.items():
        if isinstance(content, model):
            return message_type
    raise InvalidMessageError(f"unsupported content {type(content).__name__}")


def encode_content(content: MessageContent) -> str:
    raw = content.model_dump_json(by_alias=True, exclude_none=True)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_content(message_type: MessageType | str, encoded: str) -> MessageContent:
    try:
        model = _CONTENT_TYPES[MessageType(message_type)]
    except ValueError as exc:
        raise InvalidMessageError(f"unknown message type {message_type!r}") from exc
    try:
        raw = base64.b64decode(encoded, validate=True)
        return model.model_validate(json.loads(raw))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidMessageError(f"message payload is not base64 encoded JSON: {exc}") from exc
    except PydanticValidationError as exc:
        raise InvalidMessageError(f"message payload does not match {message_type}: {exc}") from exc


@dataclass(slots=True)
class LedgerMessage:
    message_id: str
    message_type: MessageType
    status: MessageStatus
    payload: str
    recorded_time: float
    destinations: frozenset[str] = field(default_factory=frozenset)
    distribution_mode: DistributionMode | None = None
    origin: str | None = None
    original_json: str | None = None
    event_type: str | None = None
    event_uuid: str | None = None
    id: int | None = None

    def content(self) -> MessageContent:
        return decode_content(self.message_type, self.payload)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recordedTime": self.recorded_time,
            "status": str(self.status),
            "messageId": self.message_id,
            "messageType": str(self.message_type),
            "origin": self.origin,
            "destinations": format_destinations(self.destinations),
            "distributionMode": str(self.distribution_mode) if self.distribution_mode else None,
            "eventType": self.event_type,
            "eventUUID": self.event_uuid,
        }


class PeerEnvelope(BaseModel):
    """Message exchanged with the peer gateway.

    ``origin`` is set on messages we receive, ``destination`` on messages we
    send; destinations are ``;``-separated peer identities.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    recorded_time: float | None = Field(default=None, alias="recordedTime")
    message_id: str = Field(alias="messageId", min_length=1)
    message_type: MessageType = Field(alias="messageType")
    message: str
    origin: str | None = None
    destination: str | None = None
