"""Peer identities in distinguished-name form (``O=Org,L=City,C=CC``)."""

import re
from collections.abc import Iterable

from fednode.errors import InvalidDestinationError

DESTINATION_SEPARATOR = ";"
_REQUIRED_KEYS = ("O", "L", "C")
_COUNTRY_RE = re.compile(r"^[A-Z]{2}$")


def parse_destination(value: str) -> str:
    """Validate a distinguished name and return its normalized form.

    Attribute keys are case-insensitive and may appear in any order; the
    normalized form always reads ``O=..,L=..,C=..``.
    """
    text = value.strip()
    if not text:
        raise InvalidDestinationError("empty peer identity")
    attributes: dict[str, str] = {}
    for part in text.split(","):
        key, sep, raw = part.partition("=")
        key = key.strip().upper()
        raw = raw.strip()
        if not sep or not key or not raw:
            raise InvalidDestinationError(f"malformed attribute {part.strip()!r} in {text!r}")
        if key not in _REQUIRED_KEYS:
            raise InvalidDestinationError(f"unsupported attribute {key!r} in {text!r}")
        if key in attributes:
            raise InvalidDestinationError(f"duplicate attribute {key!r} in {text!r}")
        attributes[key] = raw
    missing = [key for key in _REQUIRED_KEYS if key not in attributes]
    if missing:
        raise InvalidDestinationError(f"missing {', '.join(missing)} in {text!r}")
    country = attributes["C"].upper()
    if not _COUNTRY_RE.match(country):
        raise InvalidDestinationError(f"country must be two letters in {text!r}")
    return f"O={attributes['O']},L={attributes['L']},C={country}"


def parse_destinations(value: str | None) -> frozenset[str]:
    if value is None:
        return frozenset()
    return frozenset(
        parse_destination(item)
        for item in value.split(DESTINATION_SEPARATOR)
        if item.strip()
    )


def format_destinations(destinations: Iterable[str]) -> str:
    return DESTINATION_SEPARATOR.join(sorted(destinations))
