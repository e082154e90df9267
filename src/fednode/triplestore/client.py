"""Client for a GraphDB-style repository REST endpoint."""

import logging
from typing import Any

import httpx
from rdflib.plugins.sparql import prepareQuery

from fednode.config import get_settings
from fednode.errors import TripleStoreError, ValidationError

logger = logging.getLogger(__name__)


def _sparql_string(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f'"{escaped}"'


def event_prefix(event_type: str, event_uuid: str) -> str:
    return f"{event_type}/{event_uuid}/"


def build_event_delete_query(prefix: str) -> str:
    """SPARQL update removing every triple whose subject or IRI object contains ``prefix``."""
    literal = _sparql_string(prefix)
    return (
        "DELETE { ?s ?p ?o } WHERE { ?s ?p ?o . "
        f"FILTER(CONTAINS(STR(?s), {literal}) || "
        f"(isIRI(?o) && CONTAINS(STR(?o), {literal}))) }}"
    )


def check_read_query(sparql: str) -> None:
    """Only SELECT and ASK queries may be passed through to the repository."""
    try:
        prepared = prepareQuery(sparql)
    except Exception as exc:
        raise ValidationError(f"invalid sparql query: {exc}") from exc
    if prepared.algebra.name not in {"SelectQuery", "AskQuery"}:
        raise ValidationError("only SPARQL SELECT and ASK queries are supported")


class TripleStoreClient:
    def __init__(
        self,
        base_url: str | None = None,
        repository: str | None = None,
        timeout_seconds: float | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.triplestore_url).rstrip("/")
        self.repository = repository or settings.triplestore_repository
        self.timeout_seconds = float(timeout_seconds or settings.triplestore_timeout_seconds)
        self._transport = transport

    @property
    def repository_url(self) -> str:
        return f"{self.base_url}/repositories/{self.repository}"

    @property
    def statements_url(self) -> str:
        return f"{self.repository_url}/statements"

    async def insert(self, rdf: str) -> None:
        await self._request(
            "POST",
            self.statements_url,
            content=rdf.encode("utf-8"),
            headers={"Content-Type": "text/turtle"},
        )

    async def query(self, sparql: str) -> dict[str, Any]:
        response = await self._request(
            "GET",
            self.repository_url,
            params={"query": sparql},
            headers={"Accept": "application/sparql-results+json"},
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TripleStoreError("triple store returned a non-JSON query result") from exc
        if not isinstance(payload, dict):
            raise TripleStoreError("triple store returned an unexpected query result")
        return payload

    async def delete(self, sparql_update: str) -> None:
        await self._request("POST", self.statements_url, data={"update": sparql_update})

    async def delete_event(self, event_type: str, event_uuid: str) -> None:
        await self.delete(build_event_delete_query(event_prefix(event_type, event_uuid)))

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TripleStoreError(f"triple store unreachable: {exc}") from exc
        if response.status_code >= 400:
            logger.warning(
                "Triple store %s %s returned %d", method, url, response.status_code
            )
            raise TripleStoreError(
                f"triple store returned {response.status_code}",
                retryable=response.status_code >= 500,
            )
        return response
