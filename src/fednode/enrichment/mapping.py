"""JSON to RDF mapping through declarative RML documents."""

import logging
import re
import tempfile
from pathlib import Path
from typing import Protocol

import morph_kgc
from rdflib import BNode, Graph
from rdflib.term import Node

from fednode.errors import MappingError

logger = logging.getLogger(__name__)

# Literals and IRIs are matched as whole terms so labels inside them stay untouched.
_TERM_RE = re.compile(
    r'"(?:[^"\\]|\\.)*"(?:@[A-Za-z0-9-]+|\^\^<[^>]*>)?'
    r"|<[^>]*>"
    r"|_:([0-9]+)"
)
_RML_SOURCE_RE = re.compile(r"(rml:source\s+)\"[^\"]*\"")


class MappingEngine(Protocol):
    def map(self, payload: str, mapping: str) -> str:
        """Map a JSON document to RDF text, or raise MappingError."""


class RMLMappingEngine:
    """Runs RML mappings with morph-kgc against a single JSON document.

    The mapping's ``rml:source`` is redirected to a private copy of the
    payload, so concurrent enrichments never read each other's input.
    """

    def map(self, payload: str, mapping: str) -> str:
        with tempfile.TemporaryDirectory(prefix="fednode-rml-") as workdir:
            source = Path(workdir) / "event.json"
            source.write_text(payload, encoding="utf-8")
            mapping_text, replaced = _RML_SOURCE_RE.subn(
                lambda match: f'{match.group(1)}"{source.as_posix()}"', mapping
            )
            if replaced == 0:
                raise MappingError("mapping document declares no rml:source")
            mapping_file = Path(workdir) / "mapping.ttl"
            mapping_file.write_text(mapping_text, encoding="utf-8")
            config = (
                "[CONFIGURATION]\n"
                "output_format=N-TRIPLES\n"
                "\n"
                "[EventSource]\n"
                f"mappings={mapping_file.as_posix()}\n"
            )
            try:
                graph = morph_kgc.materialize(config)
            except Exception as exc:
                raise MappingError(f"mapping failed: {exc}") from exc
        return serialize_numbered(graph)


def serialize_numbered(graph: Graph) -> str:
    """Serialize as N-Triples with blank nodes labelled _:0, _:1, ... in first-seen order."""
    labels: dict[BNode, str] = {}

    def term(node: Node) -> str:
        if isinstance(node, BNode):
            if node not in labels:
                labels[node] = f"_:{len(labels)}"
            return labels[node]
        return node.n3()

    lines = [f"{term(s)} {term(p)} {term(o)} ." for s, p, o in graph]
    return "\n".join(lines) + ("\n" if lines else "")


def rewrite_blank_nodes(rdf: str, event_type: str, event_uuid: str) -> str:
    """Replace every ``_:N`` term with ``<http://{event_type}/{event_uuid}/N>``.

    A single greedy pass consumes whole labels, so ``_:1`` never rewrites a
    prefix of ``_:10``. Text inside literals and IRIs is left as it is.
    """

    def replace(match: re.Match[str]) -> str:
        if match.group(1) is None:
            return match.group(0)
        return f"<http://{event_type}/{event_uuid}/{match.group(1)}>"

    return _TERM_RE.sub(replace, rdf)
