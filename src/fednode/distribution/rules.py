"""Distribution rules: which peers receive a copy of an event.

Rules are kept in an ordered table and re-read on every evaluation, so rules
added through the CLI apply to the next submission without a restart. The
first matching rule decides the destination set; sets are never merged.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from rdflib import Graph
from rdflib.plugins.sparql import prepareQuery

from fednode.db.connection import get_conn
from fednode.distribution.destinations import format_destinations, parse_destinations
from fednode.errors import ConfigurationError, NoMatchingRuleError

logger = logging.getLogger(__name__)


class RuleType(StrEnum):
    STATIC = "static"
    BROADCAST = "broadcast"
    SPARQL = "sparql"


@dataclass(frozen=True, slots=True)
class StaticRule:
    fixed: frozenset[str]

    rule_type = RuleType.STATIC

    def matches(self, rdf: str) -> bool:
        del rdf
        return True

    def destinations(self) -> frozenset[str]:
        return self.fixed


@dataclass(frozen=True, slots=True)
class BroadcastRule:
    """Send to every peer; an empty destination set means broadcast."""

    rule_type = RuleType.BROADCAST

    def matches(self, rdf: str) -> bool:
        del rdf
        return True

    def destinations(self) -> frozenset[str]:
        return frozenset()


@dataclass(frozen=True, slots=True)
class SparqlRule:
    query: str
    fixed: frozenset[str] = field(default_factory=frozenset)

    rule_type = RuleType.SPARQL

    def matches(self, rdf: str) -> bool:
        # Each evaluation gets a throwaway graph holding only this event.
        graph = Graph()
        try:
            graph.parse(data=rdf, format="turtle")
            result = graph.query(self.query)
        except Exception as exc:
            raise ConfigurationError(f"sparql rule could not be evaluated: {exc}") from exc
        return bool(result.askAnswer)

    def destinations(self) -> frozenset[str]:
        return self.fixed


DistributionRule = StaticRule | BroadcastRule | SparqlRule


@dataclass(frozen=True, slots=True)
class StoredRule:
    id: int
    position: int
    rule: DistributionRule


def check_ask_query(query: str) -> None:
    try:
        prepared = prepareQuery(query)
    except Exception as exc:
        raise ConfigurationError(f"invalid sparql query: {exc}") from exc
    if prepared.algebra.name != "AskQuery":
        raise ConfigurationError("distribution rule query must be a SPARQL ASK query")


def _rule_from_row(row: sqlite3.Row) -> DistributionRule:
    rule_type = str(row["rule_type"])
    fixed = parse_destinations(row["destinations"])
    if rule_type == RuleType.STATIC:
        return StaticRule(fixed=fixed)
    if rule_type == RuleType.BROADCAST:
        return BroadcastRule()
    if rule_type == RuleType.SPARQL:
        return SparqlRule(query=str(row["sparql"] or ""), fixed=fixed)
    raise ConfigurationError(f"unknown distribution rule type: {rule_type}")


class DistributionRuleStore:
    def add(self, rule: DistributionRule, position: int | None = None) -> int:
        if isinstance(rule, SparqlRule):
            check_ask_query(rule.query)
        if isinstance(rule, StaticRule | SparqlRule) and not rule.fixed:
            raise ConfigurationError(f"{rule.rule_type} rule requires at least one destination")
        with get_conn() as conn:
            if position is None:
                row = conn.execute(
                    "SELECT COALESCE(MAX(position), 0) AS pos FROM distribution_rules"
                ).fetchone()
                position = int(row["pos"]) + 1
            cursor = conn.execute(
                "INSERT INTO distribution_rules(position, rule_type, destinations, sparql, "
                "created_at) VALUES(?,?,?,?,?)",
                (
                    position,
                    str(rule.rule_type),
                    format_destinations(rule.destinations()),
                    rule.query if isinstance(rule, SparqlRule) else None,
                    datetime.now(UTC).isoformat(),
                ),
            )
            rule_id = int(cursor.lastrowid or 0)
        logger.info(
            "Added %s distribution rule %d at position %d", rule.rule_type, rule_id, position
        )
        return rule_id

    def list_rules(self) -> list[StoredRule]:
        with get_conn() as conn:
            rows = conn.execute(
                "SELECT id, position, rule_type, destinations, sparql "
                "FROM distribution_rules ORDER BY position ASC, id ASC"
            ).fetchall()
        return [
            StoredRule(id=int(row["id"]), position=int(row["position"]), rule=_rule_from_row(row))
            for row in rows
        ]

    def delete(self, rule_id: int) -> bool:
        with get_conn() as conn:
            cursor = conn.execute("DELETE FROM distribution_rules WHERE id=?", (rule_id,))
        return cursor.rowcount > 0


class DistributionRuleEngine:
    def __init__(self, store: DistributionRuleStore | None = None) -> None:
        self._store = store or DistributionRuleStore()

    def rules(self) -> list[DistributionRule]:
        stored = [item.rule for item in self._store.list_rules()]
        return stored or [BroadcastRule()]

    def select_destinations(
        self,
        rdf: str,
        explicit: frozenset[str] | None = None,
    ) -> frozenset[str]:
        """Return the destination set for an event; empty means broadcast."""
        if explicit:
            return explicit
        for rule in self.rules():
            if rule.matches(rdf):
                logger.debug("Distribution rule %s matched", rule.rule_type)
                return rule.destinations()
        raise NoMatchingRuleError("no distribution rule matches the event")
