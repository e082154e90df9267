"""Click CLI group: serve, migrate, event types, distribution rules and cleanup."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click

from fednode.config import get_settings
from fednode.db.migrations.runner import run_migrations
from fednode.distribution.destinations import parse_destinations
from fednode.distribution.rules import (
    BroadcastRule,
    DistributionRule,
    DistributionRuleStore,
    SparqlRule,
    StaticRule,
)
from fednode.errors import FedNodeError
from fednode.eventtypes.registry import EventType, EventTypeRegistry
from fednode.logging import configure_logging
from fednode.tasks.retention import RetentionCleaner


def _read(path: Path | None) -> str | None:
    return path.read_text(encoding="utf-8") if path is not None else None


@click.group()
def cli() -> None:
    """Federated event node CLI."""


@cli.command()
@click.option("--host", type=str, default=None, help="Bind host (default: BIND_HOST).")
@click.option("--port", type=int, default=None, help="Bind port (default: BIND_PORT).")
def serve(host: str | None, port: int | None) -> None:
    """Run the node API and its periodic tasks."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "fednode.main:app",
        host=host or settings.bind_host,
        port=port or settings.bind_port,
        log_config=None,
    )


@cli.command()
def migrate() -> None:
    """Apply pending database migrations."""
    applied = run_migrations()
    click.echo(f"applied: {', '.join(applied)}" if applied else "database is up to date")


@cli.group("event-type")
def event_type_group() -> None:
    """Manage registered event types."""


_path = click.Path(exists=True, dir_okay=False, path_type=Path)


@event_type_group.command("add")
@click.argument("name")
@click.option("--mapping", "mapping_path", type=_path, required=True, help="RML mapping.")
@click.option("--minimal-mapping", "minimal_path", type=_path, default=None)
@click.option("--shape", "shape_path", type=_path, default=None, help="SHACL shapes (turtle).")
@click.option("--schema", "schema_path", type=_path, default=None, help="JSON schema.")
@click.option("--minimize", is_flag=True, help="Send the minimal mapping to peers.")
@click.option("--retention-days", type=click.IntRange(min=0), default=None)
def event_type_add(
    name: str,
    mapping_path: Path,
    minimal_path: Path | None,
    shape_path: Path | None,
    schema_path: Path | None,
    minimize: bool,
    retention_days: int | None,
) -> None:
    """Register an event type."""
    schema_text = _read(schema_path)
    event_type = EventType(
        name=name,
        mapping=mapping_path.read_text(encoding="utf-8"),
        minimal_mapping=_read(minimal_path),
        shape=_read(shape_path),
        json_schema=json.loads(schema_text) if schema_text else None,
        minimize=minimize,
        retention_days=retention_days,
    )
    try:
        EventTypeRegistry().add(event_type)
    except FedNodeError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"registered {name}")


@event_type_group.command("list")
def event_type_list() -> None:
    """List registered event types."""
    for item in EventTypeRegistry().list_all():
        retention = "-" if item.retention_days is None else f"{item.retention_days}d"
        flags = []
        if item.minimize:
            flags.append("minimize")
        if item.shape:
            flags.append("shape")
        if item.json_schema is not None:
            flags.append("schema")
        click.echo(f"{item.name}\tretention={retention}\t{','.join(flags)}")


@event_type_group.command("delete")
@click.argument("name")
def event_type_delete(name: str) -> None:
    """Delete an event type."""
    try:
        EventTypeRegistry().delete(name)
    except FedNodeError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"deleted {name}")


@cli.group("rule")
def rule_group() -> None:
    """Manage distribution rules (first match wins)."""


@rule_group.command("add")
@click.argument("rule_type", type=click.Choice(["static", "broadcast", "sparql"]))
@click.option("--destinations", default="", help="';'-separated peer identities.")
@click.option("--query", "query_path", type=_path, default=None, help="SPARQL ASK query file.")
@click.option("--position", type=int, default=None, help="Evaluation position.")
def rule_add(
    rule_type: str,
    destinations: str,
    query_path: Path | None,
    position: int | None,
) -> None:
    """Add a distribution rule."""
    try:
        fixed = parse_destinations(destinations)
        rule: DistributionRule
        if rule_type == "static":
            rule = StaticRule(fixed=fixed)
        elif rule_type == "broadcast":
            rule = BroadcastRule()
        else:
            if query_path is None:
                raise click.UsageError("sparql rules need --query")
            rule = SparqlRule(query=query_path.read_text(encoding="utf-8"), fixed=fixed)
        rule_id = DistributionRuleStore().add(rule, position=position)
    except FedNodeError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"added rule {rule_id}")


@rule_group.command("list")
def rule_list() -> None:
    """List distribution rules in evaluation order."""
    for item in DistributionRuleStore().list_rules():
        dests = ";".join(sorted(item.rule.destinations())) or "*"
        click.echo(f"{item.id}\t{item.position}\t{item.rule.rule_type}\t{dests}")


@rule_group.command("delete")
@click.argument("rule_id", type=int)
def rule_delete(rule_id: int) -> None:
    """Delete a distribution rule."""
    if not DistributionRuleStore().delete(rule_id):
        raise click.ClickException(f"rule {rule_id} not found")
    click.echo(f"deleted rule {rule_id}")


@cli.command()
def cleanup() -> None:
    """Run one retention sweep now."""
    settings = get_settings()
    configure_logging(settings.log_level, node_identity=settings.node_identity)
    deleted = asyncio.run(RetentionCleaner().sweep())
    if not deleted:
        click.echo("no event types with retention")
    for name, count in sorted(deleted.items()):
        click.echo(f"{name}: {count} messages purged")


if __name__ == "__main__":
    cli()
