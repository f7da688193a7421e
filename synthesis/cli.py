#!/usr/bin/env python3
"""
Synthesis CLI - command-line interface for the knowledge graph.

Usage:
    synthesis add "Deep Work" "Cal Newport on focus and depth" --tags focus,productivity
    synthesis search "focus"
    synthesis list --type book --since yesterday
    synthesis graph <node-id> --depth 2
    synthesis cluster "Attention" <id> <id> <id> --center <id>
    synthesis show <id>
"""

import functools
import getpass
import json
import logging
import sys
from collections import Counter, deque
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import click
from dateutil import parser as dateutil_parser
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from synthesis.core import (
    DEFAULT_SEARCH_LIMIT,
    ConnectionType,
    KnowledgeCluster,
    KnowledgeConnection,
    KnowledgeGraph,
    KnowledgeNode,
    NodeFilters,
    NodeType,
    SearchOptions,
)
from synthesis.errors import SynthesisError
from synthesis.service import DEFAULT_DB, KnowledgeSynthesis


# Global console for rich output
console = Console()


def get_service(db_path: Optional[str] = None) -> KnowledgeSynthesis:
    """Open the knowledge graph at ``db_path`` (or the default location)."""
    return KnowledgeSynthesis(db_path or str(DEFAULT_DB))


def parse_datetime(value: str) -> datetime:
    """Parse flexible datetime input.

    Supports:
    - "now", "today", "yesterday"
    - "5 minutes ago", "2 hours ago", "3 days ago", "1 week ago"
    - Anything python-dateutil understands: "2026-02-10 14:30", "Feb 10, 2026"
    """
    original_value = value
    value = value.strip()
    value_lower = value.lower()
    now = datetime.now()

    if value_lower == "now":
        return now
    if value_lower == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if value_lower == "yesterday":
        return (now - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)

    if value_lower.endswith(" ago"):
        parts = value_lower[:-4].strip().split()
        if len(parts) == 2 and parts[0].isdigit():
            amount, unit = int(parts[0]), parts[1]
            if unit.startswith("min"):
                return now - timedelta(minutes=amount)
            if unit.startswith("hour"):
                return now - timedelta(hours=amount)
            if unit.startswith("day"):
                return now - timedelta(days=amount)
            if unit.startswith("week"):
                return now - timedelta(weeks=amount)

    try:
        return dateutil_parser.parse(value)
    except (ValueError, OverflowError, dateutil_parser.ParserError):
        pass

    raise ValueError(f"Cannot parse datetime: {original_value}")


def _datetime_option(ctx, param, value):
    if value is None:
        return None
    try:
        parsed = parse_datetime(value)
    except ValueError as e:
        raise click.BadParameter(str(e))
    # Stored timestamps are naive UTC
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


def _split_tags(tags: Optional[str]) -> Optional[list[str]]:
    if tags is None:
        return None
    return [t.strip() for t in tags.split(",") if t.strip()]


def handle_errors(func):
    """Report domain errors in red and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SynthesisError as e:
            console.print(f"[red]Error:[/red] {e.message}")
            sys.exit(1)

    return wrapper


def resolve_id(partial: str, candidates) -> UUID:
    """Resolve a full or prefix ID against the given candidate IDs."""
    if len(partial) >= 36:
        try:
            return UUID(partial)
        except ValueError:
            raise click.BadParameter(f"Invalid ID: {partial}")
    matches = [c for c in candidates if str(c).startswith(partial)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise click.BadParameter(f"No match for ID: {partial}")
    raise click.BadParameter(f"Ambiguous ID: {partial} ({len(matches)} matches)")


def _node_ids(kb: KnowledgeSynthesis, user: str):
    return [n.id for n in kb.storage.query_nodes(user)]


def _connection_ids(kb: KnowledgeSynthesis, user: str):
    return [c.id for c in kb.storage.get_owner_connections(user)]


def node_to_dict(node: KnowledgeNode) -> dict:
    return {
        "id": str(node.id),
        "title": node.title,
        "body": node.body,
        "type": node.type.value,
        "source": node.source,
        "author": node.author,
        "url": node.url,
        "category": node.category,
        "tags": node.tags,
        "importance_score": node.importance_score,
        "access_count": node.access_count,
        "connections": [str(n) for n in node.neighbor_ids],
        "created_at": node.created_at.isoformat(),
        "updated_at": node.updated_at.isoformat(),
        "last_accessed_at": node.last_accessed_at.isoformat() if node.last_accessed_at else None,
    }


def connection_to_dict(connection: KnowledgeConnection) -> dict:
    return {
        "id": str(connection.id),
        "source_node_id": str(connection.source_node_id),
        "target_node_id": str(connection.target_node_id),
        "connection_type": connection.connection_type.value,
        "strength": connection.strength,
        "description": connection.description,
        "created_at": connection.created_at.isoformat(),
    }


def cluster_to_dict(cluster: KnowledgeCluster) -> dict:
    return {
        "id": str(cluster.id),
        "name": cluster.name,
        "description": cluster.description,
        "node_ids": [str(n) for n in cluster.node_ids],
        "center_node_id": str(cluster.center_node_id) if cluster.center_node_id else None,
        "coherence_score": cluster.coherence_score,
        "tags": cluster.tags,
        "created_at": cluster.created_at.isoformat(),
        "updated_at": cluster.updated_at.isoformat(),
    }


def _short(text: str, width: int) -> str:
    return text[:width] + ("..." if len(text) > width else "")


def print_version(ctx, param, value):
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    from synthesis import __version__
    click.echo(f"synthesis {__version__}")
    ctx.exit()


@click.group()
@click.option("--version", "-V", is_flag=True, callback=print_version, expose_value=False, is_eager=True, help="Show version and exit")
@click.option("--db", envvar="SYNTHESIS_DB", help="Database path (default: ~/.synthesis/knowledge.db)")
@click.option("--user", "-u", envvar="SYNTHESIS_USER", help="Acting user (default: login name)")
@click.option("--log-level", envvar="SYNTHESIS_LOG_LEVEL", default="WARNING",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Logging verbosity")
@click.pass_context
def cli(ctx, db, user, log_level):
    """Synthesis - a personal knowledge graph."""
    if not logging.root.handlers:
        logging.basicConfig(
            level=getattr(logging, log_level.upper()),
            format="%(levelname)s  %(name)s  %(message)s",
        )
    ctx.ensure_object(dict)
    ctx.obj["db"] = db
    ctx.obj["user"] = user or getpass.getuser()


@cli.command()
@click.argument("title")
@click.argument("body")
@click.option("--type", "node_type", type=click.Choice([t.value for t in NodeType]), default="note")
@click.option("--tags", "-t", help="Comma-separated tags")
@click.option("--category", "-c", help="Category")
@click.option("--source", help="Where this came from")
@click.option("--author", help="Who wrote it")
@click.option("--url", help="Link to the original")
@click.option("--importance", "-i", type=click.IntRange(1, 10), default=5, help="Importance 1-10 (default: 5)")
@click.pass_context
@handle_errors
def add(ctx, title, body, node_type, tags, category, source, author, url, importance):
    """Add a knowledge node.

    Similar nodes are linked automatically.

    Examples:
        synthesis add "Deep Work" "Cal Newport on focus and depth" --type book
        synthesis add "Flow" "Optimal experience" --tags focus,psychology -i 8
    """
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        node = kb.create_node(
            user,
            title=title,
            body=body,
            type=node_type,
            source=source,
            author=author,
            url=url,
            category=category,
            tags=_split_tags(tags),
            importance_score=importance,
        )
        kb.wait_for_links()
        linked = kb.storage.get_connections(node.id)

    console.print(f"✓ Added node: [bold]{node.id}[/bold]")
    console.print(f"  {_short(node.title, 60)}", style="dim")
    if linked:
        console.print(f"  ↳ Auto-linked to {len(linked)} node(s)", style="dim")


@cli.command()
@click.argument("node_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def show(ctx, node_id, as_json):
    """Show a node and its connections (counts as an access).

    Example:
        synthesis show abc12345
    """
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        node = kb.get_node(user, resolve_id(node_id, _node_ids(kb, user)))
        connections = kb.list_connections(user, node.id)
        others = {
            c.other_end(node.id): kb.storage.get_node(c.other_end(node.id))
            for c in connections
        }

    if as_json:
        output = node_to_dict(node)
        output["edges"] = [connection_to_dict(c) for c in connections]
        click.echo(json.dumps(output, indent=2))
        return

    panel_content = [f"[bold]Title:[/bold] {node.title}", f"[bold]Body:[/bold] {node.body}"]
    panel_content.append(f"[bold]Type:[/bold] {node.type.value}")
    if node.category:
        panel_content.append(f"[bold]Category:[/bold] {node.category}")
    if node.tags:
        panel_content.append(f"[bold]Tags:[/bold] {', '.join(node.tags)}")
    if node.author:
        panel_content.append(f"[bold]Author:[/bold] {node.author}")
    if node.source:
        panel_content.append(f"[bold]Source:[/bold] {node.source}")
    if node.url:
        panel_content.append(f"[bold]URL:[/bold] {node.url}")
    panel_content.append(f"[bold]Importance:[/bold] {node.importance_score}/10")
    panel_content.append(f"[bold]Accessed:[/bold] {node.access_count} times")
    panel_content.append(f"[bold]ID:[/bold] {node.id}")

    console.print(Panel("\n".join(panel_content), title="Knowledge", border_style="blue"))

    if connections:
        console.print("\n[bold]Connections:[/bold]")
        for c in connections:
            direction = "→" if c.source_node_id == node.id else "←"
            other = others.get(c.other_end(node.id))
            title = _short(other.title, 40) if other else "?"
            console.print(
                f"  {direction} \\[{c.connection_type.value}] {title} "
                f"({str(c.other_end(node.id))[:8]}, {c.strength:.2f})"
            )


@cli.command("list")
@click.option("--type", "node_type", type=click.Choice([t.value for t in NodeType]), help="Filter by type")
@click.option("--category", "-c", help="Filter by category")
@click.option("--tags", "-t", help="Nodes with any of these tags (comma-separated)")
@click.option("--text", "-q", help="Substring of title or body")
@click.option("--min-importance", type=click.IntRange(1, 10), help="Importance floor")
@click.option("--since", "-s", callback=_datetime_option, help="Created after (e.g., 'yesterday', '3 days ago')")
@click.option("--until", callback=_datetime_option, help="Created before")
@click.option("--page", "-p", default=1, type=click.IntRange(min=1), help="Page number (default: 1)")
@click.option("--limit", "-n", default=20, type=click.IntRange(min=1), help="Page size (default: 20)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def list_nodes(ctx, node_type, category, tags, text, min_importance, since, until, page, limit, as_json):
    """List nodes, most recently updated first.

    Examples:
        synthesis list --type book
        synthesis list --tags focus --since yesterday
        synthesis list --min-importance 8 --page 2
    """
    filters = NodeFilters(
        type=NodeType(node_type) if node_type else None,
        category=category,
        tags=_split_tags(tags) or [],
        text=text,
        importance_min=min_importance,
        created_since=since,
        created_until=until,
    )
    with get_service(ctx.obj.get("db")) as kb:
        result = kb.list_nodes(ctx.obj["user"], filters, page=page, limit=limit)

    if as_json:
        click.echo(json.dumps({
            "items": [node_to_dict(n) for n in result.items],
            "pagination": {
                "page": result.page,
                "limit": result.limit,
                "total": result.total,
                "total_pages": result.total_pages,
                "has_more": result.has_more,
            },
        }, indent=2))
        return

    if not result.items:
        console.print("No nodes found.", style="dim")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Updated", style="cyan", width=12)
    table.add_column("Title", style="white")
    table.add_column("Type", style="blue", width=8)
    table.add_column("Imp", justify="right", width=3)
    table.add_column("ID", style="dim", width=8)
    for node in result.items:
        table.add_row(
            node.updated_at.strftime("%m/%d %H:%M"),
            _short(node.title, 45),
            node.type.value,
            str(node.importance_score),
            str(node.id)[:8],
        )
    console.print(table)
    console.print(
        f"\nPage {result.page}/{max(result.total_pages, 1)} · {result.total} nodes",
        style="dim",
    )


@cli.command()
@click.argument("node_id")
@click.option("--title", help="New title")
@click.option("--body", help="New body")
@click.option("--type", "node_type", type=click.Choice([t.value for t in NodeType]))
@click.option("--tags", "-t", help="Replace tags (comma-separated, empty string clears)")
@click.option("--category", "-c", help="New category")
@click.option("--source", help="New source")
@click.option("--author", help="New author")
@click.option("--url", help="New URL (empty string clears)")
@click.option("--importance", "-i", type=click.IntRange(1, 10))
@click.pass_context
@handle_errors
def update(ctx, node_id, title, body, node_type, tags, category, source, author, url, importance):
    """Update fields of a node.

    Changing the body or tags re-runs auto-linking.

    Example:
        synthesis update abc123 --tags focus,deep-work --importance 9
    """
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        node = kb.update_node(
            user,
            resolve_id(node_id, _node_ids(kb, user)),
            title=title,
            body=body,
            type=NodeType(node_type) if node_type else None,
            tags=_split_tags(tags),
            category=category,
            source=source,
            author=author,
            url=url,
            importance_score=importance,
        )
        kb.wait_for_links()
    console.print(f"✓ Updated node: [bold]{node.id}[/bold]")


@cli.command()
@click.argument("node_id")
@click.confirmation_option(prompt="Delete this node and all of its connections?")
@click.pass_context
@handle_errors
def delete(ctx, node_id):
    """Delete a node, its connections and its cluster memberships."""
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        resolved = resolve_id(node_id, _node_ids(kb, user))
        kb.delete_node(user, resolved)
    console.print(f"✓ Deleted node: {resolved}")


@cli.command()
@click.argument("source_id")
@click.argument("target_id")
@click.option("--type", "-t", "connection_type",
              type=click.Choice([c.value for c in ConnectionType]),
              default="related",
              help="Relationship type")
@click.option("--strength", "-s", type=float, default=0.5, help="Strength 0-1 (clamped, default: 0.5)")
@click.option("--description", "-d", help="Why these are connected")
@click.pass_context
@handle_errors
def connect(ctx, source_id, target_id, connection_type, strength, description):
    """Connect two nodes.

    Relationship types:
      - related: General association (default)
      - supports: X reinforces Y
      - contradicts: X conflicts with Y
      - example_of: X illustrates Y
      - builds_on: X extends Y

    Examples:
        synthesis connect abc123 def456 --type supports --strength 0.8
    """
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        candidates = _node_ids(kb, user)
        connection = kb.create_connection(
            user,
            resolve_id(source_id, candidates),
            resolve_id(target_id, candidates),
            connection_type=connection_type,
            strength=strength,
            description=description,
        )
    console.print(
        f"✓ Connected: {str(connection.source_node_id)[:8]} "
        f"--[{connection.connection_type.value}]--> {str(connection.target_node_id)[:8]} "
        f"({connection.id})"
    )


@cli.command()
@click.argument("node_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def connections(ctx, node_id, as_json):
    """List a node's connections, strongest first."""
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        resolved = resolve_id(node_id, _node_ids(kb, user))
        edges = kb.list_connections(user, resolved)

    if as_json:
        click.echo(json.dumps([connection_to_dict(c) for c in edges], indent=2))
        return
    if not edges:
        console.print("No connections.", style="dim")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Type", style="green")
    table.add_column("Other", style="cyan", width=8)
    table.add_column("Strength", justify="right")
    table.add_column("Auto", width=4)
    table.add_column("ID", style="dim", width=8)
    for c in edges:
        table.add_row(
            c.connection_type.value,
            str(c.other_end(resolved))[:8],
            f"{c.strength:.2f}",
            "✓" if c.is_auto_generated else "",
            str(c.id)[:8],
        )
    console.print(table)


@cli.command("update-connection")
@click.argument("connection_id")
@click.option("--type", "-t", "connection_type", type=click.Choice([c.value for c in ConnectionType]))
@click.option("--strength", "-s", type=float, help="New strength (clamped to 0-1)")
@click.option("--description", "-d", help="New description")
@click.pass_context
@handle_errors
def update_connection(ctx, connection_id, connection_type, strength, description):
    """Change a connection's type, strength or description."""
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        connection = kb.update_connection(
            user,
            resolve_id(connection_id, _connection_ids(kb, user)),
            connection_type=ConnectionType(connection_type) if connection_type else None,
            strength=strength,
            description=description,
        )
    console.print(
        f"✓ Updated connection {str(connection.id)[:8]}: "
        f"{connection.connection_type.value} ({connection.strength:.2f})"
    )


@cli.command()
@click.argument("connection_id")
@click.pass_context
@handle_errors
def disconnect(ctx, connection_id):
    """Delete a connection."""
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        resolved = resolve_id(connection_id, _connection_ids(kb, user))
        kb.delete_connection(user, resolved)
    console.print(f"✓ Removed connection: {resolved}")


@cli.command()
@click.argument("node_id")
@click.option("--limit", "-n", default=10, type=click.IntRange(min=1), help="Max results (default: 10)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def related(ctx, node_id, limit, as_json):
    """Show directly connected nodes, strongest first."""
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        results = kb.get_related_nodes(user, resolve_id(node_id, _node_ids(kb, user)), limit=limit)

    if as_json:
        click.echo(json.dumps([
            {**node_to_dict(r.node),
             "connection_strength": r.connection_strength,
             "connection_type": r.connection_type.value}
            for r in results
        ], indent=2))
        return
    if not results:
        console.print("No related nodes.", style="dim")
        return
    for r in results:
        console.print(
            f"  [cyan]{r.connection_strength:.2f}[/cyan] \\[{r.connection_type.value}] "
            f"{_short(r.node.title, 50)} [dim]({str(r.node.id)[:8]})[/dim]"
        )


@cli.command()
@click.argument("query")
@click.option("--type", "types", multiple=True, type=click.Choice([t.value for t in NodeType]), help="Restrict to type (repeatable)")
@click.option("--category", "-c", "categories", multiple=True, help="Restrict to category (repeatable)")
@click.option("--tags", "-t", help="Nodes with any of these tags (comma-separated)")
@click.option("--limit", "-n", default=DEFAULT_SEARCH_LIMIT, type=click.IntRange(min=1), help=f"Max results (default: {DEFAULT_SEARCH_LIMIT})")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def search(ctx, query, types, categories, tags, limit, as_json):
    """Search nodes by text, best match first.

    Examples:
        synthesis search "focus"
        synthesis search "deep work" --type book --limit 5
    """
    options = SearchOptions(
        types=[NodeType(t) for t in types],
        categories=list(categories),
        tags=_split_tags(tags) or [],
        limit=limit,
    )
    with get_service(ctx.obj.get("db")) as kb:
        results = kb.search(ctx.obj["user"], query, options)

    if as_json:
        click.echo(json.dumps([
            {
                "node": node_to_dict(r.node),
                "relevance_score": r.relevance_score,
                "snippet": r.snippet,
                "highlighted_terms": r.highlighted_terms,
            }
            for r in results
        ], indent=2))
        return
    if not results:
        console.print("No matches.", style="dim")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Score", style="cyan", justify="right", width=6)
    table.add_column("Title", style="white")
    table.add_column("Snippet", style="dim")
    table.add_column("ID", style="dim", width=8)
    for r in results:
        table.add_row(f"{r.relevance_score:.2f}", _short(r.node.title, 30), r.snippet, str(r.node.id)[:8])
    console.print(table)
    console.print(f"\n{len(results)} results", style="dim")


def _hops(graph: KnowledgeGraph) -> dict[UUID, int]:
    """Hop distance of every node from the graph's center."""
    adjacency: dict[UUID, set[UUID]] = {}
    for c in graph.connections:
        adjacency.setdefault(c.source_node_id, set()).add(c.target_node_id)
        adjacency.setdefault(c.target_node_id, set()).add(c.source_node_id)

    hops = {graph.center_node_id: 0}
    queue = deque([graph.center_node_id])
    while queue:
        current = queue.popleft()
        for nxt in adjacency.get(current, ()):
            if nxt not in hops:
                hops[nxt] = hops[current] + 1
                queue.append(nxt)
    return hops


@cli.command()
@click.argument("center_id", required=False)
@click.option("--depth", "-d", default=2, type=click.IntRange(min=0), help="How many hops to traverse (default: 2)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def graph(ctx, center_id, depth, as_json):
    """Show the knowledge graph around a node (or all of it).

    Examples:
        synthesis graph abc123 --depth 3
        synthesis graph --json > graph.json
    """
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        center = resolve_id(center_id, _node_ids(kb, user)) if center_id else None
        result = kb.get_knowledge_graph(user, center, depth=depth)

    if as_json:
        click.echo(json.dumps({
            "nodes": [node_to_dict(n) for n in result.nodes],
            "connections": [connection_to_dict(c) for c in result.connections],
            "center_node": str(result.center_node_id) if result.center_node_id else None,
        }, indent=2))
        return

    if result.center_node_id is None:
        console.print(
            f"{len(result.nodes)} nodes, {len(result.connections)} connections", style="dim"
        )
        return

    by_id = {n.id: n for n in result.nodes}
    hops = _hops(result)
    tree = Tree(f"[bold]{_short(by_id[result.center_node_id].title, 40)}[/bold]")

    # Group by hop count
    by_hop: dict[int, list[KnowledgeNode]] = {}
    for node in result.nodes:
        by_hop.setdefault(hops.get(node.id, depth), []).append(node)

    for hop in sorted(by_hop):
        if hop == 0:
            continue
        hop_branch = tree.add(f"[dim]Hop {hop}[/dim]")
        for node in by_hop[hop]:
            hop_branch.add(f"[cyan]{node.type.value}[/cyan] {_short(node.title, 40)}")

    console.print(tree)
    console.print(
        f"\n{len(result.nodes)} nodes, {len(result.connections)} connections", style="dim"
    )


@cli.command()
@click.argument("name")
@click.argument("node_ids", nargs=-1, required=True)
@click.option("--center", required=True, help="Center node (must be one of NODE_IDS)")
@click.option("--description", "-d", help="What ties these together")
@click.option("--tags", "-t", help="Comma-separated tags")
@click.pass_context
@handle_errors
def cluster(ctx, name, node_ids, center, description, tags):
    """Group nodes into a named, coherence-scored cluster.

    Example:
        synthesis cluster "Attention" abc123 def456 789abc --center abc123
    """
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        candidates = _node_ids(kb, user)
        created = kb.create_cluster(
            user,
            name=name,
            node_ids=[resolve_id(n, candidates) for n in node_ids],
            center_node_id=resolve_id(center, candidates),
            description=description,
            tags=_split_tags(tags),
        )
    console.print(f"✓ Created cluster: [bold]{created.id}[/bold]")
    console.print(f"  {len(created.node_ids)} nodes, coherence {created.coherence_score:.2f}", style="dim")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def clusters(ctx, as_json):
    """List clusters, most recently updated first."""
    with get_service(ctx.obj.get("db")) as kb:
        found = kb.list_clusters(ctx.obj["user"])

    if as_json:
        click.echo(json.dumps([cluster_to_dict(c) for c in found], indent=2))
        return
    if not found:
        console.print("No clusters yet.", style="dim")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Nodes", justify="right")
    table.add_column("Coherence", justify="right", style="green")
    table.add_column("ID", style="dim", width=8)
    for c in found:
        table.add_row(c.name, str(len(c.node_ids)), f"{c.coherence_score:.2f}", str(c.id)[:8])
    console.print(table)


@cli.command("rebuild-cache")
@click.pass_context
@handle_errors
def rebuild_cache(ctx):
    """Recompute every node's cached neighbour list from the connections."""
    with get_service(ctx.obj.get("db")) as kb:
        count = kb.rebuild_neighbor_cache(ctx.obj["user"])
    console.print(f"✓ Rebuilt neighbour cache for {count} nodes")


@cli.command()
@click.pass_context
@handle_errors
def stats(ctx):
    """Show knowledge graph statistics.

    Displays:
      - Total nodes by type
      - Connections by type (auto-generated vs manual)
      - Most connected nodes
    """
    user = ctx.obj["user"]
    with get_service(ctx.obj.get("db")) as kb:
        full = kb.get_knowledge_graph(user)

    if not full.nodes:
        console.print("[yellow]No knowledge stored yet.[/yellow]")
        return

    type_counts = Counter(n.type.value for n in full.nodes)
    edge_counts = Counter(c.connection_type.value for c in full.connections)
    auto_count = sum(1 for c in full.connections if c.is_auto_generated)
    degree = Counter()
    for c in full.connections:
        degree[c.source_node_id] += 1
        degree[c.target_node_id] += 1

    console.print(Panel("[bold]Knowledge Graph Statistics[/bold]", style="blue"))

    console.print("\n[bold]Nodes by Type:[/bold]")
    node_table = Table(show_header=False, box=None)
    node_table.add_column("Type", style="cyan")
    node_table.add_column("Count", justify="right")
    for ntype, count in type_counts.most_common():
        node_table.add_row(ntype, str(count))
    node_table.add_row("[bold]Total[/bold]", f"[bold]{len(full.nodes)}[/bold]")
    console.print(node_table)

    if edge_counts:
        console.print("\n[bold]Connections by Type:[/bold]")
        edge_table = Table(show_header=False, box=None)
        edge_table.add_column("Type", style="green")
        edge_table.add_column("Count", justify="right")
        for etype, count in edge_counts.most_common():
            edge_table.add_row(etype, str(count))
        edge_table.add_row("[bold]Total[/bold]", f"[bold]{len(full.connections)}[/bold]")
        console.print(edge_table)
        console.print(f"  [dim]({auto_count} auto-generated)[/dim]")
    else:
        console.print("\n[dim]No connections yet.[/dim]")

    if degree:
        titles = {n.id: n.title for n in full.nodes}
        console.print("\n[bold]Most Connected Nodes:[/bold]")
        for node_id, count in degree.most_common(5):
            console.print(f"  {str(node_id)[:8]}: {count} connections - {_short(titles.get(node_id, '?'), 50)}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
