"""kgraph CLI - inspect and edit a project's knowledge graph from the shell."""

import json
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from .config import load_config, setup_logging
from .graph_store import AmbiguousEntityError, EntityNotFoundError, GraphStore
from .paths import get_db_path
from .plugin import KnowledgeGraphPlugin, resolve_project_path

app = typer.Typer(
    name="kgraph",
    help="Project knowledge graph and session memory for coding agents",
    no_args_is_help=True,
)
console = Console()

_PROJECT_OPTION = typer.Option(None, "--project", "-p", help="Project path (default: current directory)")


def _open(project: Optional[str]) -> KnowledgeGraphPlugin:
    config = load_config()
    store = GraphStore(get_db_path(), busy_timeout_ms=config.busy_timeout_ms)
    return KnowledgeGraphPlugin(store, project_path=resolve_project_path(directory=project), config=config)


def _run(project: Optional[str], tool: str, arguments: dict) -> dict:
    """Call a tool, printing errors and exiting 1 on failure."""
    plugin = None
    try:
        plugin = _open(project)
        return plugin.call_tool(tool, arguments)
    except EntityNotFoundError as e:
        rprint(f"[bold red]Not found:[/] {', '.join(e.identifiers)}")
        raise typer.Exit(1)
    except AmbiguousEntityError as e:
        rprint(f"[bold red]Ambiguous:[/] '{e.identifier}' matches {len(e.candidates)} entities")
        for c in e.candidates[:10]:
            rprint(f"  [dim]{c.id}[/] [{c.type}] {c.name}")
        raise typer.Exit(1)
    except Exception as e:
        rprint(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1)
    finally:
        if plugin is not None:
            plugin.close()


@app.callback()
def main() -> None:
    setup_logging(load_config())


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    entity_type: str = typer.Option(None, "--type", "-t", help="Filter by entity type"),
    n: int = typer.Option(10, "--num", "-n", help="Number of results", min=1, max=100),
    project: str = _PROJECT_OPTION,
):
    """Search entity names and content."""
    result = _run(project, "knowledge_search", {"query": query, "type": entity_type, "limit": n})

    if not result["count"]:
        rprint("[yellow]No results found[/]")
        return

    for i, r in enumerate(result["results"], 1):
        rprint(f"[bold cyan]{i}.[/] [magenta][{r['type']}][/] [bold]{r['name']}[/] [dim]{r['updated'][:19]}[/]")
        if r["content"]:
            rprint(f"[white]{r['content']}[/]")
        rprint(f"[dim]ID: {r['id']}[/]\n")


@app.command()
def add(
    name: str = typer.Argument(..., help="Entity name"),
    entity_type: str = typer.Argument(..., help="Entity type (component, concept, pattern, ...)"),
    content: str = typer.Argument(..., help="Entity content"),
    metadata: str = typer.Option(None, "--metadata", "-m", help="JSON metadata, stored verbatim"),
    project: str = _PROJECT_OPTION,
):
    """Add an entity."""
    result = _run(
        project,
        "knowledge_add_entity",
        {"name": name, "type": entity_type, "content": content, "metadata": metadata},
    )
    rprint(f"[bold green]✓[/] Added [{entity_type}] {name} [dim]({result['entityId']})[/]")


@app.command()
def connect(
    source: str = typer.Argument(..., help="Source entity id or name"),
    relationship: str = typer.Argument(..., help="Relationship type (depends_on, implements, ...)"),
    target: str = typer.Argument(..., help="Target entity id or name"),
    project: str = _PROJECT_OPTION,
):
    """Link two entities: SOURCE RELATIONSHIP TARGET."""
    result = _run(project, "knowledge_connect", {"source": source, "target": target, "relationship": relationship})
    rprint(f"[bold green]✓[/] {result['from']} [cyan]--{result['type']}-->[/] {result['to']}")


@app.command()
def graph(
    entity_type: str = typer.Option(None, "--type", "-t", help="Filter nodes by entity type"),
    root: str = typer.Option(None, "--root", "-r", help="Expand from this entity only"),
    depth: int = typer.Option(1, "--depth", "-d", min=1, help="Hops from --root"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
    project: str = _PROJECT_OPTION,
):
    """Show the knowledge graph."""
    result = _run(project, "knowledge_graph", {"entityType": entity_type, "root": root, "depth": depth})

    if as_json:
        print(json.dumps(result, indent=2))
        return

    table = Table(show_header=True, header_style="bold magenta", title=f"{len(result['nodes'])} nodes")
    table.add_column("Type", style="cyan")
    table.add_column("Name", style="white")
    for node in result["nodes"]:
        table.add_row(node["type"], node["label"])
    console.print(table)

    if result["edges"]:
        rprint(f"\n[bold]Edges ({len(result['edges'])}):[/]")
        for edge in result["edges"]:
            rprint(f"  {edge['source']} [cyan]--{edge['type']}-->[/] {edge['target']}")


@app.command()
def sessions(
    limit: int = typer.Option(10, "--limit", "-l", min=1, help="Number of sessions"),
    project: str = _PROJECT_OPTION,
):
    """List past sessions."""
    result = _run(project, "knowledge_sessions", {"limit": limit})

    if not result["count"]:
        rprint("[yellow]No sessions recorded[/]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Session", style="cyan")
    table.add_column("Started", style="dim")
    table.add_column("Ended", style="dim")
    table.add_column("Summary", style="white")
    table.add_column("Files", justify="right")
    for s in result["sessions"]:
        table.add_row(
            s["id"][:8],
            (s["startTime"] or "")[:19],
            (s["endTime"] or "")[:19],
            s["summary"] or "",
            str(len(s["filesModified"])),
        )
    console.print(table)


@app.command()
def decide(
    decision: str = typer.Argument(..., help="The decision made"),
    rationale: str = typer.Argument(..., help="Why"),
    alternatives: str = typer.Option(None, "--alternatives", "-a", help="Alternatives considered"),
    project: str = _PROJECT_OPTION,
):
    """Record a decision."""
    result = _run(
        project,
        "knowledge_record_decision",
        {"decision": decision, "rationale": rationale, "alternatives": alternatives},
    )
    rprint(f"[bold green]✓[/] Recorded decision [dim]({result['decisionId']})[/]")


@app.command()
def summarize(
    summary: str = typer.Argument(..., help="Session summary"),
    decisions: str = typer.Option("", "--decisions", help="Key decisions made"),
    files: str = typer.Option("[]", "--files", help="JSON array of files modified"),
    session_id: str = typer.Option(None, "--session", "-s", help="Update this session instead of starting one"),
    project: str = _PROJECT_OPTION,
):
    """Store a session summary."""
    plugin = None
    try:
        plugin = _open(project)
        if session_id:
            plugin.session.session_id = session_id
        result = plugin.call_tool(
            "knowledge_summarize_session",
            {"summary": summary, "decisions": decisions, "files": files},
        )
    except Exception as e:
        rprint(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1)
    finally:
        if plugin is not None:
            plugin.close()
    rprint(f"[bold green]✓[/] Session [cyan]{result['sessionId']}[/] saved")


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question about the project"),
    project: str = _PROJECT_OPTION,
):
    """Get recent decisions and documentation for a question."""
    result = _run(project, "knowledge_ask", {"question": question})
    if not result["relevantContext"]:
        rprint("[yellow]No decisions or documentation recorded yet[/]")
        return
    console.print(result["relevantContext"], markup=False)


@app.command()
def stats(project: str = _PROJECT_OPTION):
    """Show knowledge graph statistics."""
    result = _run(project, "knowledge_stats", {})

    rprint(f"[bold blue]kgraph[/] - {result['projectPath']}\n")
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Entities", f"{result['entities']:,}")
    table.add_row("Relationships", f"{result['relationships']:,}")
    table.add_row("Sessions", f"{result['sessions']:,}")
    table.add_row("Questions", f"{result['queries']:,}")
    console.print(table)

    if result["entityTypes"]:
        rprint("\n[bold]Types:[/] " + ", ".join(f"{t} ({c})" for t, c in result["entityTypes"].items()))


@app.command()
def serve():
    """Start the MCP server (stdio)."""
    from .mcp import serve as mcp_serve

    mcp_serve()


@app.command()
def daemon(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8765, "--port", help="HTTP port"),
):
    """Start the HTTP host bridge."""
    from .daemon import run

    run(host, port)


if __name__ == "__main__":
    app()
