from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from citation_explorer.config.settings import settings
from citation_explorer.errors import CitationExplorerError
from citation_explorer.expansion.controller import ExpansionController, ExpansionParams
from citation_explorer.graph.model import GraphModel, GraphNode
from citation_explorer.graph.storage import RelationshipStore, build_store
from citation_explorer.layout.engine import layout_graph
from citation_explorer.models.job import JobType
from citation_explorer.search.client import JobClient
from citation_explorer.search.phrases import suggest_keywords

app = typer.Typer(
    help="Inspect, expand and lay out a citation tree seeded from a citation-network file."
)

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _job_client() -> JobClient:
    return JobClient()


def _store() -> RelationshipStore:
    return build_store(settings)


def _load_seed(seed: Path) -> GraphModel:
    """
    Build a tree from a saved citation-network payload
    ({paper, citationNetwork: {nodes, edges}}).
    """
    path = Path(seed)
    if not path.exists():
        console.print(f"[red]Seed file not found:[/red] {path}")
        raise typer.Exit(code=1)

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        return GraphModel.from_network(payload)
    except (json.JSONDecodeError, ValueError) as exc:
        console.print(f"[red]Could not build a tree from {path}:[/red] {exc}")
        raise typer.Exit(code=1)


def _restore(graph: GraphModel, chat_id: Optional[str], opened: Optional[List[str]] = None) -> None:
    if not chat_id:
        return

    async def _run() -> List[str]:
        store = _store()
        try:
            relationships = await store.load(chat_id)
        finally:
            await store.aclose()
        hydrated = graph.hydrate(relationships)
        for node_id in graph.open_papers(relationships, opened or []):
            if node_id not in hydrated:
                hydrated.append(node_id)
        return hydrated

    try:
        hydrated = asyncio.run(_run())
    except CitationExplorerError as exc:
        console.print(f"[red]{exc.user_message}[/red] ({exc})")
        raise typer.Exit(code=1)
    if hydrated:
        console.print(f"[dim]Restored stored children for {len(hydrated)} node(s).[/dim]")


def _find_node(graph: GraphModel, paper_id: str) -> GraphNode:
    matches = graph.find_by_paper(paper_id)
    if not matches:
        console.print(f"[red]Paper {paper_id!r} is not in the tree.[/red]")
        raise typer.Exit(code=1)
    return matches[0]


def _label(node: GraphNode) -> str:
    text = node.label or str(node.paper_id)
    if node.is_placeholder:
        return f"[dim]{text}[/dim]"
    score = "" if node.score is None else f" [cyan]{node.score:.2f}[/cyan]"
    ident = f" [dim]({node.paper_id})[/dim]" if node.paper_id else ""
    flag = " [yellow]+[/yellow]" if node.collapsed and node.children else ""
    return f"{text}{score}{ident}{flag}"


def _render(graph: GraphModel) -> Tree:
    root = graph.root
    tree = Tree(f"[bold]{_label(root)}[/bold]")

    def _add(branch: Tree, node: GraphNode) -> None:
        if node.collapsed:
            return
        for child in graph.children_of(node.node_id, include_placeholders=True):
            _add(branch.add(_label(child)), child)

    _add(tree, root)
    return tree


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command("show")
def show(
    seed: Path = typer.Argument(..., help="Citation-network JSON file."),
    chat_id: Optional[str] = typer.Option(
        None, "--chat-id", "-c", help="Restore children stored for this chat."
    ),
    open_papers: List[str] = typer.Option(
        [], "--open", "-o", help="Paper whose stored children to restore (repeatable)."
    ),
) -> None:
    """
    Print the tree (root plus its top children, and any stored expansions).
    """
    graph = _load_seed(seed)
    _restore(graph, chat_id, open_papers)
    console.print(_render(graph))


@app.command("expand")
def expand(
    seed: Path = typer.Argument(..., help="Citation-network JSON file."),
    paper_id: str = typer.Argument(..., help="Paper to expand (any id prefix accepted)."),
    chat_id: str = typer.Option(..., "--chat-id", "-c", help="Chat the expansion is stored under."),
    keyword: List[str] = typer.Option(
        [], "--keyword", "-k", help="Keyword phrase (repeatable)."
    ),
    job_type: JobType = typer.Option(
        JobType.KEYWORD_SEARCH, "--job-type", "-t", help="Search job type."
    ),
    query: Optional[str] = typer.Option(
        None, "--query", "-q", help="Free-text query for query/combined searches."
    ),
    open_papers: List[str] = typer.Option(
        [], "--open", "-o", help="Paper whose stored children to restore first (repeatable)."
    ),
) -> None:
    """
    Run one expansion of a paper and print the resulting tree.
    """
    graph = _load_seed(seed)
    params = ExpansionParams(job_type=job_type, keywords=list(keyword), query=query)

    async def _run():
        store = _store()
        jobs = _job_client()
        try:
            controller = ExpansionController(graph, jobs, store, chat_id)
            await controller.restore_session(opened=open_papers)
            node = _find_node(graph, paper_id)
            return await controller.request_expand(node.node_id, params)
        finally:
            await jobs.aclose()
            await store.aclose()

    try:
        outcome = asyncio.run(_run())
    except CitationExplorerError as exc:
        console.print(f"[red]{exc.user_message}[/red] ({exc})")
        raise typer.Exit(code=1)

    if not outcome.ok:
        console.print(f"[red]{outcome.message}[/red] ({outcome.error})")
        raise typer.Exit(code=1)

    console.print(f"[green]Added {len(outcome.added)} related paper(s).[/green]")
    if outcome.storage_error is not None:
        console.print(f"[yellow]{outcome.message}[/yellow]")
    console.print(_render(graph))


@app.command("layout")
def layout(
    seed: Path = typer.Argument(..., help="Citation-network JSON file."),
    chat_id: Optional[str] = typer.Option(
        None, "--chat-id", "-c", help="Restore children stored for this chat."
    ),
    open_papers: List[str] = typer.Option(
        [], "--open", "-o", help="Paper whose stored children to restore (repeatable)."
    ),
) -> None:
    """
    Print computed positions for the visible nodes.
    """
    graph = _load_seed(seed)
    _restore(graph, chat_id, open_papers)
    result = layout_graph(graph)

    table = Table(title="Layout")
    table.add_column("Node")
    table.add_column("Paper")
    table.add_column("x", justify="right")
    table.add_column("y", justify="right")
    table.add_column("Box (w x h)", justify="right")
    table.add_column("Panel")

    for node_id, pos in result.positions.items():
        node = graph.node(node_id)
        table.add_row(
            node_id,
            str(node.paper_id or "-"),
            f"{pos.x:.1f}",
            f"{pos.y:.1f}",
            f"{pos.box.width:.0f} x {pos.box.height:.0f}",
            pos.panel.side.value if pos.panel else "-",
        )

    console.print(table)


@app.command("relationships")
def relationships(
    chat_id: str = typer.Option(..., "--chat-id", "-c", help="Chat to list."),
    paper_id: Optional[str] = typer.Option(
        None, "--paper-id", "-p", help="Only this parent paper."
    ),
) -> None:
    """
    List stored parent -> child relationships of a chat.
    """

    async def _run():
        store = _store()
        try:
            if paper_id is not None:
                return {paper_id: await store.get(chat_id, paper_id)}
            return await store.load(chat_id)
        finally:
            await store.aclose()

    try:
        entries = asyncio.run(_run())
    except CitationExplorerError as exc:
        console.print(f"[red]{exc.user_message}[/red] ({exc})")
        raise typer.Exit(code=1)

    if not any(entries.values()):
        console.print(f"[yellow]No relationships stored for chat {chat_id}.[/yellow]")
        return

    table = Table(title=f"Relationships for {chat_id}")
    table.add_column("Parent")
    table.add_column("Child")
    table.add_column("Title")

    for parent, children in entries.items():
        for child in children:
            table.add_row(str(parent), child.id, child.title)

    console.print(table)


@app.command("keywords")
def keywords(
    seed: Path = typer.Argument(..., help="Citation-network JSON file."),
    paper_id: str = typer.Argument(..., help="Paper in the tree."),
    limit: int = typer.Option(15, "--limit", "-n", min=1, help="Max suggestions."),
) -> None:
    """
    Suggest keyword tags for a paper in the tree.
    """
    graph = _load_seed(seed)
    node = _find_node(graph, paper_id)
    try:
        paper = graph.require_paper(node.node_id)
    except CitationExplorerError as exc:
        console.print(f"[red]{exc.user_message}[/red] ({exc})")
        raise typer.Exit(code=1)

    for kw in suggest_keywords(paper, limit=limit):
        console.print(kw)
