"""CLI entrypoint for agent-memory."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from ui.cli import commands

app = typer.Typer(help="Persistent memory engine for coding agents")
memory_app = typer.Typer(help="Long-term memory commands")
config_app = typer.Typer(help="Configuration commands")


@app.callback()
def main_callback(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(None, "--root", envvar="AME_ROOT", help="Directory holding config/"),
    config: Optional[Path] = typer.Option(None, "--config", envvar="AME_CONFIG", help="Extra YAML merged last"),
) -> None:
    ctx.obj = {"root": root, "config": config}


@app.command("init")
def init_cmd(ctx: typer.Context, agent_id: str) -> None:
    """Create the agent's memory database schema."""
    commands.init(ctx.obj, agent_id)


@app.command("index-delta")
def index_delta_cmd(
    ctx: typer.Context,
    agent_id: str,
    dry_run: bool = typer.Option(False, "--dry-run", help="Report pending deltas only"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1),
) -> None:
    """Index transcript lines added since the last run."""
    commands.index_delta(ctx.obj, agent_id, dry_run=dry_run, batch_size=batch_size)


@app.command("consolidate")
def consolidate_cmd(
    ctx: typer.Context,
    agent_id: str,
    dry_run: bool = typer.Option(False, "--dry-run", help="Decide and log without writing"),
    provider: Optional[str] = typer.Option(None, "--provider", help="auto, ollama, openai, groq or mock"),
    max_conversations: Optional[int] = typer.Option(None, "--max-conversations", min=1),
    min_confidence: Optional[float] = typer.Option(None, "--min-confidence", min=0.0, max=1.0),
    category: Optional[list[str]] = typer.Option(None, "--category", help="Restrict extraction (repeatable)"),
) -> None:
    """Extract memories from unconsolidated transcripts."""
    commands.consolidate(
        ctx.obj,
        agent_id,
        dry_run=dry_run,
        provider=provider,
        max_conversations=max_conversations,
        min_confidence=min_confidence,
        categories=category,
    )


@app.command("promote")
def promote_cmd(
    ctx: typer.Context,
    agent_id: str,
    min_reinforcements: Optional[int] = typer.Option(None, "--min-reinforcements", min=1),
    min_age_days: Optional[float] = typer.Option(None, "--min-age-days", min=0),
    dry_run: bool = typer.Option(False, "--dry-run"),
) -> None:
    """Promote reinforced warm memories to the long tier."""
    commands.promote(ctx.obj, agent_id, min_reinforcements, min_age_days, dry_run)


@app.command("prune")
def prune_cmd(
    ctx: typer.Context,
    agent_id: str,
    retention_days: Optional[float] = typer.Option(None, "--retention-days", min=0),
    dry_run: bool = typer.Option(False, "--dry-run"),
) -> None:
    """Delete consolidated short-term messages past retention (0 disables)."""
    commands.prune(ctx.obj, agent_id, retention_days, dry_run)


@app.command("status")
def status_cmd(ctx: typer.Context, agent_id: str) -> None:
    """Show memory totals and recent consolidation runs."""
    commands.status(ctx.obj, agent_id)


@app.command("run-scheduler")
def run_scheduler_cmd(ctx: typer.Context) -> None:
    """Index and consolidate every agent on a timer."""
    commands.run_scheduler(ctx.obj)


@memory_app.command("search")
def memory_search_cmd(
    ctx: typer.Context,
    agent_id: str,
    query: Optional[str] = typer.Argument(None, help="Text to search for; omit to list"),
    category: Optional[str] = typer.Option(None, "--category"),
    limit: int = typer.Option(20, min=1, max=200),
    related: bool = typer.Option(False, "--related", help="Include linked memories"),
    tier: Optional[str] = typer.Option(None, "--tier", help="warm or long"),
    min_confidence: float = typer.Option(0.0, "--min-confidence", min=0.0, max=1.0),
) -> None:
    """Search memories by meaning, or list recent ones."""
    commands.memory_search(ctx.obj, agent_id, query, category, limit, related, tier, min_confidence)


@memory_app.command("related")
def memory_related_cmd(
    ctx: typer.Context,
    agent_id: str,
    memory_id: str,
    depth: int = typer.Option(2, min=1, max=5),
) -> None:
    """Walk relationship links from a memory."""
    commands.memory_related(ctx.obj, agent_id, memory_id, depth)


@memory_app.command("stats")
def memory_stats_cmd(ctx: typer.Context, agent_id: str) -> None:
    """Aggregate memory statistics."""
    commands.memory_stats(ctx.obj, agent_id)


@memory_app.command("graph")
def memory_graph_cmd(ctx: typer.Context, agent_id: str, limit: int = typer.Option(100, min=1)) -> None:
    """Dump memory nodes and links."""
    commands.memory_graph(ctx.obj, agent_id, limit)


@memory_app.command("context")
def memory_context_cmd(
    ctx: typer.Context,
    agent_id: str,
    query: str,
    max_chars: int = typer.Option(8000, "--max-chars", min=200),
) -> None:
    """Build a prompt block of memories relevant to a query."""
    commands.memory_context(ctx.obj, agent_id, query, max_chars)


@memory_app.command("delete")
def memory_delete_cmd(ctx: typer.Context, agent_id: str, memory_id: str) -> None:
    """Delete a memory with its vector and links."""
    commands.memory_delete(ctx.obj, agent_id, memory_id)


@memory_app.command("update")
def memory_update_cmd(
    ctx: typer.Context,
    agent_id: str,
    memory_id: str,
    content: Optional[str] = typer.Option(None, "--content"),
    category: Optional[str] = typer.Option(None, "--category"),
    context: Optional[str] = typer.Option(None, "--context"),
) -> None:
    """Edit a memory's content, category or context."""
    commands.memory_update(ctx.obj, agent_id, memory_id, content, category, context)


@config_app.command("show")
def config_show_cmd(ctx: typer.Context) -> None:
    """Show effective configuration."""
    commands.config_show(ctx.obj)


app.add_typer(memory_app, name="memory")
app.add_typer(config_app, name="config")


def main() -> None:
    """Console script entrypoint."""
    app()


if __name__ == "__main__":
    main()
