"""Typer command handlers."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

import typer
from pydantic import BaseModel

from core.memory_service import MemoryService
from core.orchestrator import Orchestrator, RuntimeBundle
from core.scheduler import MemorySubsystem
from memory.types.runs import ConsolidationOptions


def _runtime(root: Path | None = None, config_path: Path | None = None) -> RuntimeBundle:
    bundle = Orchestrator(root=root, config_path=config_path).build()
    level = str(bundle.config.get("logging", {}).get("level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return bundle


def _service(options: dict[str, Any]) -> MemoryService:
    return MemoryService(_runtime(options.get("root"), options.get("config")))


def _emit(payload: BaseModel | dict[str, Any]) -> None:
    """Print a result as JSON; unsuccessful results exit non-zero."""
    data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
    typer.echo(json.dumps(_json_safe(data), indent=2))
    failed = data.get("success") is False or data.get("status") == "failed"
    if failed:
        raise typer.Exit(code=1)


def init(options: dict[str, Any], agent_id: str) -> None:
    """Create the agent's memory schema."""
    _emit(_service(options).initialize(agent_id))


def index_delta(options: dict[str, Any], agent_id: str, dry_run: bool, batch_size: int | None) -> None:
    """Index new transcript lines."""
    _emit(_service(options).run_index_delta(agent_id, dry_run=dry_run, batch_size=batch_size))


def consolidate(
    options: dict[str, Any],
    agent_id: str,
    dry_run: bool,
    provider: str | None,
    max_conversations: int | None,
    min_confidence: float | None,
    categories: list[str] | None,
) -> None:
    """Run one consolidation pass."""
    service = _service(options)
    defaults = service.runtime.settings.consolidation
    run_options = ConsolidationOptions(
        dry_run=dry_run,
        provider=provider or defaults.provider,
        max_conversations=max_conversations or defaults.max_conversations,
        min_confidence=min_confidence,
        categories=categories or None,
    )
    _emit(service.consolidate(agent_id, run_options))


def promote(
    options: dict[str, Any],
    agent_id: str,
    min_reinforcements: int | None,
    min_age_days: float | None,
    dry_run: bool,
) -> None:
    """Promote eligible warm memories."""
    _emit(
        _service(options).promote(
            agent_id, min_reinforcements=min_reinforcements, min_age_days=min_age_days, dry_run=dry_run
        )
    )


def prune(options: dict[str, Any], agent_id: str, retention_days: float | None, dry_run: bool) -> None:
    """Prune consolidated short-term messages."""
    _emit(_service(options).prune(agent_id, retention_days=retention_days, dry_run=dry_run))


def status(options: dict[str, Any], agent_id: str) -> None:
    """Show memory totals and recent consolidation runs."""
    _emit(_service(options).consolidation_status(agent_id))


def memory_search(
    options: dict[str, Any],
    agent_id: str,
    query: str | None,
    category: str | None,
    limit: int,
    related: bool,
    tier: str | None,
    min_confidence: float,
) -> None:
    """Search or list memories."""
    _emit(
        _service(options).query_memories(
            agent_id,
            query=query,
            category=category,
            limit=limit,
            include_related=related,
            min_confidence=min_confidence,
            tier=tier,
        )
    )


def memory_related(options: dict[str, Any], agent_id: str, memory_id: str, depth: int) -> None:
    _emit(_service(options).related(agent_id, memory_id, depth=depth))


def memory_stats(options: dict[str, Any], agent_id: str) -> None:
    _emit(_service(options).stats(agent_id))


def memory_graph(options: dict[str, Any], agent_id: str, limit: int) -> None:
    _emit(_service(options).graph(agent_id, limit=limit))


def memory_context(options: dict[str, Any], agent_id: str, query: str, max_chars: int) -> None:
    """Print the prompt block built from memories relevant to a query."""
    _emit(_service(options).memory_context(agent_id, query, max_chars=max_chars))


def memory_delete(options: dict[str, Any], agent_id: str, memory_id: str) -> None:
    _emit(_service(options).delete_memory(agent_id, memory_id))


def memory_update(
    options: dict[str, Any],
    agent_id: str,
    memory_id: str,
    content: str | None,
    category: str | None,
    context: str | None,
) -> None:
    _emit(_service(options).update_memory(agent_id, memory_id, content=content, category=category, context=context))


def run_scheduler(options: dict[str, Any]) -> None:
    """Run the background scheduler in the foreground until interrupted."""
    subsystem = MemorySubsystem.from_service(_service(options))
    subsystem.start()
    typer.echo("Memory scheduler running. Press Ctrl-C to stop.")
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        subsystem.stop()
    typer.echo(json.dumps(_json_safe(subsystem.status()), indent=2))


def config_show(options: dict[str, Any]) -> None:
    """Show effective runtime config."""
    bundle = _runtime(options.get("root"), options.get("config"))
    typer.echo(json.dumps(_json_safe(bundle.config), indent=2))


def _json_safe(payload: object) -> object:
    """Convert datetimes and paths to strings for JSON output."""
    if isinstance(payload, dict):
        return {str(k): _json_safe(v) for k, v in payload.items()}
    if isinstance(payload, (list, tuple, set)):
        return [_json_safe(v) for v in payload]
    if isinstance(payload, Path):
        return str(payload)
    if hasattr(payload, "isoformat"):
        return payload.isoformat()
    return payload
