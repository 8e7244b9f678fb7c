"""Configuration loading and engine settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from memory.consolidation.dedup import DUPLICATE_DISTANCE
from memory.types.runs import ProviderChoice


class IndexingSettings(BaseModel):
    batch_size: int = Field(default=10, ge=1)
    max_concurrent: int = Field(default=1, ge=1)
    catalog_ttl_seconds: float = Field(default=600.0, gt=0)


class ConsolidationSettings(BaseModel):
    provider: ProviderChoice = "auto"
    max_conversations: int = Field(default=50, ge=1)
    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    max_memories_per_conversation: int = Field(default=10, ge=1)
    duplicate_distance: float = Field(default=DUPLICATE_DISTANCE, gt=0.0, lt=2.0)


class RetentionSettings(BaseModel):
    promote_min_reinforcements: int = Field(default=3, ge=1)
    promote_min_age_days: float = Field(default=7, ge=0)
    # 0 disables pruning of short-term messages.
    short_term_days: float = Field(default=0, ge=0)


class SchedulerSettings(BaseModel):
    enabled: bool = False
    index_interval_seconds: float = Field(default=300.0, gt=0)
    consolidation_interval_seconds: float = Field(default=3600.0, gt=0)


class AgentSettings(BaseModel):
    working_directories: list[str] = Field(default_factory=list)
    session_ids: list[str] = Field(default_factory=list)


class EngineSettings(BaseModel):
    """Typed view over the ``memory`` and ``agents`` sections of the config."""

    indexing: IndexingSettings = Field(default_factory=IndexingSettings)
    consolidation: ConsolidationSettings = Field(default_factory=ConsolidationSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    agents: dict[str, AgentSettings] = Field(default_factory=dict)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> EngineSettings:
        memory_cfg = dict(config.get("memory", {}) or {})
        memory_cfg["agents"] = config.get("agents", {}) or {}
        return cls.model_validate(memory_cfg)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML from file, returning empty mapping when missing."""
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries."""
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def ensure_runtime_dirs(root: Path, config: dict[str, Any]) -> dict[str, Path]:
    """Create the data directory and resolve the transcripts root."""
    paths_cfg = config.get("paths", {})
    data_dir = (root / Path(paths_cfg.get("data_dir", "data/agents")).expanduser()).resolve()
    transcripts_root = (
        root / Path(paths_cfg.get("transcripts_root", "~/.claude/projects")).expanduser()
    ).resolve()
    data_dir.mkdir(parents=True, exist_ok=True)
    return {"data_dir": data_dir, "transcripts_root": transcripts_root}


def load_effective_config(root: Path, override_path: Path | None = None) -> dict[str, Any]:
    """Merge ``config/default.yaml``, ``config/models.yaml`` and an optional override file."""
    config_dir = root / "config"
    default_cfg = load_yaml(config_dir / "default.yaml")
    models_cfg = load_yaml(config_dir / "models.yaml")
    merged = merge_dicts(default_cfg, {"models": models_cfg})
    if override_path is not None:
        merged = merge_dicts(merged, load_yaml(override_path))
    return merged
