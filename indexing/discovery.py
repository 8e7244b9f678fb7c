"""Finds projects and new transcript files for an agent."""

from __future__ import annotations

import logging
from pathlib import Path

from indexing.cache import FileSizeCache, TranscriptCatalog
from indexing.conversation_index import ConversationIndex
from indexing.transcripts import count_lines, read_header
from memory.types.indexing import AgentProfile, ConversationIndexEntry

logger = logging.getLogger("ame.index")

Project = tuple[str, str, str]


class ConversationDiscovery:
    """Project auto-discovery and new-file discovery."""

    def __init__(
        self,
        index: ConversationIndex,
        catalog: TranscriptCatalog,
        size_cache: FileSizeCache,
    ) -> None:
        self.index = index
        self.catalog = catalog
        self.size_cache = size_cache

    def resolve_projects(self, profile: AgentProfile, dry_run: bool = False) -> list[Project]:
        """Known projects, or ones matched from the transcript catalog when none are recorded."""
        projects = self.index.get_projects()
        if projects:
            return projects
        logger.info("No projects for agent %s, auto-discovering", profile.agent_id[:8])
        discovered = self.match_catalog(profile)
        if not dry_run:
            for project_path, project_name, transcript_dir in discovered:
                self.index.record_project(project_path, project_name, transcript_dir)
        logger.info("Auto-discovered %d project(s) for agent %s", len(discovered), profile.agent_id[:8])
        return discovered

    def match_catalog(self, profile: AgentProfile) -> list[Project]:
        sessions = set(profile.session_ids)
        workdirs = set(profile.working_directories)
        agent_id = profile.agent_id
        found: dict[str, Project] = {}
        for item in self.catalog.files():
            if not item.cwd:
                continue
            belongs = (
                (item.session_id is not None and item.session_id in sessions)
                or item.cwd in workdirs
                or agent_id in item.path
                or agent_id in item.cwd
            )
            if belongs and item.cwd not in found:
                name = Path(item.cwd).name or "unknown"
                found[item.cwd] = (item.cwd, name, str(Path(item.path).parent))
        return list(found.values())

    def discover(
        self,
        projects: list[Project],
        dry_run: bool = False,
        errors: list[str] | None = None,
    ) -> list[ConversationIndexEntry]:
        """Record every transcript not yet in the conversation index.

        In dry-run the new entries are only returned.
        """
        new_entries: list[ConversationIndexEntry] = []
        for project_path, _name, transcript_dir in projects:
            directory = Path(transcript_dir)
            if not transcript_dir or not directory.is_dir():
                continue
            known = {entry.jsonl_file for entry in self.index.get_conversations(project_path)}
            for path in sorted(directory.glob("*.jsonl")):
                full_path = str(path)
                if full_path in known:
                    continue
                try:
                    entry = self._new_entry(path, project_path)
                except (OSError, ValueError) as exc:
                    logger.error("Failed to read transcript %s: %s", full_path, exc)
                    if errors is not None:
                        errors.append(f"{full_path}: {exc}")
                    continue
                logger.info("Discovered new conversation %s", path.name)
                if not dry_run:
                    self.index.record_conversation(entry)
                    self.size_cache.refresh(full_path)
                new_entries.append(entry)
        return new_entries

    @staticmethod
    def _new_entry(path: Path, project_path: str) -> ConversationIndexEntry:
        header = read_header(path)
        return ConversationIndexEntry(
            jsonl_file=str(path),
            project_path=project_path,
            session_id=header.session_id or "unknown",
            first_user_message=header.first_user_message,
            git_branch=header.git_branch,
            client_version=header.client_version,
            first_message_at=header.first_message_at,
            message_count=count_lines(path),
            last_indexed_message_count=0,
        )
