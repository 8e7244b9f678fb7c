"""Delta indexing tests."""

from __future__ import annotations

import json
import threading
import time
from pathlib import Path

import pytest

from indexing.admission import IndexAdmission
from indexing.cache import FileSizeCache, TranscriptCatalog
from indexing.conversation_index import ConversationIndex
from indexing.delta_index import NO_PROJECTS_MESSAGE, SCHEMA_PENDING_MESSAGE, DeltaIndexer
from indexing.transcripts import parse_timestamp, read_header
from llm.embeddings import HashingEmbedder
from memory.schemas import MessageRecord
from memory.stores.sql_store import SQLStore
from memory.types.indexing import AgentProfile

PROJECT = "/work/shop"


def transcript_lines(count: int, start: int = 0, session_id: str = "sess-1", cwd: str = PROJECT) -> list[str]:
    lines = []
    for i in range(start, start + count):
        role = "user" if i % 2 == 0 else "assistant"
        lines.append(
            json.dumps(
                {
                    "type": role,
                    "sessionId": session_id,
                    "cwd": cwd,
                    "gitBranch": "main",
                    "version": "1.2.0",
                    "timestamp": f"2024-05-01T10:{i:02d}:00Z",
                    "message": {"role": role, "content": [{"type": "text", "text": f"message number {i}"}]},
                }
            )
        )
    return lines


def append_lines(path: Path, lines: list[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        for line in lines:
            handle.write(line + "\n")


def build_indexer(tmp_path: Path, create_schema: bool = True) -> tuple[DeltaIndexer, SQLStore, Path]:
    store = SQLStore(db_path=tmp_path / "agent.db")
    if create_schema:
        store.create_all()
    root = tmp_path / "projects"
    indexer = DeltaIndexer(
        store,
        HashingEmbedder(dim=32),
        IndexAdmission(),
        FileSizeCache(),
        TranscriptCatalog(root),
    )
    return indexer, store, root / "-work-shop"


def register_project(store: SQLStore, transcript_dir: Path) -> None:
    ConversationIndex(store).record_project(PROJECT, "shop", str(transcript_dir))


def message_count(store: SQLStore) -> int:
    with store.session() as sess:
        return sess.query(MessageRecord).count()


def test_delta_report_then_watermark_advances(tmp_path: Path) -> None:
    indexer, store, transcripts = build_indexer(tmp_path)
    register_project(store, transcripts)
    conv = transcripts / "a.jsonl"
    append_lines(conv, transcript_lines(10))
    profile = AgentProfile(agent_id="agent-1")

    report = indexer.run(profile, dry_run=True)
    assert report.success and report.dry_run
    assert [(item.last_indexed, item.current_messages, item.delta_to_index) for item in report.report or []] == [
        (0, 10, 10)
    ]

    first = indexer.run(profile)
    assert first.success
    assert first.total_messages_processed == 10
    entry = ConversationIndex(store).get_conversation(str(conv))
    assert entry is not None
    assert entry.last_indexed_message_count == 10
    assert entry.session_id == "sess-1"

    append_lines(conv, transcript_lines(3, start=10))
    second_report = indexer.run(profile, dry_run=True)
    assert [(item.last_indexed, item.delta_to_index) for item in second_report.report or []] == [(10, 3)]

    second = indexer.run(profile)
    assert second.total_messages_processed == 3
    assert message_count(store) == 13
    refreshed = ConversationIndex(store).get_conversation(str(conv))
    assert refreshed is not None and refreshed.last_indexed_message_count == 13


def test_second_run_without_changes_processes_nothing(tmp_path: Path) -> None:
    indexer, store, transcripts = build_indexer(tmp_path)
    register_project(store, transcripts)
    append_lines(transcripts / "a.jsonl", transcript_lines(4))
    profile = AgentProfile(agent_id="agent-1")

    indexer.run(profile)
    again = indexer.run(profile)

    assert again.success
    assert again.total_messages_processed == 0
    assert again.conversations_indexed == 0
    assert message_count(store) == 4


def test_dry_run_writes_nothing(tmp_path: Path) -> None:
    indexer, store, transcripts = build_indexer(tmp_path)
    register_project(store, transcripts)
    append_lines(transcripts / "a.jsonl", transcript_lines(6))

    result = indexer.run(AgentProfile(agent_id="agent-1"), dry_run=True)

    assert result.new_conversations_discovered == 1
    assert result.conversations_needing_index == 1
    assert ConversationIndex(store).get_conversations() == []
    assert message_count(store) == 0


def test_missing_schema_is_benign(tmp_path: Path) -> None:
    indexer, _store, _transcripts = build_indexer(tmp_path, create_schema=False)

    result = indexer.run(AgentProfile(agent_id="agent-1"))

    assert result.success is True
    assert result.message == SCHEMA_PENDING_MESSAGE


def test_no_projects_message(tmp_path: Path) -> None:
    indexer, _store, _transcripts = build_indexer(tmp_path)

    result = indexer.run(AgentProfile(agent_id="agent-1", working_directories=["/elsewhere"]))

    assert result.success is True
    assert result.message == NO_PROJECTS_MESSAGE


def test_projects_auto_discovered_from_working_directory(tmp_path: Path) -> None:
    indexer, store, transcripts = build_indexer(tmp_path)
    append_lines(transcripts / "a.jsonl", transcript_lines(2))
    append_lines(tmp_path / "projects" / "-other" / "b.jsonl", transcript_lines(2, cwd="/work/other"))

    result = indexer.run(AgentProfile(agent_id="agent-1", working_directories=[PROJECT]))

    assert result.success
    assert result.total_messages_processed == 2
    assert ConversationIndex(store).get_projects() == [(PROJECT, "shop", str(transcripts))]


def test_projects_auto_discovered_from_session_id(tmp_path: Path) -> None:
    indexer, store, transcripts = build_indexer(tmp_path)
    append_lines(transcripts / "a.jsonl", transcript_lines(2, session_id="known-session"))

    indexer.run(AgentProfile(agent_id="agent-1", session_ids=["known-session"]))

    assert [p[0] for p in ConversationIndex(store).get_projects()] == [PROJECT]


def test_malformed_and_tool_lines_are_skipped(tmp_path: Path) -> None:
    indexer, store, transcripts = build_indexer(tmp_path)
    register_project(store, transcripts)
    conv = transcripts / "a.jsonl"
    tool_only = json.dumps(
        {"type": "assistant", "message": {"role": "assistant", "content": [{"type": "tool_use", "name": "ls"}]}}
    )
    append_lines(conv, transcript_lines(2) + ["{not json", tool_only, json.dumps({"type": "summary"})])

    result = indexer.run(AgentProfile(agent_id="agent-1"))

    assert result.total_messages_processed == 2
    entry = ConversationIndex(store).get_conversation(str(conv))
    assert entry is not None and entry.last_indexed_message_count == 5


def test_vanished_transcript_is_skipped(tmp_path: Path) -> None:
    indexer, store, transcripts = build_indexer(tmp_path)
    register_project(store, transcripts)
    conv = transcripts / "a.jsonl"
    append_lines(conv, transcript_lines(2))
    indexer.run(AgentProfile(agent_id="agent-1"))
    conv.unlink()

    result = indexer.run(AgentProfile(agent_id="agent-1"))

    assert result.success
    assert result.conversations_indexed == 0


def test_odd_field_types_do_not_block_other_transcripts(tmp_path: Path) -> None:
    indexer, store, transcripts = build_indexer(tmp_path)
    register_project(store, transcripts)
    append_lines(transcripts / "a.jsonl", transcript_lines(4))
    append_lines(
        transcripts / "b.jsonl",
        [
            json.dumps({"type": "user", "sessionId": 12345, "timestamp": float("nan"), "message": {"content": "hi"}}),
            json.dumps({"type": "assistant", "timestamp": 1e20, "message": {"content": "hello"}}),
        ],
    )

    result = indexer.run(AgentProfile(agent_id="agent-1"))

    assert result.success
    assert result.errors == []
    assert result.total_messages_processed == 6
    odd = ConversationIndex(store).get_conversation(str(transcripts / "b.jsonl"))
    assert odd is not None
    assert odd.session_id == "unknown"
    assert odd.first_message_at is None


def test_lines_appended_during_ingest_are_picked_up_next_run(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    indexer, store, transcripts = build_indexer(tmp_path)
    register_project(store, transcripts)
    conv = transcripts / "a.jsonl"
    append_lines(conv, transcript_lines(4))
    profile = AgentProfile(agent_id="agent-1")
    original = indexer.ingestor.ingest_delta

    def ingest_while_growing(*args, **kwargs):
        append_lines(conv, transcript_lines(2, start=4))
        return original(*args, **kwargs)

    monkeypatch.setattr(indexer.ingestor, "ingest_delta", ingest_while_growing)
    first = indexer.run(profile)
    monkeypatch.setattr(indexer.ingestor, "ingest_delta", original)

    assert first.total_messages_processed == 4
    entry = ConversationIndex(store).get_conversation(str(conv))
    assert entry is not None and entry.last_indexed_message_count == 4

    second = indexer.run(profile)

    assert second.total_messages_processed == 2
    assert message_count(store) == 6


def test_ingest_delta_stops_at_end_line(tmp_path: Path) -> None:
    indexer, store, transcripts = build_indexer(tmp_path)
    conv = transcripts / "a.jsonl"
    append_lines(conv, transcript_lines(6))

    stats = indexer.ingestor.ingest_delta(str(conv), 1, end_line=3)

    assert stats.processed == 2
    assert message_count(store) == 2


def test_unparseable_timestamps_become_none() -> None:
    assert parse_timestamp(float("nan")) is None
    assert parse_timestamp(1e20) is None
    assert parse_timestamp("yesterday") is None
    parsed = parse_timestamp(1714557600000)
    assert parsed is not None and parsed.year == 2024


def test_read_header_ignores_non_text_fields(tmp_path: Path) -> None:
    conv = tmp_path / "a.jsonl"
    append_lines(
        conv,
        [json.dumps({"type": "user", "sessionId": 12345, "cwd": ["x"], "gitBranch": None, "message": {"content": "hi"}})],
    )

    header = read_header(conv)

    assert header.session_id is None
    assert header.cwd is None
    assert header.git_branch is None
    assert header.first_user_message == "hi"


def test_read_header_extracts_metadata(tmp_path: Path) -> None:
    conv = tmp_path / "a.jsonl"
    first = json.dumps(
        {
            "type": "user",
            "sessionId": "s-9",
            "cwd": PROJECT,
            "timestamp": "2024-05-01T09:00:00Z",
            "message": {"role": "user", "content": "line one\nline two " + "x" * 200},
        }
    )
    append_lines(conv, [json.dumps({"type": "summary"}), first])

    header = read_header(conv)

    assert header.session_id == "s-9"
    assert header.cwd == PROJECT
    assert header.first_user_message is not None
    assert "\n" not in header.first_user_message
    assert len(header.first_user_message) <= 100
    assert header.first_message_at is not None and header.first_message_at.year == 2024


def test_file_size_cache_lookup_does_not_mutate(tmp_path: Path) -> None:
    cache = FileSizeCache()
    conv = tmp_path / "a.jsonl"
    append_lines(conv, transcript_lines(1))

    assert cache.unchanged(str(conv), conv.stat().st_size) is False
    assert cache.get(str(conv)) is None

    cache.refresh(str(conv))
    assert cache.unchanged(str(conv), conv.stat().st_size) is True

    conv.unlink()
    cache.refresh(str(conv))
    assert cache.get(str(conv)) is None


def test_catalog_rescans_only_after_ttl(tmp_path: Path) -> None:
    now = [0.0]
    root = tmp_path / "projects"
    catalog = TranscriptCatalog(root, ttl_seconds=600, clock=lambda: now[0])
    append_lines(root / "p" / "a.jsonl", transcript_lines(1))

    assert len(catalog.files()) == 1
    append_lines(root / "p" / "b.jsonl", transcript_lines(1))
    now[0] = 599.0
    assert len(catalog.files()) == 1
    now[0] = 600.0
    assert len(catalog.files()) == 2


def test_admission_is_fifo() -> None:
    admission = IndexAdmission(max_concurrent=1)
    order: list[str] = []
    admission.acquire("holder")

    def worker(name: str) -> None:
        with admission.slot(name):
            order.append(name)

    threads = []
    for index, name in enumerate(["first", "second", "third"], start=1):
        thread = threading.Thread(target=worker, args=(name,))
        thread.start()
        threads.append(thread)
        deadline = time.monotonic() + 5
        while admission.waiting < index and time.monotonic() < deadline:
            time.sleep(0.005)

    assert admission.waiting == 3
    admission.release("holder")
    for thread in threads:
        thread.join(timeout=5)

    assert order == ["first", "second", "third"]
    assert admission.active == 0
    assert admission.waiting == 0
