"""Project and conversation index relations."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select

from memory.schemas import ConversationRecord, ProjectRecord, as_utc
from memory.stores.sql_store import SQLStore
from memory.types.indexing import ConversationIndexEntry


class ConversationIndex:
    """Reads and writes ``projects`` and ``conversations`` rows."""

    def __init__(self, sql_store: SQLStore) -> None:
        self.sql_store = sql_store

    def get_projects(self) -> list[tuple[str, str, str]]:
        """Return (project_path, project_name, transcript_dir) rows."""
        with self.sql_store.session() as sess:
            rows = sess.scalars(select(ProjectRecord).order_by(ProjectRecord.project_path)).all()
            return [(row.project_path, row.project_name, row.transcript_dir) for row in rows]

    def record_project(self, project_path: str, project_name: str, transcript_dir: str) -> None:
        with self.sql_store.session() as sess:
            sess.merge(
                ProjectRecord(
                    project_path=project_path,
                    project_name=project_name,
                    transcript_dir=transcript_dir,
                )
            )

    def get_conversations(self, project_path: str | None = None) -> list[ConversationIndexEntry]:
        with self.sql_store.session() as sess:
            query = select(ConversationRecord)
            if project_path is not None:
                query = query.where(ConversationRecord.project_path == project_path)
            rows = sess.scalars(query.order_by(ConversationRecord.jsonl_file)).all()
            return [self._entry_to_model(row) for row in rows]

    def get_conversation(self, jsonl_file: str) -> ConversationIndexEntry | None:
        with self.sql_store.session() as sess:
            row = sess.get(ConversationRecord, jsonl_file)
            return self._entry_to_model(row) if row else None

    def record_conversation(self, entry: ConversationIndexEntry) -> None:
        with self.sql_store.session() as sess:
            sess.merge(ConversationRecord(**entry.model_dump()))

    def mark_indexed(
        self,
        jsonl_file: str,
        line_count: int,
        indexed_at: datetime,
        last_message_at: datetime | None = None,
    ) -> None:
        """Advance the watermark after a successful delta ingest."""
        with self.sql_store.session() as sess:
            row = sess.get(ConversationRecord, jsonl_file)
            if row is None:
                return
            row.message_count = line_count
            row.last_indexed_message_count = line_count
            row.last_indexed_at = indexed_at
            current_last = as_utc(row.last_message_at)
            if last_message_at is not None and (current_last is None or last_message_at > current_last):
                row.last_message_at = last_message_at

    @staticmethod
    def _entry_to_model(row: ConversationRecord) -> ConversationIndexEntry:
        return ConversationIndexEntry(
            jsonl_file=row.jsonl_file,
            project_path=row.project_path,
            session_id=row.session_id,
            first_user_message=row.first_user_message,
            git_branch=row.git_branch,
            client_version=row.client_version,
            first_message_at=as_utc(row.first_message_at),
            last_message_at=as_utc(row.last_message_at),
            message_count=row.message_count,
            last_indexed_at=as_utc(row.last_indexed_at),
            last_indexed_message_count=row.last_indexed_message_count,
        )
