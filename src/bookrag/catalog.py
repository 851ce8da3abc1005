"""
Document catalog.
SQLite-backed metadata lookup for uploaded textbooks plus the "indexed" flag
that ingestion sets once every batch has been stored.
"""
from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .db_migrations import SqliteMigration, apply_sqlite_migrations, utcnow_iso
from .errors import InvalidInputError, NotFoundError
from .models import DocumentRecord, OutlineUnit, parse_outline
from .observability import get_logger

logger = get_logger(__name__)


class DocumentCatalog:
    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = self._connect()
        try:
            self._conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error:
            pass
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self):
        with self._lock:
            if self._conn is None:
                raise RuntimeError("document catalog connection is closed")
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def close(self):
        with self._lock:
            if self._conn is None:
                return
            self._conn.commit()
            self._conn.close()
            self._conn = None

    def _ensure_schema(self):
        migrations = [
            SqliteMigration(
                version=1,
                name="create_documents_table",
                statements=(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        id TEXT PRIMARY KEY,
                        title TEXT NOT NULL,
                        grade TEXT NOT NULL,
                        subject TEXT NOT NULL,
                        file_path TEXT NOT NULL,
                        outline_json TEXT NOT NULL DEFAULT '[]',
                        is_indexed INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL
                    )
                    """,
                    "CREATE INDEX IF NOT EXISTS idx_documents_created ON documents(created_at)",
                ),
            ),
            SqliteMigration(
                version=2,
                name="add_indexed_at_column",
                statements=("ALTER TABLE documents ADD COLUMN indexed_at TEXT",),
            ),
        ]
        with self._connection() as conn:
            apply_sqlite_migrations(conn, component="document_catalog", migrations=migrations)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> DocumentRecord:
        try:
            outline_raw = json.loads(row["outline_json"] or "[]")
        except json.JSONDecodeError:
            outline_raw = []
        return DocumentRecord(
            id=str(row["id"]),
            title=str(row["title"]),
            grade=str(row["grade"]),
            subject=str(row["subject"]),
            file_path=str(row["file_path"]),
            outline=parse_outline(outline_raw),
            is_indexed=bool(row["is_indexed"]),
        )

    def register_document(
        self,
        *,
        title: str,
        grade: str,
        subject: str,
        file_path: str | Path,
        outline: list[OutlineUnit] | list[dict[str, Any]] | None = None,
        document_id: str | None = None,
    ) -> DocumentRecord:
        fields = {"title": title, "grade": grade, "subject": subject}
        missing = [name for name, value in fields.items() if not str(value or "").strip()]
        if missing:
            raise InvalidInputError(f"missing document fields: {', '.join(missing)}")

        units = [unit if isinstance(unit, OutlineUnit) else OutlineUnit.from_dict(unit) for unit in outline or []]
        doc_id = str(document_id or uuid.uuid4().hex)
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO documents (id, title, grade, subject, file_path, outline_json, is_indexed, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    grade = excluded.grade,
                    subject = excluded.subject,
                    file_path = excluded.file_path,
                    outline_json = excluded.outline_json
                """,
                (
                    doc_id,
                    str(title).strip(),
                    str(grade).strip(),
                    str(subject).strip(),
                    str(file_path),
                    json.dumps([unit.to_dict() for unit in units]),
                    utcnow_iso(),
                ),
            )
        logger.info("document_registered", document_id=doc_id, title=str(title).strip(), outline_units=len(units))
        record = self.find_document_by_id(doc_id)
        if record is None:
            raise NotFoundError(f"document {doc_id!r} was not found after registration")
        return record

    def find_document_by_id(self, document_id: str) -> DocumentRecord | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM documents WHERE id = ?", (str(document_id),)).fetchone()
        return self._row_to_record(row) if row else None

    def list_documents(self) -> list[DocumentRecord]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM documents ORDER BY created_at DESC, id").fetchall()
        return [self._row_to_record(row) for row in rows]

    def mark_as_indexed(self, document_id: str, indexed: bool = True) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE documents SET is_indexed = ?, indexed_at = ? WHERE id = ?",
                (1 if indexed else 0, utcnow_iso() if indexed else None, str(document_id)),
            )
            updated = cursor.rowcount > 0
        if updated:
            logger.info("document_index_flag_set", document_id=document_id, is_indexed=bool(indexed))
        return updated
