"""
Document store using SQLite.

The document store is the source of truth for:
- Document identity (stable integer id)
- Content fingerprint (one live document per fingerprint)
- Title and free-form metadata
- Document <-> tag associations (plain id pairs)

Tag names are resolved through the TagRegistry; a document only ever
references tags that exist. Optionally a copy of each imported file is kept
in the store's documents directory.
"""

import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from .database import Database
from .errors import (
    DuplicateDocumentError,
    NotFoundError,
    OdinSourceError,
    StoreIOError,
    ValidationError,
)
from .fingerprint import fingerprint_file
from .mutator import DocumentPatch, RecordMutator
from .tag_registry import TagRegistry
from .types import BatchOutcome, DocumentDraft, DocumentRecord, utc_now

logger = logging.getLogger(__name__)

# Ids bound per IN (...) clause, below SQLite's host-parameter limit
ID_BATCH_SIZE = 500


class DocumentStore:
    """
    SQLite-backed store for document records.

    Enforces:
    - Fingerprint uniqueness: inserting already-stored content is rejected
      with DuplicateDocumentError, never silently overwritten or duplicated
    - Referential integrity: tag ids always refer to live tags
    """

    def __init__(
        self,
        db: Database,
        registry: TagRegistry,
        *,
        documents_dir: Optional[Path] = None,
        extensions: Sequence[str] = (),
        auto_create_tags: bool = True,
    ):
        """
        Args:
            db: Shared database
            registry: Tag registry used to resolve tag names
            documents_dir: Where to keep copies of imported files (None: no copies)
            extensions: Allowed source file extensions, without dot (empty: any)
            auto_create_tags: Create unknown tag names on first use; if False,
                unknown names are a ValidationError
        """
        self._db = db
        self._registry = registry
        self._documents_dir = Path(documents_dir) if documents_dir is not None else None
        self._extensions = tuple(e.lower().lstrip(".") for e in extensions)
        self.auto_create_tags = auto_create_tags
        self._mutator = RecordMutator(self, registry)

    @property
    def registry(self) -> TagRegistry:
        return self._registry

    @property
    def mutator(self) -> RecordMutator:
        return self._mutator

    @property
    def db(self) -> Database:
        return self._db

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def insert(self, draft: DocumentDraft) -> int:
        """
        Insert a new document.

        Args:
            draft: The candidate document

        Returns:
            The new document id

        Raises:
            ValidationError: Bad title, unusable source path, unknown tags
                (when auto-create is off)
            DuplicateDocumentError: A live document has the same content
            StoreIOError: Reading the file or writing the store failed
        """
        title = draft.effective_title
        source = self.check_source(draft.source_path)
        fingerprint = draft.fingerprint or fingerprint_file(source)

        with self._db.transaction() as conn:
            existing = self.find_by_fingerprint(fingerprint)
            if existing is not None:
                raise DuplicateDocumentError(existing, fingerprint)

            tag_ids = self._registry.resolve_all(
                draft.tags, create=self.auto_create_tags
            )
            stored_name = self.keep_copy(source)
            self._db.after_rollback(lambda: self.discard_copy(stored_name))

            now = utc_now()
            cursor = conn.execute("""
                INSERT INTO documents
                (title, source_path, fingerprint, stored_name, metadata_json,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                title,
                str(source),
                fingerprint,
                stored_name,
                json.dumps(draft.metadata, ensure_ascii=False),
                now,
                now,
            ))
            doc_id = cursor.lastrowid
            self.set_tags(conn, doc_id, tag_ids)

        logger.info("Inserted document %d %r from %s", doc_id, title, source)
        return doc_id

    def update_fields(self, document_id: int, patch: DocumentPatch) -> DocumentRecord:
        """
        Apply a sparse patch (title, metadata, tag set) to a document.

        Raises:
            NotFoundError: If the document does not exist
            ValidationError: If the patch is empty or malformed
        """
        return self._mutator.apply_document_patch(document_id, patch)

    def reimport(self, document_id: int, path: Path | str) -> DocumentRecord:
        """Replace a document's content explicitly, recomputing its fingerprint."""
        return self._mutator.apply_content(document_id, path)

    def remove(self, document_id: int) -> DocumentRecord:
        """
        Delete a document and all of its tag associations.

        The tags themselves are kept.

        Raises:
            NotFoundError: If the document does not exist
        """
        with self._db.transaction() as conn:
            record = self.require(document_id)
            conn.execute("DELETE FROM document_tags WHERE document_id = ?", (document_id,))
            conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            self._db.after_commit(lambda: self.discard_copy(record.stored_name))

        logger.info("Removed document %d %r", document_id, record.title)
        return record

    def batch_insert(self, drafts: Iterable[DocumentDraft]) -> list[BatchOutcome]:
        """
        Insert each draft independently.

        A failing draft (duplicate, bad path, ...) does not abort or roll
        back the others.

        Returns:
            One BatchOutcome per draft, in input order (1-based index)
        """
        outcomes = []
        for index, draft in enumerate(drafts, start=1):
            try:
                doc_id = self.insert(draft)
            except OdinSourceError as e:
                logger.warning("Batch entry %d rejected: %s", index, e)
                outcomes.append(BatchOutcome(index, "insert", error=e))
            else:
                outcomes.append(BatchOutcome(index, "insert", document_id=doc_id))
        return outcomes

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, document_id: int) -> Optional[DocumentRecord]:
        """
        Get a document by id.

        Returns:
            DocumentRecord if found, None otherwise
        """
        row = self._db.execute("""
            SELECT id, title, source_path, fingerprint, stored_name, metadata_json,
                   created_at, updated_at
            FROM documents
            WHERE id = ?
        """, (document_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_record(row, self._tags_for([document_id]).get(document_id, []))

    def require(self, document_id: int) -> DocumentRecord:
        record = self.get(document_id)
        if record is None:
            raise NotFoundError("document", document_id)
        return record

    def get_many(self, document_ids: Sequence[int]) -> list[DocumentRecord]:
        """Get several documents, in the given order. Missing ids are omitted."""
        if not document_ids:
            return []
        rows = {}
        for chunk in _chunks(list(dict.fromkeys(document_ids))):
            placeholders = ",".join("?" * len(chunk))
            cursor = self._db.execute(f"""
                SELECT id, title, source_path, fingerprint, stored_name, metadata_json,
                       created_at, updated_at
                FROM documents
                WHERE id IN ({placeholders})
            """, tuple(chunk))
            rows.update((row["id"], row) for row in cursor)
        tags = self._tags_for(list(rows))
        return [
            self._row_to_record(rows[doc_id], tags.get(doc_id, []))
            for doc_id in document_ids
            if doc_id in rows
        ]

    def list_documents(self) -> list[DocumentRecord]:
        """All documents, ordered by id."""
        rows = self._db.execute("""
            SELECT id, title, source_path, fingerprint, stored_name, metadata_json,
                   created_at, updated_at
            FROM documents
            ORDER BY id
        """).fetchall()
        tags = self._all_tags()
        return [self._row_to_record(row, tags.get(row["id"], [])) for row in rows]

    def list_ids(self) -> list[int]:
        cursor = self._db.execute("SELECT id FROM documents ORDER BY id")
        return [row["id"] for row in cursor]

    def find_by_fingerprint(self, fingerprint: str) -> Optional[int]:
        row = self._db.execute(
            "SELECT id FROM documents WHERE fingerprint = ?", (fingerprint,)
        ).fetchone()
        return row["id"] if row else None

    def find_by_title(self, title: str) -> list[DocumentRecord]:
        """Documents whose title equals `title`, ignoring case and outer whitespace."""
        wanted = title.strip().casefold()
        cursor = self._db.execute("SELECT id, title FROM documents ORDER BY id")
        ids = [row["id"] for row in cursor if row["title"].casefold() == wanted]
        return self.get_many(ids)

    def exists(self, document_id: int) -> bool:
        row = self._db.execute(
            "SELECT 1 FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return row is not None

    def count(self) -> int:
        return self._db.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

    def stored_path(self, record: DocumentRecord) -> Optional[Path]:
        """Path of the kept copy of a document, if there is one on disk."""
        if not record.stored_name or self._documents_dir is None:
            return None
        path = self._documents_dir / record.stored_name
        return path if path.is_file() else None

    # -------------------------------------------------------------------------
    # Internals shared with the RecordMutator
    # -------------------------------------------------------------------------

    def check_source(self, path: Path | str) -> Path:
        """Resolve a source path and check it is an importable file."""
        source = Path(path).expanduser()
        if not source.is_file():
            raise ValidationError(f"Not a file: {source}")
        if self._extensions and source.suffix.lower().lstrip(".") not in self._extensions:
            allowed = ", ".join(f".{e}" for e in self._extensions)
            raise ValidationError(f"Unsupported file type {source.name!r} (allowed: {allowed})")
        return source.resolve()

    def set_tags(self, conn, document_id: int, tag_ids: Sequence[int]) -> None:
        """Replace a document's associations. Must run inside a transaction."""
        for tag_id in tag_ids:
            if not self._registry.exists(tag_id):
                raise ValidationError(f"Tag {tag_id} does not exist")
        conn.execute("DELETE FROM document_tags WHERE document_id = ?", (document_id,))
        conn.executemany(
            "INSERT INTO document_tags (document_id, tag_id) VALUES (?, ?)",
            [(document_id, tag_id) for tag_id in dict.fromkeys(tag_ids)],
        )

    def keep_copy(self, source: Path) -> str:
        """Copy a file into the documents directory; returns its stored name ('' if disabled)."""
        if self._documents_dir is None:
            return ""
        stored_name = f"{uuid.uuid4()}{source.suffix.lower()}"
        target = self._documents_dir / stored_name
        tmp_name = None
        try:
            self._documents_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._documents_dir, prefix=".import-")
            with os.fdopen(fd, "wb") as out, open(source, "rb") as src:
                for chunk in iter(lambda: src.read(1024 * 1024), b""):
                    out.write(chunk)
            os.replace(tmp_name, target)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StoreIOError(f"Cannot store copy of {source}: {e}") from e
        logger.debug("Stored %s as %s", source, target)
        return stored_name

    def discard_copy(self, stored_name: str) -> None:
        if not stored_name or self._documents_dir is None:
            return
        path = self._documents_dir / stored_name
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not delete %s: %s", path, e)

    def _tags_for(self, document_ids: list[int]) -> dict[int, list[tuple[int, str]]]:
        """Map document id -> [(tag_id, name)] ordered by tag id."""
        result: dict[int, list[tuple[int, str]]] = {}
        for chunk in _chunks(document_ids):
            placeholders = ",".join("?" * len(chunk))
            cursor = self._db.execute(f"""
                SELECT dt.document_id AS document_id, t.id AS tag_id, t.name AS name
                FROM document_tags dt JOIN tags t ON t.id = dt.tag_id
                WHERE dt.document_id IN ({placeholders})
                ORDER BY dt.document_id, t.id
            """, tuple(chunk))
            for row in cursor:
                result.setdefault(row["document_id"], []).append((row["tag_id"], row["name"]))
        return result

    def _all_tags(self) -> dict[int, list[tuple[int, str]]]:
        """Like _tags_for(), for every document."""
        cursor = self._db.execute("""
            SELECT dt.document_id AS document_id, t.id AS tag_id, t.name AS name
            FROM document_tags dt JOIN tags t ON t.id = dt.tag_id
            ORDER BY dt.document_id, t.id
        """)
        result: dict[int, list[tuple[int, str]]] = {}
        for row in cursor:
            result.setdefault(row["document_id"], []).append((row["tag_id"], row["name"]))
        return result

    @staticmethod
    def _row_to_record(row, tags: list[tuple[int, str]]) -> DocumentRecord:
        return DocumentRecord(
            id=row["id"],
            title=row["title"],
            source_path=row["source_path"],
            fingerprint=row["fingerprint"],
            tag_ids=tuple(t[0] for t in tags),
            tags=tuple(t[1] for t in tags),
            metadata=json.loads(row["metadata_json"]),
            stored_name=row["stored_name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _chunks(ids: Sequence[int]) -> Iterator[Sequence[int]]:
    for start in range(0, len(ids), ID_BATCH_SIZE):
        yield ids[start:start + ID_BATCH_SIZE]
