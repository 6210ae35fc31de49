"""
Core API for the document catalog.

Catalog wires a store directory to its configuration, database, tag
registry, document store and query engine:
- add_document(): fingerprint -> resolve tags -> store
- import_batch(): TOML file -> per-entry outcomes
- query(): tag query with ALL/ANY semantics
"""

import logging
from pathlib import Path
from typing import Any, Iterable, Optional

from .config import StoreConfig, get_default_store_path, load_or_create_config
from .database import Database
from .document_store import DocumentStore
from .errors import NotFoundError, ValidationError
from .importer import apply_batch, load_batch_file
from .logging_config import configure_ops_log, remove_ops_log
from .mutator import DocumentPatch, TagPatch
from .query import QueryEngine
from .tag_registry import TagRegistry
from .types import (
    METADATA_FIELDS,
    BatchOutcome,
    DocumentDraft,
    DocumentRecord,
    QueryMode,
    Tag,
)
from .viewer import open_in_viewer

logger = logging.getLogger(__name__)


class Catalog:
    """
    Tagged reference-document catalog.

    Example:
        cat = Catalog()
        doc_id = cat.add_document("paper.pdf", tags=["climate", "models"])
        ids = cat.query(["climate"], mode="all")
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
    ) -> None:
        """
        Open or create a catalog store.

        Args:
            store_path: Store directory. Defaults to ODINSOURCE_STORE_PATH
                or ~/.odinsource.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
        """
        if config is not None:
            self._config = config
            self._store_path = config.path
        else:
            if store_path is not None:
                self._store_path = Path(store_path).expanduser().resolve()
            else:
                self._store_path = get_default_store_path()
            self._config = load_or_create_config(self._store_path)

        self._db = Database(self._config.database_path)
        try:
            self._ops_log_handler = configure_ops_log(self._store_path)
        except OSError:
            self._db.close()
            raise

        self._registry = TagRegistry(self._db)
        self._documents = DocumentStore(
            self._db,
            self._registry,
            documents_dir=self._config.documents_dir if self._config.copy_files else None,
            extensions=self._config.extensions,
            auto_create_tags=self._config.auto_create_tags,
        )
        self._query = QueryEngine(self._documents)
        logger.debug("Opened catalog at %s", self._store_path)

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def tags(self) -> TagRegistry:
        return self._registry

    @property
    def documents(self) -> DocumentStore:
        return self._documents

    @property
    def queries(self) -> QueryEngine:
        return self._query

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def add_document(
        self,
        path: str | Path,
        *,
        title: Optional[str] = None,
        tags: Iterable[str] = (),
        metadata: Optional[dict[str, Any]] = None,
    ) -> int:
        """Insert one document. Returns its id."""
        draft = DocumentDraft(
            source_path=Path(path),
            title=title,
            tags=[tags] if isinstance(tags, str) else list(tags),
            metadata=metadata or {},
        )
        return self._documents.insert(draft)

    def import_batch(self, path: str | Path) -> list[BatchOutcome]:
        """
        Import a TOML batch file.

        Raises:
            ParseError: If the file as a whole cannot be parsed

        Returns:
            One outcome per [[documents]] entry, in file order
        """
        entries = load_batch_file(path)
        outcomes = apply_batch(self._documents, entries)
        failed = sum(1 for o in outcomes if not o.ok)
        logger.info(
            "Imported %s: %d ok, %d failed", path, len(outcomes) - failed, failed
        )
        return outcomes

    def get(self, document_id: int) -> Optional[DocumentRecord]:
        return self._documents.get(document_id)

    def resolve_document(self, ref: str | int) -> DocumentRecord:
        """
        Find a document by id or by exact title (ignoring case).

        Raises:
            NotFoundError: No document matches
            ValidationError: The title matches more than one document
        """
        if isinstance(ref, int) or str(ref).isdigit():
            return self._documents.require(int(ref))
        matches = self._documents.find_by_title(str(ref))
        if not matches:
            raise NotFoundError("document", ref)
        if len(matches) > 1:
            ids = ", ".join(str(d.id) for d in matches)
            raise ValidationError(f"Title {ref!r} matches several documents: {ids}")
        return matches[0]

    def list_documents(self) -> list[DocumentRecord]:
        return self._documents.list_documents()

    def edit_document(self, document_id: int, patch: DocumentPatch | dict) -> DocumentRecord:
        if isinstance(patch, dict):
            patch = DocumentPatch.from_dict(patch)
        return self._documents.update_fields(document_id, patch)

    def reimport(self, document_id: int, path: str | Path) -> DocumentRecord:
        return self._documents.reimport(document_id, path)

    def remove_document(self, document_id: int) -> DocumentRecord:
        return self._documents.remove(document_id)

    def document_path(self, record: DocumentRecord) -> Path:
        """The kept copy if present, else the original source path."""
        return self._documents.stored_path(record) or Path(record.source_path)

    def open_document(self, ref: str | int) -> bool:
        """
        Open a document in the configured viewer.

        Returns:
            True if the viewer started. A failure is logged, not raised.
        """
        record = self.resolve_document(ref)
        path = self.document_path(record)
        if not path.exists():
            logger.warning("File for document %d is missing: %s", record.id, path)
            return False
        return open_in_viewer(path, self._config.viewer_command)

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    def add_tag(self, name: str) -> Tag:
        return self._registry.require(self._registry.resolve_or_create(name))

    def add_tags(self, names: Iterable[str]) -> list[Tag]:
        """Create several tags at once; all are created or none is."""
        names = list(names)
        if not names:
            raise ValidationError("No tag names given")
        return [self._registry.require(i) for i in self._registry.resolve_all(names)]

    def tag_by_name(self, name: str) -> Tag:
        """
        Raises:
            NotFoundError: No tag has this (normalized) name
        """
        tag_id = self._registry.lookup(name)
        if tag_id is None:
            raise NotFoundError("tag", name)
        return self._registry.require(tag_id)

    def list_tags(self) -> list[tuple[Tag, int]]:
        """All tags with the number of documents using each."""
        counts = self._registry.usage_counts()
        return [(tag, counts.get(tag.id, 0)) for tag in self._registry.list_tags()]

    def edit_tag(self, tag_id: int, patch: TagPatch | dict) -> Tag:
        if isinstance(patch, dict):
            patch = TagPatch.from_dict(patch)
        return self._documents.mutator.apply_tag_patch(tag_id, patch)

    def delete_tag(self, tag_id: int, *, cascade: bool = False) -> list[int]:
        """
        Delete a tag.

        Without cascade, a tag still in use raises TagInUseError. With
        cascade, it is detached from its documents first.

        Returns:
            Ids of documents the tag was detached from
        """
        if cascade:
            return self._registry.cascade_delete(tag_id)
        self._registry.delete(tag_id)
        return []

    def prune_tags(self) -> list[Tag]:
        return self._registry.prune_unused()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def query(self, tags: Iterable[str], mode: QueryMode | str = QueryMode.ALL) -> list[int]:
        return self._query.by_tags(list(tags), mode)

    def query_documents(
        self, tags: Iterable[str], mode: QueryMode | str = QueryMode.ALL
    ) -> list[DocumentRecord]:
        return self._query.documents_by_tags(list(tags), mode)

    def unknown_tags(self, tags: Iterable[str]) -> list[str]:
        return self._query.unknown_tags(list(tags))

    def search_titles(self, text: str) -> list[DocumentRecord]:
        return self._documents.get_many(self._query.by_title(text))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database and detach the operations log."""
        self._db.close()
        if self._ops_log_handler is not None:
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def metadata_from_options(**fields: Any) -> dict[str, Any]:
    """Collect the non-empty metadata shortcut fields (author, year, ...)."""
    return {k: v for k, v in fields.items() if k in METADATA_FIELDS and v is not None}
