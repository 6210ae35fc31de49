"""
Batch import from a TOML file.

File format::

    [[documents]]
    title = "Climate Models"
    path = "papers/climate.pdf"      # relative to the batch file
    tags = ["climate", "models"]     # or "climate, models"
    author = "Doe"
    year = 2020

    [[documents]]
    id = 4                           # update document 4 instead of inserting
    add_tags = ["review"]

A file that is not TOML, or has no [[documents]] array, is a ParseError.
Otherwise every entry is validated and applied on its own; a bad entry
becomes a failed outcome and the rest of the file still imports.
"""

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .document_store import DocumentStore
from .errors import OdinSourceError, ParseError, StoreIOError, ValidationError
from .mutator import DocumentPatch
from .types import METADATA_FIELDS, BatchOutcome, DocumentDraft

logger = logging.getLogger(__name__)

_DRAFT_KEYS = {"title", "path", "tags", "metadata", *METADATA_FIELDS}
_PATCH_KEYS = {"title", "tags", "add_tags", "remove_tags", "metadata", *METADATA_FIELDS}


@dataclass
class BatchEntry:
    """One parsed [[documents]] entry: an insert draft, an update, or an error."""
    index: int
    draft: Optional[DocumentDraft] = None
    document_id: Optional[int] = None
    patch: Optional[DocumentPatch] = None
    content_path: Optional[Path] = None
    error: Optional[OdinSourceError] = None

    @property
    def action(self) -> str:
        return "update" if self.document_id is not None else "insert"


def load_batch_file(path: Path | str) -> list[BatchEntry]:
    """
    Read and parse a batch file.

    Raises:
        StoreIOError: If the file cannot be read
        ParseError: If the file is not TOML or has no [[documents]] array
    """
    path = Path(path).expanduser()
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise StoreIOError(f"Cannot read batch file {path}: {e.strerror or e}") from e
    try:
        data = tomllib.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        raise ParseError(f"not a valid TOML file: {e}", path) from e
    return parse_batch(data, base_dir=path.resolve().parent, source=path)


def parse_batch(
    data: dict[str, Any], base_dir: Path, source: Optional[Path] = None
) -> list[BatchEntry]:
    """Turn decoded TOML into entries. Relative paths resolve against base_dir."""
    documents = data.get("documents")
    if not isinstance(documents, list):
        raise ParseError("expected a [[documents]] array of tables", source)

    entries = []
    for index, item in enumerate(documents, start=1):
        try:
            entries.append(parse_entry(index, item, base_dir))
        except OdinSourceError as e:
            logger.debug("Batch entry %d is malformed: %s", index, e)
            entries.append(BatchEntry(index, error=e))
    return entries


def parse_entry(index: int, item: Any, base_dir: Path) -> BatchEntry:
    """
    Parse one entry.

    Raises:
        ValidationError: If the entry is malformed
    """
    if not isinstance(item, dict):
        raise ValidationError(f"Entry {index} is not a table")
    item = dict(item)

    content_path = None
    if "path" in item:
        value = item.pop("path")
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"Entry {index}: path must be a non-empty string")
        content_path = Path(value).expanduser()
        if not content_path.is_absolute():
            content_path = base_dir / content_path

    if "id" in item:
        document_id = item.pop("id")
        if isinstance(document_id, bool) or not isinstance(document_id, int):
            raise ValidationError(f"Entry {index}: id must be an integer")
        unknown = sorted(set(item) - _PATCH_KEYS)
        if unknown:
            raise ValidationError(f"Entry {index}: unknown field(s): {', '.join(unknown)}")
        patch = DocumentPatch.from_dict(item) if item else None
        if patch is None and content_path is None:
            raise ValidationError(f"Entry {index}: nothing to update for document {document_id}")
        return BatchEntry(index, document_id=document_id, patch=patch, content_path=content_path)

    unknown = sorted(set(item) - _DRAFT_KEYS)
    if unknown:
        raise ValidationError(f"Entry {index}: unknown field(s): {', '.join(unknown)}")
    if content_path is None:
        raise ValidationError(f"Entry {index}: path is required")

    metadata = item.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError(f"Entry {index}: metadata must be a table")
    metadata = {**metadata, **{k: item[k] for k in METADATA_FIELDS if k in item}}

    draft = DocumentDraft(
        source_path=content_path,
        title=item.get("title"),
        tags=item.get("tags", []),
        metadata=metadata,
    )
    return BatchEntry(index, draft=draft)


def apply_batch(store: DocumentStore, entries: list[BatchEntry]) -> list[BatchOutcome]:
    """
    Apply parsed entries in file order, one outcome per entry.

    Consecutive inserts go through DocumentStore.batch_insert; updates go
    through the Record Mutator, each in its own transaction.
    """
    outcomes: list[BatchOutcome] = []
    pending: list[BatchEntry] = []

    def flush():
        if not pending:
            return
        results = store.batch_insert([e.draft for e in pending])
        for entry, result in zip(pending, results):
            result.index = entry.index
            outcomes.append(result)
        pending.clear()

    for entry in entries:
        if entry.error is None and entry.draft is not None:
            pending.append(entry)
            continue
        flush()
        if entry.error is not None:
            outcomes.append(BatchOutcome(entry.index, entry.action, error=entry.error))
            continue
        outcomes.append(_apply_update(store, entry))
    flush()
    return outcomes


def _apply_update(store: DocumentStore, entry: BatchEntry) -> BatchOutcome:
    try:
        # One transaction per entry; the old kept copy goes only after commit
        with store.db.transaction():
            if entry.patch is not None:
                store.update_fields(entry.document_id, entry.patch)
            if entry.content_path is not None:
                store.reimport(entry.document_id, entry.content_path)
    except OdinSourceError as e:
        logger.warning("Batch entry %d rejected: %s", entry.index, e)
        return BatchOutcome(entry.index, "update", document_id=entry.document_id, error=e)
    return BatchOutcome(entry.index, "update", document_id=entry.document_id)
