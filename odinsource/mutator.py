"""
Sparse updates to existing documents and tags.

Used by both the single-record edit commands and batch import. A patch
names only the fields to change. Each patch is applied inside one
transaction: every invariant it touches (tag name uniqueness, fingerprint
uniqueness, referential integrity) is re-checked, and any failure rolls
the whole patch back so no field is partially applied.
"""

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from .errors import DuplicateDocumentError, ValidationError
from .fingerprint import fingerprint_file
from .types import (
    METADATA_FIELDS,
    DocumentRecord,
    Tag,
    coerce_metadata,
    split_tag_list,
    utc_now,
    validate_title,
)

if TYPE_CHECKING:
    from .document_store import DocumentStore
    from .tag_registry import TagRegistry

logger = logging.getLogger(__name__)


@dataclass
class DocumentPatch:
    """
    Fields to change on a document. None means "leave unchanged".

    Attributes:
        title: New title
        metadata: Keys to set; an empty-string value removes the key
        tags: Replace the whole tag set
        add_tags: Tag names to add
        remove_tags: Tag names to remove (names not on the document are ignored)
    """
    title: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    tags: Optional[list[str]] = None
    add_tags: Optional[list[str]] = None
    remove_tags: Optional[list[str]] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentPatch":
        """Build a patch from a mapping, e.g. a batch file entry.

        The metadata shortcuts (author, year, ...) are accepted at top level.
        Unknown keys are rejected.
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Patch must be a table of fields: {data!r}")
        known = {f.name for f in fields(cls)}
        unknown = sorted(k for k in data if k not in known and k not in METADATA_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown document field(s): {', '.join(unknown)}")

        metadata = data.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be a table of key/value pairs")
        shortcuts = {k: data[k] for k in METADATA_FIELDS if k in data}
        if shortcuts:
            metadata = {**(metadata or {}), **shortcuts}

        def tag_list(key):
            value = data.get(key)
            return None if value is None else split_tag_list(value)

        return cls(
            title=data.get("title"),
            metadata=metadata,
            tags=tag_list("tags"),
            add_tags=tag_list("add_tags"),
            remove_tags=tag_list("remove_tags"),
        )

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    @property
    def changes_tags(self) -> bool:
        return self.tags is not None or bool(self.add_tags) or bool(self.remove_tags)


@dataclass
class TagPatch:
    """Fields to change on a tag."""
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TagPatch":
        if not isinstance(data, dict):
            raise ValidationError(f"Patch must be a table of fields: {data!r}")
        unknown = sorted(k for k in data if k != "name")
        if unknown:
            raise ValidationError(f"Unknown tag field(s): {', '.join(unknown)}")
        return cls(name=data.get("name"))

    def is_empty(self) -> bool:
        return self.name is None


class RecordMutator:
    """Applies patches to documents and tags atomically."""

    def __init__(self, store: "DocumentStore", registry: "TagRegistry"):
        self._store = store
        self._registry = registry

    def apply_document_patch(self, document_id: int, patch: DocumentPatch) -> DocumentRecord:
        """
        Apply a document patch.

        Raises:
            ValidationError: Empty or malformed patch, unknown tags in strict mode
            NotFoundError: If the document does not exist
        """
        if patch.is_empty():
            raise ValidationError("Nothing to change: the patch is empty")

        db = self._store.db
        with db.transaction() as conn:
            record = self._store.require(document_id)

            title = record.title
            if patch.title is not None:
                title = validate_title(patch.title)

            metadata = dict(record.metadata)
            for key, value in coerce_metadata(patch.metadata).items():
                if value == "":
                    metadata.pop(key, None)
                else:
                    metadata[key] = value

            if patch.changes_tags:
                tag_ids = self._patched_tag_ids(record, patch)
                self._store.set_tags(conn, document_id, tag_ids)

            conn.execute("""
                UPDATE documents
                SET title = ?, metadata_json = ?, updated_at = ?
                WHERE id = ?
            """, (title, json.dumps(metadata, ensure_ascii=False), utc_now(), document_id))

        logger.info("Updated document %d", document_id)
        return self._store.require(document_id)

    def _patched_tag_ids(self, record: DocumentRecord, patch: DocumentPatch) -> list[int]:
        create = self._store.auto_create_tags
        if patch.tags is not None:
            tag_ids = self._registry.resolve_all(patch.tags, create=create)
        else:
            tag_ids = list(record.tag_ids)

        if patch.add_tags:
            for tag_id in self._registry.resolve_all(patch.add_tags, create=create):
                if tag_id not in tag_ids:
                    tag_ids.append(tag_id)

        for name in patch.remove_tags or ():
            tag_id = self._registry.lookup(name)
            if tag_id in tag_ids:
                tag_ids.remove(tag_id)
            else:
                logger.debug("Tag %r not on document %d, nothing to remove", name, record.id)
        return tag_ids

    def apply_tag_patch(self, tag_id: int, patch: TagPatch) -> Tag:
        """
        Apply a tag patch. Renaming onto another tag's name is rejected
        with DuplicateTagError and leaves the tag unchanged.
        """
        if patch.is_empty():
            raise ValidationError("Nothing to change: the patch is empty")
        with self._store.db.transaction():
            return self._registry.rename(tag_id, patch.name)

    def apply_content(self, document_id: int, path: Path | str) -> DocumentRecord:
        """
        Re-import a document's content from `path`.

        This is the only operation that changes a fingerprint.

        Raises:
            DuplicateDocumentError: Another document already has this content
            NotFoundError: If the document does not exist
        """
        source = self._store.check_source(path)
        fingerprint = fingerprint_file(source)

        db = self._store.db
        with db.transaction() as conn:
            record = self._store.require(document_id)
            existing = self._store.find_by_fingerprint(fingerprint)
            if existing is not None and existing != document_id:
                raise DuplicateDocumentError(existing, fingerprint)
            stored_name = self._store.keep_copy(source)
            db.after_rollback(lambda: self._store.discard_copy(stored_name))
            conn.execute("""
                UPDATE documents
                SET source_path = ?, fingerprint = ?, stored_name = ?, updated_at = ?
                WHERE id = ?
            """, (str(source), fingerprint, stored_name, utc_now(), document_id))
            # The old copy stays until the row naming the new one is committed
            db.after_commit(lambda: self._store.discard_copy(record.stored_name))

        logger.info("Re-imported document %d from %s", document_id, source)
        return self._store.require(document_id)
