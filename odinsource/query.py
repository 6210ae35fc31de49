"""
Tag queries over the document store.

Results are document ids in ascending order, so output is reproducible
for a fixed store state.
"""

import logging
from typing import Iterable

from .document_store import DocumentStore
from .errors import ValidationError
from .types import DocumentRecord, QueryMode, normalize_tag_name

logger = logging.getLogger(__name__)


class QueryEngine:
    """Resolves tag and title queries against a DocumentStore."""

    def __init__(self, store: DocumentStore):
        self._store = store
        self._db = store.db
        self._registry = store.registry

    def _normalize(self, tag_names: Iterable[str]) -> tuple[list[str], list[str]]:
        """Split requested names into normalized names and names no tag can have."""
        names: list[str] = []
        invalid: list[str] = []
        for name in tag_names:
            try:
                n = normalize_tag_name(name)
            except ValidationError:
                raw = name if isinstance(name, str) else repr(name)
                if raw not in invalid:
                    invalid.append(raw)
                continue
            if n not in names:
                names.append(n)
        return names, invalid

    def unknown_tags(self, tag_names: Iterable[str]) -> list[str]:
        """Requested names that match no tag, normalized where possible."""
        names, invalid = self._normalize(tag_names)
        return [n for n in names if self._registry.lookup(n) is None] + invalid

    def by_tags(self, tag_names: Iterable[str], mode: QueryMode | str = QueryMode.ALL) -> list[int]:
        """
        Find documents by tag.

        Args:
            tag_names: Requested tag names (normalized before matching)
            mode: ALL - documents carrying every requested tag (intersection);
                ANY - documents carrying at least one (union)

        Unknown names match nothing and are dropped from the request, so a
        typo in one tag does not hide the documents matching the others.
        If no requested name is known, the result is empty.

        Returns:
            Matching document ids, ascending
        """
        try:
            mode = QueryMode(str(mode.value if isinstance(mode, QueryMode) else mode).lower())
        except ValueError:
            raise ValidationError(f"Unknown query mode {mode!r} (use 'all' or 'any')") from None

        names, invalid = self._normalize(tag_names)
        for name in invalid:
            logger.warning("Invalid tag name %r ignored in query", name)

        tag_ids = []
        for name in names:
            tag_id = self._registry.lookup(name)
            if tag_id is None:
                logger.warning("Unknown tag %r ignored in query", name)
            else:
                tag_ids.append(tag_id)
        if not tag_ids:
            return []

        placeholders = ",".join("?" * len(tag_ids))
        if mode is QueryMode.ALL:
            cursor = self._db.execute(f"""
                SELECT document_id FROM document_tags
                WHERE tag_id IN ({placeholders})
                GROUP BY document_id
                HAVING COUNT(DISTINCT tag_id) = ?
                ORDER BY document_id
            """, (*tag_ids, len(tag_ids)))
        else:
            cursor = self._db.execute(f"""
                SELECT DISTINCT document_id FROM document_tags
                WHERE tag_id IN ({placeholders})
                ORDER BY document_id
            """, tuple(tag_ids))
        return [row["document_id"] for row in cursor]

    def documents_by_tags(
        self, tag_names: Iterable[str], mode: QueryMode | str = QueryMode.ALL
    ) -> list[DocumentRecord]:
        """Like by_tags(), returning full records."""
        return self._store.get_many(self.by_tags(tag_names, mode))

    def by_title(self, text: str) -> list[int]:
        """Documents whose title contains `text`, ignoring case. Ids ascending."""
        needle = text.strip().casefold()
        if not needle:
            return []
        cursor = self._db.execute("SELECT id, title FROM documents ORDER BY id")
        return [row["id"] for row in cursor if needle in row["title"].casefold()]
