"""
Tag registry: the canonical, de-duplicated tag vocabulary.

Tag names are normalized (trimmed, whitespace-collapsed, casefolded) before
every comparison, so "Climate" and " climate " are the same tag. Tags are
identified by id; renaming a tag keeps every association valid.
"""

import logging
from typing import Iterable, Optional

from .database import Database
from .errors import DuplicateTagError, NotFoundError, TagInUseError, ValidationError
from .types import Tag, normalize_tag_name, utc_now

logger = logging.getLogger(__name__)


def _row_to_tag(row) -> Tag:
    return Tag(id=row["id"], name=row["name"], created_at=row["created_at"])


class TagRegistry:
    """
    Owns the tags table.

    Tags are created implicitly when a document first references a name,
    or explicitly. A tag referenced by no document may persist; it is only
    removed by delete(), cascade_delete() or prune_unused().
    """

    def __init__(self, db: Database):
        self._db = db

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def lookup(self, name: str) -> Optional[int]:
        """Id of the tag whose normalized name matches, or None."""
        normalized = normalize_tag_name(name)
        row = self._db.execute(
            "SELECT id FROM tags WHERE name = ?", (normalized,)
        ).fetchone()
        return row["id"] if row else None

    def exists(self, tag_id: int) -> bool:
        row = self._db.execute("SELECT 1 FROM tags WHERE id = ?", (tag_id,)).fetchone()
        return row is not None

    def get(self, tag_id: int) -> Optional[Tag]:
        row = self._db.execute(
            "SELECT id, name, created_at FROM tags WHERE id = ?", (tag_id,)
        ).fetchone()
        return _row_to_tag(row) if row else None

    def require(self, tag_id: int) -> Tag:
        tag = self.get(tag_id)
        if tag is None:
            raise NotFoundError("tag", tag_id)
        return tag

    def list_tags(self) -> list[Tag]:
        """All tags, ordered by id."""
        cursor = self._db.execute("SELECT id, name, created_at FROM tags ORDER BY id")
        return [_row_to_tag(row) for row in cursor]

    def usage_counts(self) -> dict[int, int]:
        """Number of documents per tag id (0 for unused tags)."""
        cursor = self._db.execute("""
            SELECT t.id AS id, COUNT(dt.document_id) AS n
            FROM tags t LEFT JOIN document_tags dt ON dt.tag_id = t.id
            GROUP BY t.id
        """)
        return {row["id"]: row["n"] for row in cursor}

    def document_ids(self, tag_id: int) -> list[int]:
        """Ids of documents associated with a tag, ascending."""
        cursor = self._db.execute(
            "SELECT document_id FROM document_tags WHERE tag_id = ? ORDER BY document_id",
            (tag_id,),
        )
        return [row["document_id"] for row in cursor]

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def resolve_or_create(self, name: str) -> int:
        """
        Return the id of the tag named `name`, creating it if needed.

        Never produces two tags with equal normalized names.

        Raises:
            ValidationError: If the name is empty or malformed
        """
        normalized = normalize_tag_name(name)
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT id FROM tags WHERE name = ?", (normalized,)
            ).fetchone()
            if row is not None:
                return row["id"]
            cursor = conn.execute(
                "INSERT INTO tags (name, created_at) VALUES (?, ?)",
                (normalized, utc_now()),
            )
            tag_id = cursor.lastrowid
        logger.info("Created tag %d %r", tag_id, normalized)
        return tag_id

    def resolve_all(self, names: Iterable[str], *, create: bool = True) -> list[int]:
        """
        Resolve several tag names to ids, preserving order without repeats.

        Args:
            names: Tag names (un-normalized)
            create: Auto-create unknown names. If False, unknown names raise
                ValidationError and nothing is created.
        """
        normalized: list[str] = []
        for name in names:
            n = normalize_tag_name(name)
            if n not in normalized:
                normalized.append(n)

        if not create:
            unknown = [n for n in normalized if self.lookup(n) is None]
            if unknown:
                raise ValidationError(f"Unknown tag(s): {', '.join(unknown)}")
            return [self.lookup(n) for n in normalized]

        with self._db.transaction():
            return [self.resolve_or_create(n) for n in normalized]

    def rename(self, tag_id: int, new_name: str) -> Tag:
        """
        Rename a tag in place.

        Raises:
            NotFoundError: If the tag does not exist
            DuplicateTagError: If new_name normalizes to another tag's name
        """
        normalized = normalize_tag_name(new_name)
        with self._db.transaction() as conn:
            tag = self.require(tag_id)
            row = conn.execute(
                "SELECT id FROM tags WHERE name = ?", (normalized,)
            ).fetchone()
            if row is not None and row["id"] != tag_id:
                raise DuplicateTagError(normalized, row["id"])
            if tag.name == normalized:
                return tag
            conn.execute("UPDATE tags SET name = ? WHERE id = ?", (normalized, tag_id))
        logger.info("Renamed tag %d %r -> %r", tag_id, tag.name, normalized)
        return Tag(id=tag_id, name=normalized, created_at=tag.created_at)

    def delete(self, tag_id: int) -> Tag:
        """
        Delete an unused tag.

        Raises:
            NotFoundError: If the tag does not exist
            TagInUseError: If any document still references the tag
        """
        with self._db.transaction() as conn:
            tag = self.require(tag_id)
            in_use = self.document_ids(tag_id)
            if in_use:
                raise TagInUseError(tag_id, in_use)
            conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
        logger.info("Deleted tag %d %r", tag_id, tag.name)
        return tag

    def cascade_delete(self, tag_id: int) -> list[int]:
        """
        Detach a tag from every document, then delete it.

        Returns:
            Ids of the documents the tag was detached from
        """
        with self._db.transaction() as conn:
            tag = self.require(tag_id)
            detached = self.document_ids(tag_id)
            conn.execute("DELETE FROM document_tags WHERE tag_id = ?", (tag_id,))
            if detached:
                now = utc_now()
                conn.executemany(
                    "UPDATE documents SET updated_at = ? WHERE id = ?",
                    [(now, doc_id) for doc_id in detached],
                )
            conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
        logger.info(
            "Deleted tag %d %r, detached from %d document(s)",
            tag_id, tag.name, len(detached),
        )
        return detached

    def prune_unused(self) -> list[Tag]:
        """Delete every tag referenced by no document. Returns the removed tags."""
        with self._db.transaction() as conn:
            rows = conn.execute("""
                SELECT id, name, created_at FROM tags
                WHERE id NOT IN (SELECT DISTINCT tag_id FROM document_tags)
                ORDER BY id
            """).fetchall()
            pruned = [_row_to_tag(row) for row in rows]
            conn.executemany("DELETE FROM tags WHERE id = ?", [(t.id,) for t in pruned])
        if pruned:
            logger.info("Pruned %d unused tag(s)", len(pruned))
        return pruned
