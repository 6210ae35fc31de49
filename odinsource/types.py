"""
Data types for the document catalog.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional

from .errors import OdinSourceError, ValidationError


MAX_TAG_NAME_LENGTH = 128
MAX_TITLE_LENGTH = 1024

# Well-known bibliographic fields, stored in metadata
METADATA_FIELDS = ("author", "year", "publication", "volume", "doi")

_WHITESPACE_RE = re.compile(r"\s+")


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS.

    All timestamps in the catalog are UTC, stored without timezone suffix.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def normalize_tag_name(name: str) -> str:
    """Normalize a tag name: trim, collapse internal whitespace, casefold.

    Raises ValidationError for names that are empty after normalization,
    too long, or contain a comma (the tag list separator).
    """
    if not isinstance(name, str):
        raise ValidationError(f"Tag name must be a string: {name!r}")
    normalized = _WHITESPACE_RE.sub(" ", name.strip()).casefold()
    if not normalized:
        raise ValidationError("Tag name must not be empty")
    if len(normalized) > MAX_TAG_NAME_LENGTH:
        raise ValidationError(
            f"Tag name must be at most {MAX_TAG_NAME_LENGTH} characters: {name!r}"
        )
    if "," in normalized:
        raise ValidationError(f"Tag name must not contain a comma: {name!r}")
    return normalized


def split_tag_list(value: str | Iterable[str] | None) -> list[str]:
    """Split a comma-separated tag string (or list of such strings) into names.

    Empty items are dropped. Names are not normalized here.
    """
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    elif not isinstance(value, (list, tuple)):
        raise ValidationError(
            f"Tags must be a string or a list of strings: {value!r}"
        )
    names = []
    for item in value:
        if not isinstance(item, str):
            raise ValidationError(f"Tag name must be a string: {item!r}")
        names.extend(part for part in item.split(",") if part.strip())
    return names


def validate_title(title: str) -> str:
    if not isinstance(title, str):
        raise ValidationError(f"Title must be a string: {title!r}")
    title = title.strip()
    if not title:
        raise ValidationError("Title must not be empty")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    return title


def coerce_metadata(metadata: Optional[dict[str, Any]]) -> dict[str, str]:
    """Convert metadata values to strings, rejecting non-scalar values.

    Metadata is opaque to the catalog: the only requirement is that keys
    are non-empty strings and values are scalars.
    """
    if not metadata:
        return {}
    if not isinstance(metadata, dict):
        raise ValidationError(f"Metadata must be a table of key/value pairs: {metadata!r}")
    result = {}
    for key, value in metadata.items():
        if not isinstance(key, str) or not key.strip():
            raise ValidationError(f"Metadata key must be a non-empty string: {key!r}")
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise ValidationError(
                f"Metadata value for {key!r} must be a string or number: {value!r}"
            )
        result[key.strip()] = str(value)
    return result


class QueryMode(str, Enum):
    """How requested tags combine in a query."""
    ALL = "all"  # intersection
    ANY = "any"  # union


@dataclass(frozen=True)
class Tag:
    """A tag from the registry. Identity is the id, not the name."""
    id: int
    name: str
    created_at: str = ""

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "created_at": self.created_at}


@dataclass(frozen=True)
class DocumentRecord:
    """
    A stored document.

    This is a read-only snapshot; use the Document Store or Record Mutator
    to change it.

    Attributes:
        id: Stable surrogate key
        title: Display title
        source_path: Path of the file at import time
        fingerprint: SHA-256 digest of the file content
        tag_ids: Ids of associated tags, sorted
        tags: Names of associated tags, in tag_ids order
        metadata: Opaque free-form fields (author, year, ...)
        stored_name: File name of the copy kept in the store ('' if none)
    """
    id: int
    title: str
    source_path: str
    fingerprint: str
    tag_ids: tuple[int, ...] = ()
    tags: tuple[str, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)
    stored_name: str = ""
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "source_path": self.source_path,
            "fingerprint": self.fingerprint,
            "tag_ids": list(self.tag_ids),
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
            "stored_name": self.stored_name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __str__(self) -> str:
        lines = [
            f"{'id:':12} {self.id}",
            f"{'title:':12} {self.title}",
        ]
        for key in METADATA_FIELDS:
            if key in self.metadata:
                lines.append(f"{key + ':':12} {self.metadata[key]}")
        for key, value in sorted(self.metadata.items()):
            if key not in METADATA_FIELDS:
                lines.append(f"{key + ':':12} {value}")
        lines.append(f"{'tags:':12} {', '.join(self.tags)}")
        lines.append(f"{'source:':12} {self.source_path}")
        lines.append(f"{'sha256:':12} {self.fingerprint}")
        return "\n".join(lines)


@dataclass
class DocumentDraft:
    """
    A candidate document handed to DocumentStore.insert().

    Only source_path is required. The title defaults to the file stem.
    A precomputed fingerprint may be supplied; otherwise the file is read.
    """
    source_path: Path
    title: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    fingerprint: Optional[str] = None

    def __post_init__(self):
        self.source_path = Path(self.source_path)
        self.tags = split_tag_list(self.tags)
        self.metadata = coerce_metadata(self.metadata)

    @property
    def effective_title(self) -> str:
        if self.title is None or not str(self.title).strip():
            return validate_title(self.source_path.stem)
        return validate_title(self.title)


@dataclass
class BatchOutcome:
    """Result of one batch entry: a document id or the error that rejected it."""
    index: int
    action: str  # "insert" or "update"
    document_id: Optional[int] = None
    error: Optional[OdinSourceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "action": self.action,
            "document_id": self.document_id,
            "error": type(self.error).__name__ if self.error else None,
            "message": str(self.error) if self.error else None,
        }
