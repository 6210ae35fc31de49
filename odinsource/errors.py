"""
Error types and error logging for odinsource.

Core operations raise a specific subclass of OdinSourceError so the CLI can
render an actionable message. The CLI logs full stack traces to a file for
debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence


class OdinSourceError(Exception):
    """Base class for all catalog errors."""


class DuplicateDocumentError(OdinSourceError):
    """A live document already carries the same content fingerprint."""

    def __init__(self, existing_id: int, fingerprint: str = ""):
        self.existing_id = existing_id
        self.fingerprint = fingerprint
        super().__init__(
            f"Duplicate document: content already stored as document {existing_id}"
        )


class DuplicateTagError(OdinSourceError):
    """A different tag already has the (normalized) name."""

    def __init__(self, name: str, existing_id: int):
        self.name = name
        self.existing_id = existing_id
        super().__init__(f"Duplicate tag: {name!r} already exists as tag {existing_id}")


class TagInUseError(OdinSourceError):
    """The tag is still associated with documents."""

    def __init__(self, tag_id: int, document_ids: Sequence[int]):
        self.tag_id = tag_id
        self.document_ids = list(document_ids)
        ids = ", ".join(str(d) for d in self.document_ids)
        super().__init__(
            f"Tag {tag_id} is used by {len(self.document_ids)} document(s): {ids}"
        )


class NotFoundError(OdinSourceError, LookupError):
    def __init__(self, kind: str, key):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind.capitalize()} not found: {key}")


class ValidationError(OdinSourceError, ValueError):
    """Malformed draft, patch or field value."""


class StoreIOError(OdinSourceError, OSError):
    """Reading document content or writing the store failed."""


class ParseError(OdinSourceError):
    """A batch file could not be parsed at all."""

    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = path
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)


def _error_log_path(store_path: Optional[Path] = None) -> Path:
    """Resolve error log path, respecting --store and ODINSOURCE_STORE_PATH."""
    store = store_path or os.environ.get("ODINSOURCE_STORE_PATH")
    if store:
        return Path(store) / "odinsource-errors.log"
    return Path.home() / ".odinsource" / "odinsource-errors.log"


def log_exception(
    exc: Exception, context: str = "", store_path: Optional[Path] = None
) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        store_path: Store directory; defaults to the environment or ~/.odinsource

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(store_path)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
