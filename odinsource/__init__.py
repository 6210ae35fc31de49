"""
OdinSource

A personal catalog of reference documents (mostly PDFs), retrieved by tag.

Quick Start:
    from odinsource import Catalog

    cat = Catalog()  # uses ~/.odinsource/
    doc_id = cat.add_document("paper.pdf", tags=["climate", "models"])
    cat.query(["climate", "oceans"], mode="any")

CLI Usage:
    odinsource add-document paper.pdf -t climate -t models
    odinsource import-batch papers.toml
    odinsource query --tags climate,models --mode all
    odinsource open 3

Default Store:
    ~/.odinsource/ (created automatically).
    Override with ODINSOURCE_STORE_PATH or --store.
"""

from .api import Catalog
from .errors import (
    DuplicateDocumentError,
    DuplicateTagError,
    NotFoundError,
    OdinSourceError,
    ParseError,
    StoreIOError,
    TagInUseError,
    ValidationError,
)
from .mutator import DocumentPatch, TagPatch
from .types import BatchOutcome, DocumentDraft, DocumentRecord, QueryMode, Tag

__version__ = "0.1.0"
__all__ = [
    "Catalog",
    "DocumentDraft",
    "DocumentRecord",
    "DocumentPatch",
    "TagPatch",
    "Tag",
    "QueryMode",
    "BatchOutcome",
    "OdinSourceError",
    "DuplicateDocumentError",
    "DuplicateTagError",
    "TagInUseError",
    "NotFoundError",
    "ValidationError",
    "StoreIOError",
    "ParseError",
]
