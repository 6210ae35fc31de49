"""
Tests for TOML batch import.
"""

import pytest

from odinsource.errors import (
    DuplicateDocumentError,
    NotFoundError,
    ParseError,
    StoreIOError,
    ValidationError,
)
from odinsource.importer import apply_batch, load_batch_file, parse_batch
from odinsource.types import DocumentDraft


def write_batch(tmp_path, text, name="batch.toml"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------

class TestParse:

    def test_not_toml(self, tmp_path):
        path = write_batch(tmp_path, "[[documents]\ntitle = ")
        with pytest.raises(ParseError) as exc_info:
            load_batch_file(path)
        assert exc_info.value.path == path

    def test_missing_documents_array(self, tmp_path):
        path = write_batch(tmp_path, 'title = "loose"\n')
        with pytest.raises(ParseError, match="documents"):
            load_batch_file(path)

    def test_documents_not_array_of_tables(self, tmp_path):
        path = write_batch(tmp_path, 'documents = "nope"\n')
        with pytest.raises(ParseError):
            load_batch_file(path)

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(StoreIOError):
            load_batch_file(tmp_path / "missing.toml")

    def test_relative_path_resolves_against_batch_dir(self, tmp_path):
        path = write_batch(tmp_path, '[[documents]]\npath = "papers/a.pdf"\n')
        [entry] = load_batch_file(path)
        assert entry.draft.source_path == tmp_path / "papers" / "a.pdf"

    def test_fields_and_shortcuts(self, tmp_path):
        entries = parse_batch({"documents": [{
            "title": "Climate Models",
            "path": "/data/climate.pdf",
            "tags": "climate, models",
            "author": "Doe",
            "year": 2020,
            "metadata": {"isbn": "978"},
        }]}, base_dir=tmp_path)
        draft = entries[0].draft
        assert draft.title == "Climate Models"
        assert [t.strip() for t in draft.tags] == ["climate", "models"]
        assert draft.metadata == {"isbn": "978", "author": "Doe", "year": "2020"}

    def test_bad_entries_become_errors(self, tmp_path):
        entries = parse_batch({"documents": [
            {"title": "no path"},
            {"path": "a.pdf", "colour": "red"},
            {"path": "a.pdf", "tags": [1, 2]},
            {"id": "3", "title": "x"},
            {"id": 3},
        ]}, base_dir=tmp_path)
        assert [e.index for e in entries] == [1, 2, 3, 4, 5]
        assert all(isinstance(e.error, ValidationError) for e in entries)

    def test_id_entry_is_update(self, tmp_path):
        [entry] = parse_batch(
            {"documents": [{"id": 7, "add_tags": ["review"], "path": "v2.pdf"}]},
            base_dir=tmp_path,
        )
        assert entry.action == "update"
        assert entry.document_id == 7
        assert entry.patch.add_tags == ["review"]
        assert entry.content_path == tmp_path / "v2.pdf"


# -----------------------------------------------------------------------------
# Applying
# -----------------------------------------------------------------------------

class TestApply:

    def test_three_entries_with_duplicate_second(self, store, make_pdf, tmp_path):
        """One rejected entry does not abort the rest of the file."""
        make_pdf("a.pdf", "alpha")
        make_pdf("b.pdf", "beta")
        make_pdf("dup.pdf", "alpha")
        path = write_batch(tmp_path / "src", """
[[documents]]
path = "a.pdf"
tags = ["x"]

[[documents]]
path = "dup.pdf"
tags = ["should-not-exist"]

[[documents]]
path = "b.pdf"
title = "Beta"
""")
        outcomes = apply_batch(store, load_batch_file(path))

        assert [o.index for o in outcomes] == [1, 2, 3]
        assert outcomes[0].ok and outcomes[2].ok
        assert isinstance(outcomes[1].error, DuplicateDocumentError)
        assert outcomes[1].error.existing_id == outcomes[0].document_id
        assert store.count() == 2
        assert store.get(outcomes[2].document_id).title == "Beta"
        assert store.registry.lookup("should-not-exist") is None

    def test_parse_errors_keep_file_order(self, store, make_pdf, tmp_path):
        make_pdf("a.pdf")
        make_pdf("b.pdf")
        path = write_batch(tmp_path / "src", """
[[documents]]
path = "a.pdf"

[[documents]]
title = "missing path"

[[documents]]
path = "b.pdf"
""")
        outcomes = apply_batch(store, load_batch_file(path))
        assert [(o.index, o.ok) for o in outcomes] == [(1, True), (2, False), (3, True)]

    def test_update_entries(self, store, make_pdf, tmp_path):
        doc_id = store.insert(DocumentDraft(make_pdf("a.pdf"), title="Old", tags=["x"]))
        path = write_batch(tmp_path, f"""
[[documents]]
id = {doc_id}
title = "New"
add_tags = ["y"]
year = 1999

[[documents]]
id = 999
title = "Nobody"
""")
        outcomes = apply_batch(store, load_batch_file(path))

        assert outcomes[0].ok and outcomes[0].action == "update"
        doc = store.get(doc_id)
        assert doc.title == "New"
        assert doc.tags == ("x", "y")
        assert doc.metadata["year"] == "1999"
        assert isinstance(outcomes[1].error, NotFoundError)

    def test_update_with_content(self, store, make_pdf, tmp_path):
        doc_id = store.insert(DocumentDraft(make_pdf("a.pdf", "v1")))
        before = store.get(doc_id)
        make_pdf("a2.pdf", "v2")
        path = write_batch(tmp_path / "src", f"""
[[documents]]
id = {doc_id}
path = "a2.pdf"
title = "Second edition"
""")
        [outcome] = apply_batch(store, load_batch_file(path))
        assert outcome.ok
        after = store.get(doc_id)
        assert after.fingerprint != before.fingerprint
        assert after.title == "Second edition"

    def test_failed_update_is_atomic(self, store, make_pdf, tmp_path):
        """A rejected re-import also undoes the entry's field changes."""
        doc_id = store.insert(DocumentDraft(make_pdf("a.pdf", "v1"), title="Keep"))
        store.insert(DocumentDraft(make_pdf("b.pdf", "taken")))
        path = write_batch(tmp_path / "src", f"""
[[documents]]
id = {doc_id}
title = "Changed"
path = "b.pdf"
""")
        [outcome] = apply_batch(store, load_batch_file(path))
        assert isinstance(outcome.error, DuplicateDocumentError)
        assert store.get(doc_id).title == "Keep"

    def test_empty_documents_array(self, store, tmp_path):
        path = write_batch(tmp_path, "documents = []\n")
        assert apply_batch(store, load_batch_file(path)) == []


# -----------------------------------------------------------------------------
# Wrongly typed fields
# -----------------------------------------------------------------------------

class TestMistypedFields:

    def test_scalar_tags_fail_only_their_entry(self, store, make_pdf, tmp_path):
        make_pdf("a.pdf")
        make_pdf("b.pdf")
        path = write_batch(tmp_path / "src", """
[[documents]]
path = "a.pdf"
tags = 5

[[documents]]
path = "b.pdf"
""")
        entries = load_batch_file(path)
        assert isinstance(entries[0].error, ValidationError)
        outcomes = apply_batch(store, entries)
        assert [(o.index, o.ok) for o in outcomes] == [(1, False), (2, True)]
        assert store.count() == 1

    def test_scalar_add_tags_in_update(self, store, make_pdf, tmp_path):
        doc_id = store.insert(DocumentDraft(make_pdf("a.pdf"), tags=["x"]))
        make_pdf("b.pdf")
        path = write_batch(tmp_path / "src", f"""
[[documents]]
id = {doc_id}
add_tags = 5

[[documents]]
path = "b.pdf"
""")
        outcomes = apply_batch(store, load_batch_file(path))
        assert isinstance(outcomes[0].error, ValidationError)
        assert outcomes[1].ok
        assert store.get(doc_id).tags == ("x",)

    def test_table_of_tags_rejected(self, tmp_path):
        entries = parse_batch(
            {"documents": [{"path": "a.pdf", "tags": {"x": 1}}]}, base_dir=tmp_path
        )
        assert isinstance(entries[0].error, ValidationError)
