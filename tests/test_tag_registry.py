"""
Tests for the tag registry: normalization, uniqueness, rename and delete.
"""

import pytest

from odinsource.errors import (
    DuplicateTagError,
    NotFoundError,
    TagInUseError,
    ValidationError,
)
from odinsource.types import DocumentDraft, normalize_tag_name, split_tag_list


# -----------------------------------------------------------------------------
# Normalization
# -----------------------------------------------------------------------------

class TestNormalizeTagName:

    @pytest.mark.parametrize("raw", ["Climate", " climate ", "CLIMATE", "\tclimate\n"])
    def test_case_and_outer_whitespace(self, raw):
        assert normalize_tag_name(raw) == "climate"

    def test_inner_whitespace_collapsed(self):
        assert normalize_tag_name("  Ocean   Models ") == "ocean models"

    @pytest.mark.parametrize("raw", ["", "   ", "a,b", "x" * 129])
    def test_invalid_names_rejected(self, raw):
        with pytest.raises(ValidationError):
            normalize_tag_name(raw)


class TestSplitTagList:

    def test_string_and_list(self):
        assert split_tag_list("a, b,,c") == ["a", " b", "c"]
        assert split_tag_list(["a,b", "c"]) == ["a", "b", "c"]
        assert split_tag_list(None) == []

    @pytest.mark.parametrize("value", [5, 1.5, True, {"a": 1}, {"a", "b"}])
    def test_other_types_rejected(self, value):
        with pytest.raises(ValidationError):
            split_tag_list(value)


# -----------------------------------------------------------------------------
# resolve_or_create / lookup
# -----------------------------------------------------------------------------

class TestResolveOrCreate:

    def test_variants_resolve_to_same_id(self, registry):
        """'Climate' and ' climate ' are one tag."""
        first = registry.resolve_or_create("Climate")
        assert registry.resolve_or_create(" climate ") == first
        assert registry.resolve_or_create("CLIMATE") == first
        assert len(registry.list_tags()) == 1

    def test_creates_with_normalized_name(self, registry):
        tag_id = registry.resolve_or_create("  Deep   Learning ")
        assert registry.get(tag_id).name == "deep learning"

    def test_lookup(self, registry):
        tag_id = registry.resolve_or_create("physics")
        assert registry.lookup("Physics") == tag_id
        assert registry.lookup("chemistry") is None

    def test_exists(self, registry):
        tag_id = registry.resolve_or_create("physics")
        assert registry.exists(tag_id)
        assert not registry.exists(tag_id + 100)

    def test_resolve_all_dedupes_in_order(self, registry):
        ids = registry.resolve_all(["b", "A", " b ", "a", "c"])
        names = [registry.get(i).name for i in ids]
        assert names == ["b", "a", "c"]

    def test_resolve_all_strict_rejects_unknown(self, registry):
        """Strict mode creates nothing when any name is unknown."""
        registry.resolve_or_create("known")
        with pytest.raises(ValidationError, match="unknown1"):
            registry.resolve_all(["known", "unknown1", "unknown2"], create=False)
        assert [t.name for t in registry.list_tags()] == ["known"]

    def test_ids_not_reused_after_delete(self, registry):
        first = registry.resolve_or_create("temp")
        registry.delete(first)
        second = registry.resolve_or_create("temp")
        assert second != first


# -----------------------------------------------------------------------------
# rename
# -----------------------------------------------------------------------------

class TestRename:

    def test_rename_in_place(self, registry):
        tag_id = registry.resolve_or_create("climat")
        tag = registry.rename(tag_id, " Climate ")
        assert tag.id == tag_id
        assert tag.name == "climate"
        assert registry.lookup("climate") == tag_id
        assert registry.lookup("climat") is None

    def test_rename_to_own_name_variant(self, registry):
        tag_id = registry.resolve_or_create("climate")
        assert registry.rename(tag_id, "CLIMATE").name == "climate"

    def test_rename_collision_rejected(self, registry):
        a = registry.resolve_or_create("a")
        b = registry.resolve_or_create("b")
        with pytest.raises(DuplicateTagError) as exc_info:
            registry.rename(b, " A ")
        assert exc_info.value.existing_id == a
        assert registry.get(b).name == "b"

    def test_rename_unknown_id(self, registry):
        with pytest.raises(NotFoundError):
            registry.rename(42, "x")

    def test_rename_keeps_associations(self, store, registry, make_pdf):
        doc_id = store.insert(DocumentDraft(make_pdf("a.pdf"), tags=["old"]))
        tag_id = registry.lookup("old")
        registry.rename(tag_id, "new")
        assert store.get(doc_id).tags == ("new",)
        assert store.get(doc_id).tag_ids == (tag_id,)


# -----------------------------------------------------------------------------
# delete / cascade / prune
# -----------------------------------------------------------------------------

class TestDelete:

    def test_delete_unused(self, registry):
        tag_id = registry.resolve_or_create("unused")
        registry.delete(tag_id)
        assert not registry.exists(tag_id)

    def test_delete_in_use_rejected(self, store, registry, make_pdf):
        doc_id = store.insert(DocumentDraft(make_pdf("a.pdf"), tags=["busy"]))
        tag_id = registry.lookup("busy")
        with pytest.raises(TagInUseError) as exc_info:
            registry.delete(tag_id)
        assert exc_info.value.document_ids == [doc_id]
        assert registry.exists(tag_id)
        assert store.get(doc_id).tags == ("busy",)

    def test_delete_after_detach_succeeds(self, store, registry, make_pdf):
        from odinsource.mutator import DocumentPatch

        doc_id = store.insert(DocumentDraft(make_pdf("a.pdf"), tags=["busy", "keep"]))
        tag_id = registry.lookup("busy")
        store.update_fields(doc_id, DocumentPatch(remove_tags=["busy"]))
        registry.delete(tag_id)
        assert not registry.exists(tag_id)
        assert store.get(doc_id).tags == ("keep",)

    def test_delete_unknown(self, registry):
        with pytest.raises(NotFoundError):
            registry.delete(7)

    def test_cascade_delete_detaches(self, store, registry, make_pdf):
        d1 = store.insert(DocumentDraft(make_pdf("a.pdf"), tags=["x", "y"]))
        d2 = store.insert(DocumentDraft(make_pdf("b.pdf"), tags=["x"]))
        tag_id = registry.lookup("x")
        assert registry.cascade_delete(tag_id) == [d1, d2]
        assert not registry.exists(tag_id)
        assert store.get(d1).tags == ("y",)
        assert store.get(d2).tags == ()

    def test_unused_tags_persist(self, store, registry, make_pdf):
        """A tag with no documents stays in the vocabulary."""
        doc_id = store.insert(DocumentDraft(make_pdf("a.pdf"), tags=["solo"]))
        store.remove(doc_id)
        assert registry.lookup("solo") is not None

    def test_prune_unused(self, store, registry, make_pdf):
        store.insert(DocumentDraft(make_pdf("a.pdf"), tags=["used"]))
        registry.resolve_or_create("orphan")
        pruned = registry.prune_unused()
        assert [t.name for t in pruned] == ["orphan"]
        assert [t.name for t in registry.list_tags()] == ["used"]

    def test_usage_counts(self, store, registry, make_pdf):
        store.insert(DocumentDraft(make_pdf("a.pdf"), tags=["x", "y"]))
        store.insert(DocumentDraft(make_pdf("b.pdf"), tags=["x"]))
        registry.resolve_or_create("z")
        counts = {registry.get(i).name: n for i, n in registry.usage_counts().items()}
        assert counts == {"x": 2, "y": 1, "z": 0}
