"""
Tests for nested transactions and their commit/rollback callbacks.
"""

import pytest

from odinsource.types import DocumentDraft


class Boom(Exception):
    pass


class TestTransactionCallbacks:

    def test_after_commit_waits_for_outermost_commit(self, db):
        fired = []
        with db.transaction():
            with db.transaction():
                db.after_commit(lambda: fired.append("inner"))
            assert fired == []
        assert fired == ["inner"]

    def test_after_commit_outside_transaction_runs_now(self, db):
        fired = []
        db.after_commit(lambda: fired.append(1))
        assert fired == [1]

    def test_savepoint_rollback_drops_its_callbacks(self, db):
        fired = []
        with db.transaction():
            db.after_commit(lambda: fired.append("outer"))
            with pytest.raises(Boom):
                with db.transaction():
                    db.after_commit(lambda: fired.append("inner"))
                    db.after_rollback(lambda: fired.append("undo inner"))
                    raise Boom()
            assert fired == ["undo inner"]
        assert fired == ["undo inner", "outer"]

    def test_outer_rollback_fires_rollback_callbacks(self, db):
        fired = []
        with pytest.raises(Boom):
            with db.transaction():
                with db.transaction():
                    db.after_commit(lambda: fired.append("commit"))
                    db.after_rollback(lambda: fired.append("rollback"))
                raise Boom()
        assert fired == ["rollback"]

    def test_failing_callback_does_not_break_commit(self, db, registry):
        def fail():
            raise RuntimeError("cleanup failed")

        with db.transaction():
            tag_id = registry.resolve_or_create("kept")
            db.after_commit(fail)
        assert registry.exists(tag_id)


class TestKeptCopiesFollowCommit:

    def test_reimport_rolled_back_by_outer_transaction(self, store, make_pdf):
        """The old copy survives until the re-import is committed."""
        doc_id = store.insert(DocumentDraft(make_pdf("a.pdf", "v1")))
        before = store.get(doc_id)
        old_copy = store.stored_path(before)
        documents_dir = old_copy.parent

        with pytest.raises(Boom):
            with store.db.transaction():
                store.reimport(doc_id, make_pdf("a2.pdf", "v2"))
                assert old_copy.exists()
                raise Boom()

        assert store.get(doc_id) == before
        assert old_copy.exists()
        assert sorted(p.name for p in documents_dir.iterdir()) == [before.stored_name]

    def test_remove_rolled_back_keeps_copy(self, store, make_pdf):
        doc_id = store.insert(DocumentDraft(make_pdf("a.pdf")))
        kept = store.stored_path(store.get(doc_id))
        with pytest.raises(Boom):
            with store.db.transaction():
                store.remove(doc_id)
                raise Boom()
        assert store.exists(doc_id)
        assert kept.exists()

    def test_insert_rolled_back_removes_new_copy(self, store, make_pdf, tmp_path):
        with pytest.raises(Boom):
            with store.db.transaction():
                store.insert(DocumentDraft(make_pdf("a.pdf")))
                raise Boom()
        assert store.count() == 0
        assert list((tmp_path / "documents").iterdir()) == []
