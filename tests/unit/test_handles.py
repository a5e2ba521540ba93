"""Tests for handle ownership, views and upcasting."""

import gc

import pytest

from search_bridge import (
    Database,
    Document,
    NumberRangeProcessor,
    Operator,
    Query,
    SharedCell,
    StringRangeProcessor,
    WritableDatabase,
)
from search_bridge.errors import BorrowError, InvalidHandleError, Utf8Error
from search_bridge.handles import Handle
from search_bridge.native import lib


@pytest.mark.unit
class TestOwnership:
    """Owned handles release their engine object exactly once."""

    def test_new_handle_is_owned_and_alive(self):
        doc = Document()
        assert doc.alive
        assert not doc.is_view
        assert "owned" in repr(doc)

    def test_drop_releases_engine_object(self):
        gc.collect()
        before = lib.live_count("Document")
        doc = Document()
        assert lib.live_count("Document") == before + 1
        doc.drop()
        assert lib.live_count("Document") == before
        assert not doc.alive
        assert "dropped" in repr(doc)

    def test_drop_twice_is_harmless(self):
        doc = Document()
        doc.drop()
        doc.drop()
        assert not doc.alive

    def test_use_after_drop_raises(self):
        doc = Document()
        doc.drop()
        with pytest.raises(InvalidHandleError):
            _ = doc.data
        with pytest.raises(InvalidHandleError):
            doc.add_term("x")

    def test_garbage_collection_releases(self):
        gc.collect()
        before = lib.live_count("Query")
        query = Query.term("gone")
        assert lib.live_count("Query") == before + 1
        del query
        gc.collect()
        assert lib.live_count("Query") == before

    def test_document_copy_is_a_second_owner(self):
        doc = Document()
        doc.set_data("shared")
        other = doc.copy()
        doc.drop()
        assert other.alive
        other.set_data("changed")
        assert other.data == b"changed"

    def test_document_description_is_validated_text(self, monkeypatch):
        doc = Document()
        assert doc.description().startswith("Document(")
        monkeypatch.setattr(lib, "document_get_description", lambda ptr: b"Document(\xff)")
        with pytest.raises(Utf8Error) as excinfo:
            doc.description()
        assert excinfo.value.valid_up_to == 9


@pytest.mark.unit
class TestUpcast:
    """Views of an engine object as its engine base type."""

    def test_writable_database_upcasts_to_database(self, memory_db):
        view = memory_db.upcast()
        assert isinstance(view, Database)
        assert view.is_view
        assert view.doc_count == 0

    def test_read_only_view_refuses_mutation(self, memory_db):
        view = memory_db.upcast()
        with pytest.raises(InvalidHandleError, match="read-only"):
            view.close()

    def test_mutable_view_allows_mutation(self, memory_db):
        view = memory_db.upcast_mut()
        view.close()
        assert memory_db.alive

    def test_view_cannot_be_dropped(self, memory_db):
        view = memory_db.upcast()
        with pytest.raises(InvalidHandleError, match="views"):
            view.drop()

    def test_view_dies_with_owner(self):
        db = WritableDatabase()
        view = db.upcast()
        db.drop()
        assert not view.alive
        with pytest.raises(InvalidHandleError):
            _ = view.doc_count

    def test_view_keeps_owner_behaviour(self):
        processor = NumberRangeProcessor(0)
        view = processor.upcast()
        assert type(view) is StringRangeProcessor
        assert view("1", "5").operator is Operator.VALUE_RANGE
        # Still the numeric processor underneath: non-numbers are not recognised.
        assert view("abc", "xyz").is_invalid

    def test_upcast_of_a_view_of_a_root_type(self):
        view = NumberRangeProcessor(0).upcast()
        with pytest.raises(TypeError, match="no engine base type"):
            view.upcast()

    def test_mutable_upcast_of_read_only_view(self):
        view = NumberRangeProcessor(0).upcast()
        with pytest.raises(InvalidHandleError):
            view.upcast_mut()

    def test_types_without_a_base(self):
        with pytest.raises(TypeError):
            Document().upcast()

    def test_wrong_declaration_fails_at_class_definition(self):
        with pytest.raises(TypeError, match="not a primary base"):

            class Bogus(Handle, native_type="Document", upcasts_to=Query):
                pass


@pytest.mark.unit
class TestSharedCell:
    """Borrow rules for shared callback state."""

    def test_many_shared_borrows(self):
        cell = SharedCell([1])
        with cell.borrow() as a, cell.borrow() as b:
            assert a is b
            assert cell.borrowed
        assert not cell.borrowed

    def test_exclusive_borrow_conflicts(self):
        cell = SharedCell({})
        with cell.borrow():
            with pytest.raises(BorrowError):
                with cell.borrow_mut():
                    pass
        with cell.borrow_mut():
            with pytest.raises(BorrowError):
                with cell.borrow():
                    pass

    def test_replace_returns_previous(self):
        cell = SharedCell("old")
        assert cell.replace("new") == "old"
        with cell.borrow() as value:
            assert value == "new"
