"""Read-only and writable databases."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from enum import IntEnum, IntFlag
import logging
import os
from typing import Any

from search_bridge.config import get_settings
from search_bridge.document import Document
from search_bridge.errors import translate_errors
from search_bridge.handles import Handle
from search_bridge.iterators import TermIter
from search_bridge.native import lib
from search_bridge.observability.metrics import SEARCH_LATENCY, track_latency
from search_bridge.observability.tracing import create_span
from search_bridge.strings import StrOrBytes, decode_text, from_native, to_native, to_native_path
from search_bridge.types import DocId, as_docid


logger = logging.getLogger(__name__)

PathLike = str | bytes | os.PathLike


class DbAction(IntEnum):
    """What to do when the database does, or does not, already exist."""

    CREATE_OR_OPEN = 0x00
    CREATE_OR_OVERWRITE = 0x01
    CREATE = 0x02
    OPEN = 0x03


class DbBackend(IntEnum):
    AUTO = 0x000
    SQLITE = 0x100
    INMEMORY = 0x400


class DbFlags(IntFlag):
    NONE = 0
    NO_SYNC = 0x04
    FULL_SYNC = 0x08
    DANGEROUS = 0x10
    NO_TERMLIST = 0x20
    RETRY_LOCK = 0x40


def _configure_engine() -> None:
    settings = get_settings()
    lib.engine_configure(
        cache_size_kb=settings.sqlite_cache_size_kb,
        mmap_size_bytes=settings.sqlite_mmap_size_bytes,
        lock_retry_timeout_ms=settings.lock_retry_timeout_ms,
    )


def _default_backend() -> DbBackend:
    return DbBackend[get_settings().default_backend.upper()]


class _DatabaseReader(Handle):
    """Read operations shared by both database kinds."""

    @property
    def doc_count(self) -> int:
        return self._call(lib.database_get_doccount)

    @property
    def last_docid(self) -> DocId | None:
        return DocId.new(self._call(lib.database_get_lastdocid))

    @property
    def average_length(self) -> float:
        return self._call(lib.database_get_avlength)

    def doc_length(self, docid: DocId | int) -> int:
        return self._call(lib.database_get_doclength, as_docid(docid))

    def term_exists(self, term: StrOrBytes) -> bool:
        return self._call(lib.database_term_exists, to_native(term))

    def term_freq(self, term: StrOrBytes) -> int:
        return self._call(lib.database_get_termfreq, to_native(term))

    def document(self, docid: DocId | int) -> Document:
        """A snapshot of the stored document. Raises ``DocNotFoundError``."""
        return Document._adopt(self._call(lib.database_get_document, as_docid(docid)))

    def metadata(self, key: StrOrBytes) -> bytes:
        """The value stored under ``key``; empty when there is none."""
        return from_native(self._call(lib.database_get_metadata, to_native(key)))

    def metadata_keys(self, prefix: StrOrBytes = "") -> TermIter:
        return TermIter.from_range(self._call(lib.database_metadata_keys_range, to_native(prefix)), keepalive=self)

    def all_terms(self, prefix: StrOrBytes = "") -> TermIter:
        """Every indexed term starting with ``prefix``, with its frequency."""
        return TermIter.from_range(self._call(lib.database_allterms_range, to_native(prefix)), keepalive=self)

    def synonyms(self, term: StrOrBytes) -> TermIter:
        return TermIter.from_range(self._call(lib.database_synonyms_range, to_native(term)), keepalive=self)

    def spelling_suggestion(self, word: StrOrBytes, max_edit_distance: int = 2) -> str | None:
        found = self._call(lib.database_get_spelling_suggestion, to_native(word), max_edit_distance)
        return decode_text(found) if found else None

    def reopen(self) -> bool:
        """Move to the latest committed revision. ``True`` if anything could have changed."""
        return self._call(lib.database_reopen, mutating=True)

    def close(self) -> None:
        """Close the underlying storage; later reads raise ``DatabaseClosedError``."""
        self._call(lib.database_close, mutating=True)

    def description(self) -> str:
        return decode_text(self._call(lib.database_get_description))

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self.alive and not self.is_view:
            self.close()
            self.drop()


class Database(_DatabaseReader, native_type="Database"):
    """A read-only view of one or more databases.

    ``Database()`` has no shards; add some with ``add_database``. Copies share
    the shards they were copied from.
    """

    def __init__(self) -> None:
        super().__init__(lib.database_new())

    @classmethod
    def open(cls, path: PathLike, backend: DbBackend | None = None) -> Database:
        """Open the database at ``path``. Raises ``OpenError``."""
        _configure_engine()
        flags = int(backend if backend is not None else DbBackend.AUTO)
        with create_span("database.open", attributes={"db.path": os.fsdecode(path), "db.writable": False}):
            with translate_errors(path=path):
                ptr = lib.database_open(to_native_path(path), flags)
        logger.debug("Opened database at %s", os.fsdecode(path))
        return cls._adopt(ptr)

    def add_database(self, other: _DatabaseReader) -> None:
        """Search ``other``'s shards too. Document ids interleave across shards."""
        self._call(lib.database_add_database, other.ptr, mutating=True)

    def copy(self) -> Database:
        return Database._adopt(self._call(lib.database_copy))

    __copy__ = copy


class WritableDatabase(_DatabaseReader, native_type="WritableDatabase", upcasts_to=Database):
    """A database open for writing.

    With no ``path`` the database lives in memory. Pending changes become
    visible to readers at ``commit``, and are committed automatically when
    the handle is released outside a transaction.
    """

    def __init__(
        self,
        path: PathLike | None = None,
        action: DbAction = DbAction.CREATE_OR_OPEN,
        backend: DbBackend | None = None,
        flags: DbFlags = DbFlags.NONE,
        block_size: int = 0,
    ) -> None:
        _configure_engine()
        if backend is None:
            backend = _default_backend()
        shown = os.fsdecode(path) if path is not None else ":memory:"
        native_path = to_native_path(path) if path is not None else None
        attributes = {"db.path": shown, "db.writable": True, "db.backend": backend.name}
        with create_span("database.open", attributes=attributes):
            with translate_errors(path=path):
                ptr = lib.writable_database_open(native_path, int(action) | int(backend) | int(flags), block_size)
        super().__init__(ptr)
        logger.debug("Opened writable database at %s", shown)

    @classmethod
    def inmemory(cls) -> WritableDatabase:
        return cls(backend=DbBackend.INMEMORY)

    def read_only(self) -> Database:
        """A reader sharing this database's storage."""
        return Database._adopt(self._call(lib.database_copy))

    def add_document(self, document: Document) -> DocId:
        return DocId(self._call(lib.writable_database_add_document, document.ptr, mutating=True))

    def replace_document(self, docid: DocId | int, document: Document) -> None:
        """Store ``document`` under ``docid``, replacing any document already there."""
        self._call(lib.writable_database_replace_document, as_docid(docid), document.ptr, mutating=True)

    def replace_document_by_term(self, term: StrOrBytes, document: Document) -> DocId:
        """Replace the documents indexed by ``term`` with ``document``.

        The first such document keeps its id and the rest are deleted; with
        no match the document is added.
        """
        did = self._call(lib.writable_database_replace_document_by_term, to_native(term), document.ptr, mutating=True)
        return DocId(did)

    def delete_document(self, docid: DocId | int) -> None:
        self._call(lib.writable_database_delete_document, as_docid(docid), mutating=True)

    def delete_document_by_term(self, term: StrOrBytes) -> None:
        self._call(lib.writable_database_delete_document_by_term, to_native(term), mutating=True)

    def set_metadata(self, key: StrOrBytes, value: StrOrBytes) -> None:
        """Store ``value`` under ``key``; an empty value deletes the key."""
        self._call(lib.writable_database_set_metadata, to_native(key), to_native(value), mutating=True)

    def add_spelling(self, word: StrOrBytes, increment: int = 1) -> None:
        self._call(lib.writable_database_add_spelling, to_native(word), increment, mutating=True)

    def remove_spelling(self, word: StrOrBytes, decrement: int = 1) -> None:
        self._call(lib.writable_database_remove_spelling, to_native(word), decrement, mutating=True)

    def add_synonym(self, term: StrOrBytes, synonym: StrOrBytes) -> None:
        self._call(lib.writable_database_add_synonym, to_native(term), to_native(synonym), mutating=True)

    def remove_synonym(self, term: StrOrBytes, synonym: StrOrBytes) -> None:
        self._call(lib.writable_database_remove_synonym, to_native(term), to_native(synonym), mutating=True)

    def clear_synonyms(self, term: StrOrBytes) -> None:
        self._call(lib.writable_database_clear_synonyms, to_native(term), mutating=True)

    def commit(self) -> None:
        with create_span("database.commit"), track_latency(SEARCH_LATENCY, operation="commit"):
            self._call(lib.writable_database_commit, mutating=True)

    def begin_transaction(self, flushed: bool = True) -> None:
        """Start a transaction. A flushed transaction commits pending changes first and on success."""
        self._call(lib.writable_database_begin_transaction, flushed, mutating=True)

    def commit_transaction(self) -> None:
        self._call(lib.writable_database_commit_transaction, mutating=True)

    def cancel_transaction(self) -> None:
        self._call(lib.writable_database_cancel_transaction, mutating=True)

    @contextmanager
    def transaction(self, flushed: bool = True) -> Iterator[WritableDatabase]:
        """Run the block in a transaction; an exception cancels it."""
        self.begin_transaction(flushed)
        try:
            yield self
        except BaseException:
            self.cancel_transaction()
            raise
        self.commit_transaction()
