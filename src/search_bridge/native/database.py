"""Databases: one or more shards behind a single global docid space.

Global docids interleave shards: with ``n`` shards, local id ``l`` of
shard ``i`` is global id ``(l - 1) * n + i + 1``.
"""

from __future__ import annotations

import logging
import os

from search_bridge.native.document import NativeDocument, TermEntry
from search_bridge.native.errors import (
    DatabaseOpeningError,
    DocNotFoundError,
    InvalidArgumentError,
    InvalidOperationError,
)
from search_bridge.native.spelling import suggest
from search_bridge.native.storage import MemoryShard, Shard, SqliteShard
from search_bridge.native.weighting import CollectionStats


logger = logging.getLogger(__name__)

DB_CREATE_OR_OPEN = 0x00
DB_CREATE_OR_OVERWRITE = 0x01
DB_CREATE = 0x02
DB_OPEN = 0x03
DB_ACTION_MASK = 0x03

DB_NO_SYNC = 0x04
DB_FULL_SYNC = 0x08
DB_DANGEROUS = 0x10
DB_NO_TERMLIST = 0x20
DB_RETRY_LOCK = 0x40

DB_BACKEND_AUTO = 0x000
DB_BACKEND_SQLITE = 0x100
DB_BACKEND_INMEMORY = 0x400
DB_BACKEND_MASK = 0x700

_VALID_BACKENDS = frozenset({DB_BACKEND_AUTO, DB_BACKEND_SQLITE, DB_BACKEND_INMEMORY})


def _backend(flags: int) -> int:
    backend = flags & DB_BACKEND_MASK
    if backend not in _VALID_BACKENDS:
        msg = f"unknown backend {backend:#x}"
        raise DatabaseOpeningError(msg)
    return backend


class NativeDatabase:
    """Read access to a set of shards. Copies share the shards."""

    def __init__(self, shards: list[Shard] | None = None) -> None:
        self.shards: list[Shard] = list(shards or [])

    @classmethod
    def open(cls, path: bytes, flags: int = 0) -> NativeDatabase:
        if _backend(flags) == DB_BACKEND_INMEMORY:
            msg = "in-memory databases can only be created writable"
            raise DatabaseOpeningError(msg)
        return cls([SqliteShard.open_reader(os.fsdecode(path))])

    def copy(self) -> NativeDatabase:
        return NativeDatabase(self.shards)

    def add_database(self, other: NativeDatabase) -> None:
        self.shards.extend(other.shards)

    def close(self) -> None:
        for shard in self.shards:
            shard.close()

    def reopen(self) -> bool:
        changed = False
        for shard in self.shards:
            changed = shard.reopen() or changed
        return changed

    def _locate(self, did: int) -> tuple[Shard, int]:
        if did <= 0:
            msg = "docid 0 is invalid"
            raise InvalidArgumentError(msg)
        n = len(self.shards)
        if n == 0:
            msg = f"document {did} not found"
            raise DocNotFoundError(msg)
        return self.shards[(did - 1) % n], (did - 1) // n + 1

    def _global(self, index: int, local: int) -> int:
        return (local - 1) * len(self.shards) + index + 1

    def get_doccount(self) -> int:
        return sum(shard.doc_count() for shard in self.shards)

    def get_lastdocid(self) -> int:
        last = 0
        for index, shard in enumerate(self.shards):
            local = shard.last_docid()
            if local:
                last = max(last, self._global(index, local))
        return last

    def get_avlength(self) -> float:
        return self.stats().average_length

    def stats(self) -> CollectionStats:
        return CollectionStats(
            total_length=sum(shard.total_length() for shard in self.shards),
            document_count=self.get_doccount(),
        )

    def get_doclength(self, did: int) -> int:
        shard, local = self._locate(did)
        return shard.doc_length(local)

    def term_exists(self, term: bytes) -> bool:
        if not term:
            return self.get_doccount() > 0
        return any(shard.termfreq(term) for shard in self.shards)

    def get_termfreq(self, term: bytes) -> int:
        return sum(shard.termfreq(term) for shard in self.shards)

    def get_document(self, did: int) -> NativeDocument:
        shard, local = self._locate(did)
        state = shard.load(local)
        if state is None:
            msg = f"document {did} not found"
            raise DocNotFoundError(msg)
        return NativeDocument(state, did)

    def all_docids(self) -> list[int]:
        found = [self._global(i, local) for i, shard in enumerate(self.shards) for local in shard.docids()]
        return sorted(found)

    def postlist(self, term: bytes) -> list[tuple[int, TermEntry]]:
        merged = [
            (self._global(i, local), entry) for i, shard in enumerate(self.shards) for local, entry in shard.postings(term)
        ]
        merged.sort(key=lambda item: item[0])
        return merged

    def slot_values(self, slot: int) -> list[tuple[int, bytes]]:
        merged = [
            (self._global(i, local), value) for i, shard in enumerate(self.shards) for local, value in shard.slot_values(slot)
        ]
        merged.sort(key=lambda item: item[0])
        return merged

    def get_value(self, did: int, slot: int) -> bytes:
        shard, local = self._locate(did)
        return shard.value(local, slot)

    def allterms(self, prefix: bytes = b"") -> list[tuple[bytes, int]]:
        counts: dict[bytes, int] = {}
        for shard in self.shards:
            for term, freq in shard.allterms(prefix):
                counts[term] = counts.get(term, 0) + freq
        return sorted(counts.items())

    def get_metadata(self, key: bytes) -> bytes:
        if not key:
            msg = "empty metadata keys are invalid"
            raise InvalidArgumentError(msg)
        # Metadata lives in the first shard.
        if not self.shards:
            return b""
        return self.shards[0].metadata_get(key)

    def metadata_keys(self, prefix: bytes = b"") -> list[bytes]:
        if not self.shards:
            return []
        return self.shards[0].metadata_keys(prefix)

    def synonyms(self, term: bytes) -> list[bytes]:
        found: set[bytes] = set()
        for shard in self.shards:
            found.update(shard.synonyms(term))
        return sorted(found)

    def spelling_words(self) -> dict[str, int]:
        merged: dict[str, int] = {}
        for shard in self.shards:
            for word, freq in shard.spelling_words().items():
                merged[word] = merged.get(word, 0) + freq
        return merged

    def get_spelling_suggestion(self, word: bytes, max_edit_distance: int = 2) -> bytes:
        text = word.decode("utf-8", errors="surrogateescape")
        found = suggest(text, self.spelling_words(), max_edit_distance)
        return found.encode("utf-8", errors="surrogateescape")


class NativeWritableDatabase(NativeDatabase):
    """A database whose first shard accepts writes."""

    def __init__(self, shards: list[Shard] | None = None) -> None:
        super().__init__(shards)
        self._in_transaction = False
        self._flushed_transaction = False

    @classmethod
    def open(cls, path: bytes | None, flags: int = 0, block_size: int = 0) -> NativeWritableDatabase:
        backend = _backend(flags)
        if backend == DB_BACKEND_INMEMORY or path is None:
            return cls([MemoryShard()])
        action = flags & DB_ACTION_MASK
        if flags & DB_NO_SYNC:
            synchronous = "OFF"
        elif flags & DB_FULL_SYNC:
            synchronous = "FULL"
        else:
            synchronous = "NORMAL"
        page_size = block_size if block_size in (1024, 2048, 4096, 8192, 16384, 32768, 65536) else 4096
        shard = SqliteShard.open_writer(
            os.fsdecode(path),
            create=action == DB_CREATE,
            must_exist=action == DB_OPEN,
            overwrite=action == DB_CREATE_OR_OVERWRITE,
            synchronous=synchronous,
            journal_mode="OFF" if flags & DB_DANGEROUS else "WAL",
            retry_lock=bool(flags & DB_RETRY_LOCK),
            termlist=not flags & DB_NO_TERMLIST,
            page_size=page_size,
        )
        return cls([shard])

    def copy(self) -> NativeDatabase:
        # A copy of a writable database is a reader over the same shards.
        return NativeDatabase(self.shards)

    def _writable_shard(self, did: int) -> tuple[Shard, int]:
        shard, local = self._locate(did)
        if not shard.writable:
            msg = "document belongs to a read-only shard"
            raise InvalidOperationError(msg)
        return shard, local

    def add_document(self, doc: NativeDocument) -> int:
        did = self.get_lastdocid() + 1
        self.replace_document(did, doc)
        return did

    def replace_document(self, did: int, doc: NativeDocument) -> None:
        shard, local = self._writable_shard(did)
        shard.put_document(local, doc.state)

    def replace_document_by_term(self, term: bytes, doc: NativeDocument) -> int:
        matches = [did for did, _ in self.postlist(term)]
        if not matches:
            return self.add_document(doc)
        first, *rest = matches
        self.replace_document(first, doc)
        for did in rest:
            self.delete_document(did)
        return first

    def delete_document(self, did: int) -> None:
        shard, local = self._writable_shard(did)
        if not shard.delete_document(local):
            msg = f"document {did} not found"
            raise DocNotFoundError(msg)

    def delete_document_by_term(self, term: bytes) -> None:
        for did, _ in self.postlist(term):
            self.delete_document(did)

    def _primary(self) -> Shard:
        if not self.shards:
            msg = "database has no shards"
            raise InvalidOperationError(msg)
        return self.shards[0]

    def set_metadata(self, key: bytes, value: bytes) -> None:
        if not key:
            msg = "empty metadata keys are invalid"
            raise InvalidArgumentError(msg)
        self._primary().metadata_set(key, value)

    def add_spelling(self, word: bytes, increment: int = 1) -> None:
        self._primary().add_spelling(word.decode("utf-8", errors="surrogateescape"), increment)

    def remove_spelling(self, word: bytes, decrement: int = 1) -> None:
        self._primary().remove_spelling(word.decode("utf-8", errors="surrogateescape"), decrement)

    def add_synonym(self, term: bytes, synonym: bytes) -> None:
        self._primary().add_synonym(term, synonym)

    def remove_synonym(self, term: bytes, synonym: bytes) -> None:
        self._primary().remove_synonym(term, synonym)

    def clear_synonyms(self, term: bytes) -> None:
        self._primary().clear_synonyms(term)

    def _writable_shards(self) -> list[Shard]:
        return [shard for shard in self.shards if shard.writable]

    def commit(self) -> None:
        if self._in_transaction:
            msg = "cannot commit inside a transaction"
            raise InvalidOperationError(msg)
        for shard in self._writable_shards():
            shard.commit()

    def begin_transaction(self, flushed: bool = True) -> None:
        if self._in_transaction:
            msg = "a transaction is already in progress"
            raise InvalidOperationError(msg)
        if flushed:
            self.commit()
        for shard in self._writable_shards():
            shard.begin_transaction()
        self._in_transaction = True
        self._flushed_transaction = flushed

    def commit_transaction(self) -> None:
        if not self._in_transaction:
            msg = "no transaction is in progress"
            raise InvalidOperationError(msg)
        for shard in self._writable_shards():
            shard.commit_transaction()
        self._in_transaction = False
        if self._flushed_transaction:
            self.commit()

    def cancel_transaction(self) -> None:
        if not self._in_transaction:
            msg = "no transaction is in progress"
            raise InvalidOperationError(msg)
        for shard in self._writable_shards():
            shard.cancel_transaction()
        self._in_transaction = False

    def close(self) -> None:
        if self._in_transaction:
            self.cancel_transaction()
        super().close()

    def destroy(self) -> None:
        """Flush pending changes when the owning handle is released.

        An open transaction is cancelled first. Shards stay open for reader
        copies that still share them.
        """
        if self._in_transaction:
            self.cancel_transaction()
        for shard in self._writable_shards():
            if not shard.closed:
                shard.commit()
