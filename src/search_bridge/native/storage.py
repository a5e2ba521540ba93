"""Shard storage backends: in-memory and SQLite.

A shard stores documents under local ids starting at 1. The database layer
interleaves the ids of several shards into one global id space.

SQLite layout:
- WITHOUT ROWID tables for postings, values, metadata, spelling and synonyms
- Binary position encoding (``array('I')``)
- Writers hold ``BEGIN IMMEDIATE`` for their lifetime, which is the write lock
- Readers pin a snapshot until ``reopen()``
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from array import array
from dataclasses import dataclass
import logging
from pathlib import Path
import sqlite3

from search_bridge.native.document import DocState, TermEntry
from search_bridge.native.errors import (
    DatabaseClosedError,
    DatabaseCorruptError,
    DatabaseError,
    DatabaseExistsError,
    DatabaseLockError,
    DatabaseNotFoundError,
    DatabaseOpeningError,
    InvalidOperationError,
)
from search_bridge.native.pragmas import reader_pragmas, writer_pragmas


logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.sqlite3"
FORMAT_VERSION = 1

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS engine_state (key TEXT PRIMARY KEY, value INTEGER NOT NULL) WITHOUT ROWID",
    "CREATE TABLE IF NOT EXISTS documents (docid INTEGER PRIMARY KEY, data BLOB NOT NULL, length INTEGER NOT NULL)",
    """CREATE TABLE IF NOT EXISTS postings (
        term BLOB NOT NULL,
        docid INTEGER NOT NULL,
        wdf INTEGER NOT NULL,
        positions BLOB,
        PRIMARY KEY (term, docid)
    ) WITHOUT ROWID""",
    """CREATE TABLE IF NOT EXISTS doc_values (
        slot INTEGER NOT NULL,
        docid INTEGER NOT NULL,
        value BLOB NOT NULL,
        PRIMARY KEY (slot, docid)
    ) WITHOUT ROWID""",
    "CREATE TABLE IF NOT EXISTS metadata (key BLOB PRIMARY KEY, value BLOB NOT NULL) WITHOUT ROWID",
    "CREATE TABLE IF NOT EXISTS spelling (word TEXT PRIMARY KEY, freq INTEGER NOT NULL) WITHOUT ROWID",
    """CREATE TABLE IF NOT EXISTS synonyms (
        term BLOB NOT NULL,
        synonym BLOB NOT NULL,
        PRIMARY KEY (term, synonym)
    ) WITHOUT ROWID""",
)
_TERMLIST_INDEX = "CREATE INDEX IF NOT EXISTS postings_by_doc ON postings (docid)"
_DROP_TABLES = ("engine_state", "documents", "postings", "doc_values", "metadata", "spelling", "synonyms")


@dataclass
class EngineOptions:
    """Process-wide storage tuning, set through ``lib.engine_configure``."""

    cache_size_kb: int = -65536
    mmap_size_bytes: int = 134217728
    lock_retry_timeout_ms: int = 30000


OPTIONS = EngineOptions()


def _encode_positions(positions: list[int]) -> bytes | None:
    if not positions:
        return None
    return array("I", positions).tobytes()


def _decode_positions(blob: bytes | None) -> list[int]:
    positions = array("I")
    if blob:
        positions.frombytes(blob)
    return list(positions)


class Shard(ABC):
    """One physical index. Ids are local to the shard."""

    writable = False

    def __init__(self) -> None:
        self.closed = False

    def check_open(self) -> None:
        if self.closed:
            msg = "database has been closed"
            raise DatabaseClosedError(msg)

    @abstractmethod
    def doc_count(self) -> int: ...

    @abstractmethod
    def last_docid(self) -> int: ...

    @abstractmethod
    def docids(self) -> list[int]: ...

    @abstractmethod
    def load(self, did: int) -> DocState | None: ...

    @abstractmethod
    def doc_length(self, did: int) -> int: ...

    @abstractmethod
    def total_length(self) -> int: ...

    @abstractmethod
    def postings(self, term: bytes) -> list[tuple[int, TermEntry]]: ...

    @abstractmethod
    def termfreq(self, term: bytes) -> int: ...

    @abstractmethod
    def allterms(self, prefix: bytes) -> list[tuple[bytes, int]]: ...

    @abstractmethod
    def value(self, did: int, slot: int) -> bytes: ...

    @abstractmethod
    def slot_values(self, slot: int) -> list[tuple[int, bytes]]: ...

    @abstractmethod
    def metadata_get(self, key: bytes) -> bytes: ...

    @abstractmethod
    def metadata_keys(self, prefix: bytes) -> list[bytes]: ...

    @abstractmethod
    def spelling_words(self) -> dict[str, int]: ...

    @abstractmethod
    def synonyms(self, term: bytes) -> list[bytes]: ...

    def reopen(self) -> bool:
        self.check_open()
        return False

    def close(self) -> None:
        self.closed = True

    # Write interface; only writable shards implement these.

    def _read_only(self) -> InvalidOperationError:
        return InvalidOperationError("shard is read-only")

    def put_document(self, did: int, state: DocState) -> None:
        raise self._read_only()

    def delete_document(self, did: int) -> bool:
        raise self._read_only()

    def metadata_set(self, key: bytes, value: bytes) -> None:
        raise self._read_only()

    def add_spelling(self, word: str, increment: int) -> None:
        raise self._read_only()

    def remove_spelling(self, word: str, decrement: int) -> None:
        raise self._read_only()

    def add_synonym(self, term: bytes, synonym: bytes) -> None:
        raise self._read_only()

    def remove_synonym(self, term: bytes, synonym: bytes) -> None:
        raise self._read_only()

    def clear_synonyms(self, term: bytes) -> None:
        raise self._read_only()

    def commit(self) -> None:
        raise self._read_only()

    def begin_transaction(self) -> None:
        raise self._read_only()

    def commit_transaction(self) -> None:
        raise self._read_only()

    def cancel_transaction(self) -> None:
        raise self._read_only()


@dataclass
class _MemoryContents:
    docs: dict[int, DocState]
    postings: dict[bytes, dict[int, TermEntry]]
    metadata: dict[bytes, bytes]
    spelling: dict[str, int]
    synonyms: dict[bytes, set[bytes]]
    last_docid: int

    @classmethod
    def empty(cls) -> _MemoryContents:
        return cls({}, {}, {}, {}, {}, 0)

    def clone(self) -> _MemoryContents:
        return _MemoryContents(
            docs={did: state.clone() for did, state in self.docs.items()},
            postings={term: {did: entry.clone() for did, entry in plist.items()} for term, plist in self.postings.items()},
            metadata=dict(self.metadata),
            spelling=dict(self.spelling),
            synonyms={term: set(syns) for term, syns in self.synonyms.items()},
            last_docid=self.last_docid,
        )


class MemoryShard(Shard):
    """Writable shard held entirely in process memory."""

    writable = True

    def __init__(self) -> None:
        super().__init__()
        self._contents = _MemoryContents.empty()
        self._snapshot: _MemoryContents | None = None

    def doc_count(self) -> int:
        self.check_open()
        return len(self._contents.docs)

    def last_docid(self) -> int:
        self.check_open()
        return self._contents.last_docid

    def docids(self) -> list[int]:
        self.check_open()
        return sorted(self._contents.docs)

    def load(self, did: int) -> DocState | None:
        self.check_open()
        state = self._contents.docs.get(did)
        return state.clone() if state is not None else None

    def doc_length(self, did: int) -> int:
        self.check_open()
        state = self._contents.docs.get(did)
        return state.length if state is not None else 0

    def total_length(self) -> int:
        self.check_open()
        return sum(state.length for state in self._contents.docs.values())

    def postings(self, term: bytes) -> list[tuple[int, TermEntry]]:
        self.check_open()
        plist = self._contents.postings.get(term, {})
        return sorted(plist.items())

    def termfreq(self, term: bytes) -> int:
        self.check_open()
        return len(self._contents.postings.get(term, {}))

    def allterms(self, prefix: bytes) -> list[tuple[bytes, int]]:
        self.check_open()
        return sorted(
            (term, len(plist)) for term, plist in self._contents.postings.items() if term.startswith(prefix)
        )

    def value(self, did: int, slot: int) -> bytes:
        self.check_open()
        state = self._contents.docs.get(did)
        return state.values.get(slot, b"") if state is not None else b""

    def slot_values(self, slot: int) -> list[tuple[int, bytes]]:
        self.check_open()
        return sorted(
            (did, state.values[slot]) for did, state in self._contents.docs.items() if slot in state.values
        )

    def metadata_get(self, key: bytes) -> bytes:
        self.check_open()
        return self._contents.metadata.get(key, b"")

    def metadata_keys(self, prefix: bytes) -> list[bytes]:
        self.check_open()
        return sorted(key for key in self._contents.metadata if key.startswith(prefix))

    def spelling_words(self) -> dict[str, int]:
        self.check_open()
        return dict(self._contents.spelling)

    def synonyms(self, term: bytes) -> list[bytes]:
        self.check_open()
        return sorted(self._contents.synonyms.get(term, ()))

    def put_document(self, did: int, state: DocState) -> None:
        self.check_open()
        self.delete_document(did)
        stored = state.clone()
        self._contents.docs[did] = stored
        for term, entry in stored.terms.items():
            self._contents.postings.setdefault(term, {})[did] = entry
        self._contents.last_docid = max(self._contents.last_docid, did)

    def delete_document(self, did: int) -> bool:
        self.check_open()
        state = self._contents.docs.pop(did, None)
        if state is None:
            return False
        for term in state.terms:
            plist = self._contents.postings.get(term)
            if plist is None:
                continue
            plist.pop(did, None)
            if not plist:
                del self._contents.postings[term]
        return True

    def metadata_set(self, key: bytes, value: bytes) -> None:
        self.check_open()
        if value:
            self._contents.metadata[key] = value
        else:
            self._contents.metadata.pop(key, None)

    def add_spelling(self, word: str, increment: int) -> None:
        self.check_open()
        self._contents.spelling[word] = self._contents.spelling.get(word, 0) + increment

    def remove_spelling(self, word: str, decrement: int) -> None:
        self.check_open()
        remaining = self._contents.spelling.get(word, 0) - decrement
        if remaining > 0:
            self._contents.spelling[word] = remaining
        else:
            self._contents.spelling.pop(word, None)

    def add_synonym(self, term: bytes, synonym: bytes) -> None:
        self.check_open()
        self._contents.synonyms.setdefault(term, set()).add(synonym)

    def remove_synonym(self, term: bytes, synonym: bytes) -> None:
        self.check_open()
        syns = self._contents.synonyms.get(term)
        if syns is not None:
            syns.discard(synonym)
            if not syns:
                del self._contents.synonyms[term]

    def clear_synonyms(self, term: bytes) -> None:
        self.check_open()
        self._contents.synonyms.pop(term, None)

    def commit(self) -> None:
        self.check_open()

    def begin_transaction(self) -> None:
        self.check_open()
        self._snapshot = self._contents.clone()

    def commit_transaction(self) -> None:
        self.check_open()
        self._snapshot = None

    def cancel_transaction(self) -> None:
        self.check_open()
        if self._snapshot is not None:
            self._contents = self._snapshot
        self._snapshot = None


def _classify_sqlite_error(exc: sqlite3.Error, path: Path) -> DatabaseOpeningError:
    message = str(exc).lower()
    if "locked" in message or "busy" in message:
        return DatabaseLockError(f"unable to get write lock on {path}: {exc}")
    if isinstance(exc, sqlite3.DatabaseError) and not isinstance(exc, sqlite3.OperationalError):
        return DatabaseCorruptError(f"{path} is not a valid index: {exc}")
    if "no such table" in message:
        return DatabaseCorruptError(f"{path} is missing index tables: {exc}")
    return DatabaseOpeningError(f"cannot open {path}: {exc}")


class SqliteShard(Shard):
    """Shard persisted in ``<path>/index.sqlite3``."""

    def __init__(self, path: Path, conn: sqlite3.Connection, *, writable: bool) -> None:
        super().__init__()
        self.path = path
        self.writable = writable
        self._conn = conn
        self._in_transaction = False

    @classmethod
    def open_reader(cls, path: str | Path) -> SqliteShard:
        directory = Path(path)
        db_file = directory / INDEX_FILENAME
        if not db_file.is_file():
            msg = f"no index found at {directory}"
            raise DatabaseNotFoundError(msg)
        try:
            conn = sqlite3.connect(db_file, isolation_level=None, check_same_thread=False)
        except sqlite3.Error as exc:
            raise _classify_sqlite_error(exc, directory) from exc
        try:
            reader_pragmas(OPTIONS).apply(conn)
            shard = cls(directory, conn, writable=False)
            shard._check_format()
            shard._pin_snapshot()
        except sqlite3.Error as exc:
            conn.close()
            raise _classify_sqlite_error(exc, directory) from exc
        except DatabaseError:
            conn.close()
            raise
        return shard

    @classmethod
    def open_writer(
        cls,
        path: str | Path,
        *,
        create: bool,
        must_exist: bool,
        overwrite: bool,
        synchronous: str = "NORMAL",
        journal_mode: str = "WAL",
        retry_lock: bool = False,
        termlist: bool = True,
        page_size: int = 4096,
    ) -> SqliteShard:
        directory = Path(path)
        db_file = directory / INDEX_FILENAME
        exists = db_file.is_file()
        if must_exist and not exists:
            msg = f"no index found at {directory}"
            raise DatabaseNotFoundError(msg)
        if create and exists:
            msg = f"an index already exists at {directory}"
            raise DatabaseExistsError(msg)
        if directory.exists() and not directory.is_dir():
            msg = f"{directory} exists and is not a directory"
            raise DatabaseOpeningError(msg)
        directory.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(db_file, isolation_level=None, check_same_thread=False)
        except sqlite3.Error as exc:
            raise _classify_sqlite_error(exc, directory) from exc
        try:
            writer_pragmas(
                OPTIONS,
                synchronous=synchronous,
                journal_mode=journal_mode,
                retry_lock=retry_lock,
                page_size=page_size,
            ).apply(conn)
            conn.execute("BEGIN IMMEDIATE")
            if overwrite and exists:
                for table in _DROP_TABLES:
                    conn.execute(f"DROP TABLE IF EXISTS {table}")
            for statement in _SCHEMA:
                conn.execute(statement)
            if termlist:
                conn.execute(_TERMLIST_INDEX)
            conn.execute(
                "INSERT OR IGNORE INTO engine_state (key, value) VALUES ('format', ?)",
                (FORMAT_VERSION,),
            )
            conn.execute("INSERT OR IGNORE INTO engine_state (key, value) VALUES ('last_docid', 0)")
            # Publish the empty revision so readers can open it.
            conn.execute("COMMIT")
            conn.execute("BEGIN IMMEDIATE")
            shard = cls(directory, conn, writable=True)
            shard._check_format()
        except sqlite3.Error as exc:
            conn.close()
            raise _classify_sqlite_error(exc, directory) from exc
        except DatabaseError:
            conn.close()
            raise
        logger.debug("Opened writable shard at %s", directory)
        return shard

    def _check_format(self) -> None:
        row = self._conn.execute("SELECT value FROM engine_state WHERE key = 'format'").fetchone()
        if row is None or int(row[0]) != FORMAT_VERSION:
            msg = f"unsupported index format at {self.path}"
            raise DatabaseCorruptError(msg)

    def _pin_snapshot(self) -> None:
        self._conn.execute("BEGIN")
        self._conn.execute("SELECT COUNT(*) FROM engine_state").fetchone()

    def _one(self, sql: str, params: tuple = ()) -> tuple | None:
        self.check_open()
        return self._conn.execute(sql, params).fetchone()

    def _all(self, sql: str, params: tuple = ()) -> list[tuple]:
        self.check_open()
        return self._conn.execute(sql, params).fetchall()

    def doc_count(self) -> int:
        row = self._one("SELECT COUNT(*) FROM documents")
        return int(row[0]) if row else 0

    def last_docid(self) -> int:
        row = self._one("SELECT value FROM engine_state WHERE key = 'last_docid'")
        return int(row[0]) if row else 0

    def docids(self) -> list[int]:
        return [row[0] for row in self._all("SELECT docid FROM documents ORDER BY docid")]

    def load(self, did: int) -> DocState | None:
        row = self._one("SELECT data FROM documents WHERE docid = ?", (did,))
        if row is None:
            return None
        state = DocState(data=bytes(row[0]))
        for term, wdf, blob in self._all("SELECT term, wdf, positions FROM postings WHERE docid = ?", (did,)):
            state.terms[bytes(term)] = TermEntry(int(wdf), _decode_positions(blob))
        for slot, value in self._all("SELECT slot, value FROM doc_values WHERE docid = ?", (did,)):
            state.values[int(slot)] = bytes(value)
        return state

    def doc_length(self, did: int) -> int:
        row = self._one("SELECT length FROM documents WHERE docid = ?", (did,))
        return int(row[0]) if row else 0

    def total_length(self) -> int:
        row = self._one("SELECT COALESCE(SUM(length), 0) FROM documents")
        return int(row[0]) if row else 0

    def postings(self, term: bytes) -> list[tuple[int, TermEntry]]:
        rows = self._all("SELECT docid, wdf, positions FROM postings WHERE term = ? ORDER BY docid", (term,))
        return [(int(did), TermEntry(int(wdf), _decode_positions(blob))) for did, wdf, blob in rows]

    def termfreq(self, term: bytes) -> int:
        row = self._one("SELECT COUNT(*) FROM postings WHERE term = ?", (term,))
        return int(row[0]) if row else 0

    def allterms(self, prefix: bytes) -> list[tuple[bytes, int]]:
        rows = self._all("SELECT term, COUNT(*) FROM postings GROUP BY term ORDER BY term")
        return [(bytes(term), int(freq)) for term, freq in rows if bytes(term).startswith(prefix)]

    def value(self, did: int, slot: int) -> bytes:
        row = self._one("SELECT value FROM doc_values WHERE slot = ? AND docid = ?", (slot, did))
        return bytes(row[0]) if row else b""

    def slot_values(self, slot: int) -> list[tuple[int, bytes]]:
        rows = self._all("SELECT docid, value FROM doc_values WHERE slot = ? ORDER BY docid", (slot,))
        return [(int(did), bytes(value)) for did, value in rows]

    def metadata_get(self, key: bytes) -> bytes:
        row = self._one("SELECT value FROM metadata WHERE key = ?", (key,))
        return bytes(row[0]) if row else b""

    def metadata_keys(self, prefix: bytes) -> list[bytes]:
        rows = self._all("SELECT key FROM metadata ORDER BY key")
        return [bytes(key) for (key,) in rows if bytes(key).startswith(prefix)]

    def spelling_words(self) -> dict[str, int]:
        return {word: int(freq) for word, freq in self._all("SELECT word, freq FROM spelling")}

    def synonyms(self, term: bytes) -> list[bytes]:
        rows = self._all("SELECT synonym FROM synonyms WHERE term = ? ORDER BY synonym", (term,))
        return [bytes(syn) for (syn,) in rows]

    def reopen(self) -> bool:
        self.check_open()
        if self.writable:
            return False
        self._conn.execute("COMMIT")
        self._pin_snapshot()
        return True

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self.writable:
                if self._in_transaction:
                    self.cancel_transaction()
                self._conn.execute("COMMIT")
            else:
                self._conn.execute("ROLLBACK")
        finally:
            self._conn.close()
            self.closed = True
            logger.debug("Closed shard at %s", self.path)

    def put_document(self, did: int, state: DocState) -> None:
        self.check_open()
        self.delete_document(did)
        self._conn.execute(
            "INSERT INTO documents (docid, data, length) VALUES (?, ?, ?)",
            (did, state.data, state.length),
        )
        self._conn.executemany(
            "INSERT INTO postings (term, docid, wdf, positions) VALUES (?, ?, ?, ?)",
            [(term, did, entry.wdf, _encode_positions(entry.positions)) for term, entry in state.terms.items()],
        )
        self._conn.executemany(
            "INSERT INTO doc_values (slot, docid, value) VALUES (?, ?, ?)",
            [(slot, did, value) for slot, value in state.values.items()],
        )
        self._conn.execute(
            "UPDATE engine_state SET value = MAX(value, ?) WHERE key = 'last_docid'",
            (did,),
        )

    def delete_document(self, did: int) -> bool:
        self.check_open()
        cursor = self._conn.execute("DELETE FROM documents WHERE docid = ?", (did,))
        if cursor.rowcount == 0:
            return False
        self._conn.execute("DELETE FROM postings WHERE docid = ?", (did,))
        self._conn.execute("DELETE FROM doc_values WHERE docid = ?", (did,))
        return True

    def metadata_set(self, key: bytes, value: bytes) -> None:
        self.check_open()
        if value:
            self._conn.execute("INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)", (key, value))
        else:
            self._conn.execute("DELETE FROM metadata WHERE key = ?", (key,))

    def add_spelling(self, word: str, increment: int) -> None:
        self.check_open()
        self._conn.execute(
            "INSERT INTO spelling (word, freq) VALUES (?, ?) ON CONFLICT(word) DO UPDATE SET freq = freq + excluded.freq",
            (word, increment),
        )

    def remove_spelling(self, word: str, decrement: int) -> None:
        self.check_open()
        self._conn.execute("UPDATE spelling SET freq = freq - ? WHERE word = ?", (decrement, word))
        self._conn.execute("DELETE FROM spelling WHERE freq <= 0")

    def add_synonym(self, term: bytes, synonym: bytes) -> None:
        self.check_open()
        self._conn.execute("INSERT OR IGNORE INTO synonyms (term, synonym) VALUES (?, ?)", (term, synonym))

    def remove_synonym(self, term: bytes, synonym: bytes) -> None:
        self.check_open()
        self._conn.execute("DELETE FROM synonyms WHERE term = ? AND synonym = ?", (term, synonym))

    def clear_synonyms(self, term: bytes) -> None:
        self.check_open()
        self._conn.execute("DELETE FROM synonyms WHERE term = ?", (term,))

    def commit(self) -> None:
        self.check_open()
        if self._in_transaction:
            msg = "cannot commit while a transaction is in progress"
            raise InvalidOperationError(msg)
        try:
            self._conn.execute("COMMIT")
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            raise _classify_sqlite_error(exc, self.path) from exc

    def begin_transaction(self) -> None:
        self.check_open()
        self._conn.execute("SAVEPOINT engine_txn")
        self._in_transaction = True

    def commit_transaction(self) -> None:
        self.check_open()
        self._conn.execute("RELEASE engine_txn")
        self._in_transaction = False

    def cancel_transaction(self) -> None:
        self.check_open()
        self._conn.execute("ROLLBACK TO engine_txn")
        self._conn.execute("RELEASE engine_txn")
        self._in_transaction = False
