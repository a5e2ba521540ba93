"""SQLite PRAGMA sets for shard connections.

Readers and writers share the cache and mmap tuning from ``EngineOptions``.
Writers also follow the database open flags: NO_SYNC and FULL_SYNC pick the
``synchronous`` level, DANGEROUS turns the rollback journal off, and only
RETRY_LOCK writers wait for a busy database.
"""

from __future__ import annotations

from dataclasses import dataclass
import sqlite3
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from search_bridge.native.storage import EngineOptions


@dataclass(frozen=True)
class ShardPragmas:
    cache_size_kb: int
    mmap_size_bytes: int
    busy_timeout_ms: int
    temp_store: str = "FILE"
    # None leaves the connection's current setting alone.
    journal_mode: str | None = None
    synchronous: str | None = None
    page_size: int | None = None
    cache_spill: bool | None = None
    query_only: bool = False

    def statements(self) -> list[str]:
        statements = [f"PRAGMA busy_timeout = {self.busy_timeout_ms}"]
        # Only takes effect before the file is first written.
        if self.page_size is not None:
            statements.append(f"PRAGMA page_size = {self.page_size}")
        if self.journal_mode is not None:
            statements.append(f"PRAGMA journal_mode = {self.journal_mode}")
        if self.synchronous is not None:
            statements.append(f"PRAGMA synchronous = {self.synchronous}")
        statements += [
            f"PRAGMA cache_size = {self.cache_size_kb}",
            f"PRAGMA mmap_size = {self.mmap_size_bytes}",
            f"PRAGMA temp_store = {self.temp_store}",
        ]
        if self.cache_spill is not None:
            statements.append(f"PRAGMA cache_spill = {'TRUE' if self.cache_spill else 'FALSE'}")
        if self.query_only:
            statements.append("PRAGMA query_only = 1")
        return statements

    def apply(self, conn: sqlite3.Connection) -> None:
        for statement in self.statements():
            conn.execute(statement)


def reader_pragmas(options: EngineOptions) -> ShardPragmas:
    """Snapshot readers: never write, never touch the journal mode."""
    return ShardPragmas(
        cache_size_kb=options.cache_size_kb,
        mmap_size_bytes=options.mmap_size_bytes,
        busy_timeout_ms=options.lock_retry_timeout_ms,
        query_only=True,
    )


def writer_pragmas(
    options: EngineOptions,
    *,
    synchronous: str,
    journal_mode: str,
    retry_lock: bool,
    page_size: int,
) -> ShardPragmas:
    return ShardPragmas(
        cache_size_kb=options.cache_size_kb,
        mmap_size_bytes=options.mmap_size_bytes,
        busy_timeout_ms=options.lock_retry_timeout_ms if retry_lock else 0,
        journal_mode=journal_mode,
        synchronous=synchronous,
        page_size=page_size,
        cache_spill=False,
    )
