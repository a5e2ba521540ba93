"""Error types raised by the engine.

The bridge never lets these escape to application code; the handle layer
translates each of them into a ``search_bridge.errors`` type.
"""

from __future__ import annotations


class NativeError(Exception):
    """Base class for every error the engine reports."""


class NativeFault(NativeError):
    """Memory-safety violation: freed address, double free or type confusion."""


class DatabaseError(NativeError):
    """Generic database failure."""


class DatabaseOpeningError(DatabaseError):
    """A database could not be opened."""


class DatabaseNotFoundError(DatabaseOpeningError):
    """Open-only mode and nothing exists at the path."""


class DatabaseExistsError(DatabaseOpeningError):
    """Create-only mode and a database already exists at the path."""


class DatabaseCorruptError(DatabaseOpeningError):
    """The files at the path are not a readable database."""


class DatabaseLockError(DatabaseOpeningError):
    """Another writer holds the write lock."""


class DatabaseClosedError(DatabaseError):
    """Operation on a database after ``close()``."""


class DocNotFoundError(NativeError):
    """No document with the requested id."""


class InvalidArgumentError(NativeError):
    """An argument was outside its valid domain."""


class InvalidOperationError(NativeError):
    """The operation is not valid in the current state."""


class QueryParserError(NativeError):
    """The query string could not be parsed."""


class WildcardError(NativeError):
    """A wildcard expanded to more terms than allowed."""


class SerialisationError(NativeError):
    """A value could not be serialised."""
