"""Exceptions raised by the bridge.

Engine errors never reach application code directly: ``translate_errors``
maps each of them onto the types below at the handle layer.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
import os

from search_bridge.native import errors as native_errors


class BridgeError(Exception):
    """Base class for every bridge error."""


class OpenReason(str, Enum):
    NOT_FOUND = "not_found"
    EXISTS = "exists"
    CORRUPT = "corrupt"
    LOCKED = "locked"
    INVALID = "invalid"


class OpenError(BridgeError):
    """The engine refused to construct a database handle."""

    def __init__(self, message: str, *, path: str | None = None, reason: OpenReason = OpenReason.INVALID) -> None:
        super().__init__(message)
        self.path = path
        self.reason = reason


ConstructionError = OpenError


class DecodeError(BridgeError, ValueError):
    """Stored bytes are not a valid encoding of the requested type."""


class Utf8Error(BridgeError, ValueError):
    """Engine bytes are not valid UTF-8 where text was required."""

    def __init__(self, data: bytes, valid_up_to: int, reason: str = "invalid utf-8") -> None:
        super().__init__(f"{reason} at byte {valid_up_to}")
        self.data = data
        self.valid_up_to = valid_up_to


class CallbackPanic(BridgeError):
    """A callback raised inside a trampoline.

    Recorded on the registration's stats; never raised across the engine.
    """

    def __init__(self, role: str, cause: BaseException) -> None:
        super().__init__(f"{role} callback raised {type(cause).__name__}: {cause}")
        self.role = role
        self.cause = cause


class InvalidHandleError(BridgeError, RuntimeError):
    """A handle was used after it was dropped, or mutated through a read-only view."""


class BorrowError(BridgeError, RuntimeError):
    """A shared cell was borrowed in a way that conflicts with an active borrow."""


class RegistryFullError(BridgeError):
    """The callback registry has no free slots."""


class NativeCallError(BridgeError):
    """The engine reported an error for an otherwise valid call."""


class DatabaseClosedError(NativeCallError):
    pass


class DocNotFoundError(NativeCallError, LookupError):
    pass


class QueryParserError(NativeCallError):
    pass


class InvalidArgumentError(NativeCallError, ValueError):
    pass


class InvalidOperationError(NativeCallError):
    pass


class WildcardError(NativeCallError):
    pass


_OPEN_REASONS: tuple[tuple[type[native_errors.NativeError], OpenReason], ...] = (
    (native_errors.DatabaseNotFoundError, OpenReason.NOT_FOUND),
    (native_errors.DatabaseExistsError, OpenReason.EXISTS),
    (native_errors.DatabaseCorruptError, OpenReason.CORRUPT),
    (native_errors.DatabaseLockError, OpenReason.LOCKED),
)

_CALL_ERRORS: tuple[tuple[type[native_errors.NativeError], type[NativeCallError]], ...] = (
    (native_errors.DatabaseClosedError, DatabaseClosedError),
    (native_errors.DocNotFoundError, DocNotFoundError),
    (native_errors.QueryParserError, QueryParserError),
    (native_errors.InvalidArgumentError, InvalidArgumentError),
    (native_errors.InvalidOperationError, InvalidOperationError),
    (native_errors.WildcardError, WildcardError),
    (native_errors.SerialisationError, InvalidArgumentError),
)


def _open_error(exc: native_errors.DatabaseOpeningError, path: str | bytes | os.PathLike | None) -> OpenError:
    reason = next((reason for kind, reason in _OPEN_REASONS if isinstance(exc, kind)), OpenReason.INVALID)
    shown = os.fsdecode(path) if path is not None else None
    return OpenError(str(exc), path=shown, reason=reason)


@contextmanager
def translate_errors(*, path: str | bytes | os.PathLike | None = None) -> Iterator[None]:
    """Re-raise engine errors as bridge errors.

    A ``NativeFault`` means the bridge itself broke an ownership rule; it is
    surfaced as ``InvalidHandleError`` so it cannot be mistaken for a normal
    engine failure.
    """
    try:
        yield
    except native_errors.DatabaseOpeningError as exc:
        raise _open_error(exc, path) from exc
    except native_errors.NativeFault as exc:
        msg = f"engine memory fault: {exc}"
        raise InvalidHandleError(msg) from exc
    except native_errors.NativeError as exc:
        for native_type, bridge_type in _CALL_ERRORS:
            if isinstance(exc, native_type):
                raise bridge_type(str(exc)) from exc
        raise NativeCallError(str(exc)) from exc
