"""Byte conversion at the engine boundary.

Going in, text is encoded and bytes pass through untouched; no UTF-8
validation happens on the way in. Coming out, the engine's bytes are copied
as they are. Only ``decode_text`` insists on valid UTF-8, and it is called
at the application-facing accessors that promise ``str``. Callbacks get
``decode_lossy`` text instead.
"""

from __future__ import annotations

import os

from search_bridge.errors import Utf8Error


StrOrBytes = str | bytes | bytearray | memoryview


def to_native(value: StrOrBytes) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8", errors="surrogateescape")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"expected str or bytes, not {type(value).__name__}")


def to_native_path(path: str | bytes | os.PathLike) -> bytes:
    return os.fsencode(path)


def from_native(data: bytes) -> bytes:
    return bytes(data)


def decode_text(data: bytes) -> str:
    """Strict UTF-8 decode; the error carries the longest valid prefix length."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise Utf8Error(bytes(data), exc.start, exc.reason) from exc


def decode_lossy(data: bytes) -> str:
    """UTF-8 decode that never fails; invalid sequences become U+FFFD.

    Used where engine text is handed to a callback, which must always be
    called.
    """
    return bytes(data).decode("utf-8", errors="replace")
