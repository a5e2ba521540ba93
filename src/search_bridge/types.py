"""Validated identifiers for the engine's raw integers."""

from __future__ import annotations

from dataclasses import dataclass


_U32_MAX = 0xFFFFFFFF


def _check_u32(kind: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{kind} must be an int, not {type(value).__name__}")
    if not 0 <= value <= _U32_MAX:
        raise ValueError(f"{kind} {value} outside 0..{_U32_MAX}")
    return value


@dataclass(frozen=True, order=True)
class DocId:
    """A document id. Zero is never a document, so it has no ``DocId``."""

    value: int

    def __post_init__(self) -> None:
        _check_u32("DocId", self.value)
        if self.value == 0:
            raise ValueError("DocId cannot be zero")

    @classmethod
    def new(cls, value: int) -> DocId | None:
        """``None`` for zero, a ``DocId`` otherwise."""
        return None if _check_u32("DocId", value) == 0 else cls(value)

    def __int__(self) -> int:
        return self.value

    def __index__(self) -> int:
        return self.value


@dataclass(frozen=True, order=True)
class Slot:
    value: int

    def __post_init__(self) -> None:
        _check_u32("Slot", self.value)

    def __int__(self) -> int:
        return self.value

    def __index__(self) -> int:
        return self.value


@dataclass(frozen=True, order=True)
class Position:
    value: int

    def __post_init__(self) -> None:
        _check_u32("Position", self.value)

    def __int__(self) -> int:
        return self.value

    def __index__(self) -> int:
        return self.value


def as_docid(value: DocId | int) -> int:
    """Raw id for the engine, rejecting zero."""
    if isinstance(value, DocId):
        return value.value
    return DocId(value).value


def as_slot(value: Slot | int) -> int:
    return value.value if isinstance(value, Slot) else Slot(value).value


def as_position(value: Position | int) -> int:
    return value.value if isinstance(value, Position) else Position(value).value
