"""Owned and borrowed wrappers around engine objects.

Every engine object the application can touch is held by a ``Handle``. A
handle either owns its engine object, releasing it exactly once through the
call table when dropped or garbage collected, or is a view that borrows the
address of an object some other handle owns. Views are created by
``upcast``/``upcast_mut`` and never release anything.

Handle types declare their engine type and, where the engine type is a
subclass of another engine type, the handle type an upcast produces. The
declaration is checked against the engine's object layout when the class is
defined, so a wrong declaration fails at import time instead of at the first
call.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
from typing import Any, ClassVar, TypeVar
import weakref

from search_bridge.errors import InvalidHandleError, translate_errors
from search_bridge.native import lib
from search_bridge.native.errors import NativeError
from search_bridge.observability.metrics import HANDLES_LIVE


logger = logging.getLogger(__name__)

H = TypeVar("H", bound="Handle")
R = TypeVar("R")


def _release(native_type: str, ptr: int, dependents: list[Any]) -> None:
    try:
        lib.delete(native_type, ptr)
    except NativeError:
        logger.exception("Failed to release %s at %#x", native_type, ptr)
    finally:
        HANDLES_LIVE.labels(type=native_type).dec()
    # Callback registrations the engine object pointed at can only go once
    # the engine object itself is gone.
    for dependent in dependents:
        dependent.close()


class Handle:
    """Base class for handles over engine objects."""

    native_type: ClassVar[str] = ""
    upcast_target: ClassVar[type[Handle] | None] = None

    def __init_subclass__(cls, *, native_type: str | None = None, upcasts_to: type[Handle] | None = None, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if native_type is not None:
            cls.native_type = native_type
        if upcasts_to is not None:
            if not lib.layout_is_primary_base(upcasts_to.native_type, cls.native_type):
                msg = f"{cls.native_type} cannot be viewed as {upcasts_to.native_type}: not a primary base"
                raise TypeError(msg)
            cls.upcast_target = upcasts_to

    def __init__(self, ptr: int, *, owner: Handle | None = None, mutable: bool = True) -> None:
        self._ptr = ptr
        self._owner = owner
        self._mutable = mutable
        self._dependents: list[Any] = []
        if owner is None:
            self._finalizer = weakref.finalize(self, _release, self.native_type, ptr, self._dependents)
            HANDLES_LIVE.labels(type=self.native_type).inc()
        else:
            self._finalizer = None
        self._setup()

    def _setup(self) -> None:
        """Initialise per-type state. Runs for adopted handles too."""

    @classmethod
    def _adopt(cls: type[H], ptr: int) -> H:
        """Take ownership of an address the engine just returned."""
        handle = cls.__new__(cls)
        Handle.__init__(handle, ptr)
        return handle

    @classmethod
    def _view(cls: type[H], ptr: int, owner: Handle, *, mutable: bool) -> H:
        handle = cls.__new__(cls)
        Handle.__init__(handle, ptr, owner=owner, mutable=mutable)
        return handle

    @property
    def alive(self) -> bool:
        if self._owner is not None:
            return self._owner.alive
        return self._finalizer is not None and self._finalizer.alive

    @property
    def is_view(self) -> bool:
        return self._owner is not None

    @property
    def ptr(self) -> int:
        """Address of the engine object. Raises once the owner has been dropped."""
        if not self.alive:
            msg = f"{type(self).__name__} used after it was dropped"
            raise InvalidHandleError(msg)
        return self._ptr

    @property
    def ptr_mut(self) -> int:
        if not self._mutable:
            msg = f"{type(self).__name__} is a read-only view"
            raise InvalidHandleError(msg)
        return self.ptr

    def _call(self, fn: Callable[..., R], *args: Any, mutating: bool = False) -> R:
        ptr = self.ptr_mut if mutating else self.ptr
        with translate_errors():
            return fn(ptr, *args)

    def _retain_dependent(self, dependent: Any) -> None:
        """Close ``dependent`` right after the engine object is released."""
        self._dependents.append(dependent)

    def drop(self) -> None:
        """Release the engine object now instead of at garbage collection."""
        if self._owner is not None:
            msg = "views do not own their engine object"
            raise InvalidHandleError(msg)
        if self._finalizer is not None:
            self._finalizer()

    def upcast(self) -> Handle:
        """Read-only view of this object as its engine base type."""
        return self._upcast(mutable=False)

    def upcast_mut(self) -> Handle:
        """Mutable view of this object as its engine base type."""
        if not self._mutable:
            msg = f"{type(self).__name__} is a read-only view"
            raise InvalidHandleError(msg)
        return self._upcast(mutable=True)

    def _upcast(self, *, mutable: bool) -> Handle:
        target = type(self).upcast_target
        if target is None:
            msg = f"{type(self).__name__} has no engine base type"
            raise TypeError(msg)
        owner = self._owner if self._owner is not None else self
        return target._view(self.ptr, owner, mutable=mutable)

    def __repr__(self) -> str:
        state = "view" if self.is_view else "owned"
        if not self.alive:
            state = "dropped"
        return f"<{type(self).__name__} {state} at {self._ptr:#x}>"
