"""Application callbacks the engine calls back into.

An application implements one of the abstract roles below (or passes a
plain function, which is adapted) and registers it with a
``CallbackRegistry``. Registering creates an engine-side peer object whose
methods forward to a trampoline in this module. The trampoline looks the
registration up by a generation-checked key, borrows the implementation,
converts arguments into bridge types, calls it and converts the result back.

Nothing raised by an implementation crosses into the engine. A failure is
recorded on the registration's ``stats``, logged at
``SEARCH_BRIDGE_CALLBACK_FAILURE_LOG_LEVEL``, counted in
``search_bridge_callback_failures_total`` and replaced by the role's most
conservative answer: reject the document, drop the expansion term, keep the
word, decline the field, or leave the range unrecognised.

Registrations are either durable, owned by the handle the engine object was
attached to and released after it, or transient, scoped to one call such as
``Enquire.mset(decider=...)``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Collection, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Any
import weakref

from search_bridge.cells import SharedCell
from search_bridge.config import get_settings
from search_bridge.document import Document
from search_bridge.errors import CallbackPanic, RegistryFullError, translate_errors
from search_bridge.native import lib
from search_bridge.native.interfaces import VTable
from search_bridge.observability.context import callback_scope
from search_bridge.observability.metrics import CALLBACK_FAILURES, CALLBACK_INVOCATIONS, REGISTRATIONS_LIVE
from search_bridge.query import Query
from search_bridge.strings import StrOrBytes, decode_lossy, to_native
from search_bridge.types import Slot, as_slot
from search_bridge.values import serialize_value


logger = logging.getLogger(__name__)


class Role(str, Enum):
    EXPAND_DECIDER = "expand_decider"
    FIELD_PROCESSOR = "field_processor"
    MATCH_DECIDER = "match_decider"
    MATCH_SPY = "match_spy"
    STOPPER = "stopper"
    RANGE_PROCESSOR = "range_processor"


# --- roles ---------------------------------------------------------------------


class ExpandDecider(ABC):
    """Decides which terms may appear in an expansion set."""

    @abstractmethod
    def should_keep(self, term: str) -> bool: ...


class FieldProcessor(ABC):
    """Turns the text after ``field:`` in a query string into a query.

    Return ``None`` to decline; the field then matches nothing.
    """

    @abstractmethod
    def process(self, text: str) -> Query | None: ...


class MatchDecider(ABC):
    @abstractmethod
    def is_match(self, document: Document) -> bool: ...


class MatchSpy(ABC):
    """Observes every candidate document a search considers."""

    @abstractmethod
    def observe(self, document: Document, weight: float) -> None: ...

    def name(self) -> str | None:
        return None


class Stopper(ABC):
    @abstractmethod
    def is_stopword(self, word: str) -> bool: ...


class RangeProcessor(ABC):
    """Recognises ``begin..end`` query syntax for one value slot.

    ``marker`` is a prefix (or, with the ``SUFFIX`` flag, a suffix) the range
    must carry; the engine strips it before ``process_range`` sees the ends.
    ``process_range`` returns the encoded ``(low, high)`` bounds, either of
    which may be ``None`` for an open end, or ``(None, None)`` when it does
    not recognise the range. Bounds that are not bytes go through the value
    codec.
    """

    def __init__(self, slot: Slot | int, marker: StrOrBytes = "", flags: int = 0) -> None:
        self.slot = Slot(as_slot(slot))
        self.marker = to_native(marker)
        self.flags = int(flags)

    @abstractmethod
    def process_range(self, begin: str, end: str) -> tuple[Any, Any]: ...


class SimpleStopper(Stopper):
    """Stopper backed by a fixed set of words."""

    def __init__(self, words: Collection[str] = ()) -> None:
        self.words = set(words)

    def add(self, word: str) -> None:
        self.words.add(word)

    def is_stopword(self, word: str) -> bool:
        return word in self.words

    def __repr__(self) -> str:
        return f"SimpleStopper({len(self.words)} words)"


class _FunctionExpandDecider(ExpandDecider):
    def __init__(self, fn: Callable[[str], bool]) -> None:
        self._fn = fn

    def should_keep(self, term: str) -> bool:
        return self._fn(term)


class _FunctionFieldProcessor(FieldProcessor):
    def __init__(self, fn: Callable[[str], Query | None]) -> None:
        self._fn = fn

    def process(self, text: str) -> Query | None:
        return self._fn(text)


class _FunctionMatchDecider(MatchDecider):
    def __init__(self, fn: Callable[[Document], bool]) -> None:
        self._fn = fn

    def is_match(self, document: Document) -> bool:
        return self._fn(document)


class _FunctionMatchSpy(MatchSpy):
    def __init__(self, fn: Callable[[Document, float], None]) -> None:
        self._fn = fn

    def observe(self, document: Document, weight: float) -> None:
        self._fn(document, weight)

    def name(self) -> str | None:
        return getattr(self._fn, "__name__", None)


class _FunctionStopper(Stopper):
    def __init__(self, fn: Callable[[str], bool]) -> None:
        self._fn = fn

    def is_stopword(self, word: str) -> bool:
        return self._fn(word)


# --- trampolines ---------------------------------------------------------------


def _snapshot(doc_ref: int) -> Document:
    # The engine's document is only lent for this call; hand the callback a
    # copy it may keep.
    with translate_errors():
        return Document._adopt(lib.document_copy(doc_ref))


def _bound(value: Any) -> bytes | None:
    if value is None:
        return None
    return serialize_value(value)


def _match_decider(registration: Registration, impl: MatchDecider, doc_ref: int) -> bool:
    return bool(impl.is_match(_snapshot(doc_ref)))


def _expand_decider(registration: Registration, impl: ExpandDecider, term: bytes) -> bool:
    return bool(impl.should_keep(decode_lossy(term)))


def _stopper(registration: Registration, impl: Stopper, word: bytes) -> bool:
    return bool(impl.is_stopword(decode_lossy(word)))


def _field_processor(registration: Registration, impl: FieldProcessor, text: bytes) -> int:
    query = impl.process(decode_lossy(text))
    if query is None:
        registration.record_declined()
        return lib.query_invalid()
    if not isinstance(query, Query):
        msg = f"field processor returned {type(query).__name__}, expected Query or None"
        raise TypeError(msg)
    # The engine takes ownership of the returned address.
    with translate_errors():
        return lib.query_copy(query.ptr)


def _match_spy(registration: Registration, impl: MatchSpy, doc_ref: int, weight: float) -> None:
    impl.observe(_snapshot(doc_ref), float(weight))


def _range_processor(
    registration: Registration, impl: RangeProcessor, begin: bytes, end: bytes
) -> tuple[bytes | None, bytes | None]:
    low, high = impl.process_range(decode_lossy(begin), decode_lossy(end))
    return _bound(low), _bound(high)


class _Context:
    """Opaque value the engine hands back to every trampoline call."""

    __slots__ = ("_registry", "key")

    def __init__(self, registry: CallbackRegistry, key: RegistrationKey) -> None:
        self._registry = weakref.ref(registry)
        self.key = key

    def resolve(self) -> Registration | None:
        registry = self._registry()
        return registry.lookup(self.key) if registry is not None else None


def _trampoline(role: Role, call: Callable[..., Any]) -> Callable[..., Any]:
    def invoke(context: _Context, *args: Any) -> Any:
        registration = context.resolve()
        if registration is None:
            logger.warning("Engine invoked a released %s registration", role.value)
            return _ROLES[role].fallback()
        return registration.invoke(call, args)

    invoke.__name__ = f"{role.value}_trampoline"
    return invoke


def _spy_name(registration: Registration, impl: MatchSpy) -> bytes:
    name = impl.name()
    return to_native(name if name is not None else type(impl).__name__)


def _describe_match_spy(context: _Context) -> bytes:
    registration = context.resolve()
    if registration is None:
        return b"MatchSpy"
    return registration.invoke(_spy_name, (), exclusive=False, fallback=lambda: b"MatchSpy")


@dataclass(frozen=True)
class _RoleBinding:
    interface: str
    abc: type
    adapter: Callable[[Callable[..., Any]], Any]
    vtable: VTable
    fallback: Callable[[], Any]
    exclusive: bool = False
    peer_args: Callable[[Any], tuple[Any, ...]] = lambda impl: ()


_ROLES: dict[Role, _RoleBinding] = {
    Role.MATCH_DECIDER: _RoleBinding(
        interface="MatchDecider",
        abc=MatchDecider,
        adapter=_FunctionMatchDecider,
        vtable=VTable(_trampoline(Role.MATCH_DECIDER, _match_decider)),
        fallback=lambda: False,
    ),
    Role.EXPAND_DECIDER: _RoleBinding(
        interface="ExpandDecider",
        abc=ExpandDecider,
        adapter=_FunctionExpandDecider,
        vtable=VTable(_trampoline(Role.EXPAND_DECIDER, _expand_decider)),
        fallback=lambda: False,
    ),
    Role.STOPPER: _RoleBinding(
        interface="Stopper",
        abc=Stopper,
        adapter=_FunctionStopper,
        vtable=VTable(_trampoline(Role.STOPPER, _stopper)),
        fallback=lambda: False,
    ),
    Role.FIELD_PROCESSOR: _RoleBinding(
        interface="FieldProcessor",
        abc=FieldProcessor,
        adapter=_FunctionFieldProcessor,
        vtable=VTable(_trampoline(Role.FIELD_PROCESSOR, _field_processor)),
        fallback=lib.query_invalid,
    ),
    Role.MATCH_SPY: _RoleBinding(
        interface="MatchSpy",
        abc=MatchSpy,
        adapter=_FunctionMatchSpy,
        vtable=VTable(_trampoline(Role.MATCH_SPY, _match_spy), describe=_describe_match_spy),
        fallback=lambda: None,
        exclusive=True,
    ),
    Role.RANGE_PROCESSOR: _RoleBinding(
        interface="RangeProcessor",
        abc=RangeProcessor,
        adapter=lambda fn: fn,
        vtable=VTable(_trampoline(Role.RANGE_PROCESSOR, _range_processor)),
        fallback=lambda: (None, None),
        peer_args=lambda impl: (as_slot(impl.slot), impl.marker, impl.flags),
    ),
}


def adapt(role: Role, implementation: Any) -> Any:
    """Return ``implementation`` as an instance of the role's abstract class."""
    binding = _ROLES[role]
    if isinstance(implementation, binding.abc):
        return implementation
    if role is Role.STOPPER and isinstance(implementation, (set, frozenset, list, tuple)):
        return SimpleStopper(implementation)
    if role is not Role.RANGE_PROCESSOR and callable(implementation):
        return binding.adapter(implementation)
    msg = f"{type(implementation).__name__} cannot act as a {role.value}"
    raise TypeError(msg)


# --- registry ------------------------------------------------------------------


@dataclass(frozen=True)
class RegistrationKey:
    index: int
    generation: int


@dataclass
class CallbackStats:
    calls: int = 0
    failures: int = 0
    declined: int = 0
    last_error: CallbackPanic | None = None


@dataclass(eq=False)
class Registration:
    key: RegistrationKey
    role: Role
    cell: SharedCell[Any]
    durable: bool
    peer: int = 0
    stats: CallbackStats = field(default_factory=CallbackStats)

    @property
    def regime(self) -> str:
        return "durable" if self.durable else "transient"

    def record_declined(self) -> None:
        self.stats.declined += 1
        CALLBACK_FAILURES.labels(role=self.role.value, outcome="declined").inc()

    def invoke(
        self,
        call: Callable[..., Any],
        args: tuple[Any, ...],
        *,
        exclusive: bool | None = None,
        fallback: Callable[[], Any] | None = None,
    ) -> Any:
        """Run ``call`` on the borrowed implementation, containing any failure.

        ``exclusive`` and ``fallback`` default to the role's own.
        """
        binding = _ROLES[self.role]
        self.stats.calls += 1
        CALLBACK_INVOCATIONS.labels(role=self.role.value).inc()
        if exclusive is None:
            exclusive = binding.exclusive
        borrow = self.cell.borrow_mut if exclusive else self.cell.borrow
        with callback_scope(self.role.value):
            try:
                with borrow() as impl:
                    return call(self, impl, *args)
            except Exception as exc:
                self._record_failure(exc)
                return (fallback or binding.fallback)()

    def _record_failure(self, exc: Exception) -> None:
        panic = CallbackPanic(self.role.value, exc)
        self.stats.failures += 1
        self.stats.last_error = panic
        CALLBACK_FAILURES.labels(role=self.role.value, outcome="failed").inc()
        logger.log(
            get_settings().failure_log_level(),
            "Contained %s failure; answering with the role default",
            self.role.value,
            exc_info=exc,
            extra={"registration": self.key.index, "generation": self.key.generation},
        )


class CallbackRegistry:
    """Generation-checked table of live registrations.

    A key stays valid until its registration is released; after that the
    slot may be reused, but under a new generation, so a stale key never
    resolves to somebody else's callback.
    """

    def __init__(self, capacity: int | None = None) -> None:
        self._capacity = capacity if capacity is not None else get_settings().max_registrations
        self._slots: list[Registration | None] = []
        self._generations: list[int] = []
        self._free: list[int] = []

    def __len__(self) -> int:
        return sum(1 for registration in self._slots if registration is not None)

    def register(self, role: Role, implementation: Any, *, durable: bool = True) -> Registration:
        """Create the engine peer for ``implementation`` and return its registration.

        ``implementation`` may be an instance of the role's abstract class, a
        function, or a ``SharedCell`` holding either; the cell lets the
        application keep a handle to state the callback mutates.
        """
        binding = _ROLES[role]
        if isinstance(implementation, SharedCell):
            cell = implementation
            with cell.borrow() as current:
                if not isinstance(current, binding.abc):
                    msg = f"{type(current).__name__} cannot act as a {role.value}"
                    raise TypeError(msg)
        else:
            cell = SharedCell(adapt(role, implementation))

        if self._free:
            index = self._free.pop()
        elif len(self._slots) < self._capacity:
            index = len(self._slots)
            self._slots.append(None)
            self._generations.append(0)
        else:
            msg = f"callback registry is full ({self._capacity} registrations)"
            raise RegistryFullError(msg)

        key = RegistrationKey(index, self._generations[index])
        registration = Registration(key=key, role=role, cell=cell, durable=durable)
        with cell.borrow() as impl:
            peer_args = binding.peer_args(impl)
        try:
            with translate_errors():
                registration.peer = lib.peer_new(binding.interface, binding.vtable, _Context(self, key), *peer_args)
        except Exception:
            self._free.append(index)
            raise
        self._slots[index] = registration
        REGISTRATIONS_LIVE.labels(role=role.value, regime=registration.regime).inc()
        logger.debug("Registered %s %s at slot %d", registration.regime, role.value, index)
        return registration

    def lookup(self, key: RegistrationKey) -> Registration | None:
        if not 0 <= key.index < len(self._slots) or self._generations[key.index] != key.generation:
            return None
        return self._slots[key.index]

    def unregister(self, key: RegistrationKey) -> bool:
        """Release the peer behind ``key``. ``False`` if the key is stale."""
        registration = self.lookup(key)
        if registration is None:
            return False
        self._slots[key.index] = None
        self._generations[key.index] += 1
        self._free.append(key.index)
        REGISTRATIONS_LIVE.labels(role=registration.role.value, regime=registration.regime).dec()
        with translate_errors():
            lib.delete(_ROLES[registration.role].interface, registration.peer)
        return True

    @contextmanager
    def transient(self, role: Role, implementation: Any) -> Iterator[Registration]:
        """Registration that lives for the duration of the block."""
        registration = self.register(role, implementation, durable=False)
        try:
            yield registration
        finally:
            self.unregister(registration.key)

    def registrations(self) -> list[Registration]:
        return [registration for registration in self._slots if registration is not None]

    def close(self) -> None:
        for registration in self.registrations():
            self.unregister(registration.key)
