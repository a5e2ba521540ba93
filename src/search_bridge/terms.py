"""Stemming and term generation."""

from __future__ import annotations

from enum import IntEnum, IntFlag
from typing import TYPE_CHECKING, Any

from search_bridge.callbacks import CallbackRegistry, Registration, Role
from search_bridge.document import Document
from search_bridge.errors import translate_errors
from search_bridge.handles import Handle
from search_bridge.native import lib
from search_bridge.strings import StrOrBytes, decode_text, to_native


if TYPE_CHECKING:
    from search_bridge.database import WritableDatabase


class StemStrategy(IntEnum):
    NONE = 0
    """Index and search unstemmed terms only."""
    SOME = 1
    """Add ``Z``-prefixed stems alongside the unstemmed terms."""
    ALL = 2
    """Stem every term, without a ``Z`` prefix."""
    ALL_Z = 3
    """Stem every term and mark the stems with ``Z``."""
    SOME_FULL_POS = 4
    """Like ``SOME``, but the stems carry positions too."""


class StopStrategy(IntEnum):
    NONE = 0
    ALL = 1
    STEMMED = 2


class TermGeneratorFlags(IntFlag):
    NONE = 0
    SPELLING = 128


class Stem(Handle, native_type="Stem"):
    """A stemming algorithm for one language; ``"none"`` leaves words alone."""

    def __init__(self, language: StrOrBytes = "none") -> None:
        with translate_errors():
            ptr = lib.stem_new(to_native(language))
        super().__init__(ptr)

    @classmethod
    def for_language(cls, language: StrOrBytes) -> Stem:
        return cls(language)

    @staticmethod
    def languages() -> set[str]:
        return set(decode_text(lib.stem_languages()).split())

    @property
    def is_noop(self) -> bool:
        return self._call(lib.stem_is_none)

    def stem(self, word: StrOrBytes) -> str:
        return decode_text(self._call(lib.stem_call, to_native(word)))

    __call__ = stem

    def description(self) -> str:
        return decode_text(self._call(lib.stem_get_description))


class TermGenerator(Handle, native_type="TermGenerator"):
    """Splits text into terms and adds them to a document."""

    def _setup(self) -> None:
        self._registry = CallbackRegistry()
        self._retain_dependent(self._registry)
        self._stopper: Registration | None = None
        self._database: Any = None

    def __init__(self) -> None:
        super().__init__(lib.termgen_new())

    def set_stemmer(self, stemmer: Stem) -> None:
        self._call(lib.termgen_set_stemmer, stemmer.ptr, mutating=True)

    def set_stemming_strategy(self, strategy: StemStrategy) -> None:
        self._call(lib.termgen_set_stemming_strategy, int(strategy), mutating=True)

    def set_stopper(self, stopper: Any) -> None:
        """Install a ``Stopper``, a predicate, or a collection of stopwords.

        ``None`` removes the current stopper.
        """
        previous = self._stopper
        if stopper is None:
            self._call(lib.termgen_set_stopper, 0, mutating=True)
            self._stopper = None
        else:
            registration = self._registry.register(Role.STOPPER, stopper)
            try:
                self._call(lib.termgen_set_stopper, registration.peer, mutating=True)
            except Exception:
                self._registry.unregister(registration.key)
                raise
            self._stopper = registration
        if previous is not None:
            self._registry.unregister(previous.key)

    @property
    def stopper(self) -> Registration | None:
        return self._stopper

    def set_stopper_strategy(self, strategy: StopStrategy) -> None:
        self._call(lib.termgen_set_stopper_strategy, int(strategy), mutating=True)

    def set_document(self, document: Document) -> None:
        """Add terms to ``document`` from now on and restart term positions at zero."""
        self._call(lib.termgen_set_document, document.ptr, mutating=True)

    @property
    def document(self) -> Document:
        return Document._adopt(self._call(lib.termgen_get_document))

    def set_database(self, database: WritableDatabase) -> None:
        """Database that receives spelling data when ``SPELLING`` is set."""
        self._call(lib.termgen_set_database, database.ptr, mutating=True)
        # The engine keeps the address; keep the owner alive with it.
        self._database = database

    def set_flags(self, flags: TermGeneratorFlags) -> TermGeneratorFlags:
        """Replace the flags and return the previous ones."""
        return TermGeneratorFlags(self._call(lib.termgen_set_flags, int(flags), mutating=True))

    def index_text(self, text: StrOrBytes, wdf_inc: int = 1, prefix: StrOrBytes = "") -> None:
        self._call(lib.termgen_index_text, to_native(text), wdf_inc, to_native(prefix), mutating=True)

    def index_text_without_positions(self, text: StrOrBytes, wdf_inc: int = 1, prefix: StrOrBytes = "") -> None:
        self._call(
            lib.termgen_index_text_without_positions,
            to_native(text),
            wdf_inc,
            to_native(prefix),
            mutating=True,
        )

    def increase_termpos(self, delta: int = 100) -> None:
        """Leave a gap so phrases cannot match across separately indexed fields."""
        self._call(lib.termgen_increase_termpos, delta, mutating=True)

    @property
    def termpos(self) -> int:
        return self._call(lib.termgen_get_termpos)

    @termpos.setter
    def termpos(self, value: int) -> None:
        self._call(lib.termgen_set_termpos, value, mutating=True)
