"""
Per-invocation heap.

Holds the decoded ledger fields for one request. Every field starts as
NOT_LOADED; a field that has been fetched keeps its decoded value even
when that value is an empty map, so it is never fetched twice.

Two load strategies, same resulting state:
- lazy   fetch a field on first access
- eager  fetch every field with one get_many() up front

Mutated fields are marked dirty and written back by commit() as a single
put_many() call.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Set

from nftledger import fields as heap_fields
from nftledger.errors import LedgerError, StoreFailure
from nftledger.store import HeapStore

LAZY = "lazy"
EAGER = "eager"


class _NotLoaded:
    __slots__ = ()

    def __repr__(self) -> str:
        return "NOT_LOADED"


NOT_LOADED = _NotLoaded()


class Heap:
    def __init__(self, store: Optional[HeapStore] = None, mode: str = LAZY) -> None:
        if mode not in (LAZY, EAGER):
            raise ValueError(f"unknown load mode {mode!r}")
        self.store = store
        self.mode = mode
        self._values: Dict[str, Any] = {name: NOT_LOADED for name in heap_fields.FIELDS}
        self._dirty: Set[str] = set()
        if mode == EAGER:
            self._fetch_all()

    @classmethod
    def in_memory(cls, **values: Any) -> "Heap":
        """
        Heap with every field already loaded and no store behind it.
        Keyword names are heap field names (tokenOwners=..., totalSupply=...).
        """
        heap = cls(store=None, mode=LAZY)
        for name in heap_fields.FIELDS:
            heap._values[name] = heap_fields.empty(name)
        for name, value in values.items():
            if name not in heap_fields.FIELDS:
                raise KeyError(f"unknown heap field {name!r}")
            heap._values[name] = value
        return heap

    # ---------------- Access ----------------

    def is_loaded(self, name: str) -> bool:
        return self._values[name] is not NOT_LOADED

    def field(self, name: str) -> Any:
        value = self._values[name]
        if value is NOT_LOADED:
            value = self._fetch(name)
        return value

    def loaded(self) -> Dict[str, Any]:
        """Fields fetched so far; nothing is read from the store."""
        return {n: v for n, v in self._values.items() if v is not NOT_LOADED}

    def load(self, *names: str) -> None:
        missing = [n for n in names if not self.is_loaded(n)]
        if len(missing) > 1 and self.store is not None:
            self._fetch_many(missing)
        for n in missing:
            self.field(n)

    def set_field(self, name: str, value: Any) -> None:
        self.field(name)
        self._values[name] = value
        self._dirty.add(name)

    def touch(self, *names: str) -> None:
        for name in names:
            if not self.is_loaded(name):
                raise LedgerError(f"cannot mark unloaded field {name} dirty")
            self._dirty.add(name)

    @property
    def dirty(self) -> List[str]:
        return sorted(self._dirty)

    # ---------------- Store I/O ----------------

    def _fetch(self, name: str) -> Any:
        if self.store is None:
            value = heap_fields.empty(name)
        else:
            value = heap_fields.decode(name, self.store.get(name))
        self._values[name] = value
        return value

    def _fetch_many(self, names: Iterable[str]) -> None:
        names = list(names)
        raw = self.store.get_many(names)
        decoded = {n: heap_fields.decode(n, raw.get(n)) for n in names}
        self._values.update(decoded)

    def _fetch_all(self) -> None:
        if self.store is None:
            for name in heap_fields.FIELDS:
                self._values[name] = heap_fields.empty(name)
            return
        self._fetch_many(heap_fields.FIELDS)

    def encode_dirty(self) -> Dict[str, bytes]:
        return {name: heap_fields.encode(name, self._values[name]) for name in self.dirty}

    def commit(self) -> List[str]:
        """
        Write every dirty field in one put_many(). Returns the written field
        names; an empty list means nothing changed and nothing was written.
        """
        if not self._dirty:
            return []
        payload = self.encode_dirty()
        if self.store is not None:
            try:
                self.store.put_many(payload)
            except LedgerError:
                raise
            except Exception as e:
                raise StoreFailure(f"commit failed: {e}") from e
        written = sorted(payload)
        self._dirty.clear()
        return written
