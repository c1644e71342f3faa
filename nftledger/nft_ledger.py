"""
NFT Ledger (state machine)

Tracks who holds which non-fungible token:
- tokenOwners      token id -> owner
- ownedTokens      owner -> ordered list of token ids
- ownedTokenIndex  token id -> position inside the owner's list
- totalSupply      live token count, decimal text on the heap
- tokenMetadata    token id -> free-form JSON attributes

The ledger reads and writes its fields through a heap object. The heap
decides whether fields were fetched eagerly or on first access; the
ledger only marks the fields it mutates so the heap can commit them.

Removal compacts the owner's list and re-indexes every token the owner
still holds, so ownedTokenIndex points at the current slot even when an
older writer left stale entries behind.

Every mutation records the owners and token ids it changed. The runtime
checks only those with verify_changes() before committing; verify()
scans the whole heap.
"""

from __future__ import annotations

import json
import sys
from typing import Any, Dict, List, Optional, Set

from nftledger import supply
from nftledger.errors import AlreadyExists, NotFound, OutOfRange
from nftledger.fields import (
    FIELDS,
    OWNED_TOKEN_INDEX,
    OWNED_TOKENS,
    TOKEN_METADATA,
    TOKEN_OWNERS,
    TOTAL_SUPPLY,
)


def log(msg: str) -> None:
    print(f"[NFTLedger] {msg}", file=sys.stderr, flush=True)


class Ledger:
    def __init__(self, name: str, symbol: str, heap) -> None:
        self._name = name
        self._symbol = symbol
        self._heap = heap
        self._changed_owners: Set[str] = set()
        self._changed_tokens: Set[str] = set()
        # totalSupply minus the owned-token count, taken before the first change
        self._supply_offset: Optional[int] = None

    @classmethod
    def in_memory(cls, name: str = "", symbol: str = "", **fields: Any) -> "Ledger":
        """Ledger over a store-less heap; missing fields start empty."""
        from nftledger.heap import Heap

        return cls(name, symbol, Heap.in_memory(**fields))

    @property
    def name(self) -> str:
        return self._name

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def heap(self):
        return self._heap

    # ---------------- Fields ----------------

    @property
    def token_owners(self) -> Dict[str, str]:
        return self._heap.field(TOKEN_OWNERS)

    @property
    def owned_tokens(self) -> Dict[str, List[str]]:
        return self._heap.field(OWNED_TOKENS)

    @property
    def owned_token_index(self) -> Dict[str, int]:
        return self._heap.field(OWNED_TOKEN_INDEX)

    @property
    def token_metadata(self) -> Dict[str, Dict[str, Any]]:
        return self._heap.field(TOKEN_METADATA)

    # ---------------- Queries ----------------

    def balance_of(self, owner: str) -> int:
        return len(self.owned_tokens.get(owner, ()))

    def owner_of(self, token_id: str) -> str:
        owner = self.token_owners.get(token_id)
        if owner is None:
            raise NotFound(f"token {token_id} does not exist")
        return owner

    def total_supply(self) -> Optional[int]:
        """
        Current live supply. An absent counter is 0; a counter that is not
        valid decimal text is reported as None (unknown), never as 0.
        """
        text = self._heap.field(TOTAL_SUPPLY)
        value = supply.try_parse_supply(text)
        if value is None:
            log(f"totalSupply is not decimal text: {text!r}")
        return value

    def token_of_owner_by_index(self, owner: str, index: int) -> str:
        tokens = self.owned_tokens.get(owner, [])
        if index < 0 or index >= len(tokens):
            raise OutOfRange(f"index {index} out of range for {owner} (balance {len(tokens)})")
        return tokens[index]

    def tokens_owned_by(self, owner: str) -> List[str]:
        return list(self.owned_tokens.get(owner, []))

    def metadata_for(self, token_id: str) -> Dict[str, Any]:
        """
        Get-or-create the metadata map for a token. The returned dict is the
        stored one; only creating an entry marks tokenMetadata dirty, so
        in-place edits must go through set_metadata() to be committed.
        """
        meta = self.token_metadata
        entry = meta.get(token_id)
        if entry is None:
            entry = {}
            meta[token_id] = entry
            self._heap.touch(TOKEN_METADATA)
        return entry

    # ---------------- Mutations ----------------

    def mint(self, to: str, token_id: str) -> None:
        owners = self.token_owners
        if token_id in owners:
            raise AlreadyExists(f"token {token_id} already exists")
        # fetch everything and validate the counter before touching state
        self._heap.load(OWNED_TOKENS, OWNED_TOKEN_INDEX)
        current = self._heap.field(TOTAL_SUPPLY)
        new_supply = supply.increment(current)
        self._note_supply(current)

        owners[token_id] = to
        self._append(to, token_id)
        self._changed_tokens.add(token_id)
        self._heap.set_field(TOTAL_SUPPLY, new_supply)
        self._heap.touch(TOKEN_OWNERS, OWNED_TOKENS, OWNED_TOKEN_INDEX)

    def burn(self, token_id: str) -> None:
        owners = self.token_owners
        if token_id not in owners:
            raise NotFound(f"token {token_id} does not exist")
        owner = owners[token_id]
        pos = self._locate(owner, token_id)
        meta = self.token_metadata
        current = self._heap.field(TOTAL_SUPPLY)
        new_supply = supply.decrement(current)
        self._note_supply(current)

        self._remove(owner, token_id, pos)
        self._changed_tokens.add(token_id)
        if meta.pop(token_id, None) is not None:
            self._heap.touch(TOKEN_METADATA)
        self._heap.set_field(TOTAL_SUPPLY, new_supply)
        self._heap.touch(TOKEN_OWNERS, OWNED_TOKENS, OWNED_TOKEN_INDEX)

    def transfer(self, from_: str, to: str, token_id: str) -> None:
        if token_id not in self.owned_token_index:
            raise NotFound(f"token {token_id} has no index entry")
        if not self.owned_tokens.get(from_):
            raise NotFound(f"{from_} does not own any tokens")
        if self.token_owners.get(token_id) != from_:
            raise NotFound(f"token {token_id} is not owned by {from_}")
        pos = self._locate(from_, token_id)

        self._remove(from_, token_id, pos)
        self.token_owners[token_id] = to
        self._append(to, token_id)
        self._changed_tokens.add(token_id)
        self._heap.touch(TOKEN_OWNERS, OWNED_TOKENS, OWNED_TOKEN_INDEX)

    def set_metadata(self, token_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        self.owner_of(token_id)
        entry = self.metadata_for(token_id)
        entry.update(attributes)
        self._heap.touch(TOKEN_METADATA)
        return entry

    # ---------------- Snapshot ----------------

    def snapshot(self) -> Dict[str, Any]:
        """All fields keyed by heap name. Forces every field to load."""
        return {name: self._heap.field(name) for name in FIELDS}

    def encode(self) -> bytes:
        return json.dumps(self.snapshot(), sort_keys=True).encode("utf-8")

    def verify(self) -> None:
        """Raise InvariantViolation if anything on the heap breaks an invariant."""
        from nftledger.integrity import verify_fields

        verify_fields(self.snapshot())

    def verify_changes(self) -> None:
        """
        Check only the owners, tokens and supply this ledger changed, using
        the fields already loaded. Damage elsewhere on the heap is ignored.
        """
        from nftledger.integrity import verify_scope

        verify_scope(
            self._heap.loaded(),
            owners=self._changed_owners,
            tokens=self._changed_tokens,
            supply_offset=self._supply_offset,
        )

    # ---------------- Internals ----------------

    def _note_supply(self, text: Optional[str]) -> None:
        if self._supply_offset is None:
            self._supply_offset = supply.parse_supply(text) - len(self.token_owners)

    def _append(self, owner: str, token_id: str) -> None:
        tokens = self.owned_tokens.setdefault(owner, [])
        self.owned_token_index[token_id] = len(tokens)
        tokens.append(token_id)
        self._changed_owners.add(owner)

    def _locate(self, owner: str, token_id: str) -> int:
        tokens = self.owned_tokens.get(owner) or []
        pos = self.owned_token_index.get(token_id)
        if pos is not None and 0 <= pos < len(tokens) and tokens[pos] == token_id:
            return pos
        # stale index written by an older ledger version
        try:
            return tokens.index(token_id)
        except ValueError:
            raise NotFound(f"token {token_id} is not listed under {owner}") from None

    def _remove(self, owner: str, token_id: str, pos: int) -> None:
        tokens = self.owned_tokens[owner]
        index = self.owned_token_index
        holders = self.token_owners
        del tokens[pos]
        # whole list, not just the shifted tail: repairs stale entries too
        for i, tid in enumerate(tokens):
            if holders.get(tid) == owner:
                index[tid] = i
        if not tokens:
            del self.owned_tokens[owner]
        index.pop(token_id, None)
        holders.pop(token_id, None)
        self._changed_owners.add(owner)
