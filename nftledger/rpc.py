"""
RPC dispatch.

A request is one JSON document:
    {"method": "transfer", "params": {"from": "alice", "to": "bob", "tokenId": "7"}}

Method names are accepted in snake_case or camelCase. Params are
validated with pydantic; the handler calls one Ledger operation and
returns a JSON-serializable reply.

Extra handlers can be registered on a Dispatcher; they receive the
validated params model (or the raw params dict) and the Ledger.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from nftledger.errors import SerializationFailure
from nftledger.nft_ledger import Ledger

Handler = Callable[[Any, Ledger], Any]


# ---------------------------
# Models
# ---------------------------
class _Params(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


def _token_id(value: Any) -> Any:
    # integers are accepted and stored in canonical decimal form
    if isinstance(value, bool):
        raise ValueError("token id must be a string or integer")
    if isinstance(value, int):
        if value < 0:
            raise ValueError("token id must not be negative")
        return str(value)
    return value


class NoParams(_Params):
    pass


class OwnerParams(_Params):
    # queries on an unknown (or empty) owner answer 0 / [] rather than fail
    owner: str


class TokenParams(_Params):
    token_id: str = Field(min_length=1, alias="tokenId")

    @field_validator("token_id", mode="before")
    @classmethod
    def canonical_token_id(cls, value: Any) -> Any:
        return _token_id(value)


class MintParams(TokenParams):
    to: str = Field(min_length=1)


class TransferParams(TokenParams):
    from_: str = Field(min_length=1, alias="from")
    to: str = Field(min_length=1)


class IndexParams(_Params):
    owner: str = Field(min_length=1)
    index: int = Field(ge=0)


class MetadataParams(TokenParams):
    attributes: Dict[str, Any] = Field(default_factory=dict)


class RpcRequest(BaseModel):
    method: str = Field(min_length=1)
    params: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------
# Handlers
# ---------------------------
def _ok(**extra: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {"ok": True}
    out.update(extra)
    return out


def _mint(p: MintParams, ledger: Ledger) -> Dict[str, Any]:
    ledger.mint(p.to, p.token_id)
    return _ok(tokenId=p.token_id, owner=p.to)


def _burn(p: TokenParams, ledger: Ledger) -> Dict[str, Any]:
    ledger.burn(p.token_id)
    return _ok(tokenId=p.token_id)


def _transfer(p: TransferParams, ledger: Ledger) -> Dict[str, Any]:
    ledger.transfer(p.from_, p.to, p.token_id)
    return _ok(tokenId=p.token_id, **{"from": p.from_, "to": p.to})


def _total_supply(p: NoParams, ledger: Ledger) -> Optional[str]:
    value = ledger.total_supply()
    # decimal text keeps precision beyond what JSON numbers carry
    return None if value is None else str(value)


BUILTINS: Dict[str, tuple] = {
    "name": (NoParams, lambda p, ledger: ledger.name),
    "symbol": (NoParams, lambda p, ledger: ledger.symbol),
    "balance_of": (OwnerParams, lambda p, ledger: ledger.balance_of(p.owner)),
    "owner_of": (TokenParams, lambda p, ledger: ledger.owner_of(p.token_id)),
    "mint": (MintParams, _mint),
    "burn": (TokenParams, _burn),
    "transfer": (TransferParams, _transfer),
    "total_supply": (NoParams, _total_supply),
    "token_of_owner_by_index": (
        IndexParams,
        lambda p, ledger: ledger.token_of_owner_by_index(p.owner, p.index),
    ),
    "tokens_owned_by": (OwnerParams, lambda p, ledger: ledger.tokens_owned_by(p.owner)),
    "metadata_for": (TokenParams, lambda p, ledger: dict(ledger.metadata_for(p.token_id))),
    "set_metadata": (MetadataParams, lambda p, ledger: dict(ledger.set_metadata(p.token_id, p.attributes))),
}


def canonical_method(name: str) -> str:
    """balanceOf -> balance_of, tokenOfOwnerByIndex -> token_of_owner_by_index."""
    name = name.strip()
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name).lower()


class Dispatcher:
    def __init__(self) -> None:
        self._handlers: Dict[str, tuple] = dict(BUILTINS)

    def register(self, method: str, handler: Handler, params: Optional[Type[BaseModel]] = None) -> None:
        """
        Add or replace a handler. Without a params model the handler gets the
        raw params dict.
        """
        self._handlers[canonical_method(method)] = (params, handler)

    def methods(self):
        return sorted(self._handlers)

    def parse(self, payload: bytes) -> RpcRequest:
        try:
            data = json.loads(payload.decode("utf-8") if isinstance(payload, bytes) else payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SerializationFailure(f"request is not valid JSON: {e}") from e
        try:
            return RpcRequest.model_validate(data)
        except ValidationError as e:
            raise SerializationFailure(f"invalid request: {_errors(e)}") from e

    def dispatch(self, request: RpcRequest, ledger: Ledger) -> Any:
        method = canonical_method(request.method)
        if method not in self._handlers:
            raise SerializationFailure(
                f"unknown method {request.method!r} (known: {', '.join(self.methods())})"
            )
        model, handler = self._handlers[method]
        if model is None:
            return handler(request.params, ledger)
        try:
            params = model.model_validate(request.params)
        except ValidationError as e:
            raise SerializationFailure(f"invalid params for {method}: {_errors(e)}") from e
        return handler(params, ledger)

    def handle(self, payload: bytes, ledger: Ledger) -> Any:
        return self.dispatch(self.parse(payload), ledger)


def _errors(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())) or "request"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def encode_reply(obj: Any) -> str:
    try:
        return json.dumps(obj)
    except (TypeError, ValueError) as e:
        raise SerializationFailure(f"failed to JSON encode reply: {e}") from e
