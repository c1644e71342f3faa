"""
Heap field layout.

The ledger persists five independently addressable fields. The four maps
are JSON objects; ``totalSupply`` is bare decimal text.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from nftledger.errors import SerializationFailure

TOKEN_OWNERS = "tokenOwners"
OWNED_TOKENS = "ownedTokens"
OWNED_TOKEN_INDEX = "ownedTokenIndex"
TOTAL_SUPPLY = "totalSupply"
TOKEN_METADATA = "tokenMetadata"

CORE_FIELDS = (TOKEN_OWNERS, OWNED_TOKENS, OWNED_TOKEN_INDEX, TOTAL_SUPPLY)
FIELDS = CORE_FIELDS + (TOKEN_METADATA,)


def empty(name: str) -> Any:
    """Value of a field that is absent from the store."""
    _check_name(name)
    if name == TOTAL_SUPPLY:
        return "0"
    return {}


def decode(name: str, raw: Optional[bytes]) -> Any:
    """
    Decode a stored field. None / empty payloads and JSON null are the
    empty value. Wrong shapes raise SerializationFailure.
    """
    _check_name(name)
    if raw is None:
        return empty(name)
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SerializationFailure(f"{name}: not utf-8 ({e})") from e
    else:
        text = str(raw)
    text = text.strip()
    if not text:
        return empty(name)

    if name == TOTAL_SUPPLY:
        # Some writers quote the counter as a JSON string
        if text.startswith('"'):
            value = _loads(name, text)
            if not isinstance(value, str):
                raise SerializationFailure(f"{name}: expected text, got {type(value).__name__}")
            return value
        return text

    value = _loads(name, text)
    if value is None:
        return empty(name)
    if not isinstance(value, dict):
        raise SerializationFailure(f"{name}: expected a JSON object, got {type(value).__name__}")

    for key, item in value.items():
        if name == TOKEN_OWNERS and not isinstance(item, str):
            raise SerializationFailure(f"{name}[{key!r}]: owner must be a string")
        if name == OWNED_TOKENS:
            if not isinstance(item, list) or not all(isinstance(t, str) for t in item):
                raise SerializationFailure(f"{name}[{key!r}]: expected a list of token ids")
        if name == OWNED_TOKEN_INDEX:
            if isinstance(item, bool) or not isinstance(item, int) or item < 0:
                raise SerializationFailure(f"{name}[{key!r}]: index must be a non-negative integer")
        if name == TOKEN_METADATA and not isinstance(item, dict):
            raise SerializationFailure(f"{name}[{key!r}]: metadata must be a JSON object")
    return value


def encode(name: str, value: Any) -> bytes:
    _check_name(name)
    if name == TOTAL_SUPPLY:
        return str(value).encode("utf-8")
    try:
        return json.dumps(value, separators=(",", ":"), sort_keys=True).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationFailure(f"{name}: cannot encode ({e})") from e


def _loads(name: str, text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise SerializationFailure(f"{name}: invalid JSON ({e})") from e


def _check_name(name: str) -> None:
    if name not in FIELDS:
        raise KeyError(f"unknown heap field {name!r}")
