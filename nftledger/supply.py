"""
Total supply arithmetic.

The heap only persists text, so the supply counter lives on the heap as the
canonical base-10 form of a non-negative integer. Python ints carry the
arbitrary precision; conversion happens here and nowhere else.
"""

from __future__ import annotations

import re
from typing import Optional

from nftledger.errors import InvalidNumericEncoding, InvariantViolation

_DIGITS = re.compile(r"[0-9]+")

ZERO = 0


def parse_supply(text: Optional[str]) -> int:
    """
    Parse stored supply text. Absent or blank text is zero.
    Raises InvalidNumericEncoding for anything that is not plain digits.
    """
    if text is None:
        return ZERO
    s = text.strip()
    if not s:
        return ZERO
    if not _DIGITS.fullmatch(s):
        raise InvalidNumericEncoding(f"invalid supply text {text!r}")
    return int(s, 10)


def try_parse_supply(text: Optional[str]) -> Optional[int]:
    """Read-path variant: None means "unknown", distinct from zero."""
    try:
        return parse_supply(text)
    except InvalidNumericEncoding:
        return None


def format_supply(value: int) -> str:
    if value < 0:
        raise InvariantViolation(f"total supply would become negative ({value})")
    return str(value)


def increment(text: Optional[str]) -> str:
    return format_supply(parse_supply(text) + 1)


def decrement(text: Optional[str]) -> str:
    return format_supply(parse_supply(text) - 1)
