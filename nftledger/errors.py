"""
Error kinds raised by the ledger, the heap adapter and the runtime.

Each error carries a stable ``kind`` string that the runtime prints on
stderr before exiting with a non-zero code.
"""

from __future__ import annotations


class LedgerError(Exception):
    kind = "LedgerError"

    def __str__(self) -> str:
        # bypass KeyError.__str__, which would repr() the message
        msg = Exception.__str__(self)
        return msg or self.kind


class NotFound(LedgerError, KeyError):
    """A token or owner is absent where presence was required."""

    kind = "NotFound"


class AlreadyExists(LedgerError):
    """Mint of a token id that is currently alive."""

    kind = "AlreadyExists"


class OutOfRange(LedgerError, IndexError):
    kind = "OutOfRange"


class InvalidNumericEncoding(LedgerError, ValueError):
    """The stored supply text is not a canonical base-10 integer."""

    kind = "InvalidNumericEncoding"


class StoreFailure(LedgerError):
    """Fetch or save against the heap store failed or returned a bad status."""

    kind = "StoreFailure"


class SerializationFailure(LedgerError, ValueError):
    """Malformed request payload, stored field, or unencodable reply."""

    kind = "SerializationFailure"


class InvariantViolation(LedgerError):
    kind = "InvariantViolation"

    def __init__(self, message: str = "", issues=None) -> None:
        super().__init__(message)
        self.issues = list(issues or [])


class ConfigError(LedgerError):
    kind = "ConfigError"
