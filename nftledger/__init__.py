"""
NFT Ledger Package

Provides the bookkeeping core of a non-fungible-token ledger:
- Ledger state machine (mint / burn / transfer, balances, enumeration, metadata)
- Heap adapter that lazily or eagerly loads ledger fields from a store
- Store backends (memory, JSON file, Redis, HTTP smart-contract object API)
- RPC dispatcher and the one-shot stdin/stdout runtime

Every invocation rebuilds the ledger from the store, runs a single
operation and commits the dirty fields back as one unit.
"""

from nftledger.errors import (
    AlreadyExists,
    ConfigError,
    InvalidNumericEncoding,
    InvariantViolation,
    LedgerError,
    NotFound,
    OutOfRange,
    SerializationFailure,
    StoreFailure,
)
from nftledger.nft_ledger import Ledger

__all__ = [
    "AlreadyExists",
    "ConfigError",
    "InvalidNumericEncoding",
    "InvariantViolation",
    "Ledger",
    "LedgerError",
    "NotFound",
    "OutOfRange",
    "SerializationFailure",
    "StoreFailure",
]
