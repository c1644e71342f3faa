#!/usr/bin/env python3
"""
NFT Ledger runtime

One process per request:
- read contract identity and store settings from the environment
- read the JSON request from stdin (or --input)
- build the heap over the configured store (lazy or eager)
- dispatch the request to one Ledger operation
- if state changed: check invariants, then commit dirty fields in one write
- write the JSON reply to stdout

Diagnostics go to stderr. Exit code 0 on success, 1 on any failure;
a failed request never writes to the store.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, List, Optional

from nftledger.config import LOAD_MODES, STORES, LedgerConfig, load_config
from nftledger.errors import LedgerError, SerializationFailure
from nftledger.heap import Heap
from nftledger.nft_ledger import Ledger
from nftledger.rpc import Dispatcher, encode_reply
from nftledger.store import HeapStore, build_store


def log(msg: str) -> None:
    print(f"[NFTLedger] {msg}", file=sys.stderr, flush=True)


class Runtime:
    def __init__(
        self,
        dispatcher: Optional[Dispatcher] = None,
        store_factory: Callable[[LedgerConfig], HeapStore] = build_store,
    ) -> None:
        self.dispatcher = dispatcher or Dispatcher()
        self.store_factory = store_factory

    def run(self, cfg: LedgerConfig, payload: bytes) -> Any:
        request = self.dispatcher.parse(payload)
        store = self.store_factory(cfg)
        log(f"{request.method} on {cfg.symbol} ({store.describe()}, {cfg.load} load)")

        heap = Heap(store, mode=cfg.load)
        ledger = Ledger(cfg.name, cfg.symbol, heap)
        reply = self.dispatcher.dispatch(request, ledger)

        if heap.dirty:
            if cfg.verify:
                ledger.verify_changes()
            written = heap.commit()
            log(f"Committed {', '.join(written)}")
        return reply


def read_input(path: Optional[str]) -> bytes:
    if path and path != "-":
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise SerializationFailure(f"failed to read {path}: {e}") from e
    return sys.stdin.buffer.read()


def main(argv: List[str] | None = None, runtime: Optional[Runtime] = None) -> int:
    ap = argparse.ArgumentParser(description="Run one NFT ledger request (JSON on stdin, reply on stdout).")
    ap.add_argument("--input", help="Read the request from a file instead of stdin.")
    ap.add_argument("--store", choices=STORES, help="Override LEDGER_STORE.")
    ap.add_argument("--load", choices=LOAD_MODES, help="Override LEDGER_LOAD.")
    args = ap.parse_args(argv)

    try:
        cfg = load_config()
    except LedgerError as e:
        print(f"failed to create contract: {e}", file=sys.stderr)
        return 1
    if args.store:
        cfg = replace(cfg, store=args.store)
    if args.load:
        cfg = replace(cfg, load=args.load)

    runtime = runtime or Runtime()
    try:
        payload = read_input(args.input)
        reply = runtime.run(cfg, payload)
        out = encode_reply(reply)
    except LedgerError as e:
        print(f"failed to handle RPC: {e.kind}: {e}", file=sys.stderr)
        return 1

    sys.stdout.write(out + "\n")
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
