#!/usr/bin/env python3
"""
NFT Ledger Integrity Guardian

- Loads every heap field from the configured store (eager)
- Validates the ownership structures against each other
- Detects:
    * tokens whose owner does not list them
    * owner lists holding unknown, foreign or duplicate tokens
    * stale or orphaned ownedTokenIndex entries
    * empty owner lists that should have been dropped
    * supply text that is not decimal, or does not match the live count
- Computes balances per owner
- Prints a JSON summary (exit 1 when issues are found); --markdown also
  writes a human-readable report

Read-only: it never commits to the store.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from nftledger import supply
from nftledger.errors import InvariantViolation, LedgerError
from nftledger.fields import OWNED_TOKEN_INDEX, OWNED_TOKENS, TOKEN_OWNERS, TOTAL_SUPPLY


def analyze(fields: Dict[str, Any]) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    owners: Dict[str, str] = fields.get(TOKEN_OWNERS) or {}
    owned: Dict[str, List[str]] = fields.get(OWNED_TOKENS) or {}
    index: Dict[str, int] = fields.get(OWNED_TOKEN_INDEX) or {}
    supply_text: Optional[str] = fields.get(TOTAL_SUPPLY)

    summary = {
        "tokens": len(owners),
        "owners": len(owned),
        "index_entries": len(index),
        "unlisted_tokens": 0,
        "foreign_entries": 0,
        "duplicate_entries": 0,
        "stale_indices": 0,
        "orphaned_indices": 0,
        "empty_owner_lists": 0,
        "supply_mismatch": 0,
    }
    errors: List[str] = []
    balances: Dict[str, int] = {}

    for owner, tokens in sorted(owned.items()):
        balances[owner] = len(tokens)
        if not tokens:
            summary["empty_owner_lists"] += 1
            errors.append(f"- owner `{owner}` → empty token list kept on the heap")
            continue
        seen: set[str] = set()
        for pos, tid in enumerate(tokens):
            if tid in seen:
                summary["duplicate_entries"] += 1
                errors.append(f"- owner `{owner}` → token `{tid}` listed more than once")
                continue
            seen.add(tid)
            holder = owners.get(tid)
            if holder != owner:
                summary["foreign_entries"] += 1
                errors.append(f"- owner `{owner}` → lists token `{tid}` held by {holder!r}")
            if index.get(tid) != pos:
                summary["stale_indices"] += 1
                errors.append(
                    f"- token `{tid}` → index {index.get(tid)!r}, actual position {pos} under `{owner}`"
                )

    for tid, owner in sorted(owners.items()):
        if tid not in owned.get(owner, []):
            summary["unlisted_tokens"] += 1
            errors.append(f"- token `{tid}` → owner `{owner}` does not list it")

    for tid in sorted(index):
        if tid not in owners:
            summary["orphaned_indices"] += 1
            errors.append(f"- token `{tid}` → index entry without an owner")

    live = supply.try_parse_supply(supply_text)
    if live is None:
        summary["supply_mismatch"] += 1
        errors.append(f"- totalSupply → not decimal text: {supply_text!r}")
    elif live != len(owners):
        summary["supply_mismatch"] += 1
        errors.append(f"- totalSupply → {live}, but {len(owners)} tokens are owned")

    return {
        "summary": summary,
        "errors": errors,
        "balances": balances,
        "total_supply": supply_text,
        "generated_at": now.isoformat(),
    }


def check_scope(
    fields: Dict[str, Any],
    owners: Iterable[str] = (),
    tokens: Iterable[str] = (),
    supply_offset: Optional[int] = None,
) -> List[str]:
    """
    Check only the given owners and token ids, using only the fields present
    in `fields`. Problems elsewhere on the heap are not reported.

    supply_offset is totalSupply minus the owned-token count before the
    change; when given, the change must have kept it.
    """
    holders: Optional[Dict[str, str]] = fields.get(TOKEN_OWNERS)
    owned: Optional[Dict[str, List[str]]] = fields.get(OWNED_TOKENS)
    index: Optional[Dict[str, int]] = fields.get(OWNED_TOKEN_INDEX)
    owners = sorted(owners)
    errors: List[str] = []

    if owned is not None:
        for owner in owners:
            if owner in owned and not owned[owner]:
                errors.append(f"- owner `{owner}` → empty token list kept on the heap")

    if holders is not None and owned is not None and index is not None:
        for tid in sorted(tokens):
            holder = holders.get(tid)
            listing = [o for o in owners if o != holder and tid in owned.get(o, ())]
            for o in listing:
                errors.append(f"- owner `{o}` → lists token `{tid}` held by {holder!r}")
            if holder is None:
                if tid in index:
                    errors.append(f"- token `{tid}` → index entry without an owner")
                continue
            held = owned.get(holder, [])
            count = held.count(tid)
            if count == 0:
                errors.append(f"- token `{tid}` → owner `{holder}` does not list it")
                continue
            if count > 1:
                errors.append(f"- owner `{holder}` → token `{tid}` listed more than once")
            pos = index.get(tid)
            if not (isinstance(pos, int) and 0 <= pos < len(held) and held[pos] == tid):
                errors.append(f"- token `{tid}` → index {pos!r}, actual position {held.index(tid)} under `{holder}`")

    if supply_offset is not None and holders is not None and TOTAL_SUPPLY in fields:
        live = supply.try_parse_supply(fields[TOTAL_SUPPLY])
        if live is None:
            errors.append(f"- totalSupply → not decimal text: {fields[TOTAL_SUPPLY]!r}")
        elif live - len(holders) != supply_offset:
            errors.append(
                f"- totalSupply → {live} for {len(holders)} owned tokens, "
                f"expected {len(holders) + supply_offset}"
            )
    return errors


def _raise_if(errors: List[str]) -> None:
    if errors:
        raise InvariantViolation(
            f"{len(errors)} ledger invariant(s) violated: " + "; ".join(
                e.lstrip("- ") for e in errors[:5]
            ),
            issues=errors,
        )


def verify_fields(fields: Dict[str, Any]) -> None:
    _raise_if(analyze(fields)["errors"])


def verify_scope(
    fields: Dict[str, Any],
    owners: Iterable[str] = (),
    tokens: Iterable[str] = (),
    supply_offset: Optional[int] = None,
) -> None:
    _raise_if(check_scope(fields, owners, tokens, supply_offset))


def summarize_md(result: Dict[str, Any]) -> List[str]:
    s = result["summary"]
    lines: List[str] = []

    lines.append("# NFT Ledger Integrity Report")
    lines.append("")
    lines.append(f"- Generated at: `{result['generated_at']}`")
    lines.append(f"- Total supply (stored): `{result['total_supply']}`")
    lines.append("")
    lines.append("## Summary")
    lines.append(f"- Tokens owned: **{s['tokens']}**")
    lines.append(f"- Owners: **{s['owners']}**")
    lines.append(f"- Index entries: **{s['index_entries']}**")
    lines.append(f"- Unlisted tokens: **{s['unlisted_tokens']}**")
    lines.append(f"- Foreign list entries: **{s['foreign_entries']}**")
    lines.append(f"- Duplicate list entries: **{s['duplicate_entries']}**")
    lines.append(f"- Stale indices: **{s['stale_indices']}**")
    lines.append(f"- Orphaned indices: **{s['orphaned_indices']}**")
    lines.append(f"- Empty owner lists: **{s['empty_owner_lists']}**")
    lines.append(f"- Supply mismatches: **{s['supply_mismatch']}**")
    lines.append("")

    lines.append("## Balances by Owner")
    if result["balances"]:
        for owner, count in sorted(result["balances"].items()):
            lines.append(f"- **{owner}**: `{count}`")
    else:
        lines.append("- No tokens minted yet.")
    lines.append("")

    lines.append("## Detected Issues")
    if result["errors"]:
        lines.extend(result["errors"])
    else:
        lines.append("- No integrity issues detected")
    lines.append("")
    return lines


def main(argv: List[str] | None = None) -> int:
    from nftledger.config import load_config
    from nftledger.heap import EAGER, Heap
    from nftledger.nft_ledger import Ledger
    from nftledger.store import build_store

    ap = argparse.ArgumentParser(description="Check NFT ledger heap invariants.")
    ap.add_argument("--markdown", metavar="PATH", help="Write a markdown report to PATH.")
    args = ap.parse_args(argv)

    try:
        cfg = load_config()
        ledger = Ledger(cfg.name, cfg.symbol, Heap(build_store(cfg), mode=EAGER))
        result = analyze(ledger.snapshot())
    except LedgerError as e:
        print(f"integrity check failed: {e.kind}: {e}", file=sys.stderr)
        return 1

    if args.markdown:
        out = Path(args.markdown)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text("\n".join(summarize_md(result)), encoding="utf-8")

    print(
        json.dumps(
            {
                "contract": cfg.name,
                "symbol": cfg.symbol,
                "summary": result["summary"],
                "issues": len(result["errors"]),
            },
            indent=2,
        )
    )
    return 1 if result["errors"] else 0


if __name__ == "__main__":
    sys.exit(main())
