"""
NFT Ledger configuration.

Read once at process start from the environment. An optional YAML file
(LEDGER_CONFIG=path) provides defaults; environment variables win.

Example ledger.yml:
    name: Dragon Cards
    symbol: DRGN
    store: redis
    redis_url: redis://localhost:6379/0
    load: eager

Contract identity (name, symbol) is required; everything else defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from nftledger.errors import ConfigError

STORES = ("memory", "file", "redis", "http")
LOAD_MODES = ("lazy", "eager")

ENV_KEYS = {
    "name": "CONTRACT_NAME",
    "symbol": "CONTRACT_SYMBOL",
    "contract_id": "SMART_CONTRACT_ID",
    "store": "LEDGER_STORE",
    "load": "LEDGER_LOAD",
    "redis_url": "REDIS_URL",
    "key_prefix": "LEDGER_KEY_PREFIX",
    "base_url": "HEAP_BASE_URL",
    "api_key": "HEAP_API_KEY",
    "timeout": "HEAP_TIMEOUT",
    "file_path": "LEDGER_FILE",
    "verify": "LEDGER_VERIFY",
}


@dataclass
class LedgerConfig:
    name: str
    symbol: str
    contract_id: str = ""
    store: str = "memory"
    load: str = "lazy"
    redis_url: str = ""
    key_prefix: str = "nft:"
    base_url: str = ""
    api_key: Optional[str] = None
    timeout: float = 20.0
    file_path: str = "heap.json"
    verify: bool = True


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    known = {f.name for f in fields(LedgerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown config keys in {path}: {', '.join(unknown)}")
    return data


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_config(env: Optional[Mapping[str, str]] = None) -> LedgerConfig:
    env = os.environ if env is None else env
    raw: Dict[str, Any] = {}

    cfg_path = env.get("LEDGER_CONFIG", "").strip()
    if cfg_path:
        raw.update(_load_yaml(Path(cfg_path)))

    for key, var in ENV_KEYS.items():
        value = env.get(var, "").strip()
        if value:
            raw[key] = value
    if not raw.get("base_url") and env.get("DC_BASE_API_URL", "").strip():
        raw["base_url"] = env["DC_BASE_API_URL"].strip()

    name = str(raw.get("name") or "").strip()
    symbol = str(raw.get("symbol") or "").strip()
    if not name:
        raise ConfigError("no name provided for contract (CONTRACT_NAME)")
    if not symbol:
        raise ConfigError("no symbol provided for contract (CONTRACT_SYMBOL)")

    store = raw.get("store")
    if not store:
        if raw.get("redis_url"):
            store = "redis"
        elif raw.get("base_url"):
            store = "http"
        else:
            store = "memory"
    store = str(store).lower()
    if store not in STORES:
        raise ConfigError(f"LEDGER_STORE must be one of {', '.join(STORES)} (got {store!r})")

    load = str(raw.get("load") or "lazy").lower()
    if load not in LOAD_MODES:
        raise ConfigError(f"LEDGER_LOAD must be lazy or eager (got {load!r})")

    try:
        timeout = float(raw.get("timeout", 20.0))
    except (TypeError, ValueError):
        raise ConfigError(f"HEAP_TIMEOUT must be a number (got {raw.get('timeout')!r})") from None

    return LedgerConfig(
        name=name,
        symbol=symbol,
        contract_id=str(raw.get("contract_id") or symbol),
        store=store,
        load=load,
        redis_url=str(raw.get("redis_url") or ""),
        key_prefix=str(raw.get("key_prefix") or "nft:"),
        base_url=str(raw.get("base_url") or ""),
        api_key=raw.get("api_key") or None,
        timeout=timeout,
        file_path=str(raw.get("file_path") or "heap.json"),
        verify=_as_bool(raw.get("verify", True)),
    )
