"""
Heap stores.

A store persists the ledger's fields under (contract id, field name).
Every backend exposes the same three calls:

- get(key)         -> bytes, or None when the key is absent
- get_many(keys)   -> {key: bytes or None} in one round-trip
- put_many(values) -> write several keys as one unit

Backends:
- MemoryStore    dict-backed (tests, local runs)
- FileStore      a single JSON document on disk, replaced atomically
- RedisStore     one Redis key per field, MULTI/EXEC on write
- HttpHeapStore  smart-contract object API over HTTP

A store never falls back to memory after an error; failures are raised
as StoreFailure.
"""

from __future__ import annotations

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

import requests

from nftledger.errors import SerializationFailure, StoreFailure


def log(msg: str) -> None:
    print(f"[HeapStore] {msg}", file=sys.stderr, flush=True)


class HeapStore:
    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def get_many(self, keys: Iterable[str]) -> Dict[str, Optional[bytes]]:
        return {k: self.get(k) for k in keys}

    def put_many(self, values: Mapping[str, bytes]) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


# ---------------- Memory ----------------

class MemoryStore(HeapStore):
    def __init__(self, initial: Optional[Mapping[str, bytes]] = None) -> None:
        self._kv: Dict[str, bytes] = dict(initial or {})
        self.reads: Dict[str, int] = {}
        self.writes = 0

    def get(self, key: str) -> Optional[bytes]:
        self.reads[key] = self.reads.get(key, 0) + 1
        return self._kv.get(key)

    def put_many(self, values: Mapping[str, bytes]) -> None:
        self.writes += 1
        self._kv.update(values)

    def dump(self) -> Dict[str, bytes]:
        return dict(self._kv)

    def describe(self) -> str:
        return "memory"


# ---------------- JSON file ----------------

class FileStore(HeapStore):
    """
    Keeps every field as a string inside one JSON object:
        {"tokenOwners": "{...}", "totalSupply": "3", ...}
    Writes go to a temp file in the same directory, then replace the
    document, so a crash never leaves half of the fields updated.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise StoreFailure(f"cannot read {self.path}: {e}") from e
        if not text:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SerializationFailure(f"{self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise SerializationFailure(f"{self.path} must hold a JSON object")
        return data

    def get(self, key: str) -> Optional[bytes]:
        value = self._load().get(key)
        if value is None:
            return None
        return str(value).encode("utf-8")

    def get_many(self, keys: Iterable[str]) -> Dict[str, Optional[bytes]]:
        data = self._load()
        out: Dict[str, Optional[bytes]] = {}
        for k in keys:
            v = data.get(k)
            out[k] = None if v is None else str(v).encode("utf-8")
        return out

    def put_many(self, values: Mapping[str, bytes]) -> None:
        data = self._load()
        for k, v in values.items():
            data[k] = v.decode("utf-8")
        tmp: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError as e:
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
            raise StoreFailure(f"cannot write {self.path}: {e}") from e

    def describe(self) -> str:
        return f"file:{self.path}"


# ---------------- Redis ----------------

class RedisStore(HeapStore):
    def __init__(self, client, contract_id: str, prefix: str = "nft:") -> None:
        self.client = client
        self.contract_id = contract_id
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, contract_id: str, prefix: str = "nft:") -> "RedisStore":
        import redis

        return cls(redis.Redis.from_url(url), contract_id, prefix)

    def _key(self, field: str) -> str:
        return f"{self.prefix}{self.contract_id}:{field}"

    def get(self, key: str) -> Optional[bytes]:
        try:
            return _as_bytes(self.client.get(self._key(key)))
        except Exception as e:
            raise StoreFailure(f"redis GET {key} failed: {e}") from e

    def get_many(self, keys: Iterable[str]) -> Dict[str, Optional[bytes]]:
        keys = list(keys)
        try:
            values = self.client.mget([self._key(k) for k in keys])
        except Exception as e:
            raise StoreFailure(f"redis MGET failed: {e}") from e
        return {k: _as_bytes(v) for k, v in zip(keys, values)}

    def put_many(self, values: Mapping[str, bytes]) -> None:
        try:
            pipe = self.client.pipeline(transaction=True)
            for k, v in values.items():
                pipe.set(self._key(k), v)
            pipe.execute()
        except Exception as e:
            raise StoreFailure(f"redis MULTI/EXEC failed: {e}") from e

    def describe(self) -> str:
        return f"redis:{self.prefix}{self.contract_id}"


def _as_bytes(value) -> Optional[bytes]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


# ---------------- HTTP object API ----------------

class HttpHeapStore(HeapStore):
    """
    Smart-contract object API:
        GET  {base}/v1/get/{contract_id}/{key}   raw field bytes, 404 = absent
        POST {base}/v1/set/{contract_id}         {"key": "value", ...}
    """

    def __init__(
        self,
        base_url: str,
        contract_id: str,
        api_key: Optional[str] = None,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.contract_id = contract_id
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def headers(self) -> Dict[str, str]:
        h = {"User-Agent": "nft-ledger"}
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        return h

    def get(self, key: str) -> Optional[bytes]:
        url = f"{self.base_url}/v1/get/{self.contract_id}/{key}"
        try:
            r = self.session.get(url, headers=self.headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise StoreFailure(f"GET {url} failed: {e}") from e
        if r.status_code == 404:
            return None
        if r.status_code >= 300:
            raise StoreFailure(f"bad status code {r.status_code} received from GET {url}: {r.text[:200]}")
        return r.content

    def put_many(self, values: Mapping[str, bytes]) -> None:
        url = f"{self.base_url}/v1/set/{self.contract_id}"
        body = {k: v.decode("utf-8") for k, v in values.items()}
        try:
            r = self.session.post(url, headers=self.headers(), json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise StoreFailure(f"POST {url} failed: {e}") from e
        if r.status_code >= 300:
            raise StoreFailure(f"bad status code {r.status_code} received from POST {url}: {r.text[:200]}")

    def describe(self) -> str:
        return f"http:{self.base_url}/{self.contract_id}"


# ---------------- Factory ----------------

def build_store(cfg) -> HeapStore:
    """Create the backend named by cfg.store."""
    kind = cfg.store
    if kind == "memory":
        log("Using in-memory heap; state will not outlive this process.")
        return MemoryStore()
    if kind == "file":
        return FileStore(Path(cfg.file_path))
    if kind == "redis":
        if not cfg.redis_url:
            raise StoreFailure("LEDGER_STORE=redis requires REDIS_URL")
        try:
            return RedisStore.from_url(cfg.redis_url, cfg.contract_id, cfg.key_prefix)
        except Exception as e:
            raise StoreFailure(f"cannot create redis client: {e}") from e
    if kind == "http":
        if not cfg.base_url:
            raise StoreFailure("LEDGER_STORE=http requires HEAP_BASE_URL")
        return HttpHeapStore(cfg.base_url, cfg.contract_id, cfg.api_key, cfg.timeout)
    raise StoreFailure(f"unknown store backend {kind!r}")
