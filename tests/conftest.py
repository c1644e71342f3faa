import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parent.parent))

from nftledger.heap import Heap
from nftledger.nft_ledger import Ledger
from nftledger.store import MemoryStore


@pytest.fixture
def ledger():
    return Ledger.in_memory("Test Cards", "TEST")


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def contract_env(monkeypatch):
    for var in (
        "LEDGER_CONFIG",
        "LEDGER_STORE",
        "LEDGER_LOAD",
        "REDIS_URL",
        "HEAP_BASE_URL",
        "DC_BASE_API_URL",
        "SMART_CONTRACT_ID",
        "LEDGER_VERIFY",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("CONTRACT_NAME", "Test Cards")
    monkeypatch.setenv("CONTRACT_SYMBOL", "TEST")
    return monkeypatch


def ledger_over(store, mode="lazy"):
    return Ledger("Test Cards", "TEST", Heap(store, mode=mode))
