import io
import json

import pytest

from nftledger import runtime
from nftledger.config import load_config
from nftledger.errors import InvariantViolation
from nftledger.rpc import Dispatcher
from nftledger.store import MemoryStore


def invoke(tmp_path, capsys, request, *extra):
    req = tmp_path / "request.json"
    req.write_text(json.dumps(request), encoding="utf-8")
    rc = runtime.main(["--input", str(req), *extra])
    out, err = capsys.readouterr()
    return rc, out, err


@pytest.fixture
def file_env(contract_env, tmp_path):
    heap = tmp_path / "heap.json"
    contract_env.setenv("LEDGER_STORE", "file")
    contract_env.setenv("LEDGER_FILE", str(heap))
    return heap


def test_mint_then_query_across_invocations(file_env, tmp_path, capsys):
    rc, out, err = invoke(tmp_path, capsys, {"method": "mint", "params": {"to": "alice", "tokenId": "t1"}})
    assert rc == 0
    assert json.loads(out) == {"ok": True, "tokenId": "t1", "owner": "alice"}
    assert "Committed" in err

    stored = json.loads(file_env.read_text(encoding="utf-8"))
    assert stored["totalSupply"] == "1"
    assert json.loads(stored["tokenOwners"]) == {"t1": "alice"}

    rc, out, _ = invoke(tmp_path, capsys, {"method": "ownerOf", "params": {"tokenId": "t1"}}, "--load", "eager")
    assert rc == 0
    assert json.loads(out) == "alice"

    rc, out, _ = invoke(tmp_path, capsys, {"method": "totalSupply"})
    assert json.loads(out) == "1"


def test_failed_request_persists_nothing(file_env, tmp_path, capsys):
    invoke(tmp_path, capsys, {"method": "mint", "params": {"to": "alice", "tokenId": "t1"}})
    before = file_env.read_text(encoding="utf-8")

    rc, out, err = invoke(tmp_path, capsys, {"method": "mint", "params": {"to": "bob", "tokenId": "t1"}})
    assert rc == 1
    assert out == ""
    assert "failed to handle RPC: AlreadyExists" in err
    assert file_env.read_text(encoding="utf-8") == before

    rc, _, err = invoke(tmp_path, capsys, {"method": "transfer", "params": {"from": "bob", "to": "carol", "tokenId": "t1"}})
    assert rc == 1
    assert "NotFound" in err
    assert file_env.read_text(encoding="utf-8") == before


def test_invariant_violation_blocks_commit(contract_env):
    # a handler that leaves the index pointing past the owner's list
    def sloppy_mint(params, ledger):
        ledger.mint(params["to"], params["tokenId"])
        ledger.owned_token_index[params["tokenId"]] = 7
        return True

    dispatcher = Dispatcher()
    dispatcher.register("sloppyMint", sloppy_mint)
    store = MemoryStore()
    rt = runtime.Runtime(dispatcher, store_factory=lambda cfg: store)
    with pytest.raises(InvariantViolation) as exc:
        rt.run(load_config(), b'{"method": "sloppyMint", "params": {"to": "alice", "tokenId": "t1"}}')
    assert any("index 7" in issue for issue in exc.value.issues)
    assert store.writes == 0
    assert store.dump() == {}


def test_existing_supply_offset_does_not_block_writes(file_env, tmp_path, capsys):
    # supply counter already out of step with the owner map
    file_env.write_text(
        json.dumps(
            {
                "tokenOwners": json.dumps({"t1": "alice"}),
                "ownedTokens": json.dumps({"alice": ["t1"]}),
                "ownedTokenIndex": json.dumps({"t1": 0}),
                "totalSupply": "5",
            }
        ),
        encoding="utf-8",
    )
    rc, _, err = invoke(tmp_path, capsys, {"method": "mint", "params": {"to": "bob", "tokenId": "t2"}})
    assert rc == 0, err
    stored = json.loads(file_env.read_text(encoding="utf-8"))
    assert stored["totalSupply"] == "6"


def stale_index_store():
    # a2 was compacted to slot 0 but its index still says 1
    return MemoryStore(
        {
            "tokenOwners": json.dumps({"a2": "alice", "b1": "bob"}).encode(),
            "ownedTokens": json.dumps({"alice": ["a2"], "bob": ["b1"]}).encode(),
            "ownedTokenIndex": json.dumps({"a2": 1, "b1": 0}).encode(),
            "totalSupply": b"2",
        }
    )


def test_stale_index_elsewhere_does_not_block_writes(contract_env):
    store = stale_index_store()
    rt = runtime.Runtime(store_factory=lambda cfg: store)
    cfg = load_config()
    rt.run(cfg, b'{"method": "transfer", "params": {"from": "bob", "to": "carol", "tokenId": "b1"}}')
    rt.run(cfg, b'{"method": "mint", "params": {"to": "dave", "tokenId": "d1"}}')
    assert store.writes == 2
    assert rt.run(cfg, b'{"method": "ownerOf", "params": {"tokenId": "b1"}}') == "carol"
    assert rt.run(cfg, b'{"method": "totalSupply"}') == "3"
    assert json.loads(store.dump()["ownedTokenIndex"])["a2"] == 1


def test_stale_index_is_repaired_when_owner_list_changes(contract_env):
    store = stale_index_store()
    rt = runtime.Runtime(store_factory=lambda cfg: store)
    cfg = load_config()
    rt.run(cfg, b'{"method": "mint", "params": {"to": "alice", "tokenId": "a3"}}')
    rt.run(cfg, b'{"method": "burn", "params": {"tokenId": "a3"}}')
    assert json.loads(store.dump()["ownedTokenIndex"]) == {"a2": 0, "b1": 0}
    assert rt.run(cfg, b'{"method": "tokenOfOwnerByIndex", "params": {"owner": "alice", "index": 0}}') == "a2"


def test_metadata_reads_do_not_write(contract_env):
    store = MemoryStore()
    rt = runtime.Runtime(store_factory=lambda cfg: store)
    cfg = load_config()
    rt.run(cfg, b'{"method": "mint", "params": {"to": "alice", "tokenId": "1"}}')
    rt.run(cfg, b'{"method": "setMetadata", "params": {"tokenId": "1", "attributes": {"rarity": 5}}}')
    assert store.writes == 2
    for _ in range(3):
        assert rt.run(cfg, b'{"method": "metadataFor", "params": {"tokenId": "1"}}') == {"rarity": 5}
    assert store.writes == 2


def test_lazy_mint_reads_only_what_it_needs(contract_env):
    store = MemoryStore()
    rt = runtime.Runtime(store_factory=lambda cfg: store)
    rt.run(load_config(), b'{"method": "mint", "params": {"to": "alice", "tokenId": "1"}}')
    assert "tokenMetadata" not in store.reads
    assert all(count == 1 for count in store.reads.values())
    assert store.writes == 1


def test_missing_identity_is_fatal(contract_env, tmp_path, capsys):
    contract_env.delenv("CONTRACT_NAME")
    rc, out, err = invoke(tmp_path, capsys, {"method": "name"})
    assert rc == 1
    assert out == ""
    assert "no name provided for contract" in err


def test_reads_request_from_stdin(contract_env, monkeypatch, capsys):
    payload = json.dumps({"method": "balanceOf", "params": {"owner": "alice"}}).encode()
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(payload)))
    assert runtime.main([]) == 0
    out, _ = capsys.readouterr()
    assert json.loads(out) == 0


def test_runtime_with_injected_store(contract_env):
    store = MemoryStore()
    rt = runtime.Runtime(store_factory=lambda cfg: store)
    cfg = load_config()
    rt.run(cfg, b'{"method": "mint", "params": {"to": "alice", "tokenId": 1}}')
    rt.run(cfg, b'{"method": "mint", "params": {"to": "alice", "tokenId": 2}}')
    rt.run(cfg, b'{"method": "burn", "params": {"tokenId": 1}}')
    assert store.writes == 3
    assert rt.run(cfg, b'{"method": "tokenOfOwnerByIndex", "params": {"owner": "alice", "index": 0}}') == "2"
    assert rt.run(cfg, b'{"method": "totalSupply"}') == "1"
    assert store.writes == 3


def test_store_failure_exit_code(contract_env, tmp_path, capsys):
    contract_env.setenv("LEDGER_STORE", "redis")
    rc, _, err = invoke(tmp_path, capsys, {"method": "balanceOf", "params": {"owner": "alice"}})
    assert rc == 1
    assert "StoreFailure" in err
