"""Batch runs over many chains."""
import pytest

from eth_multichain.batch import ActionContext, ChainBatchProcessor, ChainSelector, create_selector_from_env
from eth_multichain.config import ChainConfig, ConfigStore
from eth_multichain.exceptions import ActionCancelled, BatchAborted, ConfigError, NoChainsSelectedError, UnknownChainError


def record_deployment(chain: ChainConfig, context: ActionContext):
    """Pretend to deploy, fail on Fantom."""
    record = chain.get_or_create_contract("Operators")
    record.address = "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"
    if chain.key == "fantom":
        raise RuntimeError("Fantom RPC is down")
    return chain.key


def cancel_on_moonbeam(chain: ChainConfig, context: ActionContext):
    if chain.key == "moonbeam":
        raise ActionCancelled("Operator said no")
    chain.get_or_create_contract("Operators").address = "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"


def test_select_all(store):
    selected = ChainBatchProcessor(store).select(ChainSelector())
    assert [(c.key, reason) for c, reason in selected] == [
        ("avalanche", None),
        ("fantom", None),
        ("moonbeam", None),
        ("celo", "inactive"),
    ]


def test_select_named(store):
    processor = ChainBatchProcessor(store)

    selected = processor.select(ChainSelector(chain_names="Moonbeam, avalanche", skip_chains="avalanche"))
    assert [(c.key, reason) for c, reason in selected] == [("moonbeam", None), ("avalanche", "skip list")]

    with pytest.raises(UnknownChainError):
        processor.select(ChainSelector(chain_names=["solana"]))

    with pytest.raises(NoChainsSelectedError):
        processor.select(ChainSelector(chain_names=["celo"]))


def test_select_other_family(store):
    store.get_chain("fantom").chain_type = "cosmos"
    processor = ChainBatchProcessor(store)

    with pytest.raises(ConfigError):
        processor.select(ChainSelector(chain_names=["fantom"]))

    keys = [c.key for c, _ in processor.select(ChainSelector())]
    assert "fantom" not in keys


def test_start_from_chain(store):
    processor = ChainBatchProcessor(store)
    selected = processor.select(ChainSelector(start_from_chain="Fantom"))
    assert [c.key for c, _ in selected] == ["fantom", "moonbeam", "celo"]

    with pytest.raises(UnknownChainError):
        processor.select(ChainSelector(chain_names="avalanche", start_from_chain="fantom"))


def test_sequential_stops_at_failure(store, config_root):
    """Chains before the failure are committed, the rest never run."""
    processor = ChainBatchProcessor(store)

    with pytest.raises(BatchAborted) as exc_info:
        processor.run(ChainSelector(), record_deployment)

    result = exc_info.value.result
    assert result.get_statuses() == {"avalanche": "success", "fantom": "failed"}
    assert "RuntimeError: Fantom RPC is down" in result.get_outcome("fantom").error

    reloaded = ConfigStore.load("testnet", config_root)
    assert reloaded.get_chain("avalanche").get_contract_address("Operators") is not None
    assert reloaded.get_chain("fantom").get_contract("Operators") is None
    assert reloaded.get_chain("moonbeam").get_contract("Operators") is None


def test_sequential_ignore_errors(store, config_root):
    """Ignored failures are committed with whatever the action recorded first."""
    processor = ChainBatchProcessor(store)
    result = processor.run(ChainSelector(ignore_errors=True), record_deployment)

    assert result.successful == ["avalanche", "moonbeam"]
    assert result.failed == ["fantom"]
    assert result.skipped == ["celo"]
    assert result.get_outcome("avalanche").result == "avalanche"

    reloaded = ConfigStore.load("testnet", config_root)
    assert reloaded.get_chain("moonbeam").get_contract_address("Operators") is not None
    assert reloaded.get_chain("fantom").get_contract_address("Operators") == "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"
    assert reloaded.get_chain("celo").get_contract("Operators") is None


def test_sequential_context_sees_processed_chains(store):
    """Chains processed earlier in the run are visible to later actions."""
    seen = {}

    def look_at_avalanche(chain: ChainConfig, context: ActionContext):
        seen[chain.key] = context.chains["avalanche"].get_contract_address("Operators")
        chain.get_or_create_contract("Operators").address = "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"

    ChainBatchProcessor(store).run(ChainSelector(chain_names="avalanche,fantom"), look_at_avalanche)

    assert seen == {"avalanche": None, "fantom": "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"}


def test_cancelled_chain_is_skipped(store, config_root):
    result = ChainBatchProcessor(store).run(ChainSelector(), cancel_on_moonbeam)
    assert result.get_outcome("moonbeam").status == "skipped"
    assert result.successful == ["avalanche", "fantom"]

    reloaded = ConfigStore.load("testnet", config_root)
    assert reloaded.get_chain("moonbeam").get_contract("Operators") is None


def test_no_persist(store, config_root):
    ChainBatchProcessor(store, persist=False).run(ChainSelector(ignore_errors=True), record_deployment)
    reloaded = ConfigStore.load("testnet", config_root)
    assert reloaded.get_chain("avalanche").get_contract("Operators") is None


def test_parallel_merges_successful_chains(store, config_root):
    """Workers write fragments, only successful ones are merged."""
    processor = ChainBatchProcessor(store, backend="threading")
    result = processor.run(ChainSelector(parallel=True), record_deployment)

    assert result.get_statuses() == {"avalanche": "success", "fantom": "failed", "moonbeam": "success", "celo": "skipped"}

    reloaded = ConfigStore.load("testnet", config_root)
    assert reloaded.get_chain("avalanche").get_contract_address("Operators") is not None
    assert reloaded.get_chain("moonbeam").get_contract_address("Operators") is not None
    assert reloaded.get_chain("fantom").get_contract("Operators") is None

    for key in ("avalanche", "fantom", "moonbeam"):
        assert not store.get_fragment_path(key).exists()


def test_parallel_process_workers(store, config_root):
    """Default loky backend: the action and outcomes cross process boundaries."""
    processor = ChainBatchProcessor(store, max_workers=2)
    assert processor.backend == "loky"

    result = processor.run(ChainSelector(chain_names="avalanche,fantom,moonbeam", parallel=True), record_deployment)

    assert result.get_statuses() == {"avalanche": "success", "fantom": "failed", "moonbeam": "success"}
    assert result.get_outcome("moonbeam").result == "moonbeam"
    assert "Fantom RPC is down" in result.get_outcome("fantom").error

    reloaded = ConfigStore.load("testnet", config_root)
    assert reloaded.get_chain("avalanche").get_contract_address("Operators") == "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"
    assert reloaded.get_chain("moonbeam").get_contract_address("Operators") == "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"
    assert reloaded.get_chain("fantom").get_contract("Operators") is None

    for key in ("avalanche", "fantom", "moonbeam"):
        assert not store.get_fragment_path(key).exists()


def test_selector_from_env(monkeypatch):
    monkeypatch.setenv("CHAINS", "avalanche,fantom")
    monkeypatch.setenv("SKIP_CHAINS", "fantom")
    monkeypatch.setenv("PARALLEL", "true")
    monkeypatch.delenv("IGNORE_ERRORS", raising=False)
    monkeypatch.delenv("START_FROM_CHAIN", raising=False)
    monkeypatch.delenv("CHAIN_TYPE", raising=False)

    selector = create_selector_from_env()
    assert selector.chain_names == "avalanche,fantom"
    assert selector.skip_chains == "fantom"
    assert selector.parallel
    assert not selector.ignore_errors
    assert selector.chain_type == "evm"

    monkeypatch.delenv("CHAINS")
    with pytest.raises(ConfigError):
        create_selector_from_env()
