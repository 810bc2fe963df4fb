"""Chain config store."""
import json

import pytest

from eth_multichain.config import ChainConfig, ConfigStore, ContractRecord
from eth_multichain.exceptions import ConfigError, UnknownChainError


def test_load(store: ConfigStore):
    assert set(store.chains) == {"avalanche", "fantom", "moonbeam", "celo"}

    chain = store.get_chain("Avalanche")
    assert chain.chain_id == 43114
    assert chain.get_axelar_id() == "Avalanche"
    assert chain.is_active()
    assert not store.get_chain("celo").is_active()
    assert chain.get_contract_address("ConstAddressDeployer") == "0x98b2920d53612483f91f12ed7754e51b4a77919e"


def test_defaults():
    chain = ChainConfig(name="Fantom")
    assert chain.get_confirmations() == 1
    assert chain.get_confirmation_block_count() == 0
    assert chain.get_tx_timeout() == 60.0
    assert chain.get_family() == "evm"
    assert chain.get_axelar_id() == "Fantom"

    chain.confirmations = 3
    assert chain.get_confirmation_block_count() == 2


def test_unknown_chain(store):
    with pytest.raises(UnknownChainError):
        store.get_chain("solana")

    with pytest.raises(UnknownChainError):
        store.find_chain_by_id(1)

    assert store.find_chain_by_id(250).name == "Fantom"


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        ConfigStore.load("mainnet", tmp_path)

    with pytest.raises(ConfigError):
        ConfigStore.load("", tmp_path)


def test_not_json(tmp_path):
    (tmp_path / "mainnet.json").write_text("{")
    with pytest.raises(ConfigError):
        ConfigStore.load("mainnet", tmp_path)


def test_round_trip_keeps_unknown_keys(store: ConfigStore, config_root):
    """Fields we do not model are written back untouched."""
    chain = store.get_chain("fantom")
    chain.extra["explorer"] = {"url": "https://ftmscan.com"}
    chain.get_contract("ConstAddressDeployer").extra["connectionType"] = "rpc"
    chain.tx_timeout = 120.0
    store.commit("fantom", chain)

    with open(config_root / "testnet.json") as f:
        data = json.load(f)

    assert data["axelar"] == {"id": "Axelarnet"}
    fantom = data["chains"]["fantom"]
    assert fantom["explorer"] == {"url": "https://ftmscan.com"}
    assert fantom["txTimeout"] == 120_000
    assert fantom["contracts"]["ConstAddressDeployer"]["connectionType"] == "rpc"

    reloaded = ConfigStore.load("testnet", config_root)
    assert reloaded.get_chain("fantom").get_tx_timeout() == 120.0


def test_contract_record_keys():
    record = ContractRecord.from_dict({"address": "0x1", "deploymentMethod": "create3", "salt": "Gateway", "owner": "0x2"})
    assert record.deployment_method == "create3"
    assert record.extra == {"owner": "0x2"}
    assert record.to_dict() == {"address": "0x1", "deploymentMethod": "create3", "salt": "Gateway", "owner": "0x2"}


def test_fragments(store: ConfigStore):
    """Workers write fragments, the parent merges only what it is told to."""
    avalanche = store.get_chain("avalanche").copy()
    avalanche.get_or_create_contract("Operators").address = "0x3"
    fantom = store.get_chain("fantom").copy()
    fantom.get_or_create_contract("Operators").address = "0x4"

    store.write_fragment(avalanche)
    store.write_fragment(fantom)

    store.merge_fragments(["avalanche"])

    assert store.get_chain("avalanche").get_contract_address("Operators") == "0x3"
    assert store.get_chain("fantom").get_contract_address("Operators") is None
    assert not store.get_fragment_path("avalanche").exists()
    assert store.get_fragment_path("fantom").exists()

    reloaded = ConfigStore.load("testnet", store.root)
    assert reloaded.get_chain("avalanche").get_contract_address("Operators") == "0x3"
