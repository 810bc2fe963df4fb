"""Shared fixtures.

Chain configs live in a temporary folder, wallets are generated per test.
"""
import json
import secrets
from pathlib import Path

import pytest

from eth_multichain.config import ConfigStore
from eth_multichain.hotwallet import HotWallet


#: Any valid address to stand in for factories and contracts
CONST_ADDRESS_DEPLOYER = "0x98b2920d53612483f91f12ed7754e51b4a77919e"

CREATE3_DEPLOYER = "0x6513aedb4d1593ba12e50644401d976aebdc90d8"


def make_chain_data(name: str, chain_id: int, **kwargs) -> dict:
    data = {
        "name": name,
        "axelarId": name,
        "chainId": chain_id,
        "rpc": f"http://localhost/{name.lower()}",
        "contracts": {
            "ConstAddressDeployer": {"address": CONST_ADDRESS_DEPLOYER},
            "Create3Deployer": {"address": CREATE3_DEPLOYER},
        },
    }
    data.update(kwargs)
    return data


@pytest.fixture()
def config_root(tmp_path) -> Path:
    """Aggregate config with three active chains and one inactive."""
    data = {
        "chains": {
            "avalanche": make_chain_data("Avalanche", 43114, gasOptions={"gasLimit": 5_000_000}),
            "fantom": make_chain_data("Fantom", 250),
            "moonbeam": make_chain_data("Moonbeam", 1284),
            "celo": make_chain_data("Celo", 42220, status="deactive"),
        },
        "axelar": {"id": "Axelarnet"},
    }
    with open(tmp_path / "testnet.json", "wt") as f:
        json.dump(data, f)
    return tmp_path


@pytest.fixture()
def store(config_root) -> ConfigStore:
    return ConfigStore.load("testnet", config_root)


@pytest.fixture()
def wallet() -> HotWallet:
    return HotWallet.from_private_key("0x" + secrets.token_bytes(32).hex())
