"""JSON-RPC connections."""
from unittest.mock import MagicMock, patch

import pytest

from eth_multichain.config import ChainConfig
from eth_multichain.exceptions import ConfigError, NetworkError
from eth_multichain.provider import create_chain_web3


def test_no_rpc():
    with pytest.raises(ConfigError):
        create_chain_web3(ChainConfig(name="Fantom", chain_id=250))


def test_chain_id_mismatch():
    web3 = MagicMock()
    web3.eth.chain_id = 1
    with patch("eth_multichain.provider.Web3", return_value=web3):
        with pytest.raises(ConfigError):
            create_chain_web3(ChainConfig(name="Fantom", chain_id=250, rpc="http://localhost:8545"))


def test_chain_id_match():
    web3 = MagicMock()
    web3.eth.chain_id = 250
    web3.eth.block_number = 100
    with patch("eth_multichain.provider.Web3", return_value=web3):
        assert create_chain_web3(ChainConfig(name="Fantom", chain_id=250, rpc="http://localhost:8545")) is web3


def test_unreachable():
    """Nothing listens on the port."""
    with pytest.raises(NetworkError):
        create_chain_web3(ChainConfig(name="Fantom", chain_id=250, rpc="http://127.0.0.1:1"), request_timeout=1)
