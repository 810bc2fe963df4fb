"""JSON-RPC connections for configured chains."""

import logging

from web3 import HTTPProvider, Web3

from eth_multichain.config import ChainConfig
from eth_multichain.exceptions import ConfigError, NetworkError

logger = logging.getLogger(__name__)


def create_chain_web3(chain: ChainConfig, request_timeout: float = 30.0, check_chain_id=True) -> Web3:
    """Connect to the chain's ``rpc`` endpoint.

    :param check_chain_id:
        Refuse to work against an endpoint of another chain

    :raise ConfigError:
        No RPC URL, or the endpoint reports a different chain id

    :raise NetworkError:
        Endpoint does not answer
    """
    if not chain.rpc:
        raise ConfigError(f"No rpc configured for {chain.name}")

    web3 = Web3(HTTPProvider(chain.rpc, request_kwargs={"timeout": request_timeout}))

    if check_chain_id and chain.chain_id is not None:
        try:
            chain_id = web3.eth.chain_id
        except Exception as e:
            raise NetworkError(f"Could not connect to {chain.name} RPC: {e}", chain.name) from e

        if chain_id != chain.chain_id:
            raise ConfigError(f"RPC for {chain.name} reports chain id {chain_id}, config has {chain.chain_id}")

        logger.info("Connected to %s, chain id is %d, the latest block is %s", chain.name, chain_id, f"{web3.eth.block_number:,}")

    return web3
