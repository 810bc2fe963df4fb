"""Getting operational transactions on chain.

Two ways:

- Hand the call to a relayer service over HTTP, see :py:class:`RelayerClient`

- Sign with the local wallet and broadcast directly, see :py:func:`submit_transaction`.
  The confirmation wait is bounded by the chain's ``txTimeout``.
"""

import datetime
import logging
from pprint import pformat

import requests
from eth_typing import HexAddress
from hexbytes import HexBytes
from requests.exceptions import HTTPError
from web3 import Web3

from eth_multichain.config import ChainConfig
from eth_multichain.confirmation import broadcast_and_wait_transactions_to_complete
from eth_multichain.gas import apply_gas_options
from eth_multichain.hotwallet import HotWallet

logger = logging.getLogger(__name__)


class RelayError(Exception):
    """Relayer refused or failed the relay request."""


class TransactionReverted(Exception):
    """Directly submitted transaction reverted."""


class RelayerClient:
    """Post calls to a relayer HTTP API.

    The relayer takes ``{chain, to, calldata, value}`` and answers
    ``{"relayId": ...}`` or ``{"error": ...}``.
    """

    def __init__(self, api_url: str, session: requests.Session | None = None, api_timeout=datetime.timedelta(seconds=30)):
        assert api_url.startswith("http"), f"Bad relayer URL: {api_url}"
        self.api_url = api_url
        self.session = session or requests.Session()
        self.api_timeout = api_timeout

    def __repr__(self):
        return f"<RelayerClient {self.api_url}>"

    def relay(self, chain: ChainConfig, to: HexAddress | str, calldata: bytes | str, value: int = 0) -> str:
        """Ask the relayer to submit a call.

        :param chain:
            Relayer identifies chains by ``axelarId``

        :return:
            Relay id

        :raise RelayError:
            HTTP failure or an ``error`` in the response
        """
        payload = {
            "chain": chain.get_axelar_id(),
            "to": to,
            "calldata": HexBytes(calldata).hex() if not isinstance(calldata, str) else calldata,
            "value": str(value),
        }

        if not payload["calldata"].startswith("0x"):
            payload["calldata"] = "0x" + payload["calldata"]

        logger.info("Relaying to %s with params:\n%s", self.api_url, pformat(payload))

        resp = self.session.post(self.api_url, json=payload, timeout=self.api_timeout.total_seconds())

        try:
            resp.raise_for_status()
        except HTTPError as e:
            raise RelayError(f"Relayer API error on {self.api_url}, code {resp.status_code}: {resp.text}") from e

        data = resp.json()

        if data.get("error"):
            raise RelayError(f"Relay Error: {data['error']}")

        relay_id = data.get("relayId")
        logger.info("Relay ID: %s", relay_id)
        return relay_id


def submit_transaction(
    web3: Web3,
    wallet: HotWallet,
    chain: ChainConfig,
    tx: dict,
    gas_options: dict | None = None,
) -> dict:
    """Sign, broadcast and wait a transaction within the chain's hard timeout.

    :param tx:
        Transaction with ``to`` and ``data``. Nonce is allocated from the wallet.

    :return:
        Receipt

    :raise eth_multichain.confirmation.ConfirmationTimedOut:
        Not confirmed within ``chain.get_tx_timeout()`` seconds

    :raise TransactionReverted:
        Receipt status is not success
    """
    tx = dict(tx)
    tx.setdefault("from", wallet.address)
    tx.setdefault("chainId", chain.chain_id or web3.eth.chain_id)
    tx.setdefault("value", 0)
    apply_gas_options(tx, gas_options or {})

    if "gas" not in tx:
        tx["gas"] = web3.eth.estimate_gas(tx)

    if "gasPrice" not in tx and "maxFeePerGas" not in tx:
        tx["gasPrice"] = web3.eth.gas_price

    signed = wallet.sign_transaction_with_new_nonce(tx)
    receipts = broadcast_and_wait_transactions_to_complete(
        web3,
        [signed],
        confirmation_block_count=chain.get_confirmation_block_count(),
        max_timeout=datetime.timedelta(seconds=chain.get_tx_timeout()),
    )
    receipt = receipts[HexBytes(signed.hash)]

    if receipt["status"] != 1:
        raise TransactionReverted(f"Transaction {signed.hash.hex()} reverted on {chain.name}")

    logger.info("Tx hash %s confirmed on %s", signed.hash.hex(), chain.name)
    return receipt
