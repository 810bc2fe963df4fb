"""Transaction broadcasting and block confirmation.

Every wait has a hard timeout. A timed out transaction fails its chain,
never the whole batch run.
"""

import datetime
import logging
import time
from typing import Iterable

from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3RPCError

from eth_multichain.hotwallet import SignedTx

logger = logging.getLogger(__name__)


class BroadcastFailure(Exception):
    """Node refused a signed transaction."""


class ConfirmationTimedOut(Exception):
    """Transactions were not confirmed before the deadline."""


def _get_receipt(web3: Web3, tx_hash: HexBytes) -> dict | None:
    try:
        return web3.eth.get_transaction_receipt(tx_hash)
    except TransactionNotFound:
        # Some nodes raise instead of returning null
        return None


def wait_transactions_to_complete(
    web3: Web3,
    txs: Iterable[HexBytes | str],
    confirmation_block_count: int = 0,
    max_timeout=datetime.timedelta(minutes=1),
    poll_delay=datetime.timedelta(seconds=1),
) -> dict[HexBytes, dict]:
    """Poll until every transaction has a receipt buried deep enough.

    Example:

    .. code-block:: python

        receipts = wait_transactions_to_complete(
            web3,
            [tx_hash],
            confirmation_block_count=chain.get_confirmation_block_count(),
            max_timeout=datetime.timedelta(seconds=chain.get_tx_timeout()),
        )

    :param confirmation_block_count:
        Blocks on top of the inclusion block. Zero returns at the first receipt.

    :param max_timeout:
        Deadline for the whole wait, not per transaction

    :return:
        Transaction hash -> receipt. Reverted receipts are included,
        checking ``status`` is up to the caller.

    :raise ConfirmationTimedOut:
        Deadline passed with transactions still pending
    """
    assert isinstance(max_timeout, datetime.timedelta)
    assert isinstance(poll_delay, datetime.timedelta)
    assert confirmation_block_count >= 0

    pending = {HexBytes(tx) for tx in txs}
    deadline = time.monotonic() + max_timeout.total_seconds()
    receipts = {}

    logger.info("Waiting %d transactions, %d extra blocks, timeout %s", len(pending), confirmation_block_count, max_timeout)

    while pending:
        for tx_hash in list(pending):
            receipt = _get_receipt(web3, tx_hash)
            if receipt is None:
                continue

            depth = web3.eth.block_number - receipt["blockNumber"]
            if depth < confirmation_block_count:
                logger.debug("Tx %s is %d blocks deep, waiting for %d", tx_hash.hex(), depth, confirmation_block_count)
                continue

            receipts[tx_hash] = receipt
            pending.discard(tx_hash)

        if not pending:
            break

        if time.monotonic() >= deadline:
            still_pending = ", ".join(tx_hash.hex() for tx_hash in pending)
            raise ConfirmationTimedOut(f"Not confirmed within {max_timeout.total_seconds()}s: {still_pending}")

        time.sleep(poll_delay.total_seconds())

    return receipts


def broadcast_transactions(web3: Web3, txs: list[SignedTx]) -> list[HexBytes]:
    """Send signed transactions.

    :return:
        Hashes in the order of ``txs``

    :raise BroadcastFailure:
        Node rejected a transaction, like a nonce or fee problem
    """
    hashes = []
    for tx in txs:
        try:
            tx_hash = web3.eth.send_raw_transaction(tx.raw_transaction)
        except (ValueError, Web3RPCError) as e:
            raise BroadcastFailure(f"Could not broadcast {tx.hash.hex()} with nonce {tx.nonce}, source {tx.source}: {e}") from e

        logger.info("Broadcasted %s", HexBytes(tx_hash).hex())
        hashes.append(HexBytes(tx_hash))
    return hashes


def broadcast_and_wait_transactions_to_complete(
    web3: Web3,
    txs: list[SignedTx],
    confirmation_block_count: int = 0,
    max_timeout=datetime.timedelta(minutes=1),
    poll_delay=datetime.timedelta(seconds=1),
) -> dict[HexBytes, dict]:
    """:py:func:`broadcast_transactions` followed by :py:func:`wait_transactions_to_complete`."""
    hashes = broadcast_transactions(web3, txs)
    return wait_transactions_to_complete(
        web3,
        hashes,
        confirmation_block_count=confirmation_block_count,
        max_timeout=max_timeout,
        poll_delay=poll_delay,
    )
