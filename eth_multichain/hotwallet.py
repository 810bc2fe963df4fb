"""Signer for deployment and multisig transactions.

- Create a local wallet from a private key

- Manage nonces locally so several transactions can be signed before
  the first one confirms

- Sign offline, with an explicit nonce, for air-gapped multisig votes
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SignedTx:
    """Signed transaction bytes with what went into them.

    A failed broadcast can then report the nonce and gas fields used.
    """

    #: Payload for ``eth_sendRawTransaction``
    raw_transaction: HexBytes

    hash: HexBytes

    nonce: int

    #: Signer address
    address: HexAddress

    #: Transaction dict before signing
    source: dict | None = None

    def __repr__(self):
        return f"<SignedTx {self.hash.hex()} nonce:{self.nonce} from:{self.address}>"


class HotWallet:
    """Private key wallet with a local nonce counter.

    Call :py:meth:`sync_nonce` once per chain before signing,
    then :py:meth:`sign_transaction_with_new_nonce` for each transaction.
    Offline votes skip the sync and sign with :py:meth:`sign_transaction`
    and an operator given nonce.

    Example:

    .. code-block:: python

        wallet = HotWallet.from_private_key(os.environ["PRIVATE_KEY"])
        wallet.sync_nonce(web3)
        signed = wallet.sign_transaction_with_new_nonce(
            {
                "to": multisig_address,
                "data": calldata,
                "value": 0,
                "gas": 300_000,
                "gasPrice": web3.eth.gas_price,
                "chainId": chain.chain_id,
            }
        )
        web3.eth.send_raw_transaction(signed.raw_transaction)

    .. note ::

        Not thread safe. Batch workers each construct their own wallet.
    """

    def __init__(self, account: LocalAccount):
        self.account = account

        #: Next nonce to hand out, ``None`` until synced
        self.current_nonce: int | None = None

    def __repr__(self):
        return f"<HotWallet {self.account.address} nonce:{self.current_nonce}>"

    @property
    def address(self) -> HexAddress:
        return self.account.address

    def sync_nonce(self, web3: Web3):
        """Read the pending transaction count from the chain.

        A chain answer lower than what we have already handed out is ignored,
        the node has not seen our latest transactions yet.
        """
        onchain_nonce = web3.eth.get_transaction_count(self.address)
        if self.current_nonce is not None and onchain_nonce < self.current_nonce:
            logger.warning("Chain reports nonce %d for %s, behind our local nonce %d, keeping local", onchain_nonce, self.address, self.current_nonce)
            return
        self.current_nonce = onchain_nonce
        logger.info("Nonce for %s is %d", self.address, self.current_nonce)

    def allocate_nonce(self) -> int:
        assert self.current_nonce is not None, f"Call sync_nonce() first: {self}"
        nonce = self.current_nonce
        self.current_nonce += 1
        return nonce

    def sign_transaction(self, tx: dict) -> SignedTx:
        """Sign a transaction that already carries its nonce."""
        assert isinstance(tx, dict), f"Expected dict, got {type(tx)}"
        assert "nonce" in tx, "Transaction has no nonce"
        signed = self.account.sign_transaction(tx)
        return SignedTx(
            raw_transaction=HexBytes(signed.raw_transaction),
            hash=HexBytes(signed.hash),
            nonce=tx["nonce"],
            address=self.address,
            source=tx,
        )

    def sign_transaction_with_new_nonce(self, tx: dict) -> SignedTx:
        """Allocate the next nonce and sign.

        :param tx:
            Modified in place to include the nonce.
        """
        assert "nonce" not in tx, f"Transaction already has nonce {tx['nonce']}"
        tx["nonce"] = self.allocate_nonce()
        return self.sign_transaction(tx)

    def get_native_currency_balance(self, web3: Web3) -> Decimal:
        """Gas token balance of the wallet in ether units."""
        return web3.from_wei(web3.eth.get_balance(self.address), "ether")

    @staticmethod
    def from_private_key(key: str) -> "HotWallet":
        """
        :param key:
            0x prefixed hex string
        """
        assert isinstance(key, str), f"Expected str, got {type(key)}"
        assert key.startswith("0x"), "Private key must be 0x prefixed"
        return HotWallet(Account.from_key(key))
