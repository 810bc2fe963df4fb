"""Vote on multisig actions across chains.

To run:

.. code-block:: shell

    export PRIVATE_KEY=...
    export ENV=mainnet
    export CHAINS=avalanche
    ACTION=withdraw RECIPIENT=0x... WITHDRAW_AMOUNT=0.1 python scripts/multisig.py

Action specific variables:

- ``setTokenMintLimits``: ``SYMBOLS`` and ``LIMITS`` JSON arrays
- ``transferMintLimiter``: ``MINT_LIMITER``
- ``withdraw``: ``RECIPIENT``, ``WITHDRAW_AMOUNT`` in ether
- ``executeMultisigProposal``: ``TARGET``, ``CALLDATA``, ``NATIVE_VALUE`` in wei
- ``setFlowLimits``: ``TOKEN_IDS`` and ``LIMITS`` JSON arrays

Set ``OFFLINE=true`` and ``NONCE`` to sign without a connection, the signed
transaction is written under ``SIGNED_TX_FOLDER``. Set ``RELAYER_API`` to hand
votes to a relayer.
"""

import functools
import json
import logging
import os
import sys
from pathlib import Path

from eth_multichain.batch import ActionContext, ChainBatchProcessor, create_selector_from_env
from eth_multichain.config import ChainConfig, ConfigStore
from eth_multichain.exceptions import BatchAborted, MultichainError, ValidationError
from eth_multichain.gas import GasPolicyResolver
from eth_multichain.hotwallet import HotWallet
from eth_multichain.multisig import MULTISIG_ACTIONS, MultisigOperator
from eth_multichain.provider import create_chain_web3
from eth_multichain.relay import RelayerClient
from eth_multichain.utils import get_env_flag, setup_console_logging

logger = logging.getLogger(__name__)


def read_action_kwargs(action: str) -> dict:
    """Action arguments from the environment."""
    match action:
        case "signers":
            return {}
        case "setTokenMintLimits":
            return {"symbols": json.loads(os.environ["SYMBOLS"]), "limits": json.loads(os.environ["LIMITS"])}
        case "transferMintLimiter":
            return {"mint_limiter": os.environ["MINT_LIMITER"]}
        case "withdraw":
            return {"recipient": os.environ["RECIPIENT"], "amount": os.environ["WITHDRAW_AMOUNT"]}
        case "executeMultisigProposal":
            return {
                "target": os.environ["TARGET"],
                "calldata": os.environ.get("CALLDATA", "0x"),
                "native_value": os.environ.get("NATIVE_VALUE", "0"),
            }
        case "setFlowLimits":
            return {"token_ids": json.loads(os.environ["TOKEN_IDS"]), "limits": json.loads(os.environ["LIMITS"])}
        case _:
            raise ValidationError(f"Invalid multisig action: {action}, supported are {MULTISIG_ACTIONS}")


def run_on_chain(
    chain: ChainConfig,
    context: ActionContext,
    private_key: str,
    action: str,
    action_kwargs: dict,
    contract_name: str,
    address: str | None,
    gas_override: str | None,
    offline: bool,
    nonce: int | None,
    relayer_api: str | None,
    signed_tx_folder: Path,
) -> dict:
    wallet = HotWallet.from_private_key(private_key)

    if offline:
        web3 = None
        gas_options = GasPolicyResolver().resolve(chain, override=gas_override, contract_name=contract_name, offline=True)
    else:
        web3 = create_chain_web3(chain)
        logger.info("Wallet %s has %s %s", wallet.address, wallet.get_native_currency_balance(web3), chain.token_symbol or "")
        gas_options = GasPolicyResolver().resolve(chain, override=gas_override, contract_name=contract_name, web3=web3)

    operator = MultisigOperator(
        web3,
        wallet,
        chain,
        contract_name=contract_name,
        address=address,
        gas_options=gas_options,
        yes=context.yes,
        offline=offline,
        nonce=nonce,
        relayer=RelayerClient(relayer_api) if relayer_api else None,
        signed_tx_folder=signed_tx_folder,
        env=context.env,
    )

    submission = operator.run(action, **action_kwargs)
    return {
        "mode": submission.mode,
        "tx_hash": submission.tx_hash.hex() if submission.tx_hash else None,
        "relay_id": submission.relay_id,
        "signed_tx_path": str(submission.signed_tx_path) if submission.signed_tx_path else None,
        "info": submission.info,
    }


def main():
    setup_console_logging()

    private_key = os.environ.get("PRIVATE_KEY")
    assert private_key, "You must set PRIVATE_KEY environment variable"
    assert private_key.startswith("0x"), "Private key must start with 0x hex prefix"

    env = os.environ["ENV"]
    action = os.environ["ACTION"]
    nonce = os.environ.get("NONCE")
    offline = get_env_flag("OFFLINE")

    run = functools.partial(
        run_on_chain,
        private_key=private_key,
        action=action,
        action_kwargs=read_action_kwargs(action),
        contract_name=os.environ.get("CONTRACT_NAME", "Multisig"),
        address=os.environ.get("MULTISIG_ADDRESS") or None,
        gas_override=os.environ.get("GAS_OPTIONS") or None,
        offline=offline,
        nonce=int(nonce) if nonce else None,
        relayer_api=os.environ.get("RELAYER_API") or None,
        signed_tx_folder=Path(os.environ.get("SIGNED_TX_FOLDER", "tx")),
    )

    store = ConfigStore.load(env, Path(os.environ.get("CONFIG_ROOT", "chains")))

    # Votes do not change the chain config
    processor = ChainBatchProcessor(store, yes=get_env_flag("YES"), persist=False)
    result = processor.run(create_selector_from_env(), run)

    for outcome in result.outcomes:
        logger.info("%s: %s %s", outcome.chain_name, outcome.status, outcome.result or outcome.error or "")

    if result.failed:
        logger.error("Failed chains: %s", ", ".join(result.failed))
        sys.exit(1)


if __name__ == "__main__":
    try:
        main()
    except BatchAborted as e:
        logger.error("%s", e)
        sys.exit(1)
    except MultichainError as e:
        logger.error("%s: %s", e.__class__.__name__, e)
        sys.exit(1)
