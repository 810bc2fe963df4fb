"""Deploy a contract with the same address on many chains.

- Predicts the address, skips chains where the contract is already there

- Records the deployment in the chain config ``<CONFIG_ROOT>/<ENV>.json``

To run:

.. code-block:: shell

    export PRIVATE_KEY=...
    export ENV=testnet
    export CONFIG_ROOT=./chains
    export CHAINS=avalanche,fantom
    export CONTRACT_NAME=Operators
    export ARTIFACT_PATH=artifacts/Operators.json
    DEPLOY_METHOD=create3 SALT="Operators v1" python scripts/deploy-contract.py

Optional: ``ARGS`` JSON constructor settings, ``GAS_OPTIONS`` JSON override,
``PREDICT_ONLY``, ``SKIP_EXISTING``, ``YES``, ``PARALLEL``, ``IGNORE_ERRORS``,
``SKIP_CHAINS``, ``START_FROM_CHAIN``, ``NONCE`` (create only),
``VERIFY`` with ``FORGE_PROJECT`` and ``ETHERSCAN_API_KEY``.
"""

import functools
import json
import logging
import os
import sys
from pathlib import Path

from eth_multichain.abi import ContractArtifact
from eth_multichain.batch import ActionContext, ChainBatchProcessor, create_selector_from_env
from eth_multichain.config import ChainConfig, ConfigStore
from eth_multichain.deploy import DeploymentCoordinator, create_deployment_request
from eth_multichain.exceptions import BatchAborted, MultichainError
from eth_multichain.gas import GasPolicyResolver
from eth_multichain.hotwallet import HotWallet
from eth_multichain.provider import create_chain_web3
from eth_multichain.utils import get_env_flag, setup_console_logging
from eth_multichain.verification import ForgeVerifier

logger = logging.getLogger(__name__)


def deploy_on_chain(
    chain: ChainConfig,
    context: ActionContext,
    private_key: str,
    contract_name: str,
    artifact_path: Path,
    deploy_method: str,
    salt: str | None,
    args_overrides: dict | None,
    gas_override: str | None,
    nonce: int | None,
    predict_only: bool,
    skip_existing: bool,
    forge_project: Path | None,
    etherscan_api_key: str | None,
) -> dict:
    web3 = create_chain_web3(chain)
    wallet = HotWallet.from_private_key(private_key)
    logger.info("Wallet %s has %s %s", wallet.address, wallet.get_native_currency_balance(web3), chain.token_symbol or "")

    artifact = ContractArtifact.load(artifact_path, contract_name)
    gas_options = GasPolicyResolver().resolve(chain, override=gas_override, contract_name=contract_name, web3=web3)

    request = create_deployment_request(
        chain,
        contract_name,
        deploy_method,
        wallet.address,
        salt=salt,
        args_overrides=args_overrides,
        nonce=nonce,
    )

    verifier = ForgeVerifier(forge_project, etherscan_api_key) if forge_project else None

    coordinator = DeploymentCoordinator(
        web3,
        wallet,
        chain,
        all_chains=context.chains,
        verifier=verifier,
        yes=context.yes,
        predict_only=predict_only,
        skip_existing=skip_existing,
    )
    result = coordinator.deploy(request, artifact, gas_options)

    return {
        "address": result.address,
        "skipped": result.skipped,
        "tx_hash": result.tx_hash.hex() if result.tx_hash else None,
    }


def main():
    setup_console_logging()

    private_key = os.environ.get("PRIVATE_KEY")
    assert private_key, "You must set PRIVATE_KEY environment variable"
    assert private_key.startswith("0x"), "Private key must start with 0x hex prefix"

    env = os.environ["ENV"]
    config_root = Path(os.environ.get("CONFIG_ROOT", "chains"))
    contract_name = os.environ["CONTRACT_NAME"]
    artifact_path = Path(os.environ["ARTIFACT_PATH"])
    args = os.environ.get("ARGS")
    nonce = os.environ.get("NONCE")
    forge_project = os.environ.get("FORGE_PROJECT")

    action = functools.partial(
        deploy_on_chain,
        private_key=private_key,
        contract_name=contract_name,
        artifact_path=artifact_path,
        deploy_method=os.environ.get("DEPLOY_METHOD", "create2"),
        salt=os.environ.get("SALT") or None,
        args_overrides=json.loads(args) if args else None,
        gas_override=os.environ.get("GAS_OPTIONS") or None,
        nonce=int(nonce) if nonce else None,
        predict_only=get_env_flag("PREDICT_ONLY"),
        skip_existing=get_env_flag("SKIP_EXISTING"),
        forge_project=Path(forge_project) if get_env_flag("VERIFY") and forge_project else None,
        etherscan_api_key=os.environ.get("ETHERSCAN_API_KEY"),
    )

    store = ConfigStore.load(env, config_root)
    processor = ChainBatchProcessor(store, yes=get_env_flag("YES"))
    result = processor.run(create_selector_from_env(), action)

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
