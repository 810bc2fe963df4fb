"""Deterministic contract deployment on one chain.

The steps for a single chain are always taken in this order:

1. Predict the address
2. Warn if other chains recorded a different address for the same contract
3. Refuse if this chain's record disagrees with the prediction
4. Skip if code already exists at the predicted address
5. Ask the operator, then build, sign and broadcast
6. Wait for confirmations within the chain's hard timeout
7. Compare the deployed code hash with the artifact
8. Update the contract record, run post-deploy checks and verification

Running the same deployment twice is safe: the second run finds the code
and returns a handle without broadcasting.

Example:

.. code-block:: python

    request = create_deployment_request(chain, "Operators", "create2", wallet.address)
    coordinator = DeploymentCoordinator(web3, wallet, chain, all_chains=store.chains)
    result = coordinator.deploy(request, ContractArtifact.load(artifact_path))
    logger.info("Operators at %s", result.address)
"""

import datetime
import logging
import warnings
from dataclasses import dataclass, field

from eth_typing import ChecksumAddress, HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract

from eth_multichain.abi import ContractArtifact, encode_with_signature, get_artifact_bytecode_hash, get_bytecode_hash
from eth_multichain.address import AddressPredictor, OnlineAddressPredictor, PredictionParams, get_deploy_options, get_salt_from_key
from eth_multichain.config import ChainConfig
from eth_multichain.confirmation import broadcast_and_wait_transactions_to_complete
from eth_multichain.contracts import ContractKind, build_constructor_args, check_deployed_contract
from eth_multichain.exceptions import ConfigError, ConsistencyWarning, NetworkError, ValidationError
from eth_multichain.gas import apply_gas_options
from eth_multichain.hotwallet import HotWallet
from eth_multichain.utils import prompt
from eth_multichain.verification import SourceVerifier

logger = logging.getLogger(__name__)


class ContractDeploymentFailed(Exception):
    """Did not get successful tx receipt from a deployment."""

    def __init__(self, tx_hash, msg):
        super().__init__(msg)
        self.tx_hash = tx_hash


@dataclass(slots=True)
class DeploymentRequest:
    """What to deploy and how."""

    contract_name: str

    #: ``create``, ``create2`` or ``create3``
    method: str

    #: Salt key, not used with ``create``
    salt: str | None = None

    constructor_args: list = field(default_factory=list)

    #: Used when :py:meth:`DeploymentCoordinator.deploy` is not given gas options
    gas_options: dict | None = None

    #: Factory address, required for ``create2`` and ``create3``
    deployer_contract: HexAddress | str | None = None

    #: Expected sender nonce for ``create``
    nonce: int | None = None


@dataclass(slots=True)
class DeploymentResult:
    """Outcome of a deployment attempt on one chain."""

    chain_name: str

    contract_name: str

    #: Predicted, and if broadcasted, deployed address
    address: ChecksumAddress

    #: Web3 handle for the contract at ``address``
    contract: Contract | None = None

    tx_hash: HexBytes | None = None

    #: Code was already there, nothing was broadcasted
    skipped: bool = False

    #: Stopped after the prediction on request
    predict_only: bool = False

    #: Operator declined the confirmation prompt
    cancelled: bool = False

    codehash: str | None = None

    predeploy_codehash: str | None = None

    #: Cross-chain consistency warnings emitted for this deployment
    consistency_warnings: list[str] = field(default_factory=list)

    #: Post-deploy checker mismatches
    findings: list[str] = field(default_factory=list)

    def is_deployed(self) -> bool:
        """Contract code is known to exist at :py:attr:`address`."""
        return not (self.predict_only or self.cancelled)


def create_deployment_request(
    chain: ChainConfig,
    contract_name: str,
    method: str,
    deployer: HexAddress,
    salt: str | None = None,
    args_overrides: dict | None = None,
    constructor_args: list | None = None,
    gas_options: dict | None = None,
    nonce: int | None = None,
) -> DeploymentRequest:
    """Resolve factory, salt and constructor arguments from the chain config.

    :param salt:
        Salt key, defaults to the contract name

    :param constructor_args:
        Explicit arguments. If not given, they are built by the contract kind registry
        from the chain's records and ``args_overrides``.
    """
    options = get_deploy_options(method, salt or contract_name, chain)

    if constructor_args is None:
        constructor_args = build_constructor_args(chain, contract_name, deployer, args_overrides)

    return DeploymentRequest(
        contract_name=contract_name,
        method=method,
        salt=options.salt,
        constructor_args=list(constructor_args),
        gas_options=gas_options,
        deployer_contract=options.deployer_contract,
        nonce=nonce,
    )


class DeploymentCoordinator:
    """Deploy contracts to one chain.

    Mutates ``chain`` in place. Persisting it is up to the caller,
    usually :py:class:`eth_multichain.batch.ChainBatchProcessor`.

    :param all_chains:
        Every chain in the store, for the cross-chain consistency scan

    :param predictor:
        Defaults to asking the chain, see :py:class:`OnlineAddressPredictor`

    :param verifier:
        Optional source verifier, failures are logged and ignored

    :param yes:
        Do not ask for confirmation

    :param predict_only:
        Stop after the prediction

    :param skip_existing:
        Skip contracts that already have an address recorded, before any network call
    """

    def __init__(
        self,
        web3: Web3,
        wallet: HotWallet,
        chain: ChainConfig,
        all_chains: dict[str, ChainConfig] | None = None,
        predictor: AddressPredictor | None = None,
        verifier: SourceVerifier | None = None,
        yes=False,
        predict_only=False,
        skip_existing=False,
        poll_delay=datetime.timedelta(seconds=1),
    ):
        assert isinstance(chain, ChainConfig), f"Got {type(chain)}"
        self.web3 = web3
        self.wallet = wallet
        self.chain = chain
        self.all_chains = all_chains or {}
        self.predictor = predictor or OnlineAddressPredictor(web3, chain.name)
        self.verifier = verifier
        self.yes = yes
        self.predict_only = predict_only
        self.skip_existing = skip_existing
        self.poll_delay = poll_delay

    def __repr__(self):
        return f"<DeploymentCoordinator {self.chain.name} by {self.wallet.address}>"

    def deploy(self, request: DeploymentRequest, artifact: ContractArtifact, gas_options: dict | None = None) -> DeploymentResult:
        """Deploy a contract, or find it already deployed.

        :raise ConfigError:
            The chain's record has a different address than predicted

        :raise UnsupportedMethodError:
            Chain uses a bytecode hash scheme we cannot compute

        :raise ContractDeploymentFailed:
            Deployment transaction reverted or left no code behind

        :raise eth_multichain.confirmation.ConfirmationTimedOut:
            Not confirmed within the chain's ``txTimeout``
        """
        chain = self.chain
        contract_name = request.contract_name
        record = chain.get_contract(contract_name)

        if self.skip_existing and record is not None and record.is_deployed():
            logger.warning("Skipping %s deployment on %s because it is already deployed at %s", contract_name, chain.name, record.address)
            return DeploymentResult(
                chain_name=chain.name,
                contract_name=contract_name,
                address=Web3.to_checksum_address(record.address),
                contract=self.web3.eth.contract(address=Web3.to_checksum_address(record.address), abi=artifact.abi),
                skipped=True,
                codehash=record.codehash,
                predeploy_codehash=record.predeploy_codehash,
            )

        predeploy_codehash = get_artifact_bytecode_hash(artifact, chain.get_axelar_id())
        logger.info("Pre-deploy %s bytecode hash: %s", contract_name, predeploy_codehash)

        init_code = artifact.get_init_code(request.constructor_args)
        params = PredictionParams(
            salt=request.salt,
            deployer_contract=request.deployer_contract,
            init_code=init_code,
            nonce=request.nonce,
        )
        predicted = self.predictor.predict(self.wallet.address, request.method, params)

        logger.info(
            "%s will be deployed to %s on %s, method: %s, salt: %s, deployer contract: %s",
            contract_name,
            predicted,
            chain.name,
            request.method,
            request.salt if request.method != "create" else None,
            request.deployer_contract,
        )

        result = DeploymentResult(
            chain_name=chain.name,
            contract_name=contract_name,
            address=predicted,
            contract=self.web3.eth.contract(address=predicted, abi=artifact.abi),
            predeploy_codehash=predeploy_codehash,
        )

        result.consistency_warnings = self.check_consistency(contract_name, predicted, predeploy_codehash)

        if record is not None and record.is_deployed() and record.address.lower() != predicted.lower():
            raise ConfigError(f"{contract_name} on {chain.name} is recorded at {record.address} but {request.method} predicts {predicted}. Clear the record to redeploy.")

        if self.is_contract(predicted):
            logger.warning("Contract %s is already deployed on %s at %s", contract_name, chain.name, predicted)
            result.skipped = True
            if record is None or not record.is_deployed():
                # Code at a predicted address can only come from this sender, salt and factory
                logger.warning("%s on %s has no address recorded, restoring the record from the chain", contract_name, chain.name)
                result.codehash = get_bytecode_hash(self.web3.eth.get_code(predicted), chain.get_axelar_id())
                self.update_record(request, predicted, result.codehash, predeploy_codehash)
            return result

        if self.predict_only:
            logger.info("Predict only, not deploying %s on %s", contract_name, chain.name)
            result.predict_only = True
            return result

        if prompt(f"Proceed with deployment on {chain.name}?", self.yes):
            logger.info("Deployment of %s on %s cancelled", contract_name, chain.name)
            result.cancelled = True
            return result

        if gas_options is None:
            gas_options = request.gas_options or {}

        tx_hash = self.broadcast_deployment(request, init_code, gas_options)
        result.tx_hash = tx_hash

        if not self.is_contract(predicted):
            raise ContractDeploymentFailed(tx_hash, f"Contract {contract_name} deployment on {chain.name} left no code at the predicted address {predicted}, tx hash is {tx_hash.hex()}")

        codehash = get_bytecode_hash(self.web3.eth.get_code(predicted), chain.get_axelar_id())
        result.codehash = codehash
        logger.info("Deployed %s bytecode hash: %s", contract_name, codehash)
        if codehash != predeploy_codehash:
            logger.warning("Deployed bytecode hash %s of %s on %s does not match the pre-deploy hash %s", codehash, contract_name, chain.name, predeploy_codehash)

        self.update_record(request, predicted, codehash, predeploy_codehash)

        logger.info("%s | %s deployed at %s", chain.name, contract_name, predicted)

        result.findings = self.run_checks(contract_name, predicted)
        self.run_verification(predicted, artifact, request.constructor_args)
        return result

    def update_record(self, request: DeploymentRequest, address: ChecksumAddress, codehash: str | None, predeploy_codehash: str):
        record = self.chain.get_or_create_contract(request.contract_name)
        record.address = address
        record.deployer = self.wallet.address
        record.deployment_method = request.method
        record.codehash = codehash
        record.predeploy_codehash = predeploy_codehash
        if request.method != "create":
            record.salt = request.salt

    def check_consistency(self, contract_name: str, predicted: ChecksumAddress, predeploy_codehash: str) -> list[str]:
        """Compare the prediction with other chains' records.

        Non-fatal. Deployments by different integrators legitimately differ.

        :return:
            Warning messages
        """
        messages = []
        for chain_key, other in self.all_chains.items():
            if chain_key == self.chain.key:
                continue

            other_record = other.get_contract(contract_name)
            if other_record is None or not other_record.is_deployed():
                continue

            if other_record.address.lower() == predicted.lower():
                continue

            msg = f"Predicted address {predicted} of {contract_name} does not match existing deployment {other_record.address} on {other.name}"
            if other_record.predeploy_codehash and other_record.predeploy_codehash != predeploy_codehash:
                msg += f", pre-deploy bytecode hash {predeploy_codehash} does not match {other_record.predeploy_codehash} either"
            msg += ". For official deployment, recheck the deployer, salt, args, or contract bytecode."

            logger.warning(msg)
            warnings.warn(msg, ConsistencyWarning, stacklevel=2)
            messages.append(msg)

        return messages

    def is_contract(self, address: HexAddress) -> bool:
        try:
            code = self.web3.eth.get_code(address)
        except Exception as e:
            raise NetworkError(f"Could not read code at {address} on {self.chain.name}: {e}", self.chain.name) from e
        return len(code) > 0

    def build_transaction(self, request: DeploymentRequest, init_code: bytes) -> dict:
        """Method specific deployment transaction, without gas and nonce."""
        tx = {
            "from": self.wallet.address,
            "value": 0,
            "chainId": self.web3.eth.chain_id,
        }

        match request.method:
            case "create":
                tx["data"] = HexBytes(init_code)
            case "create2" | "create3":
                tx["to"] = Web3.to_checksum_address(request.deployer_contract)
                tx["data"] = HexBytes(encode_with_signature("deploy(bytes,bytes32)", [bytes(init_code), get_salt_from_key(request.salt)]))
            case _:
                raise ValidationError(f"Invalid deployment method: {request.method}")

        return tx

    def broadcast_deployment(self, request: DeploymentRequest, init_code: bytes, gas_options: dict) -> HexBytes:
        """Sign, send and confirm the deployment transaction.

        :return:
            Transaction hash
        """
        chain = self.chain
        tx = self.build_transaction(request, init_code)
        apply_gas_options(tx, gas_options)

        self.wallet.sync_nonce(self.web3)
        if request.method == "create" and request.nonce is not None and request.nonce != self.wallet.current_nonce:
            raise ValidationError(f"Create deployment predicted for nonce {request.nonce} but the wallet is at nonce {self.wallet.current_nonce}")

        if "gas" not in tx:
            tx["gas"] = self.web3.eth.estimate_gas(tx)

        if "gasPrice" not in tx and "maxFeePerGas" not in tx:
            tx["gasPrice"] = self.web3.eth.gas_price

        signed = self.wallet.sign_transaction_with_new_nonce(tx)
        receipts = broadcast_and_wait_transactions_to_complete(
            self.web3,
            [signed],
            confirmation_block_count=chain.get_confirmation_block_count(),
            max_timeout=datetime.timedelta(seconds=chain.get_tx_timeout()),
            poll_delay=self.poll_delay,
        )

        tx_hash = HexBytes(signed.hash)
        receipt = receipts[tx_hash]
        if receipt["status"] != 1:
            raise ContractDeploymentFailed(tx_hash, f"Contract {request.contract_name} deployment failed on {chain.name} with args {request.constructor_args}, tx hash is {tx_hash.hex()}")

        logger.info("Deployment tx %s confirmed on %s", tx_hash.hex(), chain.name)
        return tx_hash

    def run_checks(self, contract_name: str, address: ChecksumAddress) -> list[str]:
        if contract_name not in {k.value for k in ContractKind}:
            return []

        record = self.chain.get_contract(contract_name)
        try:
            return check_deployed_contract(self.web3, contract_name, address, record)
        except Exception as e:
            logger.error("Post-deploy check of %s on %s failed: %s", contract_name, self.chain.name, e)
            return [str(e)]

    def run_verification(self, address: ChecksumAddress, artifact: ContractArtifact, constructor_args: list):
        if self.verifier is None:
            return

        try:
            self.verifier.verify(self.chain, address, artifact, constructor_args)
        except Exception as e:
            logger.exception("Verification of %s on %s failed: %s", artifact.contract_name, self.chain.name, e)
