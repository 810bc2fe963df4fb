"""Predict contract deployment addresses.

Three strategies:

- ``create``: sender + nonce, the plain Ethereum contract creation

- ``create2``: a deployer factory contract deploys with a salt mixed with the sender
  (`EIP-1014 <https://eips.ethereum.org/EIPS/eip-1014>`__)

- ``create3``: the factory first deploys a tiny proxy with ``create2``, and the proxy
  deploys the real contract with ``create`` as its first transaction.
  The final address depends only on the factory, the sender and the salt.

Each strategy has two implementations behind :py:class:`AddressPredictor`:

- :py:class:`OfflineAddressPredictor` computes the factory's address formula locally

- :py:class:`OnlineAddressPredictor` asks the factory contract

Both must always give the same answer for the same inputs. A divergence
means the local formula has drifted from the deployed factory.

Example:

.. code-block:: python

    predictor = OfflineAddressPredictor()
    address = predictor.predict(
        deployer.address,
        "create2",
        PredictionParams(
            salt="Operators v1",
            deployer_contract=const_address_deployer,
            init_code=artifact.get_init_code([owner]),
        ),
    )
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import eth_abi
import rlp
from eth_typing import ChecksumAddress, HexAddress
from eth_utils import keccak, to_canonical_address, to_checksum_address
from hexbytes import HexBytes
from web3 import Web3

from eth_multichain.abi import get_abi_by_filename
from eth_multichain.config import ChainConfig, DEPLOY_METHODS
from eth_multichain.exceptions import ConfigError, NetworkError, UnsupportedMethodError, ValidationError
from eth_multichain.utils import is_keccak256_hash, is_non_empty_string, is_valid_address

logger = logging.getLogger(__name__)


#: ``keccak256`` of the ``CreateDeploy`` helper creation code.
#:
#: Axelar's ``Create3Deployer`` deploys ``CreateDeploy`` with CREATE2, which then
#: deploys the contract with CREATE. Same value as ``CREATE_DEPLOY_BYTECODE_HASH``
#: in the factory's ``Create3Address.sol``.
CREATE_DEPLOY_BYTECODE_HASH = HexBytes("0xdb4bab1640a2602c9f66f33765d12be4af115accf74b24515702961e82a71327")

#: Config record names for deployer factories, first found wins
CREATE2_DEPLOYER_NAMES = ("ConstAddressDeployer", "Create2Deployer")

CREATE3_DEPLOYER_NAMES = ("Create3Deployer",)


@dataclass(slots=True, frozen=True)
class PredictionParams:
    """Inputs for an address prediction.

    Which fields are needed depends on the method.
    """

    #: Salt key, a free-form string or 0x prefixed 32 bytes hex (``create2``, ``create3``)
    salt: str | None = None

    #: Deployer factory address (``create2``, ``create3``)
    deployer_contract: HexAddress | str | None = None

    #: Creation code + ABI encoded constructor arguments (``create2``)
    init_code: bytes | None = None

    #: Sender nonce (``create``). Read from the chain by the online predictor if not given.
    nonce: int | None = None


@dataclass(slots=True, frozen=True)
class DeployOptions:
    """Resolved factory and salt for a deployment method."""

    salt: str | None = None

    deployer_contract: HexAddress | str | None = None


def get_salt_from_key(key: str | int) -> bytes:
    """Turn an operator given salt key to a 32 bytes salt.

    - 0x prefixed 32 bytes hex strings are used as is

    - Anything else is ``keccak256(abi.encode(string key))``
    """
    if isinstance(key, str) and is_keccak256_hash(key):
        return bytes(HexBytes(key))
    return keccak(eth_abi.encode(["string"], [str(key)]))


def get_create_address(sender: HexAddress | str, nonce: int) -> ChecksumAddress:
    """Contract address from sender and nonce.

    ``keccak256(rlp([sender, nonce]))[12:]``
    """
    assert type(nonce) == int and nonce >= 0, f"Bad nonce: {nonce}"
    encoded = rlp.encode([to_canonical_address(sender), nonce])
    return to_checksum_address(keccak(encoded)[12:])


def get_create2_address(factory: HexAddress | str, salt: bytes, init_code_hash: bytes) -> ChecksumAddress:
    """EIP-1014 address formula.

    ``keccak256(0xff ++ factory ++ salt ++ init_code_hash)[12:]``
    """
    assert len(salt) == 32, f"Salt must be 32 bytes, got {len(salt)}"
    assert len(init_code_hash) == 32, f"Init code hash must be 32 bytes, got {len(init_code_hash)}"
    data = b"\xff" + to_canonical_address(factory) + bytes(salt) + bytes(init_code_hash)
    return to_checksum_address(keccak(data)[12:])


def mix_salt(sender: HexAddress | str, salt: bytes) -> bytes:
    """Deployer factories namespace salts per sender.

    ``keccak256(abi.encode(sender, salt))``
    """
    return keccak(eth_abi.encode(["address", "bytes32"], [to_checksum_address(sender), bytes(salt)]))


class AddressPredictor(ABC):
    """Compute where a contract will be deployed."""

    def predict(self, deployer: HexAddress | str, method: str, params: PredictionParams) -> ChecksumAddress:
        """Predict the deployment address.

        :param deployer:
            The address sending the deployment transaction

        :param method:
            One of ``create``, ``create2``, ``create3``

        :raise UnsupportedMethodError:
            Unknown method

        :raise ValidationError:
            Inputs missing for the method
        """
        if not is_valid_address(deployer):
            raise ValidationError(f"Invalid deployer address: {deployer}")

        match method:
            case "create":
                nonce = params.nonce if params.nonce is not None else self.get_nonce(deployer)
                return get_create_address(deployer, nonce)
            case "create2":
                factory = self._check_factory(params)
                if params.init_code is None:
                    raise ValidationError("Init code must be given for create2 prediction")
                return self.predict_create2(deployer, factory, get_salt_from_key(self._check_salt(params)), HexBytes(params.init_code))
            case "create3":
                factory = self._check_factory(params)
                return self.predict_create3(deployer, factory, get_salt_from_key(self._check_salt(params)))
            case _:
                raise UnsupportedMethodError(f"Invalid deployment method: {method}, supported are {DEPLOY_METHODS}")

    @staticmethod
    def _check_factory(params: PredictionParams) -> ChecksumAddress:
        if not is_valid_address(params.deployer_contract):
            raise ValidationError(f"Deployer contract address was not provided or is invalid: {params.deployer_contract}")
        return to_checksum_address(params.deployer_contract)

    @staticmethod
    def _check_salt(params: PredictionParams) -> str:
        if params.salt is None or (isinstance(params.salt, str) and not params.salt.strip()):
            raise ValidationError("Salt was not provided")
        return params.salt

    @abstractmethod
    def get_nonce(self, deployer: HexAddress | str) -> int:
        """Nonce for ``create`` when not explicitly given."""

    @abstractmethod
    def predict_create2(self, deployer: HexAddress | str, factory: ChecksumAddress, salt: bytes, init_code: HexBytes) -> ChecksumAddress:
        """Address the factory gives for this sender, salt and init code."""

    @abstractmethod
    def predict_create3(self, deployer: HexAddress | str, factory: ChecksumAddress, salt: bytes) -> ChecksumAddress:
        """Address the factory gives for this sender and salt."""


class OfflineAddressPredictor(AddressPredictor):
    """Compute addresses locally without a JSON-RPC connection.

    .. warning ::

        ``create3`` addresses do not depend on the contract bytecode or constructor
        arguments. Two different contracts deployed with the same sender, factory and
        salt collide: the second deployment finds the first one's code and is skipped.
        Use a distinct salt per contract.
    """

    def __init__(self, create_deploy_bytecode_hash: bytes = CREATE_DEPLOY_BYTECODE_HASH):
        """
        :param create_deploy_bytecode_hash:
            Creation code hash of the helper the CREATE3 factory deploys with CREATE2.
            Override for factories other than Axelar's ``Create3Deployer``.
        """
        assert len(create_deploy_bytecode_hash) == 32
        self.create_deploy_bytecode_hash = bytes(create_deploy_bytecode_hash)

    def get_nonce(self, deployer: HexAddress | str) -> int:
        raise ValidationError("Nonce must be provided for create deployment prediction when offline")

    def predict_create2(self, deployer, factory, salt, init_code) -> ChecksumAddress:
        return get_create2_address(factory, mix_salt(deployer, salt), keccak(init_code))

    def get_create3_proxy_address(self, deployer, factory, salt: bytes) -> ChecksumAddress:
        return get_create2_address(factory, mix_salt(deployer, salt), self.create_deploy_bytecode_hash)

    def predict_create3(self, deployer, factory, salt) -> ChecksumAddress:
        proxy = self.get_create3_proxy_address(deployer, factory, salt)
        # The proxy deploys the contract as its first and only transaction
        return get_create_address(proxy, 1)


class OnlineAddressPredictor(AddressPredictor):
    """Ask the chain.

    - ``create`` reads the sender nonce

    - ``create2`` and ``create3`` call ``IDeployer.deployedAddress()`` on the factory
    """

    def __init__(self, web3: Web3, chain_name: str | None = None):
        self.web3 = web3
        self.chain_name = chain_name

    def get_nonce(self, deployer: HexAddress | str) -> int:
        try:
            return self.web3.eth.get_transaction_count(to_checksum_address(deployer))
        except Exception as e:
            raise NetworkError(f"Could not read nonce for {deployer} on {self.chain_name}: {e}", self.chain_name) from e

    def _call_deployed_address(self, factory, init_code: bytes, deployer, salt: bytes) -> ChecksumAddress:
        contract = self.web3.eth.contract(address=factory, abi=get_abi_by_filename("IDeployer.json"))
        try:
            address = contract.functions.deployedAddress(bytes(init_code), to_checksum_address(deployer), salt).call()
        except Exception as e:
            raise NetworkError(f"Factory {factory} deployedAddress() failed on {self.chain_name}: {e}", self.chain_name) from e
        return to_checksum_address(address)

    def predict_create2(self, deployer, factory, salt, init_code) -> ChecksumAddress:
        return self._call_deployed_address(factory, init_code, deployer, salt)

    def predict_create3(self, deployer, factory, salt) -> ChecksumAddress:
        # The CREATE3 factory ignores the bytecode argument
        return self._call_deployed_address(factory, b"", deployer, salt)


def get_deploy_options(method: str, salt: str | None, chain: ChainConfig) -> DeployOptions:
    """Resolve the deployer factory for a method from the chain config.

    :param salt:
        Salt key. Callers usually default this to the contract name.

    :raise ConfigError:
        Factory not configured for the chain

    :raise ValidationError:
        Empty salt
    """
    if method == "create":
        return DeployOptions()

    if method == "create2":
        names = CREATE2_DEPLOYER_NAMES
    elif method == "create3":
        names = CREATE3_DEPLOYER_NAMES
    else:
        raise UnsupportedMethodError(f"Invalid deployment method: {method}")

    deployer = None
    for name in names:
        deployer = chain.get_contract_address(name)
        if deployer:
            break

    if not is_valid_address(deployer):
        raise ConfigError(f"{' or '.join(names)} address is not valid on {chain.name}: {deployer}")

    if not is_non_empty_string(salt):
        raise ValidationError("Salt was not provided")

    return DeployOptions(salt=salt, deployer_contract=deployer)
