"""Registry of deployable contract kinds.

Each kind has

- an argument builder that turns the chain's contract records into constructor arguments

- a post-deploy checker that reads the deployed contract back and reports mismatches

The registry must cover every :py:class:`ContractKind`, checked at import time.

Operator supplied ``ARGS`` overrides are merged into the contract record first,
so the final constructor settings end up persisted with the deployment.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Callable

from eth_typing import HexAddress
from eth_utils import keccak
from hexbytes import HexBytes
from web3 import Web3

from eth_multichain.abi import get_abi_by_filename
from eth_multichain.config import ChainConfig, ContractRecord
from eth_multichain.exceptions import ConfigError
from eth_multichain.utils import is_address_array, is_non_empty_string, is_number, is_valid_address

logger = logging.getLogger(__name__)


#: Governance defaults when the record does not set them
DEFAULT_GOVERNANCE_CHAIN = "Axelarnet"

DEFAULT_GOVERNANCE_ADDRESS = "axelar10d07y265gmmuvt4z0w9aw880jnsr700j7v9daj"


class ContractKind(enum.Enum):
    """Contracts this tool knows how to configure."""

    axelar_service_governance = "AxelarServiceGovernance"
    interchain_proposal_sender = "InterchainProposalSender"
    interchain_governance = "InterchainGovernance"
    multisig = "Multisig"
    operators = "Operators"
    const_address_deployer = "ConstAddressDeployer"
    create3_deployer = "Create3Deployer"
    token_deployer = "TokenDeployer"


#: (chain, record, deployer address) -> constructor arguments
ArgBuilder = Callable[[ChainConfig, ContractRecord, HexAddress], list]

#: (web3, deployed address, record) -> list of human readable mismatches
Checker = Callable[[Web3, HexAddress, ContractRecord], list[str]]


@dataclass(slots=True, frozen=True)
class ContractKindHandlers:
    build_args: ArgBuilder

    check: Checker


def _require_address(chain: ChainConfig, contract_name: str) -> str:
    address = chain.get_contract_address(contract_name)
    if not is_valid_address(address):
        raise ConfigError(f"Missing {contract_name} address in the chain info for {chain.name}")
    return address


def _governance_settings(record: ContractRecord, kind: ContractKind) -> tuple[str, str, int]:
    record.extra.setdefault("governanceChain", DEFAULT_GOVERNANCE_CHAIN)
    record.extra.setdefault("governanceAddress", DEFAULT_GOVERNANCE_ADDRESS)

    governance_chain = record.extra["governanceChain"]
    if not is_non_empty_string(governance_chain):
        raise ConfigError(f"Missing {kind.value}.governanceChain in the chain info")

    governance_address = record.extra["governanceAddress"]
    if not is_non_empty_string(governance_address):
        raise ConfigError(f"Missing {kind.value}.governanceAddress in the chain info")

    minimum_time_delay = record.extra.get("minimumTimeDelay")
    if not is_number(minimum_time_delay):
        raise ConfigError(f"Missing {kind.value}.minimumTimeDelay in the chain info")

    return governance_chain, governance_address, minimum_time_delay


def build_axelar_service_governance_args(chain, record, deployer) -> list:
    gateway = _require_address(chain, "AxelarGateway")
    governance_chain, governance_address, minimum_time_delay = _governance_settings(record, ContractKind.axelar_service_governance)

    multisig = record.extra.get("multisig")
    if not is_valid_address(multisig):
        raise ConfigError("Missing AxelarServiceGovernance.multisig address in the chain info")

    return [gateway, governance_chain, governance_address, minimum_time_delay, multisig]


def build_interchain_proposal_sender_args(chain, record, deployer) -> list:
    return [
        _require_address(chain, "AxelarGateway"),
        _require_address(chain, "AxelarGasService"),
    ]


def build_interchain_governance_args(chain, record, deployer) -> list:
    gateway = _require_address(chain, "AxelarGateway")
    governance_chain, governance_address, minimum_time_delay = _governance_settings(record, ContractKind.interchain_governance)
    return [gateway, governance_chain, governance_address, minimum_time_delay]


def build_multisig_args(chain, record, deployer) -> list:
    signers = record.extra.get("signers")
    if not is_address_array(signers):
        raise ConfigError("Missing Multisig.signers in the chain info")

    threshold = record.extra.get("threshold")
    if not is_number(threshold):
        raise ConfigError("Missing Multisig.threshold in the chain info")

    return [signers, threshold]


def build_operators_args(chain, record, deployer) -> list:
    owner = record.extra.get("owner")
    if not owner:
        owner = deployer
        record.extra["owner"] = owner
    elif not is_valid_address(owner):
        raise ConfigError("Invalid Operators.owner in the chain info")
    return [owner]


def build_no_args(chain, record, deployer) -> list:
    return []


def check_operators(web3: Web3, address: HexAddress, record: ContractRecord) -> list[str]:
    contract = web3.eth.contract(address=address, abi=get_abi_by_filename("IOwnable.json"))
    owner = contract.functions.owner().call()
    expected = record.extra.get("owner")
    if not expected or owner.lower() != expected.lower():
        return [f"Expected owner {expected} but got {owner}"]
    return []


def check_governance(web3: Web3, address: HexAddress, record: ContractRecord) -> list[str]:
    contract = web3.eth.contract(address=address, abi=get_abi_by_filename("IGovernance.json"))
    findings = []

    expected_chain = record.extra.get("governanceChain")
    governance_chain = contract.functions.governanceChain().call()
    if governance_chain != expected_chain:
        findings.append(f"Expected governanceChain {expected_chain} but got {governance_chain}")

    expected_chain_hash = HexBytes(keccak(text=expected_chain or ""))
    governance_chain_hash = HexBytes(contract.functions.governanceChainHash().call())
    if governance_chain_hash != expected_chain_hash:
        findings.append(f"Expected governanceChainHash {expected_chain_hash.hex()} but got {governance_chain_hash.hex()}")

    expected_address = record.extra.get("governanceAddress")
    governance_address = contract.functions.governanceAddress().call()
    if governance_address != expected_address:
        findings.append(f"Expected governanceAddress {expected_address} but got {governance_address}")

    expected_address_hash = HexBytes(keccak(text=expected_address or ""))
    governance_address_hash = HexBytes(contract.functions.governanceAddressHash().call())
    if governance_address_hash != expected_address_hash:
        findings.append(f"Expected governanceAddressHash {expected_address_hash.hex()} but got {governance_address_hash.hex()}")

    expected_delay = record.extra.get("minimumTimeDelay")
    minimum_time_delay = contract.functions.minimumTimeLockDelay().call()
    if expected_delay is None or minimum_time_delay != int(expected_delay):
        findings.append(f"Expected minimumTimeDelay {expected_delay} but got {minimum_time_delay}")

    return findings


def check_nothing(web3: Web3, address: HexAddress, record: ContractRecord) -> list[str]:
    return []


CONTRACT_KINDS: dict[ContractKind, ContractKindHandlers] = {
    ContractKind.axelar_service_governance: ContractKindHandlers(build_axelar_service_governance_args, check_governance),
    ContractKind.interchain_proposal_sender: ContractKindHandlers(build_interchain_proposal_sender_args, check_nothing),
    ContractKind.interchain_governance: ContractKindHandlers(build_interchain_governance_args, check_governance),
    ContractKind.multisig: ContractKindHandlers(build_multisig_args, check_nothing),
    ContractKind.operators: ContractKindHandlers(build_operators_args, check_operators),
    ContractKind.const_address_deployer: ContractKindHandlers(build_no_args, check_nothing),
    ContractKind.create3_deployer: ContractKindHandlers(build_no_args, check_nothing),
    ContractKind.token_deployer: ContractKindHandlers(build_no_args, check_nothing),
}

assert set(CONTRACT_KINDS) == set(ContractKind), f"Contract kinds without handlers: {set(ContractKind) - set(CONTRACT_KINDS)}"


def get_contract_kind(contract_name: str) -> ContractKind:
    """Map a contract name to its kind.

    :raise ConfigError:
        Contract is not supported
    """
    try:
        return ContractKind(contract_name)
    except ValueError as e:
        raise ConfigError(f"{contract_name} is not supported") from e


def build_constructor_args(chain: ChainConfig, contract_name: str, deployer: HexAddress, overrides: dict | None = None) -> list:
    """Constructor arguments for a contract on a chain.

    :param overrides:
        Operator given settings, merged into the chain's contract record
        before the arguments are built.

    :raise ConfigError:
        A required setting or dependency contract is missing
    """
    kind = get_contract_kind(contract_name)
    record = chain.get_or_create_contract(contract_name)
    if overrides:
        record.extra.update(overrides)
    args = CONTRACT_KINDS[kind].build_args(chain, record, deployer)
    logger.info("Constructor args for %s on %s: %s", contract_name, chain.name, args)
    return args


def check_deployed_contract(web3: Web3, contract_name: str, address: HexAddress, record: ContractRecord) -> list[str]:
    """Read the deployed contract back and compare with the record.

    Findings are logged as errors and returned, never raised.
    """
    kind = get_contract_kind(contract_name)
    findings = CONTRACT_KINDS[kind].check(web3, address, record)
    for finding in findings:
        logger.error("%s at %s: %s", contract_name, address, finding)
    return findings
