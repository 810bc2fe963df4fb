"""Contract kind registry."""
from unittest.mock import MagicMock

import pytest
from eth_utils import keccak

from eth_multichain.config import ContractRecord
from eth_multichain.contracts import (
    CONTRACT_KINDS,
    DEFAULT_GOVERNANCE_ADDRESS,
    DEFAULT_GOVERNANCE_CHAIN,
    ContractKind,
    build_constructor_args,
    check_deployed_contract,
    get_contract_kind,
)
from eth_multichain.exceptions import ConfigError


GATEWAY = "0xcd234a471b72ba2f1ccf0a70fcaba648a5eecd8d"

GAS_SERVICE = "0xf778b86fa74e846c4f0a1fbd1335fe81c00a0c91"

MULTISIG = "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"

DEPLOYER = "0x5e9d8d09ee7b1ced4a5a0c2d31f8c8a2ecd5f2ab"


@pytest.fixture()
def chain(store):
    chain = store.get_chain("avalanche")
    chain.contracts["AxelarGateway"] = ContractRecord(address=GATEWAY)
    chain.contracts["AxelarGasService"] = ContractRecord(address=GAS_SERVICE)
    return chain


def test_every_kind_has_handlers():
    assert set(CONTRACT_KINDS) == set(ContractKind)


def test_unknown_kind():
    with pytest.raises(ConfigError):
        get_contract_kind("Uniswap")
    assert get_contract_kind("Operators") == ContractKind.operators


def test_operators_defaults_owner_to_deployer(chain):
    assert build_constructor_args(chain, "Operators", DEPLOYER) == [DEPLOYER]
    assert chain.get_contract("Operators").extra["owner"] == DEPLOYER

    with pytest.raises(ConfigError):
        build_constructor_args(chain, "Operators", DEPLOYER, {"owner": "0xbad"})


def test_governance_defaults_and_overrides(chain):
    """Overrides end up in the record and are persisted with it."""
    args = build_constructor_args(chain, "InterchainGovernance", DEPLOYER, {"minimumTimeDelay": 3600})
    assert args == [GATEWAY, DEFAULT_GOVERNANCE_CHAIN, DEFAULT_GOVERNANCE_ADDRESS, 3600]
    assert chain.get_contract("InterchainGovernance").to_dict()["minimumTimeDelay"] == 3600


def test_governance_needs_delay(chain):
    with pytest.raises(ConfigError):
        build_constructor_args(chain, "InterchainGovernance", DEPLOYER)


def test_service_governance_needs_multisig(chain):
    with pytest.raises(ConfigError):
        build_constructor_args(chain, "AxelarServiceGovernance", DEPLOYER, {"minimumTimeDelay": 3600})

    args = build_constructor_args(chain, "AxelarServiceGovernance", DEPLOYER, {"multisig": MULTISIG})
    assert args == [GATEWAY, DEFAULT_GOVERNANCE_CHAIN, DEFAULT_GOVERNANCE_ADDRESS, 3600, MULTISIG]


def test_missing_gateway(store):
    with pytest.raises(ConfigError):
        build_constructor_args(store.get_chain("fantom"), "InterchainProposalSender", DEPLOYER)


def test_proposal_sender(chain):
    assert build_constructor_args(chain, "InterchainProposalSender", DEPLOYER) == [GATEWAY, GAS_SERVICE]


def test_multisig_args(chain):
    with pytest.raises(ConfigError):
        build_constructor_args(chain, "Multisig", DEPLOYER, {"signers": [DEPLOYER]})

    assert build_constructor_args(chain, "Multisig", DEPLOYER, {"threshold": 1}) == [[DEPLOYER], 1]


def test_no_arg_kinds(chain):
    for name in ("ConstAddressDeployer", "Create3Deployer", "TokenDeployer"):
        assert build_constructor_args(chain, name, DEPLOYER) == []


def test_operators_checker():
    web3 = MagicMock()
    web3.eth.contract.return_value.functions.owner.return_value.call.return_value = DEPLOYER.upper().replace("0X", "0x")

    record = ContractRecord(extra={"owner": DEPLOYER})
    assert check_deployed_contract(web3, "Operators", GATEWAY, record) == []

    record = ContractRecord(extra={"owner": MULTISIG})
    findings = check_deployed_contract(web3, "Operators", GATEWAY, record)
    assert len(findings) == 1


def test_governance_checker():
    web3 = MagicMock()
    functions = web3.eth.contract.return_value.functions
    functions.governanceChain.return_value.call.return_value = "Axelarnet"
    functions.governanceChainHash.return_value.call.return_value = keccak(text="Axelarnet")
    functions.governanceAddress.return_value.call.return_value = DEFAULT_GOVERNANCE_ADDRESS
    functions.governanceAddressHash.return_value.call.return_value = keccak(text=DEFAULT_GOVERNANCE_ADDRESS)
    functions.minimumTimeLockDelay.return_value.call.return_value = 3600

    record = ContractRecord(extra={"governanceChain": "Axelarnet", "governanceAddress": DEFAULT_GOVERNANCE_ADDRESS, "minimumTimeDelay": 3600})
    assert check_deployed_contract(web3, "InterchainGovernance", GATEWAY, record) == []

    record.extra["minimumTimeDelay"] = 60
    record.extra["governanceChain"] = "Ethereum"
    findings = check_deployed_contract(web3, "InterchainGovernance", GATEWAY, record)
    assert len(findings) == 3
