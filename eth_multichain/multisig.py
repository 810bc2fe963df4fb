"""Multisig gated operational actions.

A multisig executes a call once enough signers have voted on the same
*topic*. The topic is the hash of the full multisig entry point call:

.. code-block:: text

    topic = keccak256(executeContract(target, calldata, nativeValue))

with ``withdraw(recipient, amount)`` and ``executeMultisigProposal(target, calldata, nativeValue)``
for the respective actions.

Before a vote is cast :py:class:`MultisigVotingGate` checks that

- the wallet is a signer

- the wallet has not voted on the topic yet

and tells whether the vote opens a new proposal or reaches the quorum.
The operator is asked to confirm both cases, see :py:func:`confirm_vote`.
Declining stops the action.

Supported actions, run with :py:class:`MultisigOperator`:

- ``signers``: print epoch, threshold and signers
- ``setTokenMintLimits``: gateway token mint limits
- ``transferMintLimiter``: gateway mint limiter role
- ``withdraw``: native currency from the multisig
- ``executeMultisigProposal``: call through the service governance contract
- ``setFlowLimits``: interchain token service flow limits

Votes can be broadcasted directly, handed to a relayer, or signed offline
and stored as JSON for later broadcast.
"""

import datetime
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Sequence

from eth_typing import HexAddress
from eth_utils import keccak
from hexbytes import HexBytes
from web3 import Web3

from eth_multichain.abi import encode_with_signature, get_abi_by_filename
from eth_multichain.config import ChainConfig
from eth_multichain.exceptions import ActionCancelled, ConfigError, DuplicateVoteError, NetworkError, UnauthorizedSignerError, ValidationError
from eth_multichain.gas import apply_gas_options
from eth_multichain.hotwallet import HotWallet
from eth_multichain.relay import RelayerClient, submit_transaction
from eth_multichain.utils import (
    is_bytes32_array,
    is_non_empty_string_array,
    is_number_array,
    is_valid_address,
    is_valid_calldata,
    is_valid_decimal,
    is_valid_number,
    prompt,
)

logger = logging.getLogger(__name__)


#: Actions :py:class:`MultisigOperator` can run
MULTISIG_ACTIONS = (
    "signers",
    "setTokenMintLimits",
    "transferMintLimiter",
    "withdraw",
    "executeMultisigProposal",
    "setFlowLimits",
)

#: Multisig entry points a vote can call
ENTRY_POINT_SIGNATURES = {
    "executeContract": "executeContract(address,bytes,uint256)",
    "executeMultisigProposal": "executeMultisigProposal(address,bytes,uint256)",
    "withdraw": "withdraw(address,uint256)",
}


def get_entry_point(action: str) -> str:
    """Which multisig entry point wraps an action."""
    if action in ("withdraw", "executeMultisigProposal"):
        return action
    return "executeContract"


def encode_entry_point_call(entry_point: str, target: HexAddress | str, calldata: bytes | str, native_value: int) -> bytes:
    """ABI encode the multisig entry point call a vote is cast with."""
    signature = ENTRY_POINT_SIGNATURES[entry_point]
    target = Web3.to_checksum_address(target)
    if entry_point == "withdraw":
        return encode_with_signature(signature, [target, int(native_value)])
    return encode_with_signature(signature, [target, bytes(HexBytes(calldata)), int(native_value)])


def get_proposal_topic(entry_point: str, target: HexAddress | str, calldata: bytes | str, native_value: int) -> HexBytes:
    """Topic hash signers vote on."""
    return HexBytes(keccak(encode_entry_point_call(entry_point, target, calldata, native_value)))


@dataclass(slots=True)
class MultisigProposal:
    """One call to be executed by the multisig."""

    #: Contract the multisig calls, or the withdraw recipient
    target: HexAddress

    calldata: HexBytes

    #: Wei
    native_value: int

    #: ``executeContract``, ``withdraw`` or ``executeMultisigProposal``
    entry_point: str = "executeContract"

    vote_count: int | None = None

    threshold: int | None = None

    @property
    def topic(self) -> HexBytes:
        return get_proposal_topic(self.entry_point, self.target, self.calldata, self.native_value)

    def encode_call(self) -> bytes:
        return encode_entry_point_call(self.entry_point, self.target, self.calldata, self.native_value)


@dataclass(slots=True, frozen=True)
class GateVerdict:
    """What casting a vote on a topic would do."""

    #: No votes yet, this vote opens a new proposal
    requires_new_proposal: bool

    #: One vote short of the threshold, this vote executes the proposal
    approaches_quorum: bool

    vote_count: int

    threshold: int

    already_voted: bool = False

    def is_notable(self) -> bool:
        return self.requires_new_proposal or self.approaches_quorum


class MultisigVotingGate:
    """Pre-execution checks for multisig votes.

    The gate remembers the (topic, signer) pairs it has cleared,
    so the same signer cannot pass twice through one gate instance
    even before its first vote is mined.
    """

    def __init__(self, web3: Web3, multisig_address: HexAddress | str, chain_name: str | None = None):
        self.web3 = web3
        self.chain_name = chain_name
        self.address = Web3.to_checksum_address(multisig_address)
        self.contract = web3.eth.contract(address=self.address, abi=get_abi_by_filename("IMultisig.json"))
        self.cleared: set[tuple[bytes, str]] = set()

    def __repr__(self):
        return f"<MultisigVotingGate {self.address} on {self.chain_name}>"

    def _call(self, bound_call):
        try:
            return bound_call.call()
        except Exception as e:
            raise NetworkError(f"Multisig {self.address} call failed on {self.chain_name}: {e}", self.chain_name) from e

    def check(self, topic: bytes, signer: HexAddress | str) -> GateVerdict:
        """Classify a pending vote.

        :raise UnauthorizedSignerError:
            ``signer`` is not a signer of the multisig

        :raise DuplicateVoteError:
            ``signer`` has already voted on the topic
        """
        topic = bytes(HexBytes(topic))
        assert len(topic) == 32, f"Topic must be 32 bytes, got {len(topic)}"
        signer = Web3.to_checksum_address(signer)

        if not self._call(self.contract.functions.isSigner(signer)):
            raise UnauthorizedSignerError(f"Caller {signer} is not an authorized multisig signer")

        key = (topic, signer.lower())
        if key in self.cleared or self._call(self.contract.functions.hasSignerVoted(signer, topic)):
            raise DuplicateVoteError(f"Signer {signer} has already voted on this proposal {HexBytes(topic).hex()}")

        vote_count = self._call(self.contract.functions.getSignerVotesCount(topic))
        threshold = self._call(self.contract.functions.signerThreshold())

        verdict = GateVerdict(
            requires_new_proposal=vote_count == 0,
            approaches_quorum=vote_count == threshold - 1,
            vote_count=vote_count,
            threshold=threshold,
        )

        self.cleared.add(key)
        logger.info("Topic %s has %d votes, threshold %d", HexBytes(topic).hex(), vote_count, threshold)
        return verdict


def confirm_vote(verdict: GateVerdict, action: str, yes=False):
    """Ask the operator about notable votes.

    :raise ActionCancelled:
        Operator declined
    """
    if verdict.requires_new_proposal:
        logger.warning("The vote count for this topic is zero. This action will create a new multisig proposal.")
        if prompt(f"Proceed with {action}?", yes):
            raise ActionCancelled(f"{action} cancelled, no new proposal created")

    if verdict.approaches_quorum:
        logger.warning("The vote count is one below the threshold. This action will execute the multisig proposal.")
        if prompt(f"Proceed with {action}?", yes):
            raise ActionCancelled(f"{action} cancelled, proposal not executed")


@dataclass(slots=True)
class MultisigSubmission:
    """What happened with a multisig action."""

    action: str

    chain_name: str

    proposal: MultisigProposal | None = None

    verdict: GateVerdict | None = None

    #: ``direct``, ``relayed``, ``offline`` or ``read`` for queries
    mode: str = "direct"

    tx_hash: HexBytes | None = None

    relay_id: str | None = None

    signed_tx_path: Path | None = None

    #: Query results of ``signers``
    info: dict | None = None


def _to_json_value(value):
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value


class MultisigOperator:
    """Run multisig actions on one chain.

    :param contract_name:
        Record holding the multisig address

    :param address:
        Explicit multisig address, overrides the record

    :param offline:
        Skip every chain read and sign with ``nonce``.
        The signed transaction is written to ``signed_tx_folder``.

    :param relayer:
        Hand votes to a relayer instead of broadcasting them

    :param yes:
        Do not ask for confirmation
    """

    def __init__(
        self,
        web3: Web3 | None,
        wallet: HotWallet,
        chain: ChainConfig,
        contract_name="Multisig",
        address: HexAddress | str | None = None,
        gas_options: dict | None = None,
        yes=False,
        offline=False,
        nonce: int | None = None,
        relayer: RelayerClient | None = None,
        signed_tx_folder: Path = Path("tx"),
        env: str = "",
    ):
        assert isinstance(chain, ChainConfig), f"Got {type(chain)}"
        self.web3 = web3
        self.wallet = wallet
        self.chain = chain
        self.contract_name = contract_name
        self.gas_options = gas_options or {}
        self.yes = yes
        self.offline = offline
        self.nonce = nonce
        self.relayer = relayer
        self.signed_tx_folder = signed_tx_folder
        self.env = env

        if is_valid_address(address):
            self.multisig_address = Web3.to_checksum_address(address)
        else:
            recorded = chain.get_contract_address(contract_name)
            if not recorded:
                raise ConfigError(f"Contract {contract_name} is not deployed on {chain.name}")
            self.multisig_address = Web3.to_checksum_address(recorded)

        if offline:
            assert nonce is not None, "Offline signing needs an explicit nonce"
        else:
            assert web3 is not None, "Online mode needs a web3 connection"

        self._gates: dict[str, MultisigVotingGate] = {}

    def __repr__(self):
        return f"<MultisigOperator {self.multisig_address} on {self.chain.name}>"

    def get_gate(self, address: HexAddress) -> MultisigVotingGate:
        if address not in self._gates:
            self._gates[address] = MultisigVotingGate(self.web3, address, self.chain.name)
        return self._gates[address]

    def _require_contract(self, contract_name: str) -> HexAddress:
        address = self.chain.get_contract_address(contract_name)
        if not is_valid_address(address):
            raise ConfigError(f"Missing {contract_name} address in the chain info for {self.chain.name}")
        return Web3.to_checksum_address(address)

    def run(self, action: str, **kwargs) -> MultisigSubmission:
        """Run an action by its name.

        :raise ValidationError:
            Unknown action or bad arguments
        """
        handlers = {
            "signers": self.signers,
            "setTokenMintLimits": self.set_token_mint_limits,
            "transferMintLimiter": self.transfer_mint_limiter,
            "withdraw": self.withdraw,
            "executeMultisigProposal": self.execute_multisig_proposal,
            "setFlowLimits": self.set_flow_limits,
        }
        assert set(handlers) == set(MULTISIG_ACTIONS)

        if action not in handlers:
            raise ValidationError(f"Invalid multisig action: {action}, supported are {MULTISIG_ACTIONS}")

        logger.info("Multisig action %s on %s, multisig %s", action, self.chain.name, self.multisig_address)

        if prompt(f"Proceed with action {action} on chain {self.chain.name}?", self.yes):
            raise ActionCancelled(f"{action} cancelled on {self.chain.name}")

        return handlers[action](**kwargs)

    def signers(self) -> MultisigSubmission:
        assert not self.offline, "Cannot read signers offline"
        gate = self.get_gate(self.multisig_address)
        info = {
            "signerEpoch": gate._call(gate.contract.functions.signerEpoch()),
            "signerThreshold": gate._call(gate.contract.functions.signerThreshold()),
            "signers": gate._call(gate.contract.functions.signerAccounts()),
        }
        logger.info("Signer epoch: %s, threshold: %s, signers: %s", info["signerEpoch"], info["signerThreshold"], info["signers"])
        return MultisigSubmission(action="signers", chain_name=self.chain.name, mode="read", info=info)

    def set_token_mint_limits(self, symbols: Sequence[str], limits: Sequence[int]) -> MultisigSubmission:
        symbols = list(symbols)
        limits = list(limits)

        if not is_non_empty_string_array(symbols):
            raise ValidationError(f"Invalid token symbols: {symbols}")

        if not is_number_array(limits):
            raise ValidationError(f"Invalid token limits: {limits}")

        if len(symbols) != len(limits):
            raise ValidationError("Token symbols and token limits length mismatch")

        gateway = self._require_contract("AxelarGateway")
        calldata = encode_with_signature("setTokenMintLimits(string[],uint256[])", [symbols, [int(l) for l in limits]])
        proposal = MultisigProposal(target=gateway, calldata=HexBytes(calldata), native_value=0)

        logger.info("Rate limit tokens %s, values %s", symbols, limits)

        verdict = None
        if not self.offline:
            verdict = self.check_vote("setTokenMintLimits", self.multisig_address, proposal)
            contract = self.web3.eth.contract(address=gateway, abi=get_abi_by_filename("IGateway.json"))
            for symbol in symbols:
                token = contract.functions.tokenAddresses(symbol).call()
                limit = contract.functions.tokenMintLimit(symbol).call()
                logger.info("Token %s address %s, current limit %s", symbol, token, limit)

        return self.submit("setTokenMintLimits", self.multisig_address, proposal, verdict)

    def transfer_mint_limiter(self, mint_limiter: HexAddress | str) -> MultisigSubmission:
        if not is_valid_address(mint_limiter):
            raise ValidationError(f"Invalid new mint limiter address: {mint_limiter}")

        gateway = self._require_contract("AxelarGateway")
        calldata = encode_with_signature("transferMintLimiter(address)", [Web3.to_checksum_address(mint_limiter)])
        proposal = MultisigProposal(target=gateway, calldata=HexBytes(calldata), native_value=0)

        verdict = None
        if not self.offline:
            verdict = self.check_vote("transferMintLimiter", self.multisig_address, proposal)

        return self.submit("transferMintLimiter", self.multisig_address, proposal, verdict)

    def withdraw(self, recipient: HexAddress | str, amount: Decimal | str) -> MultisigSubmission:
        """Withdraw native currency from the multisig.

        :param amount:
            In ether units, like ``"0.5"``
        """
        if not is_valid_address(recipient):
            raise ValidationError(f"Invalid recipient address: {recipient}")

        if not is_valid_decimal(amount):
            raise ValidationError(f"Invalid withdraw amount: {amount}")

        raw_amount = Web3.to_wei(Decimal(str(amount)), "ether")
        proposal = MultisigProposal(
            target=Web3.to_checksum_address(recipient),
            calldata=HexBytes(b""),
            native_value=raw_amount,
            entry_point="withdraw",
        )

        verdict = None
        if not self.offline:
            verdict = self.check_vote("withdraw", self.multisig_address, proposal)
            balance = self.web3.eth.get_balance(self.multisig_address)
            if balance < raw_amount:
                raise ValidationError(f"Contract balance {Web3.from_wei(balance, 'ether')} is less than withdraw amount: {amount}")

        return self.submit("withdraw", self.multisig_address, proposal, verdict)

    def execute_multisig_proposal(self, target: HexAddress | str, calldata: str, native_value: int | str = 0) -> MultisigSubmission:
        """Vote on a call executed by the service governance contract.

        :param native_value:
            Wei
        """
        if not is_valid_address(target):
            raise ValidationError(f"Invalid target for execute multisig proposal: {target}")

        if not is_valid_calldata(calldata):
            raise ValidationError(f"Invalid calldata for execute multisig proposal: {calldata}")

        if calldata == "0x":
            logger.warning("Calldata for execute multisig proposal is empty")
            if prompt("Proceed with executeMultisigProposal?", self.yes):
                raise ActionCancelled("executeMultisigProposal with empty calldata cancelled")

        if not is_valid_number(native_value) or Decimal(str(native_value)) < 0:
            raise ValidationError(f"Invalid native value for execute multisig proposal: {native_value}")

        native_value = int(Decimal(str(native_value)))
        governance = self._require_contract("AxelarServiceGovernance")
        proposal = MultisigProposal(
            target=Web3.to_checksum_address(target),
            calldata=HexBytes(calldata),
            native_value=native_value,
            entry_point="executeMultisigProposal",
        )

        verdict = None
        if not self.offline:
            verdict = self.check_vote("executeMultisigProposal", governance, proposal)
            balance = self.web3.eth.get_balance(governance)
            if balance < native_value:
                raise ValidationError(f"AxelarServiceGovernance balance {Web3.from_wei(balance, 'ether')} is less than native value amount: {Web3.from_wei(native_value, 'ether')}")

        return self.submit("executeMultisigProposal", governance, proposal, verdict)

    def set_flow_limits(self, token_ids: Sequence[str], limits: Sequence[int]) -> MultisigSubmission:
        token_ids = list(token_ids)
        limits = list(limits)

        if not is_bytes32_array(token_ids):
            raise ValidationError(f"Invalid token ids: {token_ids}")

        if not is_number_array(limits):
            raise ValidationError(f"Invalid token limits: {limits}")

        if len(token_ids) != len(limits):
            raise ValidationError("Token ids and token flow limits length mismatch")

        its = self._require_contract("InterchainTokenService")
        raw_ids = [bytes(HexBytes(t)) for t in token_ids]
        calldata = encode_with_signature("setFlowLimits(bytes32[],uint256[])", [raw_ids, [int(l) for l in limits]])
        proposal = MultisigProposal(target=its, calldata=HexBytes(calldata), native_value=0)

        logger.info("Token ids %s, flow limit values %s", token_ids, limits)

        verdict = None
        if not self.offline:
            verdict = self.check_vote("setFlowLimits", self.multisig_address, proposal)
            contract = self.web3.eth.contract(address=its, abi=get_abi_by_filename("IInterchainTokenService.json"))
            if not contract.functions.isOperator(self.multisig_address).call():
                raise ValidationError("Missing Operator role for the used multisig address")

            for token_id in raw_ids:
                token_manager_address = contract.functions.validTokenManagerAddress(token_id).call()
                token_manager = self.web3.eth.contract(address=token_manager_address, abi=get_abi_by_filename("ITokenManager.json"))
                logger.info("TokenManager %s current flowLimit %s", token_manager_address, token_manager.functions.flowLimit().call())

        return self.submit("setFlowLimits", self.multisig_address, proposal, verdict)

    def check_vote(self, action: str, multisig_address: HexAddress, proposal: MultisigProposal) -> GateVerdict:
        """Run the voting gate and ask the operator about notable votes."""
        gate = self.get_gate(multisig_address)
        verdict = gate.check(proposal.topic, self.wallet.address)
        proposal.vote_count = verdict.vote_count
        proposal.threshold = verdict.threshold
        confirm_vote(verdict, action, self.yes)
        return verdict

    def submit(self, action: str, multisig_address: HexAddress, proposal: MultisigProposal, verdict: GateVerdict | None) -> MultisigSubmission:
        """Cast the vote: offline signed file, relayer or direct broadcast."""
        calldata = proposal.encode_call()
        submission = MultisigSubmission(action=action, chain_name=self.chain.name, proposal=proposal, verdict=verdict)

        if self.offline:
            submission.mode = "offline"
            submission.signed_tx_path, submission.tx_hash = self.sign_offline(action, multisig_address, calldata)
            return submission

        if self.relayer is not None:
            submission.mode = "relayed"
            submission.relay_id = self.relayer.relay(self.chain, multisig_address, calldata, 0)
            return submission

        self.wallet.sync_nonce(self.web3)
        tx = {"to": multisig_address, "data": HexBytes(calldata), "value": 0}
        receipt = submit_transaction(self.web3, self.wallet, self.chain, tx, self.gas_options)
        submission.tx_hash = HexBytes(receipt["transactionHash"])
        return submission

    def sign_offline(self, action: str, multisig_address: HexAddress, calldata: bytes) -> tuple[Path, HexBytes]:
        """Sign with the explicit nonce and store the transaction as JSON.

        :return:
            Path of the written file and the transaction hash
        """
        if not self.chain.chain_id:
            raise ConfigError(f"chainId is needed for offline signing on {self.chain.name}")

        tx = {
            "to": multisig_address,
            "data": HexBytes(calldata),
            "value": 0,
            "chainId": self.chain.chain_id,
            "nonce": self.nonce,
        }
        apply_gas_options(tx, self.gas_options)

        if "gas" not in tx or ("gasPrice" not in tx and "maxFeePerGas" not in tx):
            raise ConfigError(f"Offline signing needs gasLimit and a gas price in staticGasOptions for {self.chain.name}")

        signed = self.wallet.sign_transaction(tx)

        path = self.signed_tx_folder / f"signed-tx-{self.env}-multisig-{action}-{self.chain.key}-address-{self.wallet.address}-nonce-{self.nonce}.json"
        data = {
            "msg": f"This transaction will perform multisig action {action} on chain {self.chain.name}",
            "unsignedTx": {k: _to_json_value(v) for k, v in tx.items()},
            "signedTx": "0x" + bytes(signed.raw_transaction).hex(),
            "status": "PENDING",
            "createdAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wt", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

        logger.info("Stored signed tx offline in file %s", path)
        return path, HexBytes(signed.hash)
