"""ABI loading from the bundled interfaces and compiled artifacts.

Provides functions to load ABI files, encode function calls and constructor
arguments without a live connection, and compute bytecode hashes.
The results are cached for the speedup.

The bundled interface ABIs live in the ``eth_multichain/abi`` folder.
"""

import json
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence

import eth_abi
from eth_typing import HexStr
from eth_utils import keccak
from hexbytes import HexBytes

from eth_multichain.exceptions import UnsupportedMethodError, ValidationError

# How big is our ABI cache
_CACHE_SIZE = 512

#: Chain families that derive the deployed bytecode hash with a custom scheme.
#:
#: We cannot produce a comparable hash for these.
CUSTOM_BYTECODE_HASH_CHAINS = {
    "polygon-zkevm",
}


@lru_cache(maxsize=_CACHE_SIZE)
def get_abi_by_filename(fname: str) -> list | dict:
    """Reads a embedded ABI file and returns it.

    Example::

        abi = get_abi_by_filename("IMultisig.json")

    Loaded ABI files are cached in in-process memory.

    :param fname:
        JSON filename in ``eth_multichain/abi`` folder

    :return:
        Etherscan style ABI list or solc artifact dict.
    """
    here = Path(__file__).resolve().parent
    abi_path = here / "abi" / Path(fname)
    with open(abi_path, "rt", encoding="utf-8") as f:
        abi = json.load(f)
    return abi


def _collapse_type(abi_input: dict) -> str:
    """Turn ABI input description to an eth_abi type string, unrolling tuples."""
    abi_type = abi_input["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_collapse_type(c) for c in abi_input["components"])
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def get_constructor_arg_types(abi: list) -> list[str]:
    """Read constructor argument types from a contract ABI.

    :return:
        Empty list if the contract has no explicit constructor.
    """
    for entry in abi:
        if entry.get("type") == "constructor":
            return [_collapse_type(i) for i in entry.get("inputs", [])]
    return []


def encode_with_signature(function_signature: str, args: Sequence) -> bytes:
    """Mimic Solidity's abi.encodeWithSignature() in Python.

    Example:

    .. code-block:: python

            payload = encode_with_signature("deploy(bytes,bytes32)", [init_code, salt])
            assert type(payload) == bytes

    :param function_signature:
        Solidity function signature that can be hashed to a selector.

        ABI will be extracted from this signature.

    :param args:
        Argument values to be encoded.
    """

    assert type(args) in (tuple, list)

    function_selector = keccak(text=function_signature)[0:4]
    selector_text = function_signature[function_signature.find("(") + 1 : function_signature.rfind(")")]
    arg_types = [t for t in selector_text.split(",") if t]
    encoded_args = eth_abi.encode(arg_types, args)
    return function_selector + encoded_args


def _normalise_bytecode(bytecode: Any) -> HexStr | None:
    # Forge artifacts nest the hex under "object", Hardhat stores it directly
    if isinstance(bytecode, dict):
        bytecode = bytecode.get("object")
    if bytecode is None:
        return None
    assert isinstance(bytecode, str), f"Bad bytecode: {type(bytecode)}"
    if not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode
    return HexStr(bytecode)


@dataclass(slots=True)
class ContractArtifact:
    """Compiled contract as Hardhat or Forge writes it.

    - ``bytecode`` is the creation code

    - ``deployed_bytecode`` is the runtime code, used for the pre-deploy hash
    """

    contract_name: str

    abi: list

    #: Creation code, 0x prefixed
    bytecode: HexStr

    #: Runtime code, 0x prefixed, if the artifact carries it
    deployed_bytecode: HexStr | None = None

    #: Solidity source file, used for verification
    source_name: str | None = None

    #: Anything else in the artifact JSON
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict, contract_name: str | None = None) -> "ContractArtifact":
        """Normalise Hardhat and Forge artifact formats."""
        name = data.get("contractName") or contract_name
        assert name, "Contract name missing from the artifact and not given"
        bytecode = _normalise_bytecode(data.get("bytecode"))
        if not bytecode or bytecode == "0x":
            raise ValidationError(f"Artifact for {name} has no creation bytecode")
        known = {"contractName", "sourceName", "abi", "bytecode", "deployedBytecode"}
        return cls(
            contract_name=name,
            abi=data["abi"],
            bytecode=bytecode,
            deployed_bytecode=_normalise_bytecode(data.get("deployedBytecode")),
            source_name=data.get("sourceName") or f"{name}.sol",
            extra={k: v for k, v in data.items() if k not in known},
        )

    @classmethod
    def load(cls, path: Path, contract_name: str | None = None) -> "ContractArtifact":
        """Read a compiler artifact JSON file."""
        assert isinstance(path, Path), f"Expected Path, got {type(path)}"
        with open(path, "rt", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data, contract_name or path.stem)

    @property
    def qualified_name(self) -> str:
        return f"{self.source_name}:{self.contract_name}"

    def encode_constructor_args(self, constructor_args: Sequence) -> bytes:
        arg_types = get_constructor_arg_types(self.abi)
        if len(arg_types) != len(constructor_args):
            raise ValidationError(f"{self.contract_name} constructor takes {len(arg_types)} arguments, got {len(constructor_args)}: {constructor_args}")
        if not arg_types:
            return b""
        return eth_abi.encode(arg_types, list(constructor_args))

    def get_init_code(self, constructor_args: Sequence = ()) -> HexBytes:
        """Creation code with ABI encoded constructor arguments appended."""
        return HexBytes(bytes(HexBytes(self.bytecode)) + self.encode_constructor_args(constructor_args))


def get_bytecode_hash(bytecode: bytes | str, chain_name: str = "") -> HexStr:
    """Hash deployed or pre-deploy runtime bytecode.

    :param chain_name:
        Chain identifier, used to refuse chain families with a custom hash scheme.

    :raise UnsupportedMethodError:
        Chain derives bytecode hashes differently.

    :raise ValidationError:
        Bytecode is empty.
    """
    data = HexBytes(bytecode)
    if len(data) == 0:
        raise ValidationError("Contract bytecode is empty")

    if chain_name.lower() in CUSTOM_BYTECODE_HASH_CHAINS:
        raise UnsupportedMethodError(f"{chain_name} uses a custom bytecode hash derivation and is not supported")

    return HexStr("0x" + keccak(data).hex())


def get_artifact_bytecode_hash(artifact: ContractArtifact, chain_name: str = "") -> HexStr:
    """Pre-deploy hash: runtime code if the artifact has it, creation code otherwise."""
    bytecode = artifact.deployed_bytecode or artifact.bytecode
    return get_bytecode_hash(bytecode, chain_name)
