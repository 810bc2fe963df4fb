"""Chain configuration and the persisted aggregate config store.

- One JSON file per environment holds every chain: ``<root>/<env>.json``

- Batch runs load it once, mutate :py:class:`ChainConfig` objects in place
  and :py:meth:`ConfigStore.commit` them back

- Parallel workers never write the aggregate file. Each writes a
  per-chain fragment ``<root>/<env>-<chain>.json`` which the parent
  merges after all workers have finished

Example file:

.. code-block:: json

    {
        "chains": {
            "avalanche": {
                "name": "Avalanche",
                "axelarId": "Avalanche",
                "chainId": 43114,
                "rpc": "https://api.avax.network/ext/bc/C/rpc",
                "confirmations": 2,
                "gasOptions": {"gasLimit": 5000000},
                "contracts": {
                    "ConstAddressDeployer": {"address": "0x98B2920D53612483F91F12Ed7754E51b4A77919e"}
                }
            }
        }
    }
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from eth_multichain.exceptions import ConfigError, UnknownChainError
from eth_multichain.utils import wait_other_writers

logger = logging.getLogger(__name__)


#: Deployment methods we know how to predict and execute
DEPLOY_METHODS = ("create", "create2", "create3")


@dataclass(slots=True)
class ContractRecord:
    """Persisted metadata of one contract on one chain.

    Once ``address`` is set it is the truth for that chain.
    Clear the record to redeploy.
    """

    address: str | None = None

    deployer: str | None = None

    #: One of :py:data:`DEPLOY_METHODS`
    deployment_method: str | None = None

    #: Salt key. Not set for ``create``.
    salt: str | None = None

    #: Hash of the runtime code read back from the chain
    codehash: str | None = None

    #: Hash of the runtime code in the artifact before deployment
    predeploy_codehash: str | None = None

    gas_options: dict | None = None

    static_gas_options: dict | None = None

    #: Contract specific settings like ``owner`` or ``signers``
    extra: dict = field(default_factory=dict)

    _KEYS = {
        "address": "address",
        "deployer": "deployer",
        "deployment_method": "deploymentMethod",
        "salt": "salt",
        "codehash": "codehash",
        "predeploy_codehash": "predeployCodehash",
        "gas_options": "gasOptions",
        "static_gas_options": "staticGasOptions",
    }

    @classmethod
    def from_dict(cls, data: dict) -> "ContractRecord":
        kwargs = {attr: data.get(key) for attr, key in cls._KEYS.items()}
        extra = {k: v for k, v in data.items() if k not in cls._KEYS.values()}
        return cls(**kwargs, extra=extra)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        for attr, key in self._KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    def is_deployed(self) -> bool:
        return bool(self.address)


@dataclass(slots=True)
class ChainConfig:
    """One network in the aggregate config."""

    #: Human readable name, like ``Avalanche``
    name: str

    chain_id: int | None = None

    #: Identifier used by the verifier and relayer. Defaults to ``name``.
    axelar_id: str | None = None

    rpc: str | None = None

    #: How many blocks to wait after a transaction is included, 1 if not set
    confirmations: int | None = None

    #: ``deactive`` chains are skipped by batch runs
    status: str | None = None

    #: Network family, ``evm`` if not set
    chain_type: str | None = None

    gas_options: dict | None = None

    static_gas_options: dict | None = None

    #: Hard timeout for a single transaction confirmation, seconds. 60 if not set.
    tx_timeout: float | None = None

    token_symbol: str | None = None

    contracts: dict[str, ContractRecord] = field(default_factory=dict)

    #: Unknown keys, written back as is
    extra: dict = field(default_factory=dict)

    _KEYS = {
        "name": "name",
        "chain_id": "chainId",
        "axelar_id": "axelarId",
        "rpc": "rpc",
        "confirmations": "confirmations",
        "status": "status",
        "chain_type": "chainType",
        "gas_options": "gasOptions",
        "static_gas_options": "staticGasOptions",
        "tx_timeout": "txTimeout",
        "token_symbol": "tokenSymbol",
    }

    @property
    def key(self) -> str:
        """Lowercase name used as the key in the store."""
        return self.name.lower()

    def is_active(self) -> bool:
        return self.status != "deactive"

    def get_axelar_id(self) -> str:
        return self.axelar_id or self.name

    def get_family(self) -> str:
        return (self.chain_type or "evm").lower()

    def get_confirmations(self) -> int:
        return self.confirmations if self.confirmations is not None else 1

    def get_confirmation_block_count(self) -> int:
        """Blocks to wait on top of the inclusion block.

        ``confirmations`` counts the inclusion block itself.
        """
        return max(self.get_confirmations() - 1, 0)

    def get_tx_timeout(self) -> float:
        return self.tx_timeout if self.tx_timeout is not None else 60.0

    def get_contract(self, contract_name: str) -> ContractRecord | None:
        return self.contracts.get(contract_name)

    def get_or_create_contract(self, contract_name: str) -> ContractRecord:
        if contract_name not in self.contracts:
            self.contracts[contract_name] = ContractRecord()
        return self.contracts[contract_name]

    def get_contract_address(self, contract_name: str) -> str | None:
        record = self.contracts.get(contract_name)
        return record.address if record else None

    @classmethod
    def from_dict(cls, data: dict) -> "ChainConfig":
        if "name" not in data:
            raise ConfigError(f"Chain config is missing name: {data}")

        kwargs = {attr: data[key] for attr, key in cls._KEYS.items() if data.get(key) is not None}

        # JS tooling stores txTimeout in milliseconds
        if "tx_timeout" in kwargs:
            kwargs["tx_timeout"] = float(kwargs["tx_timeout"]) / 1000

        contracts = {name: ContractRecord.from_dict(c) for name, c in (data.get("contracts") or {}).items()}
        extra = {k: v for k, v in data.items() if k not in cls._KEYS.values() and k != "contracts"}
        return cls(**kwargs, contracts=contracts, extra=extra)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        for attr, key in self._KEYS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            if attr == "tx_timeout":
                value = int(value * 1000)
            data[key] = value
        data["contracts"] = {name: c.to_dict() for name, c in self.contracts.items()}
        return data

    def copy(self) -> "ChainConfig":
        return copy.deepcopy(self)


class ConfigStore:
    """Aggregate config file for one environment.

    The single source of truth for all chains.
    """

    def __init__(self, env: str, root: Path, chains: dict[str, ChainConfig], extra: dict | None = None):
        assert isinstance(root, Path), f"Expected Path, got {type(root)}"
        self.env = env
        self.root = root.resolve()
        self.chains = chains
        self.extra = extra or {}

    def __repr__(self):
        return f"<ConfigStore {self.env} at {self.path}, {len(self.chains)} chains>"

    @property
    def path(self) -> Path:
        return self.root / f"{self.env}.json"

    @classmethod
    def load(cls, env: str, root: Path) -> "ConfigStore":
        """Read the aggregate store.

        :raise ConfigError:
            File missing or not a chain config.
        """
        if not env:
            raise ConfigError("Environment was not provided")

        path = root.resolve() / f"{env}.json"
        if not path.exists():
            raise ConfigError(f"Config file for environment {env} not found: {path}")

        with open(path, "rt", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Config file {path} is not valid JSON: {e}") from e

        if not isinstance(data.get("chains"), dict):
            raise ConfigError(f"Config file {path} has no chains")

        chains = {name.lower(): ChainConfig.from_dict(c) for name, c in data["chains"].items()}
        extra = {k: v for k, v in data.items() if k != "chains"}
        logger.info("Loaded %d chains from %s", len(chains), path)
        return cls(env, root, chains, extra)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data["chains"] = {name: c.to_dict() for name, c in self.chains.items()}
        return data

    def get_chain(self, chain_name: str) -> ChainConfig:
        try:
            return self.chains[chain_name.lower()]
        except KeyError as e:
            raise UnknownChainError(f"Chain {chain_name} is not defined in the config {self.path}") from e

    def find_chain_by_id(self, chain_id: int) -> ChainConfig:
        for chain in self.chains.values():
            if chain.chain_id == chain_id:
                return chain
        raise UnknownChainError(f"Chain with chainId {chain_id} not found in the config")

    def save(self):
        """Rewrite the aggregate file wholesale."""
        with wait_other_writers(self.path):
            _write_json(self.path, self.to_dict())
        logger.debug("Saved config %s", self.path)

    def commit(self, chain_name: str, chain: ChainConfig):
        """Replace one chain's state and persist the store."""
        self.chains[chain_name.lower()] = chain
        self.save()

    def get_fragment_path(self, chain_name: str) -> Path:
        return self.root / f"{self.env}-{chain_name.lower()}.json"

    def write_fragment(self, chain: ChainConfig) -> Path:
        """Write one chain's state to its private fragment file."""
        return write_chain_fragment(self.get_fragment_path(chain.key), chain)

    def read_fragment(self, chain_name: str) -> ChainConfig:
        path = self.get_fragment_path(chain_name)
        with open(path, "rt", encoding="utf-8") as f:
            return ChainConfig.from_dict(json.load(f))

    def merge_fragments(self, chain_names: list[str], cleanup=True):
        """Fold worker fragments back into the store and save once.

        Chains not listed keep their current state.
        """
        for chain_name in chain_names:
            self.chains[chain_name.lower()] = self.read_fragment(chain_name)
            logger.info("Merged fragment for %s", chain_name)

        self.save()

        if cleanup:
            for chain_name in chain_names:
                self.get_fragment_path(chain_name).unlink(missing_ok=True)


def _write_json(path: Path, data: dict):
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "wt", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")
    tmp.replace(path)


def write_chain_fragment(path: Path, chain: ChainConfig) -> Path:
    """Write one chain's state to a fragment file.

    Used by parallel batch workers that must not touch the aggregate file.
    """
    _write_json(path, chain.to_dict())
    return path
