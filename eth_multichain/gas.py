"""Gas options for deployment and multisig transactions.

Gas options come in layers, the highest set layer wins as a whole:

1. Explicit per-call override (command line / environment)
2. Contract specific ``gasOptions`` in the chain config
3. Chain level ``gasOptions``
4. Empty defaults

Layers are never merged field by field. A contract that stores only ``gasLimit``
does not inherit the chain's ``gasPrice``.

``gasPriceAdjustment`` is a multiplier on the live gas price, sampled once
when the options do not already carry a ``gasPrice``.
"""

import json
import logging
import math
from decimal import Decimal
from pprint import pformat

from web3 import Web3

from eth_multichain.config import ChainConfig
from eth_multichain.exceptions import InvalidGasFieldError, NetworkError
from eth_multichain.utils import is_valid_number

logger = logging.getLogger(__name__)


#: Gas option fields we accept
ALLOWED_GAS_FIELDS = ("gasLimit", "gasPrice", "maxPriorityFeePerGas", "maxFeePerGas", "gasPriceAdjustment")


def validate_gas_options(gas_options: dict):
    """Check gas options against the allow-list.

    :raise InvalidGasFieldError:
        Unknown field or non-numeric value
    """
    if not isinstance(gas_options, dict):
        raise InvalidGasFieldError(f"Gas options must be a mapping, got {type(gas_options)}")

    for key, value in gas_options.items():
        if key not in ALLOWED_GAS_FIELDS:
            raise InvalidGasFieldError(f"Invalid gas option field: {key}")

        if not is_valid_number(value):
            raise InvalidGasFieldError(f"Invalid {key} value: {value}")


def parse_gas_options(value: str | dict | None) -> dict | None:
    """Read a JSON override as given by the operator."""
    if value is None or isinstance(value, dict):
        return value

    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise InvalidGasFieldError(f"Invalid gas options override: {value}") from e

    if not isinstance(parsed, dict):
        raise InvalidGasFieldError(f"Invalid gas options override: {value}")
    return parsed


class GasPolicyResolver:
    """Resolve layered gas options for a chain.

    :param web3_factory:
        Callable returning a :py:class:`Web3` for a chain, used to sample gas price.
        Only called when a ``gasPriceAdjustment`` needs a live price.
    """

    def __init__(self, web3_factory=None):
        self.web3_factory = web3_factory

    def resolve(
        self,
        chain: ChainConfig,
        override: dict | str | None = None,
        contract_name: str | None = None,
        offline=False,
        web3: Web3 | None = None,
    ) -> dict:
        """Pick the winning gas options layer and apply the gas price adjustment.

        :param offline:
            Read ``staticGasOptions`` instead of ``gasOptions``,
            for transactions signed without a connection.

        :raise InvalidGasFieldError:
            Bad field or value in the winning layer

        :raise NetworkError:
            Could not sample the gas price
        """
        override = parse_gas_options(override)
        record = chain.get_contract(contract_name) if contract_name else None

        if override is not None:
            source = "override"
            gas_options = dict(override)
        elif offline:
            contract_options = record.static_gas_options if record else None
            source = "contract static" if contract_options else "chain static"
            gas_options = dict(contract_options or chain.static_gas_options or {})
        else:
            contract_options = record.gas_options if record else None
            source = "contract" if contract_options else "chain"
            gas_options = dict(contract_options or chain.gas_options or {})

        validate_gas_options(gas_options)

        gas_options = self.apply_gas_price_adjustment(chain, gas_options, web3)

        logger.info("Gas options for %s (%s):\n%s", chain.name, source, pformat(gas_options))
        return gas_options

    def apply_gas_price_adjustment(self, chain: ChainConfig, gas_options: dict, web3: Web3 | None = None) -> dict:
        """Replace ``gasPriceAdjustment`` with a concrete ``gasPrice``."""
        adjustment = gas_options.pop("gasPriceAdjustment", None)

        if adjustment and not gas_options.get("gasPrice"):
            if web3 is None:
                assert self.web3_factory is not None, "No web3 or web3_factory to sample gas price"
            try:
                if web3 is None:
                    web3 = self.web3_factory(chain)
                gas_price = web3.eth.gas_price
            except Exception as e:
                raise NetworkError(f"Provider failed to retrieve gas price on chain {chain.name}: {e}", chain.name) from e

            gas_options["gasPrice"] = math.floor(gas_price * float(adjustment))
            logger.info("Adjusted gas price on %s: %d x %s = %d", chain.name, gas_price, adjustment, gas_options["gasPrice"])

        return gas_options


def apply_gas_options(tx: dict, gas_options: dict) -> dict:
    """Apply resolved gas options to a raw transaction dict.

    - ``gasLimit`` becomes the ``gas`` field

    - EIP-1559 fields and legacy ``gasPrice`` are mutually exclusive, fee fields win

    :return:
        Mutated dict
    """
    assert isinstance(tx, dict), f"Expected tx to be dict, got {type(tx)}"

    for key, value in gas_options.items():
        if key == "gasLimit":
            tx["gas"] = int(Decimal(str(value)))
        elif key == "gasPriceAdjustment":
            continue
        else:
            tx[key] = int(Decimal(str(value)))

    if "maxFeePerGas" in tx and "gasPrice" in tx:
        # Cannot have both maxFeePerGas + maxPriorityFeePerGas and gasPrice
        del tx["gasPrice"]

    return tx
