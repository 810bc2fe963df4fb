"""Bunch of random utilities.

- Console logging set up for operator scripts

- Lock files for config writers

- Operator confirmation prompt

- Input validators for addresses, calldata and numbers
"""

import logging
import math
import os
import re
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import coloredlogs
from eth_utils import is_address
from filelock import FileLock


logger = logging.getLogger(__name__)


#: Ethereum 0x0000000000000000000000000000000000000000 address
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


_HEX_RE = re.compile(r"^[a-fA-F0-9]*$")


def setup_console_logging(default_log_level="info") -> logging.Logger:
    """Coloured console logs for the operator scripts.

    ``LOG_LEVEL`` environment variable overrides ``default_log_level``.
    """
    level_name = os.environ.get("LOG_LEVEL", default_log_level).upper()
    level = logging.getLevelName(level_name)
    assert isinstance(level, int), f"Unknown log level: {level_name}"

    coloredlogs.install(level=level, fmt="%(asctime)s %(name)-36s %(levelname)-8s %(message)s", datefmt="%H:%M:%S")

    # RPC request logging drowns out the deployment steps
    for name in ("web3.providers.HTTPProvider", "web3.RequestManager", "urllib3.connectionpool", "filelock"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger()


@contextmanager
def wait_other_writers(path: Path | str, timeout=120):
    """Hold ``<path>.lock`` while writing a shared config file.

    Parallel chain workers and a concurrent script run can both try
    to commit to the same aggregate file.

    :raise filelock.Timeout:
        Lock not acquired within ``timeout`` seconds
    """
    path = Path(path)
    assert path.is_absolute(), f"Config path must be absolute: {path}"
    path.parent.mkdir(parents=True, exist_ok=True)

    lock = FileLock(path.with_name(path.name + ".lock"), timeout=timeout)
    logger.debug("Acquiring lock for %s", path)
    with lock:
        yield


def prompt(question: str, yes: bool = False) -> bool:
    """Ask the operator to confirm an action.

    :param yes:
        Non-interactive mode, always proceed without asking.

    :return:
        ``True`` if the operator declined and the caller should stop.
    """
    if yes:
        return False

    answer = input(f"{question} [y/n]? ")
    return not answer.strip().lower().startswith("y")


def is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def is_number(value: Any) -> bool:
    """Finite integer or float, but not a bool."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def is_valid_number(value: Any) -> bool:
    """Numbers and numeric strings like ``"1.2"``. NaN and infinity are refused."""
    if is_number(value):
        return True
    if isinstance(value, str):
        try:
            return Decimal(value).is_finite()
        except InvalidOperation:
            return False
    return False


def is_valid_decimal(value: Any) -> bool:
    if not is_valid_number(value):
        return False
    return Decimal(str(value)) >= 0


def is_number_array(value: Any) -> bool:
    return isinstance(value, list) and all(is_number(v) for v in value)


def is_non_empty_string_array(value: Any) -> bool:
    return isinstance(value, list) and all(is_non_empty_string(v) for v in value)


def is_valid_address(address: Any, allow_zero_address=False) -> bool:
    if not isinstance(address, str):
        return False
    if not allow_zero_address and address.lower() == ZERO_ADDRESS:
        return False
    return is_address(address)


def is_address_array(value: Any) -> bool:
    return isinstance(value, list) and all(is_valid_address(v, allow_zero_address=True) for v in value)


def is_keccak256_hash(value: Any) -> bool:
    """0x prefixed 32 bytes hex string."""
    return isinstance(value, str) and len(value) == 66 and value.startswith("0x") and bool(_HEX_RE.match(value[2:]))


def is_bytes32_array(value: Any) -> bool:
    return isinstance(value, list) and all(is_keccak256_hash(v) for v in value)


def is_valid_calldata(value: Any) -> bool:
    """0x prefixed hex string with whole bytes. ``0x`` is valid empty calldata."""
    if not isinstance(value, str) or not value.startswith("0x"):
        return False
    body = value[2:]
    return len(body) % 2 == 0 and bool(_HEX_RE.match(body))


def get_env_flag(name: str, default=False) -> bool:
    """Read a boolean environment variable like ``PARALLEL=true``."""
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "y", "on")
