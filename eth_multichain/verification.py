"""Source code verification on block explorers.

Verification is best effort. The deploy coordinator catches and logs
anything a verifier raises.

- :py:class:`SourceVerifier` is the interface the coordinator calls

- :py:class:`ForgeVerifier` runs ``forge verify-contract``,
  see `Foundry book <https://book.getfoundry.sh/reference/forge/forge-verify-contract>`__
"""

import logging
from pathlib import Path
from shutil import which
from subprocess import DEVNULL, PIPE
from typing import Protocol, Sequence

import psutil
from eth_typing import HexAddress

from eth_multichain.abi import ContractArtifact
from eth_multichain.config import ChainConfig

logger = logging.getLogger(__name__)


#: Crash unless forge completes in 4 minutes
DEFAULT_TIMEOUT = 4 * 60


class ForgeFailed(Exception):
    """Forge command failed."""


class SourceVerifier(Protocol):
    """Submit a deployed contract's source for verification."""

    def verify(self, chain: ChainConfig, address: HexAddress, artifact: ContractArtifact, constructor_args: Sequence):
        ...


def _exec_cmd(cmd_line: list[str], censored_command: str, timeout=DEFAULT_TIMEOUT) -> str:
    """Execute the command line.

    :param censored_command:
        Command line with secrets removed, for error messages

    :return:
        Combined stdout and stderr
    """
    for x in cmd_line:
        assert type(x) == str, f"Got non-string in command line: {x} in {cmd_line}"

    proc = psutil.Popen(cmd_line, stdin=DEVNULL, stdout=PIPE, stderr=PIPE)
    result = proc.wait(timeout)

    output = proc.stdout.read().decode("utf-8") + proc.stderr.read().decode("utf-8")

    if result != 0:
        raise ForgeFailed(f"forge return code {result} when running: {censored_command}\nOutput is:\n{output}")

    logger.debug("forge result:\n%s", output)
    return output


class ForgeVerifier:
    """Verify with ``forge verify-contract``.

    Assumes a standard Foundry project layout with ``foundry.toml`` in ``project_folder``.

    :param etherscan_api_key:
        Explorer API key. Verification is skipped with a warning when not given.
    """

    def __init__(self, project_folder: Path, etherscan_api_key: str | None = None, timeout=DEFAULT_TIMEOUT):
        assert isinstance(project_folder, Path), f"Got non-Path project folder: {type(project_folder)} {project_folder}"
        self.project_folder = project_folder
        self.etherscan_api_key = etherscan_api_key
        self.timeout = timeout

    def build_command_line(self, chain: ChainConfig, address: HexAddress, artifact: ContractArtifact, constructor_args: Sequence) -> list[str]:
        forge = which("forge")
        if forge is None:
            raise ForgeFailed("No forge command in path, needed for the contract verification")

        cmd_line = [
            forge,
            "verify-contract",
            "--root",
            str(self.project_folder),
            "--chain-id",
            str(chain.chain_id),
            "--etherscan-api-key",
            self.etherscan_api_key,
            "--watch",
        ]

        encoded_args = artifact.encode_constructor_args(constructor_args)
        if encoded_args:
            cmd_line += ["--constructor-args", "0x" + encoded_args.hex()]

        cmd_line += [str(address), artifact.qualified_name]
        return cmd_line

    def verify(self, chain: ChainConfig, address: HexAddress, artifact: ContractArtifact, constructor_args: Sequence):
        if not self.etherscan_api_key:
            logger.warning("No explorer API key, skipping verification of %s on %s", artifact.contract_name, chain.name)
            return

        cmd_line = self.build_command_line(chain, address, artifact, constructor_args)
        censored_command = " ".join(cmd_line).replace(self.etherscan_api_key, "***")
        logger.info("Verifying %s at %s on %s", artifact.contract_name, address, chain.name)
        _exec_cmd(cmd_line, censored_command, timeout=self.timeout)
