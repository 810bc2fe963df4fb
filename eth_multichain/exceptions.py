"""Error taxonomy shared by deployment, multisig and batch modules.

- Fatal errors derive from :py:class:`MultichainError`

- Conditions that only need operator attention are :py:class:`ConsistencyWarning`
  and are emitted through :py:mod:`warnings` and logging, never raised
"""


class MultichainError(Exception):
    """Base exception for all errors raised by this package."""


class ConfigError(MultichainError):
    """Missing or invalid configuration field.

    Detected before any network call is made.
    """


class ValidationError(MultichainError, ValueError):
    """Malformed caller input, like a non-address where an address is expected."""


class NetworkError(MultichainError):
    """JSON-RPC call failed or timed out."""

    def __init__(self, msg: str, chain_name: str | None = None):
        super().__init__(msg)
        self.chain_name = chain_name


class UnsupportedMethodError(MultichainError):
    """Unknown deployment method, or a chain family using an unsupported bytecode hash derivation."""


class InvalidGasFieldError(ValidationError):
    """Gas options contain a field outside the allow-list or a non-numeric value."""


class UnknownChainError(ConfigError):
    """A chain named by the operator is not present in the configuration."""


class NoChainsSelectedError(ConfigError):
    """Chain selection resolved to nothing."""


class UnauthorizedSignerError(MultichainError):
    """The wallet is not a registered signer of the multisig."""


class DuplicateVoteError(MultichainError):
    """The signer has already voted on this multisig topic."""


class ActionCancelled(MultichainError):
    """The operator declined a confirmation prompt."""


class BatchAborted(MultichainError):
    """Sequential batch run stopped at the first failing chain.

    Carries the partial :py:class:`eth_multichain.batch.BatchResult`
    so the caller can report what was committed before the failure.
    """

    def __init__(self, msg: str, result=None):
        super().__init__(msg)
        self.result = result


class ConsistencyWarning(UserWarning):
    """Cross-chain address or bytecode hash mismatch.

    Usually a different salt, deployer or contract bytecode was used
    than in an earlier deployment on another chain.
    """
