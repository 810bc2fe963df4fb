"""Run one action over many chains.

- Chains are selected by name or by network family, minus a skip list
  and inactive chains, optionally resuming from a named chain

- Each chain's action works on a private copy of the chain config

- Sequential mode commits each chain before moving on to the next, including
  chains whose failure was ignored. It stops at the first failure unless
  errors are ignored. The chain that stopped the run is left as it was

- Parallel mode runs every chain in its own joblib worker. Workers write
  their chain to a fragment file, the parent merges the fragments of
  successful chains after all workers have finished. Failed workers'
  chains keep their pre-run state

Example:

.. code-block:: python

    def deploy_operators(chain: ChainConfig, context: ActionContext):
        ...

    store = ConfigStore.load("testnet", Path("chains"))
    processor = ChainBatchProcessor(store)
    result = processor.run(ChainSelector(chain_names=["avalanche", "fantom"]), deploy_operators)
    for outcome in result.outcomes:
        print(outcome.chain_name, outcome.status)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from joblib import Parallel, delayed

from eth_multichain.config import ChainConfig, ConfigStore, write_chain_fragment
from eth_multichain.exceptions import ActionCancelled, BatchAborted, ConfigError, NoChainsSelectedError, UnknownChainError
from eth_multichain.utils import get_env_flag

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChainSelector:
    """Which chains a batch run touches."""

    #: Chain names, a comma separated string, or ``"all"``
    chain_names: list[str] | str = "all"

    #: Network family, chains of other families are never run
    chain_type: str = "evm"

    skip_chains: list[str] | str | None = None

    #: Resume from this chain, dropping the chains before it
    start_from_chain: str | None = None

    #: Record failures and continue with the next chain
    ignore_errors: bool = False

    parallel: bool = False


@dataclass(slots=True)
class ActionContext:
    """Passed to every per-chain action."""

    env: str

    #: Every chain in the store. Sequential runs refresh a chain here once it has been processed.
    chains: dict[str, ChainConfig]

    #: Non-interactive, do not prompt
    yes: bool = False


@dataclass(slots=True)
class ChainOutcome:
    """What happened on one chain."""

    #: Store key of the chain
    chain_name: str

    #: ``success``, ``skipped`` or ``failed``
    status: str

    #: Error or skip reason
    error: str | None = None

    #: Whatever the action returned
    result: Any = None


@dataclass(slots=True)
class BatchResult:
    """Per-chain outcomes in selection order."""

    outcomes: list[ChainOutcome] = field(default_factory=list)

    def get_outcome(self, chain_name: str) -> ChainOutcome | None:
        for outcome in self.outcomes:
            if outcome.chain_name == chain_name.lower():
                return outcome
        return None

    def get_statuses(self) -> dict[str, str]:
        return {o.chain_name: o.status for o in self.outcomes}

    @property
    def successful(self) -> list[str]:
        """Chains whose state is merged back to the store."""
        return [o.chain_name for o in self.outcomes if o.status == "success"]

    @property
    def failed(self) -> list[str]:
        return [o.chain_name for o in self.outcomes if o.status == "failed"]

    @property
    def skipped(self) -> list[str]:
        return [o.chain_name for o in self.outcomes if o.status == "skipped"]


#: Per-chain action. Mutates the chain config it is given.
ChainAction = Callable[[ChainConfig, ActionContext], Any]


def _parse_names(value: list[str] | str | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [name.strip().lower() for name in value if name and name.strip()]


def _run_chain(chain: ChainConfig, action: ChainAction, context: ActionContext) -> tuple[ChainOutcome, ChainConfig]:
    """Run the action on a working copy of one chain.

    Never raises, errors end up in the outcome.

    :return:
        Outcome and the working copy the action mutated
    """
    logger.info("Chain %s", chain.name)
    working_copy = chain.copy()

    try:
        result = action(working_copy, context)
    except ActionCancelled as e:
        logger.warning("Cancelled on %s: %s", chain.name, e)
        return ChainOutcome(chain.key, "skipped", error=str(e)), working_copy
    except Exception as e:
        logger.error("Failed with error on %s: %s", chain.name, e, exc_info=True)
        return ChainOutcome(chain.key, "failed", error=f"{e.__class__.__name__}: {e}"), working_copy

    return ChainOutcome(chain.key, "success", result=result), working_copy


def _run_chain_worker(chain: ChainConfig, action: ChainAction, context: ActionContext, fragment_path: Path) -> ChainOutcome:
    """Parallel worker entry point, hands the chain state back through a fragment file."""
    outcome, working_copy = _run_chain(chain, action, context)
    if outcome.status == "success":
        try:
            write_chain_fragment(fragment_path, working_copy)
        except OSError as e:
            logger.error("Could not write fragment %s: %s", fragment_path, e)
            return ChainOutcome(chain.key, "failed", error=f"{e.__class__.__name__}: {e}")
    return outcome


class ChainBatchProcessor:
    """Drive a per-chain action over selected chains.

    :param store:
        Aggregate config store, the only thing written to disk by the parent

    :param yes:
        Non-interactive mode for sequential runs. Parallel workers are always non-interactive.

    :param backend:
        joblib backend for parallel runs. ``loky`` runs each chain in its own process,
        the action must then be picklable.

    :param max_workers:
        Parallel worker count, defaults to one per chain

    :param persist:
        Commit chain state back to the store. Read-only actions turn this off.
    """

    def __init__(self, store: ConfigStore, yes=False, backend="loky", max_workers: int | None = None, persist=True):
        assert isinstance(store, ConfigStore), f"Got {type(store)}"
        self.store = store
        self.yes = yes
        self.backend = backend
        self.max_workers = max_workers
        self.persist = persist

    def __repr__(self):
        return f"<ChainBatchProcessor {self.store.env}>"

    def select(self, selector: ChainSelector) -> list[tuple[ChainConfig, str | None]]:
        """Resolve the selector to chains.

        :return:
            Chains in run order, each with a skip reason or ``None`` if it is to be run

        :raise UnknownChainError:
            A named chain or the start chain is not in the store

        :raise ConfigError:
            A named chain belongs to another network family

        :raise NoChainsSelectedError:
            Nothing left to run
        """
        chain_type = selector.chain_type.lower()
        names = _parse_names(selector.chain_names)

        if names == ["all"]:
            candidates = [c for c in self.store.chains.values() if c.get_family() == chain_type]
        else:
            candidates = []
            for name in names:
                chain = self.store.get_chain(name)
                if chain.get_family() != chain_type:
                    raise ConfigError(f"Cannot run for a non {chain_type} chain: {chain.name}")
                candidates.append(chain)

        if selector.start_from_chain:
            start = selector.start_from_chain.strip().lower()
            keys = [c.key for c in candidates]
            if start not in keys:
                raise UnknownChainError(f"Start chain {selector.start_from_chain} is not among the selected chains")
            candidates = candidates[keys.index(start) :]

        skip_names = set(_parse_names(selector.skip_chains))

        selected = []
        for chain in candidates:
            if chain.key in skip_names:
                selected.append((chain, "skip list"))
            elif not chain.is_active():
                selected.append((chain, "inactive"))
            else:
                selected.append((chain, None))

        if not any(reason is None for _, reason in selected):
            raise NoChainsSelectedError(f"No chains selected to run from {selector.chain_names}")

        return selected

    def run(self, selector: ChainSelector, action: ChainAction) -> BatchResult:
        """Run the action on the selected chains.

        :raise BatchAborted:
            Sequential run hit a failure and errors are not ignored.
            Carries the partial result.
        """
        selected = self.select(selector)
        runnable = [c for c, reason in selected if reason is None]

        if selector.parallel and len(runnable) > 1:
            return self._run_parallel(selected, action)
        return self._run_sequential(selected, action, selector.ignore_errors)

    def _make_context(self, yes: bool) -> ActionContext:
        return ActionContext(
            env=self.store.env,
            chains={key: chain.copy() for key, chain in self.store.chains.items()},
            yes=yes,
        )

    def _run_sequential(self, selected: list[tuple[ChainConfig, str | None]], action: ChainAction, ignore_errors: bool) -> BatchResult:
        result = BatchResult()
        context = self._make_context(self.yes)

        for chain, reason in selected:
            if reason is not None:
                logger.warning("Skipping chain %s: %s", chain.name, reason)
                result.outcomes.append(ChainOutcome(chain.key, "skipped", error=reason))
                continue

            outcome, working_copy = _run_chain(chain, action, context)
            result.outcomes.append(outcome)

            if outcome.status == "failed" and not ignore_errors:
                raise BatchAborted(f"Batch run aborted on {chain.name}: {outcome.error}", result)

            if outcome.status == "skipped":
                continue

            # Ignored failures keep whatever the action recorded before failing
            if self.persist:
                self.store.commit(chain.key, working_copy)

            # Later chains see this chain's records in their consistency scans
            context.chains[chain.key] = working_copy.copy()

        return result

    def _run_parallel(self, selected: list[tuple[ChainConfig, str | None]], action: ChainAction) -> BatchResult:
        context = self._make_context(yes=True)
        runnable = [c for c, reason in selected if reason is None]

        fragment_paths = {c.key: self.store.get_fragment_path(c.key) for c in runnable}
        n_jobs = self.max_workers or len(runnable)

        logger.info("Running %d chains in parallel with %d %s workers", len(runnable), n_jobs, self.backend)

        outcomes = Parallel(n_jobs=n_jobs, backend=self.backend)(delayed(_run_chain_worker)(chain, action, context, fragment_paths[chain.key]) for chain in runnable)
        by_chain = {o.chain_name: o for o in outcomes}

        result = BatchResult()
        for chain, reason in selected:
            if reason is not None:
                logger.warning("Skipping chain %s: %s", chain.name, reason)
                result.outcomes.append(ChainOutcome(chain.key, "skipped", error=reason))
            else:
                outcome = by_chain[chain.key]
                if outcome.status == "success":
                    logger.info("Finished running for chain %s", chain.name)
                else:
                    logger.error("Error while running for %s: %s", chain.name, outcome.error)
                result.outcomes.append(outcome)

        if self.persist and result.successful:
            self.store.merge_fragments(result.successful)

        # Fragments of failed chains are never merged
        for chain_key in result.failed + result.skipped:
            if chain_key in fragment_paths:
                fragment_paths[chain_key].unlink(missing_ok=True)

        if not self.persist:
            for chain_key in result.successful:
                fragment_paths[chain_key].unlink(missing_ok=True)

        return result


def create_selector_from_env() -> ChainSelector:
    """Read the chain selection of an operator script from environment variables.

    ``CHAINS``, ``CHAIN_TYPE``, ``SKIP_CHAINS``, ``START_FROM_CHAIN``,
    ``IGNORE_ERRORS`` and ``PARALLEL``.
    """
    chain_names = os.environ.get("CHAINS")
    if not chain_names:
        raise ConfigError("Chain names were not provided, set CHAINS")

    return ChainSelector(
        chain_names=chain_names,
        chain_type=os.environ.get("CHAIN_TYPE", "evm"),
        skip_chains=os.environ.get("SKIP_CHAINS"),
        start_from_chain=os.environ.get("START_FROM_CHAIN") or None,
        ignore_errors=get_env_flag("IGNORE_ERRORS"),
        parallel=get_env_flag("PARALLEL"),
    )
