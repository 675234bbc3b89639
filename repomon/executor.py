from __future__ import annotations

import concurrent.futures
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from repomon.classifier import StrategyName
from repomon.monitor_config import ExecutorSettings
from repomon.schemas import CanonicalRecord
from repomon.source_adapters import SourceAdapterError
from repomon.strategies import Strategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrategyOutcome:
    record: CanonicalRecord
    strategy: StrategyName
    confidence: float


@dataclass(frozen=True)
class StrategyFailure:
    strategy: StrategyName
    error_type: str
    error: str


@dataclass
class ExecutionReport:
    outcomes: list[StrategyOutcome]
    failures: list[StrategyFailure]
    timed_out: list[StrategyName]


class StrategyExecutor:
    """Fan strategies out on a thread pool and fan their results back in.

    Every strategy gets ``strategy_timeout_seconds`` from the moment it starts and
    the whole run is bounded by a shared deadline. A strategy that is still running
    when its budget expires is abandoned: its thread is left to finish on its own
    and whatever it returns later is discarded.
    """

    def __init__(
        self,
        *,
        settings: ExecutorSettings | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or ExecutorSettings()
        self._monotonic = monotonic

    def run(self, strategies: list[Strategy], *, deadline_seconds: float | None = None) -> ExecutionReport:
        if not strategies:
            return ExecutionReport(outcomes=[], failures=[], timed_out=[])

        budget = deadline_seconds if deadline_seconds is not None else self._settings.overall_deadline_seconds
        per_strategy = self._settings.strategy_timeout_seconds
        deadline = self._monotonic() + max(0.0, budget)
        started_at: dict[int, float] = {}

        def _track(index: int, strategy: Strategy) -> CanonicalRecord:
            started_at[index] = self._monotonic()
            return strategy.run()

        workers = max(1, min(self._settings.max_workers, len(strategies)))
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="repomon-strategy")
        futures = {pool.submit(_track, index, strategy): (index, strategy) for index, strategy in enumerate(strategies)}
        pending = set(futures)
        abandoned: set[concurrent.futures.Future[CanonicalRecord]] = set()
        try:
            while pending:
                now = self._monotonic()
                for future in list(pending):
                    index, strategy = futures[future]
                    started = started_at.get(index)
                    expired = now >= deadline or (started is not None and now - started >= per_strategy)
                    if expired and not future.done():
                        future.cancel()
                        pending.discard(future)
                        abandoned.add(future)
                        logger.warning("strategy %s timed out; result discarded", strategy.name.value)
                if not pending:
                    break
                wake_at = deadline
                for future in pending:
                    started = started_at.get(futures[future][0])
                    # Not started yet: look again once a full budget could have elapsed.
                    wake_at = min(wake_at, (started if started is not None else now) + per_strategy)
                _, not_done = concurrent.futures.wait(
                    pending,
                    timeout=max(0.0, wake_at - self._monotonic()),
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                pending = set(not_done)
        finally:
            # Abandoned threads keep running; only queued work is cancelled here.
            pool.shutdown(wait=False, cancel_futures=True)

        outcomes: list[StrategyOutcome] = []
        failures: list[StrategyFailure] = []
        timed_out: list[StrategyName] = []
        for future, (_, strategy) in futures.items():
            if future in abandoned:
                timed_out.append(strategy.name)
                continue
            if not future.done() or future.cancelled():
                continue
            error = future.exception()
            if error is not None:
                failures.append(_record_failure(strategy.name, error))
                continue
            record = future.result()
            outcomes.append(StrategyOutcome(record=record, strategy=strategy.name, confidence=record.confidence))
        return ExecutionReport(outcomes=outcomes, failures=failures, timed_out=timed_out)


def _record_failure(name: StrategyName, error: BaseException) -> StrategyFailure:
    if isinstance(error, SourceAdapterError):
        logger.warning("strategy %s failed: %s", name.value, error)
    else:
        logger.error(
            "strategy %s raised unexpected %s",
            name.value,
            error.__class__.__name__,
            exc_info=(type(error), error, error.__traceback__),
        )
    return StrategyFailure(
        strategy=name,
        error_type=error.__class__.__name__,
        error=str(error) or error.__class__.__name__,
    )
