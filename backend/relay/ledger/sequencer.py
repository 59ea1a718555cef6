"""Single-lane queue that linearizes every ledger write from this process."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 30.0

# A unit of work performs one ledger write and returns its transaction hash.
UnitOfWork = Callable[[], Awaitable[str]]

# Completion channel for a submission. Runs on the sequencer lane after the
# unit settles; exceptions it raises are logged and never reach other units.
OutcomeReporter = Callable[["SubmissionOutcome"], Awaitable[None]]


@dataclass(frozen=True)
class SubmissionOutcome:
    label: str
    tx_hash: str | None = None
    error: str | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SequencedSubmission:
    label: str
    work: UnitOfWork
    timeout: float
    report: OutcomeReporter | None = None
    future: asyncio.Future[SubmissionOutcome] = field(default_factory=lambda: asyncio.get_running_loop().create_future())


class TransactionSequencer:
    """Run ledger writes strictly one at a time, in submission order.

    The ledger expects monotonically ordered writes from the single operator
    identity, so concurrent submission would race on nonces. Each unit is
    bounded by a timeout; a failed or timed-out unit resolves its future with
    an error outcome and the next unit starts immediately. Nothing is retried
    and nothing survives a restart: delivery is at-most-once per process.
    """

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._default_timeout = default_timeout
        self._queue: asyncio.Queue[SequencedSubmission] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._pending = 0
        self._completed = 0
        self._failed = 0

    @property
    def pending_count(self) -> int:
        """Submissions queued or currently running."""
        return self._pending

    @property
    def completed_count(self) -> int:
        return self._completed

    @property
    def failed_count(self) -> int:
        return self._failed

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start the worker task. Safe to call repeatedly."""
        if self.is_running:
            return
        self._worker = asyncio.create_task(self._run_lane(), name="ledger-sequencer")

    def submit(
        self,
        label: str,
        work: UnitOfWork,
        *,
        timeout: float | None = None,
        report: OutcomeReporter | None = None,
    ) -> asyncio.Future[SubmissionOutcome]:
        """Append a unit of work to the lane.

        Returns a future resolving to the SubmissionOutcome once `report` (if
        any) has run. Callers that only need fire-and-forget semantics may drop
        the future; failures are always logged by the sequencer itself.
        """
        submission = SequencedSubmission(
            label=label,
            work=work,
            timeout=timeout if timeout is not None else self._default_timeout,
            report=report,
        )
        self._queue.put_nowait(submission)
        self._pending += 1
        self.start()
        return submission.future

    async def drain(self) -> None:
        """Wait until every submission queued so far has settled and been reported."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the worker and fail any submissions still queued."""
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker

        dropped = 0
        while not self._queue.empty():
            submission = self._queue.get_nowait()
            if not submission.future.done():
                submission.future.set_result(SubmissionOutcome(label=submission.label, error="sequencer stopped"))
            self._queue.task_done()
            self._pending -= 1
            dropped += 1
        if dropped:
            logger.warning("dropped queued ledger writes on shutdown", count=dropped)

    async def _run_lane(self) -> None:
        while True:
            submission = await self._queue.get()
            try:
                outcome = await self._execute(submission)
                await self._report(submission, outcome)
                if not submission.future.done():
                    submission.future.set_result(outcome)
            except asyncio.CancelledError:
                if not submission.future.done():
                    submission.future.set_result(SubmissionOutcome(label=submission.label, error="sequencer stopped"))
                raise
            finally:
                self._pending -= 1
                self._queue.task_done()

    async def _execute(self, submission: SequencedSubmission) -> SubmissionOutcome:
        log = logger.bind(call=submission.label)
        try:
            tx_hash = await asyncio.wait_for(submission.work(), timeout=submission.timeout)
        except TimeoutError:
            self._failed += 1
            log.warning("ledger write timed out", timeout=submission.timeout)
            return SubmissionOutcome(label=submission.label, error="timed out", timed_out=True)
        except Exception as e:
            self._failed += 1
            log.warning("ledger write failed", error=str(e), error_type=type(e).__name__)
            return SubmissionOutcome(label=submission.label, error=str(e) or type(e).__name__)

        self._completed += 1
        log.info("ledger write sent", tx_hash=tx_hash)
        return SubmissionOutcome(label=submission.label, tx_hash=tx_hash)

    @staticmethod
    async def _report(submission: SequencedSubmission, outcome: SubmissionOutcome) -> None:
        if submission.report is None:
            return
        try:
            await submission.report(outcome)
        except Exception:
            logger.exception("outcome report failed", call=submission.label)
