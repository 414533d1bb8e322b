"""Background job runner for oracle side effects.

Jobs run as asyncio tasks after the HTTP response has been built. Each
attempt is bounded by a timeout; failed attempts are retried with
exponential backoff (tenacity). When every attempt fails, the job's
failure callback records the terminal error state. Nothing a job does can
reach the response that triggered it.

Usage:
    runner.submit(
        "asset.tokenize",
        lambda: tokenize(asset_id),
        on_failure=lambda err: mark_asset_error(asset_id, err),
    )

While a job runs, its log entries carry `job=<name>`.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from lending_marketplace.logging_config import get_logger, job_context

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tenacity import RetryCallState

    JobFactory = Callable[[], Awaitable[object]]
    FailureHandler = Callable[[BaseException], Awaitable[None]]

logger = get_logger(__name__)


class BackgroundTaskRunner:
    """Runs fire-and-forget jobs with bounded time and bounded retries.

    Jobs submitted with the same `sequence` key run one after another in
    submission order; a job starts only once its predecessor has finished,
    whatever the predecessor's outcome.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        retry_wait_seconds: float = 1.0,
    ) -> None:
        self._timeout = timeout_seconds
        self._max_attempts = max_attempts
        self._retry_wait = retry_wait_seconds
        self._tasks: set[asyncio.Task] = set()
        self._tails: dict[str, asyncio.Task] = {}

    @property
    def pending(self) -> int:
        """Number of jobs not yet finished."""
        return len(self._tasks)

    def submit(
        self,
        name: str,
        job: JobFactory,
        on_failure: FailureHandler | None = None,
        sequence: str | None = None,
    ) -> asyncio.Task:
        """Schedule a job. `job` is called once per attempt."""
        previous = self._tails.get(sequence) if sequence else None
        task = asyncio.create_task(self._run(name, job, on_failure, previous), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if sequence:
            self._tails[sequence] = task
            task.add_done_callback(lambda done: self._release_tail(sequence, done))
        logger.debug(
            "background.submitted",
            job=name,
            after=previous.get_name() if previous is not None else None,
        )
        return task

    def _release_tail(self, sequence: str, task: asyncio.Task) -> None:
        if self._tails.get(sequence) is task:
            del self._tails[sequence]

    async def _run(
        self,
        name: str,
        job: JobFactory,
        on_failure: FailureHandler | None,
        previous: asyncio.Task | None = None,
    ) -> None:
        with job_context(name):
            if previous is not None:
                await asyncio.wait([previous])
            await self._attempt(job, on_failure)

    async def _attempt(self, job: JobFactory, on_failure: FailureHandler | None) -> None:
        def _log_retry(state: RetryCallState) -> None:
            outcome = state.outcome
            logger.warning(
                "background.retry",
                attempt=state.attempt_number,
                error=str(outcome.exception()) if outcome else None,
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=self._retry_wait, max=self._retry_wait * 10),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    await asyncio.wait_for(job(), timeout=self._timeout)
        except asyncio.CancelledError:
            logger.info("background.cancelled")
            raise
        except Exception as err:
            logger.error("background.job_failed", error=str(err) or type(err).__name__)
            if on_failure is not None:
                await self._report_failure(on_failure, err)
            return

        logger.info("background.job_succeeded")

    @staticmethod
    async def _report_failure(on_failure: FailureHandler, err: Exception) -> None:
        try:
            await on_failure(err)
        except Exception:
            logger.exception("background.failure_handler_failed")

    async def drain(self) -> None:
        """Wait until every submitted job (including jobs they submit) has finished."""
        while self._tasks:
            await asyncio.gather(*tuple(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding jobs. Called during FastAPI's lifespan shutdown."""
        tasks = tuple(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("background.shutdown", cancelled=len(tasks))
