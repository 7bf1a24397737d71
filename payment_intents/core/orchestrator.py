"""
Concurrent verification stages for confirmed payment intents.

For each confirmed intent the orchestrator creates one job per
``StageType`` and runs all five concurrently:

1. Decide up front whether the run fails, and which single stage fails
2. Each stage waits a random jitter, marks itself processing, waits a
   random duration, then marks itself completed or failed
3. Once every stage is terminal, report the aggregate outcome exactly once

Stage order is informational; no stage waits on another.
"""
import asyncio
import functools
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set

import structlog

from payment_intents.config import Settings, get_settings
from payment_intents.core.models import Job, JobStatus, StageType, utcnow
from payment_intents.monitoring.logging import intent_logger
from payment_intents.monitoring.metrics import metrics
from payment_intents.repository.base import PaymentRepository

logger = structlog.get_logger(__name__)

FORCED_FAILURE_REASON = "forced_failure"
GENERIC_STAGE_FAILURE = "Job processing failed"


@dataclass(frozen=True)
class ProcessingOutcome:
    """Aggregate result of one orchestrator run."""

    intent_id: str
    succeeded: bool
    forced: bool = False
    failed_stage: Optional[StageType] = None
    error_message: Optional[str] = None

    @property
    def failure_reason(self) -> Optional[str]:
        if self.succeeded:
            return None
        if self.forced:
            return FORCED_FAILURE_REASON
        if self.failed_stage is not None:
            return f"{self.failed_stage.value}_failed"
        return "processing_failed"


CompletionCallback = Callable[[ProcessingOutcome], Awaitable[None]]


def choose_failing_stage(
    rng: random.Random, force_failure: bool, failure_rate: float
) -> Optional[StageType]:
    """
    Decide whether a run fails and, if so, which stage fails.

    Args:
        rng: Random source
        force_failure: Fail regardless of ``failure_rate``
        failure_rate: Probability in [0, 1] that an unforced run fails

    Returns:
        Optional[StageType]: The failing stage, or None for a clean run
    """
    should_fail = force_failure or rng.random() < failure_rate
    if not should_fail:
        return None
    return rng.choice(list(StageType))


class JobOrchestrator:
    """
    Runs the five processing stages for confirmed intents.

    At most one run per intent is ever outstanding.
    """

    def __init__(
        self,
        repository: PaymentRepository,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            repository: Shared payment repository
            settings: Optional settings (defaults to the cached instance)
            rng: Random source for jitter, durations and failure choice
            sleep: Awaitable delay, injectable for tests
        """
        self.repository = repository
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()
        self._sleep = sleep
        self._runs: Dict[str, "asyncio.Task[ProcessingOutcome]"] = {}
        self._starting: Set[str] = set()
        self._failed_runs: Dict[str, str] = {}

    @property
    def in_flight(self) -> int:
        """Number of runs that have not reported yet."""
        return len(self._runs)

    @property
    def failed_runs(self) -> Dict[str, str]:
        """Runs whose outcome could not be reported, by intent id."""
        return dict(self._failed_runs)

    def is_running(self, intent_id: str) -> bool:
        return intent_id in self._runs or intent_id in self._starting

    def _on_run_done(self, intent_id: str, task: "asyncio.Task[ProcessingOutcome]") -> None:
        if task.cancelled():
            logger.warning("orchestrator_run_cancelled", intent_id=intent_id)
            return
        error = task.exception()
        if error is not None:
            self._failed_runs[intent_id] = str(error)
            logger.error(
                "orchestrator_run_unreported",
                intent_id=intent_id,
                error=str(error),
                error_type=type(error).__name__,
            )

    async def start(
        self,
        intent_id: str,
        on_complete: CompletionCallback,
        force_failure: bool = False,
    ) -> bool:
        """
        Create the intent's jobs and launch all stages in the background.

        Returns as soon as the jobs exist (all ``pending``); it does not
        wait for any stage.

        Args:
            intent_id: Confirmed payment intent id
            on_complete: Called once with the aggregate outcome
            force_failure: Make exactly one randomly chosen stage fail

        Returns:
            bool: False if a run for this intent already exists
        """
        if self.is_running(intent_id):
            logger.warning("orchestrator_run_already_active", intent_id=intent_id)
            return False

        self._starting.add(intent_id)
        try:
            jobs = [Job(intent_id=intent_id, stage=stage) for stage in StageType]
            await self.repository.create_jobs(intent_id, jobs)
        except ValueError:
            logger.warning("orchestrator_jobs_already_exist", intent_id=intent_id)
            return False
        finally:
            self._starting.discard(intent_id)

        failing_stage = choose_failing_stage(
            self.rng, force_failure, self.settings.job_failure_rate
        )

        task = asyncio.create_task(
            self._run(intent_id, failing_stage, force_failure, on_complete),
            name=f"orchestrator:{intent_id}",
        )
        self._runs[intent_id] = task
        task.add_done_callback(functools.partial(self._on_run_done, intent_id))
        metrics.set_orchestrations_in_flight(self.in_flight)

        logger.info(
            "orchestrator_run_started",
            intent_id=intent_id,
            forced_failure=force_failure,
            stages=len(jobs),
        )
        return True

    async def _run(
        self,
        intent_id: str,
        failing_stage: Optional[StageType],
        forced: bool,
        on_complete: CompletionCallback,
    ) -> ProcessingOutcome:
        stages = list(StageType)
        try:
            # gather returns only once every stage is terminal
            statuses = await asyncio.gather(
                *(self._run_stage(intent_id, stage, stage is failing_stage) for stage in stages)
            )

            failed_stage = next(
                (stage for stage, status in zip(stages, statuses) if status is JobStatus.FAILED),
                None,
            )
            outcome = ProcessingOutcome(
                intent_id=intent_id,
                succeeded=failed_stage is None,
                forced=forced,
                failed_stage=failed_stage,
                error_message=(
                    await self._error_message(intent_id, failed_stage) if failed_stage else None
                ),
            )

            logger.info(
                "orchestrator_run_finished",
                intent_id=intent_id,
                succeeded=outcome.succeeded,
                failed_stage=failed_stage.value if failed_stage else None,
            )

            await on_complete(outcome)
            return outcome

        except Exception as e:
            logger.error("orchestrator_run_error", intent_id=intent_id, error=str(e), exc_info=True)
            raise

        finally:
            self._runs.pop(intent_id, None)
            metrics.set_orchestrations_in_flight(self.in_flight)

    async def _error_message(self, intent_id: str, stage: StageType) -> Optional[str]:
        for job in await self.repository.list_jobs(intent_id):
            if job.stage is stage:
                return job.error_message
        return None

    async def _run_stage(self, intent_id: str, stage: StageType, should_fail: bool) -> JobStatus:
        """
        Run one stage to a terminal status.

        An unexpected fault marks the stage failed rather than leaving it
        unterminated, so the aggregate outcome is always reported.
        """
        log = intent_logger(__name__, intent_id, stage=stage.value)
        await self._sleep(self.rng.uniform(0, self.settings.job_start_jitter_max_seconds))

        start_time = time.monotonic()
        try:
            await self.repository.update_job(
                intent_id, stage, status=JobStatus.PROCESSING, started_at=utcnow()
            )
            log.info("stage_started")

            await self._sleep(
                self.rng.uniform(
                    self.settings.job_duration_min_seconds,
                    self.settings.job_duration_max_seconds,
                )
            )

            if should_fail:
                status, error_message = JobStatus.FAILED, stage.definition.failure_message
            else:
                status, error_message = JobStatus.COMPLETED, None

        except Exception as e:
            log.error("stage_error", error=str(e), exc_info=True)
            status, error_message = JobStatus.FAILED, GENERIC_STAGE_FAILURE

        await self.repository.update_job(
            intent_id,
            stage,
            status=status,
            completed_at=utcnow(),
            error_message=error_message,
        )

        metrics.record_stage(stage.value, status.value, time.monotonic() - start_time)
        if status is JobStatus.FAILED:
            log.warning("stage_failed", error=error_message)
        else:
            log.info("stage_completed")
        return status

    async def list_jobs(self, intent_id: str) -> List[Job]:
        """Jobs for an intent ordered by stage order."""
        return await self.repository.list_jobs(intent_id)

    async def wait_for(self, intent_id: str) -> Optional[ProcessingOutcome]:
        """
        Wait until the intent's run has reported its outcome.

        Returns:
            Optional[ProcessingOutcome]: None if no run is outstanding
        """
        task = self._runs.get(intent_id)
        if task is None:
            return None
        return await task

    async def drain(self) -> None:
        """Wait for every outstanding run to finish."""
        tasks = list(self._runs.values())
        if not tasks:
            return
        logger.info("orchestrator_draining", runs=len(tasks))
        await asyncio.gather(*tasks, return_exceptions=True)
