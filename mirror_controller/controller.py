"""
Run controller with a reconciliation loop for queued mirror runs.

This module implements a controller that continuously compares the desired
state (queued runs in the DB) with the actual state (the run in progress)
and starts the next run when the worker is idle. Runs execute one at a time
in the order they were queued.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from mirror_common.models import MirrorRun, RunEvent
from mirror_common.repository import RunRepository

from .pipeline import MirrorPipeline

# Configure logging
logger = logging.getLogger(__name__)

PipelineFactory = Callable[[], MirrorPipeline]


class RunController:
    """
    Controller that drains the run queue.

    This controller runs a continuous loop that:
    1. Recovers runs interrupted by a crash (marks them failed)
    2. Fetches the oldest queued run from the database
    3. Executes it, persisting every event as it is produced
    4. Records the final status and the commit the run was based on
    """

    def __init__(
        self,
        repository: RunRepository,
        pipeline_factory: PipelineFactory,
        poll_interval: float = 2.0,
    ):
        """
        Initialize the run controller.

        Args:
            repository: Run repository for persisting state
            pipeline_factory: Creates a fresh pipeline for each run
            poll_interval: Seconds between queue checks when idle
        """
        self.repository = repository
        self.pipeline_factory = pipeline_factory
        self.poll_interval = poll_interval

        self.current_run_id: str | None = None
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the controller loop."""
        if self._running:
            logger.warning("Controller already running")
            return

        # Runs left "running" by a previous process can never finish
        await self.recover_interrupted_runs()

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Run controller started")

    async def stop(self) -> None:
        """Stop the controller, cancelling the run in progress."""
        if not self._running:
            return

        logger.info("Stopping run controller...")
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("Run controller stopped")

    async def _run_loop(self) -> None:
        """Main reconciliation loop."""
        while self._running:
            try:
                executed = await self.reconcile_once()
                if not executed:
                    await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in reconciliation loop: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)

    async def recover_interrupted_runs(self) -> int:
        """
        Mark runs left in the "running" state as failed.

        Returns:
            Number of runs recovered
        """
        interrupted = await self.repository.list_runs(status="running")
        for run in interrupted:
            logger.warning(f"Run {run.id} was interrupted, marking as failed")
            await self.repository.add_event(
                run.id, RunEvent(type="log", data="Run interrupted by controller restart.\n")
            )
            await self.repository.add_event(
                run.id, RunEvent(type="complete", success=False)
            )
            await self.repository.complete_run(
                run.id, status="failed", success=False, end_time=datetime.now(UTC)
            )
        return len(interrupted)

    async def reconcile_once(self) -> bool:
        """
        Perform one reconciliation cycle.

        Returns:
            True if a run was executed, False if the queue was empty
        """
        run = await self.repository.next_queued_run()
        if run is None:
            logger.debug("Reconciliation: queue is empty")
            return False

        await self.execute_run(run)
        return True

    async def execute_run(self, run: MirrorRun) -> None:
        """
        Execute one queued run to completion.

        Args:
            run: The run to execute
        """
        run_id = run.id
        self.current_run_id = run_id
        logger.info(
            f"Starting run {run_id} for {run.trigger.branch}@{run.trigger.head_commit_id}"
        )

        await self.repository.update_run_status(
            run_id, "running", start_time=datetime.now(UTC)
        )

        pipeline = self.pipeline_factory()
        commit_recorded = False
        try:
            async for event in pipeline.run(run.trigger):
                await self.repository.add_event(run_id, event)

                commit = pipeline.result.commit
                if commit is not None and not commit_recorded:
                    await self.repository.record_commit(
                        run_id, commit.commit_id, commit.message
                    )
                    commit_recorded = True

        except asyncio.CancelledError:
            await self._mark_run_failed(run_id, "Run cancelled by controller shutdown")
            raise
        except Exception as e:
            logger.error(f"Run {run_id} crashed: {e}", exc_info=True)
            await self._mark_run_failed(run_id, f"Internal error: {e}")
            return
        finally:
            self.current_run_id = None

        result = pipeline.result
        if result.skipped:
            status = "skipped"
        elif result.success:
            status = "completed"
        else:
            status = "failed"

        await self.repository.complete_run(
            run_id,
            status=status,
            success=result.success,
            end_time=datetime.now(UTC),
            skip_reason=result.skip_reason,
        )
        logger.info(f"Run {run_id} finished with status={status}")

    async def _mark_run_failed(self, run_id: str, reason: str) -> None:
        """
        Mark a run as failed with a reason.

        Args:
            run_id: Run identifier
            reason: Failure reason, stored as the last log line
        """
        try:
            logger.error(f"Run {run_id} failed: {reason}")
            await self.repository.add_event(run_id, RunEvent(type="log", data=f"{reason}\n"))
            await self.repository.add_event(
                run_id, RunEvent(type="complete", success=False)
            )
            await self.repository.complete_run(
                run_id, status="failed", success=False, end_time=datetime.now(UTC)
            )
        except Exception as e:
            logger.error(f"Error marking run {run_id} as failed: {e}", exc_info=True)
