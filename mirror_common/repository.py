"""
Abstract repository interface for run persistence.

This module defines the contract that any database implementation must follow,
allowing easy swapping between SQLite, PostgreSQL, MySQL, etc.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from .models import MirrorRun, RunEvent


class RunRepository(ABC):
    """
    Abstract base class for run storage operations.

    Implementations must provide async-safe access to run data
    and handle their own connection management.
    """

    @abstractmethod
    async def create_run(self, run: MirrorRun) -> None:
        """
        Create a new run in the database.

        Args:
            run: Run object to persist

        Raises:
            Exception: If a run with the same ID already exists
        """
        pass

    @abstractmethod
    async def get_run(self, run_id: str) -> MirrorRun | None:
        """
        Retrieve a run with all its events.

        Args:
            run_id: UUID of the run to retrieve

        Returns:
            MirrorRun if found, None otherwise
        """
        pass

    @abstractmethod
    async def update_run_status(
        self,
        run_id: str,
        status: str,
        start_time: datetime | None = None,
    ) -> None:
        """
        Update a run's status and optionally its start time.

        Args:
            run_id: UUID of the run to update
            status: New status (see RUN_STATUSES)
            start_time: Optional timestamp when the run started
        """
        pass

    @abstractmethod
    async def record_commit(
        self, run_id: str, parent_commit_id: str, integral_commit_message: str
    ) -> None:
        """
        Store the commit recorded from the integral clone.

        Args:
            run_id: UUID of the run
            parent_commit_id: Hash the clone will be reset to
            integral_commit_message: First line of that commit's message
        """
        pass

    @abstractmethod
    async def complete_run(
        self,
        run_id: str,
        status: str,
        success: bool,
        end_time: datetime,
        skip_reason: str | None = None,
    ) -> None:
        """
        Mark a run as finished with its final result.

        Args:
            run_id: UUID of the run
            status: "completed", "failed" or "skipped"
            success: Whether the run succeeded
            end_time: Timestamp when the run finished
            skip_reason: Why the loop guard filtered the trigger, if it did
        """
        pass

    @abstractmethod
    async def requeue_run(self, run_id: str) -> None:
        """
        Put a finished run back in the queue, clearing its results and events.

        Args:
            run_id: UUID of the run
        """
        pass

    @abstractmethod
    async def add_event(self, run_id: str, event: RunEvent) -> None:
        """
        Add an event to a run's history.

        Args:
            run_id: UUID of the run
            event: Event to add
        """
        pass

    @abstractmethod
    async def get_events(self, run_id: str, from_index: int = 0) -> list[RunEvent]:
        """
        Get events for a run, optionally from a specific index.

        Args:
            run_id: UUID of the run
            from_index: Starting index (0-based) for event retrieval

        Returns:
            List of events from the specified index onward
        """
        pass

    @abstractmethod
    async def list_runs(self, status: str | None = None) -> list[MirrorRun]:
        """
        List runs, newest first, without their events.

        Args:
            status: Only return runs in this status

        Returns:
            List of MirrorRun objects with an empty events list
        """
        pass

    @abstractmethod
    async def next_queued_run(self) -> MirrorRun | None:
        """
        Get the oldest queued run.

        Returns:
            The run that should execute next, or None if the queue is empty
        """
        pass

    @abstractmethod
    async def delete_run(self, run_id: str) -> bool:
        """
        Delete a run and its events.

        Args:
            run_id: UUID of the run

        Returns:
            True if the run existed
        """
        pass
