"""
SQLite implementation of the run repository.

Uses aiosqlite for async operations.
Can be easily replaced with PostgreSQL/MySQL implementations.
"""

import json
from datetime import UTC, datetime

import aiosqlite

from mirror_common.models import MirrorRun, PushEvent, RunEvent
from mirror_common.repository import RunRepository

_RUN_COLUMNS = (
    "id, status, trigger, success, parent_commit_id, integral_commit_message, "
    "skip_reason, created_at, start_time, end_time"
)


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _bool_or_none(value: bool | None) -> int | None:
    if value is None:
        return None
    return 1 if value else 0


class SQLiteRunRepository(RunRepository):
    """
    SQLite-based run storage implementation.

    Uses a single database file with two tables:
    - runs: Stores run metadata, the triggering push as JSON
    - events: Stores run events with foreign key to runs
    """

    def __init__(self, db_path: str = "mirror_runs.db"):
        """
        Initialize the SQLite repository.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(self.db_path)
            # Enable foreign key constraints
            await self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    async def initialize(self) -> None:
        """
        Create database tables if they don't exist.

        Schema:
        - runs table: Run metadata and status
        - events table: Sequential events for each run
        """
        conn = await self._get_connection()

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS runs (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                trigger TEXT NOT NULL,
                success INTEGER,
                parent_commit_id TEXT,
                integral_commit_message TEXT,
                skip_reason TEXT,
                created_at TEXT NOT NULL,
                start_time TEXT,
                end_time TEXT
            )
        """)

        # Queue lookups filter on status and order by creation time
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_runs_status_created
            ON runs(status, created_at)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                type TEXT NOT NULL,
                data TEXT,
                success INTEGER,
                timestamp TEXT NOT NULL,
                FOREIGN KEY (run_id) REFERENCES runs(id) ON DELETE CASCADE
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_events_run_id
            ON events(run_id)
        """)

        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _row_to_run(self, row: tuple, events: list[RunEvent] | None = None) -> MirrorRun:
        (
            run_id,
            status,
            trigger_json,
            success,
            parent_commit_id,
            integral_commit_message,
            skip_reason,
            created_at_str,
            start_time_str,
            end_time_str,
        ) = row
        return MirrorRun(
            id=run_id,
            status=status,
            trigger=PushEvent.from_dict(json.loads(trigger_json)),
            success=bool(success) if success is not None else None,
            parent_commit_id=parent_commit_id,
            integral_commit_message=integral_commit_message,
            skip_reason=skip_reason,
            created_at=datetime.fromisoformat(created_at_str),
            start_time=_parse_time(start_time_str),
            end_time=_parse_time(end_time_str),
            events=events or [],
        )

    async def create_run(self, run: MirrorRun) -> None:
        """
        Create a new run in the database, along with any events it carries.

        Args:
            run: Run object to persist
        """
        conn = await self._get_connection()

        await conn.execute(
            f"""
            INSERT INTO runs ({_RUN_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run.id,
                run.status,
                json.dumps(run.trigger.to_dict()),
                _bool_or_none(run.success),
                run.parent_commit_id,
                run.integral_commit_message,
                run.skip_reason,
                run.created_at.isoformat(),
                run.start_time.isoformat() if run.start_time else None,
                run.end_time.isoformat() if run.end_time else None,
            ),
        )
        await conn.commit()

        for event in run.events:
            await self.add_event(run.id, event)

    async def get_run(self, run_id: str) -> MirrorRun | None:
        """
        Retrieve a run with all its events.

        Args:
            run_id: UUID of the run to retrieve

        Returns:
            MirrorRun if found, None otherwise
        """
        conn = await self._get_connection()

        cursor = await conn.execute(
            f"SELECT {_RUN_COLUMNS} FROM runs WHERE id = ?", (run_id,)
        )
        row = await cursor.fetchone()

        if row is None:
            return None

        events = await self.get_events(run_id)
        return self._row_to_run(row, events)

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
            status: New status
            start_time: Optional timestamp when the run started
        """
        conn = await self._get_connection()

        # Build dynamic SQL based on what's being updated
        updates = ["status = ?"]
        params = [status]

        if start_time is not None:
            updates.append("start_time = ?")
            params.append(start_time.isoformat())

        params.append(run_id)  # WHERE clause parameter

        sql = f"UPDATE runs SET {', '.join(updates)} WHERE id = ?"
        await conn.execute(sql, params)
        await conn.commit()

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
        conn = await self._get_connection()

        await conn.execute(
            "UPDATE runs SET parent_commit_id = ?, integral_commit_message = ? WHERE id = ?",
            (parent_commit_id, integral_commit_message, run_id),
        )
        await conn.commit()

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
        conn = await self._get_connection()

        await conn.execute(
            "UPDATE runs SET status = ?, success = ?, end_time = ?, skip_reason = ? WHERE id = ?",
            (status, 1 if success else 0, end_time.isoformat(), skip_reason, run_id),
        )
        await conn.commit()

    async def requeue_run(self, run_id: str) -> None:
        """
        Put a finished run back in the queue, clearing its results and events.

        Args:
            run_id: UUID of the run
        """
        conn = await self._get_connection()

        await conn.execute(
            """
            UPDATE runs
            SET status = 'queued', success = NULL, parent_commit_id = NULL,
                integral_commit_message = NULL, skip_reason = NULL,
                start_time = NULL, end_time = NULL
            WHERE id = ?
            """,
            (run_id,),
        )
        await conn.execute("DELETE FROM events WHERE run_id = ?", (run_id,))
        await conn.commit()

    async def add_event(self, run_id: str, event: RunEvent) -> None:
        """
        Add an event to a run's history.

        Args:
            run_id: UUID of the run
            event: Event to add
        """
        conn = await self._get_connection()

        timestamp = event.timestamp or datetime.now(UTC)

        await conn.execute(
            """
            INSERT INTO events (run_id, type, data, success, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                run_id,
                event.type,
                event.data,
                _bool_or_none(event.success),
                timestamp.isoformat(),
            ),
        )

        await conn.commit()

    async def get_events(self, run_id: str, from_index: int = 0) -> list[RunEvent]:
        """
        Get events for a run, optionally from a specific index.

        Args:
            run_id: UUID of the run
            from_index: Starting index (0-based) for event retrieval

        Returns:
            List of events from the specified index onward
        """
        conn = await self._get_connection()

        cursor = await conn.execute(
            """
            SELECT type, data, success, timestamp
            FROM events
            WHERE run_id = ?
            ORDER BY id
            LIMIT -1 OFFSET ?
            """,
            (run_id, from_index),
        )

        rows = await cursor.fetchall()

        events = []
        for row in rows:
            event_type, data, success_val, timestamp_str = row
            events.append(
                RunEvent(
                    type=event_type,
                    data=data,
                    success=bool(success_val) if success_val is not None else None,
                    timestamp=datetime.fromisoformat(timestamp_str),
                )
            )

        return events

    async def list_runs(self, status: str | None = None) -> list[MirrorRun]:
        """
        List runs, newest first, without their events.

        Args:
            status: Only return runs in this status

        Returns:
            List of MirrorRun objects with an empty events list
        """
        conn = await self._get_connection()

        if status is None:
            cursor = await conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM runs ORDER BY created_at DESC"
            )
        else:
            cursor = await conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM runs WHERE status = ? ORDER BY created_at DESC",
                (status,),
            )

        rows = await cursor.fetchall()
        return [self._row_to_run(row) for row in rows]

    async def next_queued_run(self) -> MirrorRun | None:
        """
        Get the oldest queued run.

        Returns:
            The run that should execute next, or None if the queue is empty
        """
        conn = await self._get_connection()

        cursor = await conn.execute(
            f"""
            SELECT {_RUN_COLUMNS} FROM runs
            WHERE status = 'queued'
            ORDER BY created_at ASC
            LIMIT 1
            """
        )
        row = await cursor.fetchone()

        if row is None:
            return None
        return self._row_to_run(row)

    async def delete_run(self, run_id: str) -> bool:
        """
        Delete a run and its events.

        Args:
            run_id: UUID of the run

        Returns:
            True if the run existed
        """
        conn = await self._get_connection()

        cursor = await conn.execute("DELETE FROM runs WHERE id = ?", (run_id,))
        await conn.commit()

        return cursor.rowcount > 0
