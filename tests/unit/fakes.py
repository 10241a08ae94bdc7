"""
Test doubles shared by the unit tests.

FakeRunner stands in for CommandRunner so pipeline tests can assert on the
exact commands issued without touching git or the network;
InMemoryRunRepository backs server tests without SQLite.
"""

from dataclasses import dataclass, replace
from pathlib import Path

from mirror_common.models import MirrorRun, RunEvent
from mirror_common.repository import RunRepository
from mirror_controller.git_runner import CommandError, CommandResult

LOG_OUTPUT = "abc123\x00Dev Person\x00dev@example.com\x00initial\n\nlonger body\n"


@dataclass
class Call:
    argv: tuple[str, ...]
    cwd: Path | None
    env: dict[str, str]


class FakeRunner:
    """Records commands and answers `git log` with a fixed commit."""

    def __init__(self, log_output: str = LOG_OUTPUT, fail_on: tuple[str, ...] | None = None):
        self.base_env = {"PATH": "/usr/bin"}
        self.log_output = log_output
        self.fail_on = fail_on
        self.calls: list[Call] = []

    @property
    def argvs(self) -> list[tuple[str, ...]]:
        return [call.argv for call in self.calls]

    async def run(self, *argv, cwd=None, env=None, check=True):
        self.calls.append(Call(argv=tuple(argv), cwd=cwd, env=dict(env or {})))

        output = ""
        if argv[:2] == ("git", "log"):
            output = self.log_output

        if self.fail_on is not None and tuple(argv[: len(self.fail_on)]) == self.fail_on:
            result = CommandResult(argv=tuple(argv), returncode=1, output="fatal: boom\n")
            if check:
                raise CommandError(result)
            return result

        return CommandResult(argv=tuple(argv), returncode=0, output=output)


class InMemoryRunRepository(RunRepository):
    """Dict-backed RunRepository for tests that do not need SQLite."""

    def __init__(self):
        self.runs: dict[str, MirrorRun] = {}

    async def create_run(self, run: MirrorRun) -> None:
        self.runs[run.id] = replace(run, events=list(run.events))

    async def get_run(self, run_id: str) -> MirrorRun | None:
        run = self.runs.get(run_id)
        return replace(run, events=list(run.events)) if run else None

    async def update_run_status(self, run_id, status, start_time=None) -> None:
        self.runs[run_id].status = status
        if start_time is not None:
            self.runs[run_id].start_time = start_time

    async def record_commit(self, run_id, parent_commit_id, integral_commit_message) -> None:
        self.runs[run_id].parent_commit_id = parent_commit_id
        self.runs[run_id].integral_commit_message = integral_commit_message

    async def complete_run(self, run_id, status, success, end_time, skip_reason=None) -> None:
        run = self.runs[run_id]
        run.status = status
        run.success = success
        run.end_time = end_time
        run.skip_reason = skip_reason

    async def requeue_run(self, run_id) -> None:
        run = self.runs[run_id]
        run.status = "queued"
        run.success = None
        run.events = []

    async def add_event(self, run_id: str, event: RunEvent) -> None:
        self.runs[run_id].events.append(event)

    async def get_events(self, run_id: str, from_index: int = 0) -> list[RunEvent]:
        return list(self.runs[run_id].events[from_index:])

    async def list_runs(self, status=None) -> list[MirrorRun]:
        runs = sorted(self.runs.values(), key=lambda r: r.created_at, reverse=True)
        return [replace(r, events=[]) for r in runs if status is None or r.status == status]

    async def next_queued_run(self) -> MirrorRun | None:
        queued = [r for r in self.runs.values() if r.status == "queued"]
        return min(queued, key=lambda r: r.created_at) if queued else None

    async def delete_run(self, run_id: str) -> bool:
        return self.runs.pop(run_id, None) is not None
