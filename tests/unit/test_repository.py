"""
Unit tests for the repository layer.

Tests the SQLite implementation to ensure proper run persistence
and retrieval.
"""

from datetime import UTC, datetime, timedelta

from mirror_common.models import MirrorRun, PushEvent, RunEvent

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def make_run(run_id: str, status: str = "queued", minutes: int = 0) -> MirrorRun:
    return MirrorRun(
        id=run_id,
        status=status,
        trigger=PushEvent(
            ref="refs/heads/mi_dev",
            head_commit_id=f"sha-{run_id}",
            head_commit_message="fix bug",
            repository="rel4team/mi-dev",
        ),
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


async def test_create_and_get_run(temp_db):
    await temp_db.create_run(make_run("run-1"))

    run = await temp_db.get_run("run-1")

    assert run is not None
    assert run.id == "run-1"
    assert run.status == "queued"
    assert run.success is None
    assert run.trigger.head_commit_id == "sha-run-1"
    assert run.trigger.repository == "rel4team/mi-dev"
    assert run.created_at == BASE_TIME
    assert run.events == []


async def test_get_nonexistent_run(temp_db):
    assert await temp_db.get_run("missing") is None


async def test_create_run_persists_initial_events(temp_db):
    run = make_run("run-1", status="skipped")
    run.events = [
        RunEvent(type="log", data="Skipping run\n"),
        RunEvent(type="complete", success=True),
    ]

    await temp_db.create_run(run)

    events = await temp_db.get_events("run-1")
    assert [e.to_dict() for e in events] == [
        {"type": "log", "data": "Skipping run\n"},
        {"type": "complete", "success": True},
    ]


async def test_update_status_and_complete(temp_db):
    await temp_db.create_run(make_run("run-1"))
    start = BASE_TIME + timedelta(seconds=5)
    end = BASE_TIME + timedelta(seconds=50)

    await temp_db.update_run_status("run-1", "running", start_time=start)
    await temp_db.record_commit("run-1", "abc123", "initial")
    await temp_db.complete_run("run-1", status="completed", success=True, end_time=end)

    run = await temp_db.get_run("run-1")
    assert run.status == "completed"
    assert run.success is True
    assert run.start_time == start
    assert run.end_time == end
    assert run.parent_commit_id == "abc123"
    assert run.integral_commit_message == "initial"


async def test_events_from_index(temp_db):
    await temp_db.create_run(make_run("run-1"))
    for i in range(3):
        await temp_db.add_event("run-1", RunEvent(type="log", data=f"line {i}\n"))

    events = await temp_db.get_events("run-1", from_index=1)

    assert [e.data for e in events] == ["line 1\n", "line 2\n"]
    assert all(e.timestamp is not None for e in events)


async def test_list_runs_newest_first_and_filtered(temp_db):
    await temp_db.create_run(make_run("old", minutes=0))
    await temp_db.create_run(make_run("new", minutes=10))
    await temp_db.create_run(make_run("done", status="completed", minutes=5))

    all_runs = await temp_db.list_runs()
    queued = await temp_db.list_runs(status="queued")

    assert [r.id for r in all_runs] == ["new", "done", "old"]
    assert [r.id for r in queued] == ["new", "old"]


async def test_next_queued_run_is_oldest(temp_db):
    await temp_db.create_run(make_run("second", minutes=2))
    await temp_db.create_run(make_run("first", minutes=1))
    await temp_db.create_run(make_run("running", status="running", minutes=0))

    run = await temp_db.next_queued_run()

    assert run.id == "first"


async def test_next_queued_run_empty(temp_db):
    assert await temp_db.next_queued_run() is None


async def test_requeue_clears_results(temp_db):
    await temp_db.create_run(make_run("run-1"))
    await temp_db.record_commit("run-1", "abc123", "initial")
    await temp_db.add_event("run-1", RunEvent(type="complete", success=False))
    await temp_db.complete_run("run-1", status="failed", success=False, end_time=BASE_TIME)

    await temp_db.requeue_run("run-1")

    run = await temp_db.get_run("run-1")
    assert run.status == "queued"
    assert run.success is None
    assert run.parent_commit_id is None
    assert run.end_time is None
    assert run.events == []


async def test_delete_run_cascades_events(temp_db):
    await temp_db.create_run(make_run("run-1"))
    await temp_db.add_event("run-1", RunEvent(type="log", data="x\n"))

    assert await temp_db.delete_run("run-1") is True
    assert await temp_db.get_run("run-1") is None
    assert await temp_db.get_events("run-1") == []
    assert await temp_db.delete_run("run-1") is False
