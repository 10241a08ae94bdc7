"""
Unit tests for the mirror-controller entrypoint.

The pipeline is built with a fake command runner so --once runs without
git or the network.
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from fakes import FakeRunner

from mirror_controller import __main__ as entrypoint
from mirror_controller.pipeline import MirrorPipeline


@pytest.fixture
def env(tmp_path, monkeypatch):
    for name in ("MIRROR_BRANCH", "MIRROR_DB_PATH", "MIRROR_POLL_INTERVAL", "SSH_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MIRROR_WORK_DIR", str(tmp_path / "work"))
    monkeypatch.setenv("MIRROR_SUBREPO_ROOT", str(tmp_path / "git-subrepo"))
    monkeypatch.setenv("GITHUB_ENV", str(tmp_path / "github_env"))
    return tmp_path


def write_event(path: Path, message: str = "fix bug", ref: str = "refs/heads/mi_dev") -> Path:
    path.write_text(
        json.dumps({"ref": ref, "head_commit": {"id": "f00dfeed", "message": message}})
    )
    return path


class TestBuildConfig:
    def test_cli_overrides_environment(self, env, monkeypatch):
        monkeypatch.setenv("MIRROR_BRANCH", "main")
        monkeypatch.setenv("MIRROR_POLL_INTERVAL", "9")

        args = entrypoint.parse_args(
            ["--branch", "release", "--interval", "0.5", "--db-path", "x.db", "--work-dir", "/srv"]
        )
        config = entrypoint.build_config(args)

        assert config.branch == "release"
        assert config.poll_interval == 0.5
        assert config.db_path == "x.db"
        assert config.work_dir == Path("/srv")

    def test_environment_when_no_flags(self, env, monkeypatch):
        monkeypatch.setenv("MIRROR_BRANCH", "main")

        config = entrypoint.build_config(entrypoint.parse_args([]))

        assert config.branch == "main"
        assert config.poll_interval == 2.0
        assert config.work_dir == (env / "work").resolve()

    def test_relative_work_dir_flag(self, env, monkeypatch):
        monkeypatch.chdir(env)

        config = entrypoint.build_config(entrypoint.parse_args(["--work-dir", "work"]))

        assert config.work_dir == env.resolve() / "work"

    def test_invalid_interval_falls_back(self, env):
        config = entrypoint.build_config(entrypoint.parse_args(["--interval", "-1"]))

        assert config.poll_interval == 2.0


class TestOnce:
    @pytest.fixture
    def runners(self):
        created = []

        def factory(config):
            runner = FakeRunner()
            created.append(runner)
            return MirrorPipeline(config, runner)

        with patch.object(entrypoint, "MirrorPipeline", side_effect=factory):
            yield created

    def test_successful_push(self, env, runners, capsys):
        event_path = write_event(env / "event.json")

        assert entrypoint.main(["--once", "--event-path", str(event_path)]) == 0

        out = capsys.readouterr().out
        assert "==> Setup SSH" in out
        assert "==> Update Current Repo" in out
        assert ("git", "push") in runners[0].argvs
        assert "PARENT_COMMIT_ID=abc123" in (env / "github_env").read_text()

    def test_event_path_from_environment(self, env, runners, monkeypatch):
        monkeypatch.setenv("GITHUB_EVENT_PATH", str(write_event(env / "event.json")))

        assert entrypoint.main(["--once"]) == 0
        assert runners

    def test_guarded_push_is_skipped(self, env, runners, capsys):
        event_path = write_event(env / "event.json", message="git subrepo push: sync")

        assert entrypoint.main(["--once", "--event-path", str(event_path)]) == 0

        assert runners[0].calls == []
        assert "Skipping run" in capsys.readouterr().out

    def test_failing_command_exits_1(self, env, capsys):
        event_path = write_event(env / "event.json")

        with patch.object(
            entrypoint,
            "MirrorPipeline",
            side_effect=lambda config: MirrorPipeline(config, FakeRunner(fail_on=("git", "push"))),
        ):
            assert entrypoint.main(["--once", "--event-path", str(event_path)]) == 1

        assert "fatal: boom" in capsys.readouterr().out

    def test_missing_event_path_exits_1(self, env, runners, monkeypatch):
        monkeypatch.delenv("GITHUB_EVENT_PATH", raising=False)

        assert entrypoint.main(["--once"]) == 1
        assert runners == []

    def test_unreadable_event_file_exits_1(self, env, runners):
        assert entrypoint.main(["--once", "--event-path", str(env / "missing.json")]) == 1
