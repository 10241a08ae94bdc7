"""Shared fixtures for unit tests."""

import os
import tempfile

import pytest
from fakes import FakeRunner

from mirror_common.config import MirrorConfig
from mirror_persistence.sqlite_repository import SQLiteRunRepository


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def config(tmp_path):
    """Pipeline configuration confined to a temporary directory."""
    return MirrorConfig(
        work_dir=tmp_path / "work",
        subrepo_root=tmp_path / "git-subrepo",
        github_env_file=tmp_path / "github_env",
    )


@pytest.fixture
async def temp_db():
    """Create a temporary database file for testing."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    repo = SQLiteRunRepository(path)
    await repo.initialize()

    yield repo

    await repo.close()
    if os.path.exists(path):
        os.unlink(path)
