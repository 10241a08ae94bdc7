"""
Runtime configuration for the mirror pipeline.

Values come from environment variables; entrypoints let command-line flags
override them. Unset variables fall back to the defaults below, which
describe the mi_dev -> mi-dev-integral-rel4 mirror.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "mi_dev"
DEFAULT_SKIP_MARKER = "git subrepo"
DEFAULT_INTEGRAL_REPO = "git@github.com:rel4team/mi-dev-integral-rel4.git"
DEFAULT_SUBREPO_REPO = "https://github.com/ingydotnet/git-subrepo"
DEFAULT_SUBREPO_ROOT = "/opt/git-subrepo"
DEFAULT_UPDATE_SCRIPT = "./update.sh"
DEFAULT_DB_PATH = "mirror_runs.db"
DEFAULT_POLL_INTERVAL = 2.0


def repo_dir_name(url: str) -> str:
    """
    Directory name git clone picks for a repository URL.

    >>> repo_dir_name("git@github.com:rel4team/mi-dev-integral-rel4.git")
    'mi-dev-integral-rel4'
    """
    name = url.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    if not name:
        raise ValueError(f"Cannot derive a directory name from {url!r}")
    return name


def parse_interval(value: str | float | None, default: float = DEFAULT_POLL_INTERVAL) -> float:
    """
    Parse a positive interval in seconds, falling back to the default.

    Args:
        value: Raw value (from the environment or command line)
        default: Value used when the input is missing or invalid

    Returns:
        Interval in seconds
    """
    if value is None:
        return default
    try:
        interval = float(value)
    except ValueError:
        logger.warning(f"Invalid interval={value!r}, using default {default}")
        return default
    if interval <= 0:
        logger.warning(f"Invalid interval={interval}, using default {default}")
        return default
    return interval


@dataclass
class MirrorConfig:
    """Settings for one mirror deployment."""

    branch: str = DEFAULT_BRANCH
    skip_marker: str = DEFAULT_SKIP_MARKER
    integral_repo: str = DEFAULT_INTEGRAL_REPO
    work_dir: Path = field(default_factory=Path.cwd)
    subrepo_repo: str = DEFAULT_SUBREPO_REPO
    subrepo_root: Path = Path(DEFAULT_SUBREPO_ROOT)
    update_script: str = DEFAULT_UPDATE_SCRIPT
    ssh_private_key: str = field(default="", repr=False)
    github_env_file: Path | None = None
    db_path: str = DEFAULT_DB_PATH
    poll_interval: float = DEFAULT_POLL_INTERVAL

    def __post_init__(self):
        # git clone runs inside work_dir, so a relative path would nest the clone
        self.work_dir = Path(self.work_dir).resolve()

    @property
    def clone_dir(self) -> Path:
        """Where the integral repository is cloned."""
        return self.work_dir / repo_dir_name(self.integral_repo)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "MirrorConfig":
        """
        Build a configuration from environment variables.

        Environment variables:
        - MIRROR_BRANCH: Branch whose pushes trigger a run (default: mi_dev)
        - MIRROR_SKIP_MARKER: Commit message text that suppresses a run
        - MIRROR_INTEGRAL_REPO: URL of the integral repository
        - MIRROR_WORK_DIR: Directory the integral repository is cloned into
        - MIRROR_SUBREPO_REPO: Where git-subrepo is cloned from
        - MIRROR_SUBREPO_ROOT: Where git-subrepo is installed
        - MIRROR_UPDATE_SCRIPT: Script run in the clone after the reset
        - SSH_KEY: Private key used for authenticated clones and pushes
        - GITHUB_ENV: File that recorded variables are appended to
        - MIRROR_DB_PATH: SQLite database of runs
        - MIRROR_POLL_INTERVAL: Seconds between queue checks
        """
        env = os.environ if environ is None else environ
        github_env = env.get("GITHUB_ENV")
        return cls(
            branch=env.get("MIRROR_BRANCH", DEFAULT_BRANCH),
            skip_marker=env.get("MIRROR_SKIP_MARKER", DEFAULT_SKIP_MARKER),
            integral_repo=env.get("MIRROR_INTEGRAL_REPO", DEFAULT_INTEGRAL_REPO),
            work_dir=Path(env["MIRROR_WORK_DIR"])
            if env.get("MIRROR_WORK_DIR")
            else Path.cwd(),
            subrepo_repo=env.get("MIRROR_SUBREPO_REPO", DEFAULT_SUBREPO_REPO),
            subrepo_root=Path(env.get("MIRROR_SUBREPO_ROOT", DEFAULT_SUBREPO_ROOT)),
            update_script=env.get("MIRROR_UPDATE_SCRIPT", DEFAULT_UPDATE_SCRIPT),
            ssh_private_key=env.get("SSH_KEY", ""),
            github_env_file=Path(github_env) if github_env else None,
            db_path=env.get("MIRROR_DB_PATH", DEFAULT_DB_PATH),
            poll_interval=parse_interval(env.get("MIRROR_POLL_INTERVAL")),
        )
