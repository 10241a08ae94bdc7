"""
The mirror pipeline: push every subrepo of the integral repository to its
discrete repository, then record the update in the integral repository.

Steps run strictly in order and the first failing command fails the run:

1. Setup SSH: install the deploy key.
2. Setup Env: install git-subrepo, clone the integral repository, record
   PARENT_COMMIT_ID / INTEGRAL_COMMIT_MESSAGE and the author identity.
3. Push To Discrete Repo: `git subrepo push --all`.
4. Update Current Repo: reset to PARENT_COMMIT_ID, run update.sh, commit
   "git subrepo update commit for <message>" and push.
"""

import logging
import shutil
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from pathlib import Path

from mirror_common.config import MirrorConfig
from mirror_common.models import CommitInfo, PushEvent, RunEvent

from .credentials import ssh_credential
from .git_runner import CommandError, CommandResult, CommandRunner, GitRunner, subrepo_env
from .trigger import skip_reason

logger = logging.getLogger(__name__)

STEP_SETUP_SSH = "Setup SSH"
STEP_SETUP_ENV = "Setup Env"
STEP_PUSH = "Push To Discrete Repo"
STEP_UPDATE = "Update Current Repo"


@dataclass
class PipelineResult:
    """Outcome of one pipeline execution."""

    success: bool = False
    skipped: bool = False
    skip_reason: str | None = None
    commit: CommitInfo | None = None
    commit_message: str | None = None  # Message of the update commit


def _log(result: CommandResult) -> RunEvent:
    text = f"$ {result.command_line}\n{result.output}"
    if not text.endswith("\n"):
        text += "\n"
    return RunEvent(type="log", data=text)


def export_github_env(env_file: Path, values: dict[str, str]) -> None:
    """
    Append variables to the CI runner's GITHUB_ENV file.

    Args:
        env_file: Path from the GITHUB_ENV variable
        values: Variables to export (values must be single-line)
    """
    with open(env_file, "a", encoding="utf-8") as f:
        for key, value in values.items():
            f.write(f"{key}={value}\n")


class MirrorPipeline:
    """
    Runs the mirror steps for one push.

    A pipeline instance serves a single run: `result` describes the last
    execution once the event stream is exhausted.
    """

    def __init__(self, config: MirrorConfig, runner: CommandRunner | None = None):
        """
        Initialize the pipeline.

        Args:
            config: Mirror settings
            runner: Command runner (default: a new CommandRunner)
        """
        self.config = config
        self.runner = runner or CommandRunner()
        self.result = PipelineResult()

    async def run(self, event: PushEvent) -> AsyncGenerator[RunEvent, None]:
        """
        Execute the pipeline, streaming events as it goes.

        Args:
            event: The push that triggered the run

        Yields:
            RunEvent objects; the last one is always of type "complete"
        """
        self.result = PipelineResult()
        config = self.config

        reason = skip_reason(event, config.branch, config.skip_marker)
        if reason is not None:
            logger.info(f"Skipping push {event.head_commit_id or event.ref}: {reason}")
            self.result = PipelineResult(success=True, skipped=True, skip_reason=reason)
            yield RunEvent(type="log", data=f"Skipping run: {reason}\n")
            yield RunEvent(type="complete", success=True)
            return

        try:
            yield RunEvent(type="step", data=STEP_SETUP_SSH)
            with ssh_credential(config.ssh_private_key) as ssh_env:
                env = dict(ssh_env)
                env.update(subrepo_env(config.subrepo_root, self.runner.base_env))
                git = GitRunner(self.runner, env)

                yield RunEvent(type="step", data=STEP_SETUP_ENV)
                async for log_event in self._setup_env(git):
                    yield log_event

                yield RunEvent(type="step", data=STEP_PUSH)
                yield _log(await git.subrepo_push_all(config.clone_dir))

                yield RunEvent(type="step", data=STEP_UPDATE)
                async for log_event in self._update_current_repo(git):
                    yield log_event

        except (CommandError, OSError, ValueError) as e:
            logger.error(f"Mirror run failed: {e}")
            self.result.success = False
            yield RunEvent(type="log", data=f"Error: {e}\n")
            yield RunEvent(type="complete", success=False)
            return

        self.result.success = True
        logger.info("Mirror run completed")
        yield RunEvent(type="complete", success=True)

    async def execute(self, event: PushEvent) -> PipelineResult:
        """Run the pipeline to completion, discarding the event stream."""
        async for _ in self.run(event):
            pass
        return self.result

    async def _setup_env(self, git: GitRunner) -> AsyncGenerator[RunEvent, None]:
        config = self.config

        if (config.subrepo_root / ".rc").exists():
            yield RunEvent(
                type="log", data=f"git-subrepo already installed in {config.subrepo_root}\n"
            )
        else:
            yield _log(await git.clone(config.subrepo_repo, config.subrepo_root))

        config.work_dir.mkdir(parents=True, exist_ok=True)
        clone_dir = config.clone_dir
        if clone_dir.exists():
            logger.info(f"Removing stale clone {clone_dir}")
            shutil.rmtree(clone_dir)
        yield _log(await git.clone(config.integral_repo, clone_dir, cwd=config.work_dir))

        commit = await git.latest_commit(clone_dir)
        self.result.commit = commit
        logger.info(
            f"PARENT_COMMIT_ID={commit.commit_id} "
            f"INTEGRAL_COMMIT_MESSAGE={commit.message!r}"
        )
        yield RunEvent(
            type="log",
            data="".join(f"{key}={value}\n" for key, value in commit.env().items()),
        )

        if config.github_env_file is not None:
            export_github_env(config.github_env_file, commit.env())

        for result in await git.configure_identity(
            clone_dir, commit.author_name, commit.author_email
        ):
            yield _log(result)

    async def _update_current_repo(self, git: GitRunner) -> AsyncGenerator[RunEvent, None]:
        config = self.config
        clone_dir = config.clone_dir
        commit = self.result.commit
        assert commit is not None, "Setup Env records the commit before this step"

        yield _log(await git.reset(clone_dir, commit.commit_id))
        yield _log(await git.run_script(clone_dir, config.update_script))
        yield _log(await git.add_all(clone_dir))

        message = commit.update_commit_message()
        self.result.commit_message = message
        yield _log(await git.commit(clone_dir, message))
        yield _log(await git.push(clone_dir))
