"""
Subprocess wrappers for git and git-subrepo.

CommandRunner runs one command and captures its merged output; GitRunner
builds the git invocations the mirror pipeline needs on top of it. Every
command that exits non-zero raises CommandError, which fails the run.
"""

import asyncio
import contextlib
import logging
import os
import shlex
from dataclasses import dataclass
from pathlib import Path

from mirror_common.models import CommitInfo

logger = logging.getLogger(__name__)

# Field separator for the single git log call reading commit metadata
_FIELD_SEP = "%x00"


@dataclass
class CommandResult:
    """Outcome of one finished command."""

    argv: tuple[str, ...]
    returncode: int
    output: str

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)


class CommandError(RuntimeError):
    """A command exited with a non-zero status."""

    def __init__(self, result: CommandResult):
        self.result = result
        super().__init__(
            f"Command '{result.command_line}' failed with exit code "
            f"{result.returncode}: {result.output.strip()}"
        )


class CommandRunner:
    """
    Runs commands as asyncio subprocesses.

    stdout and stderr are merged so the captured output reads like a
    terminal session.
    """

    def __init__(self, base_env: dict[str, str] | None = None):
        """
        Initialize the runner.

        Args:
            base_env: Environment every command starts from (default: os.environ)
        """
        self.base_env = dict(os.environ if base_env is None else base_env)

    async def run(
        self,
        *argv: str,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            argv: Program and arguments
            cwd: Working directory
            env: Variables added to the base environment
            check: Raise CommandError on a non-zero exit

        Returns:
            CommandResult with the merged output

        Raises:
            CommandError: If check is set and the command fails
            OSError: If the program cannot be started
        """
        command_env = dict(self.base_env)
        if env:
            command_env.update(env)

        logger.info(f"Running: {shlex.join(argv)}" + (f" (in {cwd})" if cwd else ""))

        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd else None,
            env=command_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )

        assert process.stdout is not None, (
            "stdout should be available when PIPE is specified"
        )

        lines = []
        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                text = line.decode(errors="replace")
                logger.debug(text.rstrip("\n"))
                lines.append(text)
            await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                # The child may exit between the check and the signal
                with contextlib.suppress(ProcessLookupError):
                    process.terminate()
            await process.wait()
            raise

        result = CommandResult(
            argv=tuple(argv), returncode=process.returncode, output="".join(lines)
        )

        if check and result.returncode != 0:
            raise CommandError(result)
        return result


def subrepo_env(subrepo_root: Path, base_env: dict[str, str] | None = None) -> dict[str, str]:
    """
    Environment equivalent to sourcing git-subrepo's .rc file.

    Args:
        subrepo_root: Directory git-subrepo is installed in
        base_env: Environment whose PATH and MANPATH are extended

    Returns:
        Variables that make `git subrepo` available
    """
    env = os.environ if base_env is None else base_env
    path = env.get("PATH", "")
    manpath = env.get("MANPATH", "")
    return {
        "GIT_SUBREPO_ROOT": str(subrepo_root),
        "PATH": f"{subrepo_root / 'lib'}{os.pathsep}{path}" if path else str(subrepo_root / "lib"),
        "MANPATH": f"{subrepo_root / 'man'}{os.pathsep}{manpath}" if manpath else str(subrepo_root / "man"),
    }


class GitRunner:
    """Git operations used by the mirror pipeline."""

    def __init__(
        self, runner: CommandRunner | None = None, env: dict[str, str] | None = None
    ):
        """
        Initialize the git runner.

        Args:
            runner: Command runner to execute with (default: a new CommandRunner)
            env: Extra variables for every git invocation (SSH, git-subrepo)
        """
        self.runner = runner or CommandRunner()
        self.env = dict(env or {})

    async def git(self, *args: str, cwd: Path | None = None) -> CommandResult:
        return await self.runner.run("git", *args, cwd=cwd, env=self.env)

    async def clone(self, url: str, dest: Path, cwd: Path | None = None) -> CommandResult:
        return await self.git("clone", url, str(dest), cwd=cwd)

    async def latest_commit(self, repo_dir: Path) -> CommitInfo:
        """
        Read the latest commit of a clone.

        Args:
            repo_dir: Working tree to inspect

        Returns:
            CommitInfo with the full hash and the first line of the message
        """
        pretty = _FIELD_SEP.join(["%H", "%an", "%ae", "%B"])
        result = await self.git("log", "-1", f"--pretty=format:{pretty}", cwd=repo_dir)

        fields = result.output.split("\x00", 3)
        if len(fields) != 4:
            raise ValueError(f"Unexpected git log output: {result.output!r}")

        commit_id, author_name, author_email, body = fields
        lines = body.strip().splitlines()
        return CommitInfo(
            commit_id=commit_id.strip(),
            message=lines[0].strip() if lines else "",
            author_name=author_name,
            author_email=author_email,
        )

    async def configure_identity(
        self, repo_dir: Path, name: str, email: str
    ) -> list[CommandResult]:
        return [
            await self.git("config", "user.name", name, cwd=repo_dir),
            await self.git("config", "user.email", email, cwd=repo_dir),
        ]

    async def subrepo_push_all(self, repo_dir: Path) -> CommandResult:
        return await self.git("subrepo", "push", "--all", cwd=repo_dir)

    async def reset(self, repo_dir: Path, commit_id: str) -> CommandResult:
        # Mixed reset: the working tree keeps whatever subrepo push left behind
        return await self.git("reset", commit_id, cwd=repo_dir)

    async def add_all(self, repo_dir: Path) -> CommandResult:
        return await self.git("add", ".", cwd=repo_dir)

    async def commit(self, repo_dir: Path, message: str) -> CommandResult:
        return await self.git("commit", "-m", message, cwd=repo_dir)

    async def push(self, repo_dir: Path) -> CommandResult:
        return await self.git("push", cwd=repo_dir)

    async def run_script(self, repo_dir: Path, script: str) -> CommandResult:
        """Run a script (e.g. "./update.sh") inside the clone."""
        return await self.runner.run(*shlex.split(script), cwd=repo_dir, env=self.env)
