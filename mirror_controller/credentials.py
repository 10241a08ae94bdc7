"""
SSH credential setup for authenticated clones and pushes.

The private key is written to a private temporary directory for the
duration of a run and handed to git through GIT_SSH_COMMAND, so nothing
touches the user's ~/.ssh.
"""

import logging
import os
import shlex
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

KEY_FILE_NAME = "id_mirror"


def build_ssh_command(key_path: Path) -> str:
    """
    Build the ssh command line git should use.

    Args:
        key_path: Path to the private key file

    Returns:
        Value for GIT_SSH_COMMAND
    """
    return " ".join(
        [
            "ssh",
            "-i",
            shlex.quote(str(key_path)),
            "-o",
            "IdentitiesOnly=yes",
            "-o",
            "StrictHostKeyChecking=accept-new",
        ]
    )


@contextmanager
def ssh_credential(
    private_key: str, work_dir: Path | None = None
) -> Iterator[dict[str, str]]:
    """
    Install a private key for the duration of the block.

    Args:
        private_key: PEM/OpenSSH encoded private key. Empty means no key,
                     which still allows cloning public repositories.
        work_dir: Parent for the temporary key directory (default: system temp)

    Yields:
        Environment variables to add to every git invocation

    The key file and its directory are removed when the block exits, even
    if the block raises.
    """
    if not private_key.strip():
        logger.warning("No SSH key configured, git will use ambient credentials")
        yield {}
        return

    key_dir = Path(tempfile.mkdtemp(prefix="mirror_ssh_", dir=work_dir))
    try:
        os.chmod(key_dir, 0o700)
        key_path = key_dir / KEY_FILE_NAME

        # OpenSSH refuses keys without a trailing newline
        if not private_key.endswith("\n"):
            private_key += "\n"

        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(private_key)

        logger.info(f"Installed SSH key in {key_dir}")
        yield {"GIT_SSH_COMMAND": build_ssh_command(key_path)}
    finally:
        shutil.rmtree(key_dir, ignore_errors=True)
        logger.debug(f"Removed SSH key directory {key_dir}")
