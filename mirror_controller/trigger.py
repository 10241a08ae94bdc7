"""
Loop guard deciding whether a push should start a mirror run.

The pipeline itself pushes commits whose messages start with
"git subrepo ...". Without this guard those pushes would trigger another
run, and so on forever.
"""

from mirror_common.models import PushEvent


def skip_reason(event: PushEvent, branch: str, marker: str) -> str | None:
    """
    Explain why a push must not start a run.

    The marker is matched case-insensitively anywhere in the head commit
    message, the way GitHub's contains() expression compares strings.

    Args:
        event: The push to inspect
        branch: Branch whose pushes are mirrored
        marker: Commit message text identifying automation commits

    Returns:
        A human-readable reason, or None if the push qualifies
    """
    if event.branch != branch:
        return f"push to {event.branch}, not {branch}"
    if event.deleted:
        return "branch deleted"
    if marker and marker.lower() in event.head_commit_message.lower():
        return f"commit message contains '{marker}'"
    return None


def should_run(event: PushEvent, branch: str, marker: str) -> bool:
    """Whether a push qualifies for a mirror run."""
    return skip_reason(event, branch, marker) is None
