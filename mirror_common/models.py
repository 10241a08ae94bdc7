"""
Data models for mirror runs.

These models represent the domain objects used throughout the application,
independent of the underlying storage mechanism.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

BRANCH_REF_PREFIX = "refs/heads/"

UPDATE_COMMIT_PREFIX = "git subrepo update commit for "


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class PushEvent:
    """
    A push to the source repository that may trigger a mirror run.

    Built from a GitHub push webhook payload (or the event file a CI runner
    exposes through GITHUB_EVENT_PATH).
    """

    ref: str  # e.g. "refs/heads/mi_dev"
    head_commit_id: str = ""
    head_commit_message: str = ""
    repository: str | None = None  # "owner/name"
    pusher: str | None = None
    deleted: bool = False

    @property
    def branch(self) -> str:
        """Branch name without the refs/heads/ prefix."""
        if self.ref.startswith(BRANCH_REF_PREFIX):
            return self.ref[len(BRANCH_REF_PREFIX) :]
        return self.ref

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary format (for JSON serialization)."""
        return {
            "ref": self.ref,
            "head_commit_id": self.head_commit_id,
            "head_commit_message": self.head_commit_message,
            "repository": self.repository,
            "pusher": self.pusher,
            "deleted": self.deleted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PushEvent":
        """Create event from the format produced by to_dict."""
        return cls(
            ref=data["ref"],
            head_commit_id=data.get("head_commit_id") or "",
            head_commit_message=data.get("head_commit_message") or "",
            repository=data.get("repository"),
            pusher=data.get("pusher"),
            deleted=bool(data.get("deleted", False)),
        )

    @classmethod
    def from_github_payload(cls, payload: dict[str, Any]) -> "PushEvent":
        """
        Create event from a GitHub push webhook payload.

        Args:
            payload: Decoded JSON body of a "push" webhook delivery

        Returns:
            PushEvent with empty head commit fields when the push carries
            no head commit (branch deletion, tag-only pushes)

        Raises:
            ValueError: If the payload has no "ref" or a field has the
                        wrong type
        """
        if not isinstance(payload, dict):
            raise ValueError("push payload must be a JSON object")

        ref = payload.get("ref")
        if not ref or not isinstance(ref, str):
            raise ValueError("push payload has no 'ref'")

        sections = {}
        for key in ("head_commit", "repository", "pusher"):
            section = payload.get(key) or {}
            if not isinstance(section, dict):
                raise ValueError(f"push payload field '{key}' must be an object")
            sections[key] = section

        head_commit_id = sections["head_commit"].get("id") or ""
        head_commit_message = sections["head_commit"].get("message") or ""
        if not isinstance(head_commit_id, str) or not isinstance(head_commit_message, str):
            raise ValueError("head_commit id and message must be strings")

        repository = sections["repository"].get("full_name")
        pusher = sections["pusher"].get("name")
        if not isinstance(repository, (str, type(None))) or not isinstance(
            pusher, (str, type(None))
        ):
            raise ValueError("repository full_name and pusher name must be strings")

        return cls(
            ref=ref,
            head_commit_id=head_commit_id,
            head_commit_message=head_commit_message,
            repository=repository,
            pusher=pusher,
            deleted=bool(payload.get("deleted", False)),
        )


@dataclass
class CommitInfo:
    """
    Metadata of the latest commit in the integral clone.

    Recorded right after cloning; the commit id is the point the clone is
    reset to before the update script runs.
    """

    commit_id: str  # Full hash (git log -1 --pretty=%H)
    message: str  # First line of the commit message
    author_name: str = ""
    author_email: str = ""

    def env(self) -> dict[str, str]:
        """Variables exported to the CI runner environment."""
        return {
            "PARENT_COMMIT_ID": self.commit_id,
            "INTEGRAL_COMMIT_MESSAGE": self.message,
        }

    def update_commit_message(self) -> str:
        """Message of the commit that records the post-push update."""
        return f"{UPDATE_COMMIT_PREFIX}{self.message}"


@dataclass
class RunEvent:
    """
    Represents a single event in a run's lifecycle.

    Events are emitted while the pipeline executes (steps, logs, completion).
    """

    type: str  # "step", "log" or "complete"
    data: str | None = None  # Step name or log text
    success: bool | None = None  # Result for "complete" type
    timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary format (for JSON serialization)."""
        result: dict[str, Any] = {"type": self.type}
        if self.data is not None:
            result["data"] = self.data
        if self.success is not None:
            result["success"] = self.success
        return result

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], timestamp: datetime | None = None
    ) -> "RunEvent":
        """Create event from dictionary format."""
        return cls(
            type=data["type"],
            data=data.get("data"),
            success=data.get("success"),
            timestamp=timestamp,
        )


RUN_STATUSES = ("queued", "running", "completed", "failed", "skipped")

FINISHED_STATUSES = ("completed", "failed", "skipped")


@dataclass
class MirrorRun:
    """
    One execution of the mirror pipeline for one push.

    Runs progress through states: queued -> running -> completed | failed
    A run whose trigger is filtered out by the loop guard is created
    directly as skipped.
    """

    id: str
    status: str  # One of RUN_STATUSES
    trigger: PushEvent
    events: list[RunEvent] = field(default_factory=list)
    success: bool | None = None
    parent_commit_id: str | None = None
    integral_commit_message: str | None = None
    skip_reason: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def finished(self) -> bool:
        return self.status in FINISHED_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Convert run to dictionary format (for API responses)."""
        result = self.to_summary_dict()
        result["trigger"] = self.trigger.to_dict()
        result["parent_commit_id"] = self.parent_commit_id
        result["integral_commit_message"] = self.integral_commit_message
        result["events"] = [event.to_dict() for event in self.events]
        return result

    def to_summary_dict(self) -> dict[str, Any]:
        """Convert run to summary format (without events, for listings)."""
        return {
            "run_id": self.id,
            "status": self.status,
            "success": self.success,
            "branch": self.trigger.branch,
            "head_commit_id": self.trigger.head_commit_id,
            "skip_reason": self.skip_reason,
            "created_at": _isoformat(self.created_at),
            "start_time": _isoformat(self.start_time),
            "end_time": _isoformat(self.end_time),
        }
