"""Domain models for release-triage."""

from release_triage.models.domain import (
    Commit,
    CommitReason,
    CommitState,
    CommitTask,
    CommitTaskState,
    CommitTaskType,
    CustomerPriority,
    Issue,
    IssueState,
    IssueType,
    SecurityImpact,
    User,
)
from release_triage.models.release import ReleaseVersion

__all__ = [
    "Commit",
    "CommitReason",
    "CommitState",
    "CommitTask",
    "CommitTaskState",
    "CommitTaskType",
    "CustomerPriority",
    "Issue",
    "IssueState",
    "IssueType",
    "ReleaseVersion",
    "SecurityImpact",
    "User",
]
