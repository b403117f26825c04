"""
Domain models for commit triage.

This module contains the records the triage engine reads and produces:
tracker issues (upstream and downstream), the users known to the run, and
the Commit/CommitTask output records that are persisted and fed back into
later runs as the confirmation oracle.

Issues are owned by the IssueRegistry for the whole run and are mutated in
place when a remediation task executes. Commit records are created once per
upstream commit and are not mutated after the engine returns them.

Example:
    Recording a required label on a downstream issue::

        task = CommitTask(
            type=CommitTaskType.ADD_DOWNSTREAM_ISSUE_LABEL,
            key="ENTMQBR-1234",
            value="CR1",
        )
"""

from enum import Enum

from pydantic import BaseModel, Field


class IssueType(str, Enum):
    """Normalized issue types across both trackers."""

    BUG = "bug"
    DEPENDENCY_UPGRADE = "dependency_upgrade"
    IMPROVEMENT = "improvement"
    NEW_FEATURE = "new_feature"
    TASK = "task"

    @classmethod
    def from_name(cls, name: str) -> "IssueType":
        """Map a tracker type name to an IssueType.

        Raises:
            ValueError: If the tracker type is unknown
        """
        try:
            return _ISSUE_TYPE_NAMES[name]
        except KeyError:
            raise ValueError(f"Invalid issue type: {name}") from None

    def to_name(self) -> str:
        """Tracker type name used when creating issues."""
        if self == IssueType.BUG:
            return "Bug"
        if self == IssueType.IMPROVEMENT:
            return "Enhancement"
        if self == IssueType.DEPENDENCY_UPGRADE:
            return "Dependency upgrade"
        if self == IssueType.TASK:
            return "Task"
        return "New Feature"


_ISSUE_TYPE_NAMES = {
    "Bug": IssueType.BUG,
    "Dependency upgrade": IssueType.DEPENDENCY_UPGRADE,
    "Improvement": IssueType.IMPROVEMENT,
    "Enhancement": IssueType.NEW_FEATURE,
    "New Feature": IssueType.NEW_FEATURE,
    "Wish": IssueType.NEW_FEATURE,
    "Test": IssueType.NEW_FEATURE,
    "Epic": IssueType.NEW_FEATURE,
    "Task": IssueType.TASK,
    "Sub-task": IssueType.TASK,
}


class IssueState(str, Enum):
    """Normalized workflow states across both trackers."""

    NEW = "new"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    READY_FOR_REVIEW = "ready_for_review"
    CLOSED = "closed"
    BLOCKED = "blocked"
    REOPENED = "reopened"

    @classmethod
    def from_name(cls, name: str) -> "IssueState":
        """Map a tracker status name to an IssueState.

        Raises:
            ValueError: If the tracker status is unknown
        """
        try:
            return _ISSUE_STATE_NAMES[name]
        except KeyError:
            raise ValueError(f"Invalid issue state: {name}") from None

    def next_state(self) -> "IssueState":
        """The state reached by the next forward transition.

        Raises:
            ValueError: If no forward transition leaves this state
        """
        try:
            return _FORWARD_TRANSITIONS[self]
        except KeyError:
            raise ValueError(f"No forward transition from state: {self.value}") from None


_ISSUE_STATE_NAMES = {
    "New": IssueState.NEW,
    "Open": IssueState.NEW,
    "To Do": IssueState.TODO,
    "In Progress": IssueState.IN_PROGRESS,
    "Ready for Review": IssueState.READY_FOR_REVIEW,
    "Closed": IssueState.CLOSED,
    "Resolved": IssueState.CLOSED,
    "Blocked": IssueState.BLOCKED,
    "Reopened": IssueState.REOPENED,
}

_FORWARD_TRANSITIONS = {
    IssueState.NEW: IssueState.TODO,
    IssueState.TODO: IssueState.IN_PROGRESS,
    IssueState.IN_PROGRESS: IssueState.READY_FOR_REVIEW,
    IssueState.READY_FOR_REVIEW: IssueState.CLOSED,
    IssueState.REOPENED: IssueState.IN_PROGRESS,
    IssueState.BLOCKED: IssueState.IN_PROGRESS,
}


class _RankedEnum(str, Enum):
    """String enum ordered by declaration order."""

    @classmethod
    def from_name(cls, name: str):
        """Case-insensitive lookup by value, e.g. ``High`` or ``HIGH``."""
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise ValueError(f"Invalid {cls.__name__}: {name}") from None

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    def __ge__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank < other.rank


class CustomerPriority(_RankedEnum):
    """Customer support priority of a downstream issue, lowest first."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class SecurityImpact(_RankedEnum):
    """Security impact of a downstream issue, lowest first."""

    NONE = "none"
    LOW = "low"
    MODERATE = "moderate"
    IMPORTANT = "important"
    CRITICAL = "critical"


class Issue(BaseModel):
    """A tracker issue, upstream or downstream.

    The same model serves both trackers; custom fields (target release,
    customer and security data) are only populated for the downstream one.
    """

    key: str
    """Tracker key, e.g. ``ARTEMIS-1234`` or ``ENTMQBR-5678``."""

    type: IssueType
    state: IssueState
    summary: str
    description: str | None = None
    assignee: str | None = None
    reporter: str | None = None
    creator: str | None = None

    labels: list[str] = Field(default_factory=list)
    """Label names; treated as a set, order is preserved for snapshots."""

    linked_keys: list[str] = Field(default_factory=list)
    """Keys of the linked issues in the other tracker.

    The IssueRegistry indexes these into its link maps and keeps them in
    sync when new links are created, so snapshots round-trip the links.
    """

    target_release: str | None = None
    """Concrete release name, the ``Future GA`` sentinel, or empty."""

    customer: bool = False
    customer_priority: CustomerPriority = CustomerPriority.NONE
    security: bool = False
    security_impact: SecurityImpact = SecurityImpact.NONE
    patch: bool = False


class User(BaseModel):
    """A person known to the run, with identities in both trackers."""

    username: str
    upstream_username: str | None = None
    downstream_username: str | None = None
    emails: list[str] = Field(default_factory=list)


class CommitState(str, Enum):
    """Disposition of an upstream commit.

    TODO -> DONE | INCOMPLETE once the cherry-pick is performed; BLOCKED
    until a human confirms the required clone task; SKIPPED and FAILED are
    terminal for the run.
    """

    TODO = "todo"
    """Cherry-pick required but not performed yet."""

    DONE = "done"
    """Cherry-picked and every downstream issue is consistent."""

    INCOMPLETE = "incomplete"
    """Cherry-picked but downstream issues still need remediation."""

    BLOCKED = "blocked"
    """A tracking issue must be created before cherry-picking."""

    CONFLICTED = "conflicted"
    """Cherry-pick or its test validation failed; the branch was reset."""

    SKIPPED = "skipped"
    """Not a candidate for the downstream branch."""

    FAILED = "failed"
    """The commit cannot be triaged (ambiguous or unknown upstream issue)."""


class CommitReason(str, Enum):
    """Why a commit ended in its state."""

    NO_UPSTREAM_ISSUE = "NO_UPSTREAM_ISSUE"
    MULTIPLE_UPSTREAM_ISSUES = "MULTIPLE_UPSTREAM_ISSUES"
    UPSTREAM_ISSUE_NOT_FOUND = "UPSTREAM_ISSUE_NOT_FOUND"
    UPSTREAM_ISSUE_NOT_SUFFICIENT = "UPSTREAM_ISSUE_NOT_SUFFICIENT"
    DOWNSTREAM_ISSUE_NOT_SUFFICIENT = "DOWNSTREAM_ISSUE_NOT_SUFFICIENT"
    NO_DOWNSTREAM_ISSUES = "NO_DOWNSTREAM_ISSUES"
    NO_DOWNSTREAM_ISSUES_WITH_REQUIRED_TARGET_RELEASE = "NO_DOWNSTREAM_ISSUES_WITH_REQUIRED_TARGET_RELEASE"
    CHERRY_PICK_FAILED = "CHERRY_PICK_FAILED"


class CommitTaskType(str, Enum):
    """Remediation actions the engine can require."""

    CHERRY_PICK_UPSTREAM_COMMIT = "cherry_pick_upstream_commit"
    CLONE_UPSTREAM_ISSUE = "clone_upstream_issue"
    CLONE_DOWNSTREAM_ISSUE = "clone_downstream_issue"
    SET_DOWNSTREAM_ISSUE_TARGET_RELEASE = "set_downstream_issue_target_release"
    ADD_DOWNSTREAM_ISSUE_LABEL = "add_downstream_issue_label"
    TRANSITION_DOWNSTREAM_ISSUE = "transition_downstream_issue"


class CommitTaskState(str, Enum):
    """Execution outcome of a remediation task."""

    UNCONFIRMED = "unconfirmed"
    EXECUTED = "executed"
    FAILED = "failed"
    SCRATCHED = "scratched"


class CommitTask(BaseModel):
    """A remediation action discovered while triaging a commit.

    Tasks are matched against a prior run's output by ``(type, key, value)``;
    a match means a human approved it.
    """

    type: CommitTaskType
    key: str
    value: str | None = None
    state: CommitTaskState = CommitTaskState.UNCONFIRMED
    assignee: str | None = None
    result: str | None = None
    """New issue key, new commit id, or a failure marker."""

    def matches(self, other: "CommitTask") -> bool:
        return self.type == other.type and self.key == other.key and self.value == other.value

    @property
    def executed(self) -> bool:
        return self.state == CommitTaskState.EXECUTED


class Commit(BaseModel):
    """Triage result for one upstream commit."""

    upstream_commit: str
    summary: str
    state: CommitState = CommitState.DONE
    reason: CommitReason | None = None
    author: str | None = None
    assignee: str | None = None
    release_version: str | None = None
    upstream_issue: str | None = None
    downstream_issues: list[str] = Field(default_factory=list)
    """Every downstream issue linked to the upstream issue, in discovery order."""

    downstream_commit: str | None = None
    tests: list[str] = Field(default_factory=list)
    """Test class identifiers touched by the upstream commit."""

    tasks: list[CommitTask] = Field(default_factory=list)

    @property
    def has_test_coverage(self) -> bool:
        return len(self.tests) > 0

    def add_downstream_issue(self, key: str) -> None:
        if key not in self.downstream_issues:
            self.downstream_issues.append(key)
