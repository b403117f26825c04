"""Pure triage rules.

Everything in this module is side-effect free: the functions look at
commits, issues and the run policy and return decisions. The commit
processor combines them with the task executor, which owns every mutation.

Release names:
    Downstream issues are scheduled against release names such as
    ``AMQ 7.11.0.GA``. An empty target release and the ``Future GA``
    sentinel both mean "no concrete release yet"; how they are grouped
    depends on whether the candidate release needs release tracking issues.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from release_triage.models.domain import (
    CommitTask,
    CommitTaskType,
    CustomerPriority,
    Issue,
    IssueState,
    IssueType,
    SecurityImpact,
)
from release_triage.models.release import ReleaseVersion

log = structlog.get_logger(__name__)

DEFAULT_FUTURE_GA_RELEASE = "Future GA"


@dataclass
class TriagePolicy:
    """Inputs of the triage rules for one run.

    ``confirmed_upstream_issues`` and ``confirmed_downstream_issues`` replace
    the default worthiness rules when set; ``None`` means the defaults apply.
    """

    candidate_release: ReleaseVersion
    upstream_issue_pattern: re.Pattern[str] = field(default_factory=lambda: re.compile(r"ARTEMIS-[0-9]+"))
    release_prefix: str = "AMQ"
    future_ga_release: str = DEFAULT_FUTURE_GA_RELEASE
    upstream_test_coverage_label: str = "upstream-test-coverage"
    no_testing_needed_label: str = "no-testing-needed"
    no_issue_prefix: str = "NO-JIRA"
    test_path: str = "src/test/java/"
    test_suffix: str = "Test.java"
    qualifier_label_prefix: str = "CR"
    customer_priority: CustomerPriority = CustomerPriority.LOW
    security_impact: SecurityImpact = SecurityImpact.LOW
    confirmed_upstream_issues: frozenset[str] | None = None
    confirmed_downstream_issues: frozenset[str] | None = None
    check_incomplete_commits: bool = True

    @property
    def requires_release_issues(self) -> bool:
        return self.candidate_release.requires_release_issues

    def release_name(self, release_version: ReleaseVersion) -> str:
        return release_version.release_name(self.release_prefix)


def extract_issue_keys(summary: str, pattern: re.Pattern[str]) -> list[str]:
    """Issue keys mentioned in a commit summary, in order of appearance."""
    return pattern.findall(summary)


def commit_tests(paths: Iterable[str], test_path: str, test_suffix: str) -> list[str]:
    """Map changed test sources to dotted class names.

    ``tests/unit-tests/src/test/java/org/apache/FooTest.java`` becomes
    ``org.apache.FooTest``.
    """
    tests = []
    for path in sorted(paths):
        if test_path in path and path.endswith(test_suffix):
            class_path = path[path.index(test_path) + len(test_path) :]
            class_path = class_path.rsplit(".", 1)[0]
            tests.append(class_path.replace("/", "."))
    return tests


def is_unscheduled(target_release: str | None, future_ga_release: str = DEFAULT_FUTURE_GA_RELEASE) -> bool:
    return not target_release or target_release == future_ga_release


def group_by_target_release(
    downstream_issues: Iterable[Issue],
    release: str,
    policy: TriagePolicy,
) -> dict[str, list[Issue]]:
    """Bucket downstream issues by their normalized target release.

    Unscheduled issues go under the ``Future GA`` sentinel when the release
    needs tracking issues, and under ``release`` otherwise.
    """
    groups: dict[str, list[Issue]] = {}
    for issue in downstream_issues:
        target_release = issue.target_release
        if is_unscheduled(target_release, policy.future_ga_release):
            if policy.requires_release_issues:
                target_release = policy.future_ga_release
            else:
                log.warning("downstream_issue_without_target_release", issue=issue.key)
                target_release = release
        groups.setdefault(target_release, []).append(issue)
    return groups


def _release_sort_key(name: str) -> tuple[int, ReleaseVersion]:
    try:
        return (1, ReleaseVersion.parse(name))
    except ValueError:
        return (0, ReleaseVersion(0, 0, 0))


def select_release(
    releases: Iterable[str],
    release: str,
    future_ga_release: str = DEFAULT_FUTURE_GA_RELEASE,
) -> str | None:
    """Choose the downstream issue group to triage against.

    An exact match on ``release`` wins. Otherwise any concrete release is
    preferred over the sentinel, and the highest concrete release over the
    others.
    """
    candidates = list(releases)
    if release in candidates:
        return release

    concrete = [name for name in candidates if name != future_ga_release]
    if concrete:
        return max(concrete, key=_release_sort_key)
    return candidates[0] if candidates else None


def requires_cherry_pick(downstream_issues: Iterable[Issue], policy: TriagePolicy) -> bool:
    """Whether any downstream issue justifies cherry-picking the commit."""
    for issue in downstream_issues:
        if policy.confirmed_downstream_issues is not None:
            if issue.key in policy.confirmed_downstream_issues:
                return True
            continue

        if issue.type != IssueType.BUG:
            continue
        if issue.customer and issue.customer_priority >= policy.customer_priority:
            return True
        if issue.security and issue.security_impact >= policy.security_impact:
            return True
        if issue.patch:
            return True

    return False


def requires_downstream_clone(upstream_issue: Issue, policy: TriagePolicy) -> bool:
    """Whether an upstream issue without downstream issues needs one."""
    if policy.confirmed_upstream_issues is not None:
        return upstream_issue.key in policy.confirmed_upstream_issues
    return upstream_issue.type == IssueType.BUG


def downstream_issue_tasks(
    issue: Issue,
    release: str,
    qualifier: str,
    has_test_coverage: bool,
    policy: TriagePolicy,
) -> list[CommitTask]:
    """Remediation tasks that make a downstream issue consistent with a cherry-pick.

    Checks run in order: target release, qualifier label, test coverage label
    and workflow state. No tasks are required when incomplete checking is
    disabled.
    """
    if not policy.check_incomplete_commits:
        return []

    tasks = []
    if is_unscheduled(issue.target_release, policy.future_ga_release):
        tasks.append(CommitTask(type=CommitTaskType.SET_DOWNSTREAM_ISSUE_TARGET_RELEASE, key=issue.key, value=release))

    if qualifier not in issue.labels:
        tasks.append(CommitTask(type=CommitTaskType.ADD_DOWNSTREAM_ISSUE_LABEL, key=issue.key, value=qualifier))

    if (
        has_test_coverage
        and policy.upstream_test_coverage_label not in issue.labels
        and policy.no_testing_needed_label not in issue.labels
    ):
        tasks.append(
            CommitTask(
                type=CommitTaskType.ADD_DOWNSTREAM_ISSUE_LABEL,
                key=issue.key,
                value=policy.upstream_test_coverage_label,
            )
        )

    if issue.state not in (IssueState.READY_FOR_REVIEW, IssueState.CLOSED):
        tasks.append(
            CommitTask(
                type=CommitTaskType.TRANSITION_DOWNSTREAM_ISSUE,
                key=issue.key,
                value=IssueState.READY_FOR_REVIEW.name,
            )
        )

    return tasks


def find_confirmed_task(task: CommitTask, confirmed_tasks: Iterable[CommitTask] | None) -> CommitTask | None:
    """The prior-run task approving ``task``, matched on type, key and value."""
    for confirmed in confirmed_tasks or ():
        if confirmed.matches(task):
            return confirmed
    return None
