"""Tests for release_triage/engine/triage.py."""

import re

import pytest

from release_triage.engine.triage import (
    TriagePolicy,
    commit_tests,
    downstream_issue_tasks,
    extract_issue_keys,
    find_confirmed_task,
    group_by_target_release,
    requires_cherry_pick,
    requires_downstream_clone,
    select_release,
)
from release_triage.models.domain import (
    CommitTask,
    CommitTaskType,
    CustomerPriority,
    IssueState,
    IssueType,
    SecurityImpact,
)
from release_triage.models.release import ReleaseVersion


@pytest.fixture
def ga_policy() -> TriagePolicy:
    """Policy for a minor release: no release tracking issues."""
    return TriagePolicy(candidate_release=ReleaseVersion.parse("7.11.0.CR1"))


@pytest.fixture
def patch_policy() -> TriagePolicy:
    """Policy for a patch release: release tracking issues required."""
    return TriagePolicy(candidate_release=ReleaseVersion.parse("7.11.1.CR1"))


class TestExtractIssueKeys:
    def test_single_key(self):
        assert extract_issue_keys("ARTEMIS-1234 Fix leak", re.compile(r"ARTEMIS-[0-9]+")) == ["ARTEMIS-1234"]

    def test_multiple_keys(self):
        keys = extract_issue_keys("ARTEMIS-1 ARTEMIS-2 Fix both", re.compile(r"ARTEMIS-[0-9]+"))

        assert keys == ["ARTEMIS-1", "ARTEMIS-2"]

    def test_no_key(self):
        assert extract_issue_keys("NO-JIRA fix typo", re.compile(r"ARTEMIS-[0-9]+")) == []


class TestCommitTests:
    def test_maps_test_sources_to_class_names(self):
        paths = {
            "tests/unit-tests/src/test/java/org/apache/activemq/FooTest.java",
            "artemis-server/src/main/java/org/apache/activemq/Foo.java",
            "tests/unit-tests/src/test/java/org/apache/activemq/util/Helper.java",
        }

        assert commit_tests(paths, "src/test/java/", "Test.java") == ["org.apache.activemq.FooTest"]

    def test_no_tests(self):
        assert commit_tests(["README.md"], "src/test/java/", "Test.java") == []


class TestGroupByTargetRelease:
    def test_unscheduled_issues_grouped_under_sentinel(self, patch_policy, issue_factory):
        issues = [
            issue_factory("ENTMQBR-1", target_release="AMQ 7.11.0.GA"),
            issue_factory("ENTMQBR-2", target_release="Future GA"),
            issue_factory("ENTMQBR-3", target_release=""),
        ]

        groups = group_by_target_release(issues, "AMQ 7.11.1.GA", patch_policy)

        assert set(groups) == {"AMQ 7.11.0.GA", "Future GA"}
        assert [i.key for i in groups["Future GA"]] == ["ENTMQBR-2", "ENTMQBR-3"]
        assert [i.key for i in groups["AMQ 7.11.0.GA"]] == ["ENTMQBR-1"]

    def test_unscheduled_issues_grouped_under_release(self, ga_policy, issue_factory):
        issues = [
            issue_factory("ENTMQBR-1", target_release="AMQ 7.11.0.GA"),
            issue_factory("ENTMQBR-2", target_release=None),
        ]

        groups = group_by_target_release(issues, "AMQ 7.11.0.GA", ga_policy)

        assert list(groups) == ["AMQ 7.11.0.GA"]
        assert [i.key for i in groups["AMQ 7.11.0.GA"]] == ["ENTMQBR-1", "ENTMQBR-2"]

    def test_empty(self, ga_policy):
        assert group_by_target_release([], "AMQ 7.11.0.GA", ga_policy) == {}


class TestSelectRelease:
    @pytest.mark.parametrize(
        "releases",
        [
            ["AMQ 7.10.0.GA", "AMQ 7.11.0.GA"],
            ["AMQ 7.11.0.GA", "AMQ 7.10.0.GA"],
        ],
    )
    def test_exact_match_regardless_of_order(self, releases):
        assert select_release(releases, "AMQ 7.11.0.GA") == "AMQ 7.11.0.GA"

    def test_concrete_release_preferred_over_sentinel(self):
        assert select_release(["Future GA", "AMQ 7.9.0.GA"], "AMQ 7.11.0.GA") == "AMQ 7.9.0.GA"
        assert select_release(["AMQ 7.9.0.GA", "Future GA"], "AMQ 7.11.0.GA") == "AMQ 7.9.0.GA"

    def test_highest_concrete_release(self):
        releases = ["AMQ 7.9.0.GA", "Future GA", "AMQ 7.10.2.GA", "AMQ 7.10.0.GA"]

        assert select_release(releases, "AMQ 7.11.0.GA") == "AMQ 7.10.2.GA"

    def test_only_sentinel(self):
        assert select_release(["Future GA"], "AMQ 7.11.0.GA") == "Future GA"

    def test_no_groups(self):
        assert select_release([], "AMQ 7.11.0.GA") is None


class TestRequiresCherryPick:
    def test_customer_priority_threshold(self, issue_factory):
        policy = TriagePolicy(
            candidate_release=ReleaseVersion.parse("7.11.1.CR1"),
            customer_priority=CustomerPriority.HIGH,
        )
        issue = issue_factory("ENTMQBR-1", customer=True, customer_priority=CustomerPriority.MEDIUM)

        assert not requires_cherry_pick([issue], policy)

        issue.customer_priority = CustomerPriority.HIGH

        assert requires_cherry_pick([issue], policy)

    def test_security_impact_threshold(self, issue_factory):
        policy = TriagePolicy(
            candidate_release=ReleaseVersion.parse("7.11.1.CR1"),
            security_impact=SecurityImpact.IMPORTANT,
        )
        moderate = issue_factory("ENTMQBR-1", security=True, security_impact=SecurityImpact.MODERATE)
        critical = issue_factory("ENTMQBR-2", security=True, security_impact=SecurityImpact.CRITICAL)

        assert not requires_cherry_pick([moderate], policy)
        assert requires_cherry_pick([moderate, critical], policy)

    def test_patch_issue(self, patch_policy, issue_factory):
        assert requires_cherry_pick([issue_factory("ENTMQBR-1", patch=True)], patch_policy)

    def test_only_bugs_qualify(self, patch_policy, issue_factory):
        issue = issue_factory(
            "ENTMQBR-1",
            type=IssueType.NEW_FEATURE,
            customer=True,
            customer_priority=CustomerPriority.URGENT,
        )

        assert not requires_cherry_pick([issue], patch_policy)

    def test_plain_bug_is_not_enough(self, patch_policy, issue_factory):
        assert not requires_cherry_pick([issue_factory("ENTMQBR-1")], patch_policy)

    def test_confirmed_issues_replace_default_rules(self, issue_factory):
        policy = TriagePolicy(
            candidate_release=ReleaseVersion.parse("7.11.1.CR1"),
            confirmed_downstream_issues=frozenset({"ENTMQBR-2"}),
        )
        patch_bug = issue_factory("ENTMQBR-1", patch=True)
        feature = issue_factory("ENTMQBR-2", type=IssueType.NEW_FEATURE)

        assert not requires_cherry_pick([patch_bug], policy)
        assert requires_cherry_pick([patch_bug, feature], policy)


class TestRequiresDownstreamClone:
    def test_bug_by_default(self, ga_policy, issue_factory):
        assert requires_downstream_clone(issue_factory("ARTEMIS-1"), ga_policy)
        assert not requires_downstream_clone(issue_factory("ARTEMIS-2", type=IssueType.TASK), ga_policy)

    def test_confirmed_upstream_issues(self, issue_factory):
        policy = TriagePolicy(
            candidate_release=ReleaseVersion.parse("7.11.0.CR1"),
            confirmed_upstream_issues=frozenset({"ARTEMIS-2"}),
        )

        assert not requires_downstream_clone(issue_factory("ARTEMIS-1"), policy)
        assert requires_downstream_clone(issue_factory("ARTEMIS-2", type=IssueType.TASK), policy)


class TestDownstreamIssueTasks:
    def test_consistent_issue_needs_nothing(self, ga_policy, issue_factory):
        issue = issue_factory(
            "ENTMQBR-1",
            target_release="AMQ 7.11.0.GA",
            labels=["CR1"],
            state=IssueState.CLOSED,
        )

        assert downstream_issue_tasks(issue, "AMQ 7.11.0.GA", "CR1", False, ga_policy) == []

    def test_checks_in_order(self, ga_policy, issue_factory):
        issue = issue_factory("ENTMQBR-1", target_release="Future GA", state=IssueState.IN_PROGRESS)

        tasks = downstream_issue_tasks(issue, "AMQ 7.11.0.GA", "CR1", True, ga_policy)

        assert [(t.type, t.value) for t in tasks] == [
            (CommitTaskType.SET_DOWNSTREAM_ISSUE_TARGET_RELEASE, "AMQ 7.11.0.GA"),
            (CommitTaskType.ADD_DOWNSTREAM_ISSUE_LABEL, "CR1"),
            (CommitTaskType.ADD_DOWNSTREAM_ISSUE_LABEL, "upstream-test-coverage"),
            (CommitTaskType.TRANSITION_DOWNSTREAM_ISSUE, "READY_FOR_REVIEW"),
        ]
        assert all(t.key == "ENTMQBR-1" for t in tasks)

    def test_no_testing_needed_label(self, ga_policy, issue_factory):
        issue = issue_factory(
            "ENTMQBR-1",
            target_release="AMQ 7.11.0.GA",
            labels=["CR1", "no-testing-needed"],
            state=IssueState.READY_FOR_REVIEW,
        )

        assert downstream_issue_tasks(issue, "AMQ 7.11.0.GA", "CR1", True, ga_policy) == []

    def test_disabled_incomplete_checks(self, issue_factory):
        policy = TriagePolicy(
            candidate_release=ReleaseVersion.parse("7.11.0.CR1"),
            check_incomplete_commits=False,
        )

        assert downstream_issue_tasks(issue_factory("ENTMQBR-1"), "AMQ 7.11.0.GA", "CR1", True, policy) == []


class TestFindConfirmedTask:
    def test_match_on_type_key_value(self):
        task = CommitTask(type=CommitTaskType.ADD_DOWNSTREAM_ISSUE_LABEL, key="ENTMQBR-1", value="CR1")
        other = CommitTask(type=CommitTaskType.ADD_DOWNSTREAM_ISSUE_LABEL, key="ENTMQBR-1", value="CR2")

        assert find_confirmed_task(task, [other, task.model_copy()]) is not None
        assert find_confirmed_task(task, [other]) is None
        assert find_confirmed_task(task, None) is None
