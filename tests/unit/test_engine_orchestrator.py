"""Tests for release_triage/engine/orchestrator.py."""

import json
from unittest.mock import AsyncMock

import pytest

from release_triage.config.settings import TriageSettings
from release_triage.engine.orchestrator import TriageOrchestrator, build_policy
from release_triage.engine.state_manager import COMMITS_FILE, PAYLOAD_FILE, UPSTREAM_ISSUES_FILE
from release_triage.exceptions import ConfigurationError, GitOperationError
from release_triage.models.domain import CommitState, CustomerPriority, IssueState

UPSTREAM_REF = "upstream/main"
DOWNSTREAM_REF = "origin/2.28.0.jbossorg-x"


@pytest.fixture
def settings(sample_config_file):
    return TriageSettings.from_yaml(str(sample_config_file))


@pytest.fixture
def scenario(settings, fake_repository_factory, fake_tracker_factory, commit_factory, issue_factory):
    """Two upstream commits and a merge, with a ready downstream issue for the first."""
    fix = commit_factory("1", "ARTEMIS-1 Fix leak")
    typo = commit_factory("2", "NO-JIRA fix typo")
    merge = commit_factory("3", "Merge pull request #42 from jdoe/leak")

    repository = fake_repository_factory([fix, typo, merge])
    repository.logs[(UPSTREAM_REF, DOWNSTREAM_REF)] = [merge, typo, fix]

    upstream_tracker = fake_tracker_factory("ARTEMIS", [issue_factory("ARTEMIS-1"), issue_factory("ARTEMIS-2")])
    downstream_tracker = fake_tracker_factory(
        "ENTMQBR",
        [
            issue_factory(
                "ENTMQBR-1",
                target_release="AMQ 7.11.0.GA",
                labels=["CR1"],
                state=IssueState.CLOSED,
                linked_keys=["ARTEMIS-1"],
            )
        ],
    )
    return {
        "commits": (fix, typo, merge),
        "repository": repository,
        "upstream_tracker": upstream_tracker,
        "downstream_tracker": downstream_tracker,
    }


def _orchestrator(settings, scenario, state_manager):
    return TriageOrchestrator(
        settings=settings,
        repository=scenario["repository"],
        upstream_tracker=scenario["upstream_tracker"],
        downstream_tracker=scenario["downstream_tracker"],
        state=state_manager,
    )


class TestBuildPolicy:
    def test_from_settings(self, settings):
        policy = build_policy(settings.with_run_overrides(confirmed_downstream_issues="ENTMQBR-1"))

        assert str(policy.candidate_release) == "7.11.0.CR1"
        assert policy.customer_priority == CustomerPriority.HIGH
        assert policy.confirmed_upstream_issues is None
        assert policy.confirmed_downstream_issues == frozenset({"ENTMQBR-1"})
        assert policy.upstream_issue_pattern.pattern == r"ARTEMIS-[0-9]+"


class TestTriageOrchestrator:
    @pytest.mark.asyncio
    async def test_run(self, settings, scenario, state_manager):
        """Test a complete run walks commits oldest first and persists its state."""
        fix, typo, _ = scenario["commits"]
        orchestrator = _orchestrator(settings, scenario, state_manager)

        commits = await orchestrator.run()

        assert [commit.upstream_commit for commit in commits] == [fix.id, typo.id]
        assert [commit.state for commit in commits] == [CommitState.DONE, CommitState.SKIPPED]
        assert scenario["repository"].prepared["midstream_branch"] == "2.28.0.jbossorg-x"
        assert scenario["repository"].pushed == ["origin"]

        persisted = json.loads(state_manager.path(COMMITS_FILE).read_text())
        assert [commit["upstream_commit"] for commit in persisted] == [fix.id]
        assert state_manager.path(UPSTREAM_ISSUES_FILE).exists()
        payload = state_manager.path(PAYLOAD_FILE).read_text().splitlines()
        assert len(payload) == 3

    @pytest.mark.asyncio
    async def test_snapshots_replace_tracker_loads(self, settings, scenario, state_manager, issue_factory):
        await state_manager.save_issue_snapshot(True, [issue_factory("ARTEMIS-1")])
        await state_manager.save_issue_snapshot(False, [])
        scenario["upstream_tracker"].load_project_issues = AsyncMock()
        scenario["downstream_tracker"].load_project_issues = AsyncMock()
        orchestrator = _orchestrator(settings, scenario, state_manager)

        await orchestrator.load_issues()

        scenario["upstream_tracker"].load_project_issues.assert_not_awaited()
        scenario["downstream_tracker"].load_project_issues.assert_not_awaited()
        assert len(orchestrator.registry.upstream) == 1
        assert len(orchestrator.registry.downstream) == 0

    @pytest.mark.asyncio
    async def test_default_assignee_required(self, settings, scenario, state_manager):
        settings = settings.model_copy(update={"run": settings.run.model_copy(update={"assignee": None})})

        with pytest.raises(ConfigurationError, match="assignee"):
            await _orchestrator(settings, scenario, state_manager).run()

        assert scenario["repository"].prepared is None

    @pytest.mark.asyncio
    async def test_state_persisted_on_failure(self, settings, scenario, state_manager, commit_factory):
        """Test commits processed before a failure are still written."""
        fix, _, _ = scenario["commits"]
        other = commit_factory("4", "ARTEMIS-2 Another fix")
        scenario["repository"].logs[(UPSTREAM_REF, DOWNSTREAM_REF)] = [other, fix]
        scenario["repository"].get_changed_files = AsyncMock(side_effect=[set(), GitOperationError("Git log failed")])

        with pytest.raises(GitOperationError):
            await _orchestrator(settings, scenario, state_manager).run()

        persisted = json.loads(state_manager.path(COMMITS_FILE).read_text())
        assert [commit["upstream_commit"] for commit in persisted] == [fix.id]
