"""Tests for release_triage/engine/state_manager.py."""

import json

import pytest

from release_triage.engine.state_manager import (
    COMMITS_FILE,
    DOWNSTREAM_ISSUES_FILE,
    PAYLOAD_FILE,
    USERS_FILE,
    RunStateManager,
    requires_attention,
)
from release_triage.exceptions import StateError
from release_triage.models.domain import (
    Commit,
    CommitReason,
    CommitState,
    CommitTask,
    CommitTaskState,
    CommitTaskType,
    CustomerPriority,
)


def _commit(state, *tasks, reason=None):
    return Commit(upstream_commit="a" * 40, summary="ARTEMIS-1 Fix", state=state, reason=reason, tasks=list(tasks))


class TestRequiresAttention:
    @pytest.mark.parametrize(
        "state",
        [CommitState.TODO, CommitState.INCOMPLETE, CommitState.BLOCKED, CommitState.CONFLICTED, CommitState.FAILED],
    )
    def test_unfinished_states(self, state):
        assert requires_attention(_commit(state))

    def test_skipped_and_untouched_done(self):
        assert not requires_attention(_commit(CommitState.SKIPPED))
        assert not requires_attention(_commit(CommitState.DONE))

    def test_done_by_this_run(self):
        task = CommitTask(
            type=CommitTaskType.CHERRY_PICK_UPSTREAM_COMMIT,
            key="a" * 40,
            state=CommitTaskState.EXECUTED,
        )

        assert requires_attention(_commit(CommitState.DONE, task))


class TestRunStateManager:
    """Persisted files of a run."""

    def test_creates_state_directory(self, tmp_path):
        RunStateManager(tmp_path / "nested" / "state")

        assert (tmp_path / "nested" / "state").is_dir()

    @pytest.mark.asyncio
    async def test_load_users(self, state_manager, temp_state_dir, sample_users):
        (temp_state_dir / USERS_FILE).write_text(json.dumps([user.model_dump(mode="json") for user in sample_users]))

        assert await state_manager.load_users() == sample_users

    @pytest.mark.asyncio
    async def test_missing_users_file(self, state_manager):
        assert await state_manager.load_users() == []

    @pytest.mark.asyncio
    async def test_issue_snapshot(self, state_manager, issue_factory):
        issues = [
            issue_factory(
                "ENTMQBR-1",
                linked_keys=["ARTEMIS-1"],
                customer=True,
                customer_priority=CustomerPriority.HIGH,
            )
        ]

        assert await state_manager.load_issue_snapshot(upstream=False) is None

        await state_manager.save_issue_snapshot(False, issues)

        assert state_manager.path(DOWNSTREAM_ISSUES_FILE).exists()
        assert await state_manager.load_issue_snapshot(upstream=False) == issues
        assert await state_manager.load_issue_snapshot(upstream=True) is None

    @pytest.mark.asyncio
    async def test_save_commits_filters(self, state_manager):
        commits = [
            _commit(CommitState.SKIPPED, reason=CommitReason.NO_UPSTREAM_ISSUE),
            _commit(CommitState.BLOCKED),
        ]

        selected = await state_manager.save_commits(commits)

        assert [commit.state for commit in selected] == [CommitState.BLOCKED]
        data = json.loads(state_manager.path(COMMITS_FILE).read_text())
        assert data[0]["state"] == "blocked"
        assert not list(state_manager.state_dir.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_confirmed_commits_keyed_by_upstream_commit(self, state_manager):
        await state_manager.save_commits([_commit(CommitState.BLOCKED)])

        confirmed = await state_manager.load_confirmed_commits(state_manager.path(COMMITS_FILE))

        assert list(confirmed) == ["a" * 40]

    @pytest.mark.asyncio
    async def test_malformed_file(self, state_manager):
        state_manager.path(USERS_FILE).write_text('[{"emails": "not-a-list"}]')

        with pytest.raises(StateError, match="Malformed state file"):
            await state_manager.load_users()

    @pytest.mark.asyncio
    async def test_missing_confirmed_commits(self, state_manager, tmp_path):
        with pytest.raises(StateError, match="Cannot read state file"):
            await state_manager.load_confirmed_commits(tmp_path / "missing.json")

    @pytest.mark.asyncio
    async def test_payload(self, state_manager):
        path = await state_manager.save_payload("state,release\n")

        assert path == state_manager.path(PAYLOAD_FILE)
        assert path.read_text() == "state,release\n"
