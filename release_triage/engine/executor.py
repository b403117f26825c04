"""Execution of remediation tasks.

The executor owns every side effect of a triage run: git cherry-picks and
pushes, downstream tracker mutations, and the in-memory IssueRegistry and
CherryPickIndex updates that make those mutations visible to the commits
processed later in the same run.

Execution Rules:
    - Cherry-picks are always attempted. A conflict or a failed test gate
      resets the working branch and marks the task FAILED.
    - Every other task runs only when a matching task is confirmed by a
      prior run; otherwise it stays UNCONFIRMED.
    - In scratch mode a task that would run is marked SCRATCHED and nothing
      is changed.
"""

import structlog

from release_triage.engine.assignee import AssigneeResolver
from release_triage.engine.cherry_pick_index import CherryPickIndex
from release_triage.engine.test_runner import CommitTestRunner
from release_triage.engine.triage import TriagePolicy, find_confirmed_task
from release_triage.exceptions import TaskExecutionError
from release_triage.git.repository import GitRepository
from release_triage.issues.base import IssueTracker
from release_triage.issues.registry import IssueRegistry
from release_triage.models.domain import Commit, CommitTask, CommitTaskState, CommitTaskType, IssueState
from release_triage.models.release import ReleaseVersion

log = structlog.get_logger(__name__)

CHERRY_PICK_FAILED_RESULT = "CHERRY_PICK_FAILED"
CLONERS_LINK_TYPE = "Cloners"


class TaskExecutor:
    """Perform or record the remediation tasks of a commit.

    Attributes:
        repository: Working clone with the midstream branch checked out
        upstream_tracker: Upstream issue tracker (read-only in practice)
        downstream_tracker: Downstream issue tracker receiving mutations
        registry: Issue registry updated after each mutation
        cherry_pick_index: Index updated after each cherry-pick commit
    """

    def __init__(
        self,
        repository: GitRepository,
        upstream_tracker: IssueTracker,
        downstream_tracker: IssueTracker,
        registry: IssueRegistry,
        cherry_pick_index: CherryPickIndex,
        assignee_resolver: AssigneeResolver,
        policy: TriagePolicy,
        test_runner: CommitTestRunner | None = None,
        committer_name: str = "rh-messaging-ci",
        committer_email: str = "messaging-infra@redhat.com",
        push_remote: str = "origin",
        upstream_browse_url: str = "https://issues.apache.org/jira/browse/",
        scratch: bool = False,
        skip_commit_test: bool = True,
    ) -> None:
        self.repository = repository
        self.upstream_tracker = upstream_tracker
        self.downstream_tracker = downstream_tracker
        self.registry = registry
        self.cherry_pick_index = cherry_pick_index
        self.assignee_resolver = assignee_resolver
        self.policy = policy
        self.test_runner = test_runner
        self.committer_name = committer_name
        self.committer_email = committer_email
        self.push_remote = push_remote
        self.upstream_browse_url = upstream_browse_url
        self.scratch = scratch
        self.skip_commit_test = skip_commit_test

    async def execute(
        self,
        task: CommitTask,
        commit: Commit,
        confirmed_tasks: list[CommitTask] | None,
        release_version: ReleaseVersion,
    ) -> bool:
        """Run ``task`` if allowed and record the outcome on it.

        Args:
            task: Task to execute; its state and result are updated in place
            commit: Commit record being triaged
            confirmed_tasks: Tasks of the same commit confirmed by a prior run
            release_version: Effective release of the commit

        Returns:
            True if the task ended EXECUTED
        """
        if task.type == CommitTaskType.CHERRY_PICK_UPSTREAM_COMMIT:
            await self._cherry_pick(task, commit)
        elif find_confirmed_task(task, confirmed_tasks) is None:
            log.info("task_unconfirmed", type=task.type.value, key=task.key, value=task.value)
        elif self.scratch:
            task.state = CommitTaskState.SCRATCHED
            log.info("task_scratched", type=task.type.value, key=task.key, value=task.value)
        else:
            await self._execute_confirmed(task, commit, release_version)
            task.state = CommitTaskState.EXECUTED
            log.info("task_executed", type=task.type.value, key=task.key, value=task.value, result=task.result)

        return task.executed

    async def _execute_confirmed(self, task: CommitTask, commit: Commit, release_version: ReleaseVersion) -> None:
        if task.type == CommitTaskType.ADD_DOWNSTREAM_ISSUE_LABEL:
            await self.downstream_tracker.add_labels(task.key, task.value)
            self.registry.add_label(task.key, task.value)
        elif task.type == CommitTaskType.SET_DOWNSTREAM_ISSUE_TARGET_RELEASE:
            await self.downstream_tracker.set_target_release(task.key, task.value)
            self.registry.set_target_release(task.key, task.value)
        elif task.type == CommitTaskType.TRANSITION_DOWNSTREAM_ISSUE:
            try:
                state = IssueState[task.value]
            except KeyError:
                raise TaskExecutionError(f"Invalid issue state: {task.value}", task.type.value, task.key) from None
            await self.downstream_tracker.transition_issue(task.key, state)
            self.registry.set_state(task.key, state)
        elif task.type == CommitTaskType.CLONE_DOWNSTREAM_ISSUE:
            task.result = await self._clone_downstream_issue(task.key, release_version)
        elif task.type == CommitTaskType.CLONE_UPSTREAM_ISSUE:
            task.result = await self._clone_upstream_issue(task.key, commit, release_version)
        else:
            raise TaskExecutionError("Commit task type not supported", task.type.value, task.key)

    async def _cherry_pick(self, task: CommitTask, commit: Commit) -> None:
        upstream_commit = await self.repository.resolve_commit(task.key)

        if not await self.repository.cherry_pick(upstream_commit):
            log.warning("cherry_pick_failed", upstream_commit=upstream_commit.id)
            await self.repository.reset_hard()
            task.state = CommitTaskState.FAILED
            task.result = CHERRY_PICK_FAILED_RESULT
            return

        if not self.skip_commit_test and self.test_runner is not None:
            if not await self.test_runner.run(commit.tests):
                log.warning("cherry_pick_test_failed", upstream_commit=upstream_commit.id, tests=commit.tests)
                await self.repository.reset_hard()
                task.state = CommitTaskState.FAILED
                return

        if self.scratch:
            # Leave a clean tree for the next commit.
            await self.repository.reset_hard()
            task.state = CommitTaskState.SCRATCHED
            log.info("cherry_pick_scratched", upstream_commit=upstream_commit.id)
            return

        message = (
            f"{upstream_commit.full_message}\n"
            f"(cherry picked from commit {upstream_commit.id})\n\n"
            f"downstream: {task.value}"
        )
        downstream_commit = await self.repository.commit(
            message,
            author_name=upstream_commit.author_name,
            author_email=upstream_commit.author_email,
            author_date=upstream_commit.author_date,
            committer_name=self.committer_name,
            committer_email=self.committer_email,
        )
        await self.repository.push(self.push_remote)

        self.cherry_pick_index.put(upstream_commit.id, self.policy.candidate_release, downstream_commit)

        task.state = CommitTaskState.EXECUTED
        task.result = downstream_commit.id
        log.info("cherry_pick_committed", upstream_commit=upstream_commit.id, downstream_commit=downstream_commit.id)

    async def _clone_downstream_issue(self, key: str, release_version: ReleaseVersion) -> str:
        """Create a release tracking copy of a downstream issue."""
        source = self.registry.get_downstream(key)
        if source is None:
            raise TaskExecutionError("Downstream issue not found", CommitTaskType.CLONE_DOWNSTREAM_ISSUE.value, key)

        upstream_keys = self.registry.upstream_keys_for(key)
        if len(upstream_keys) != 1:
            raise TaskExecutionError(
                f"Invalid number of upstream issues to clone: {len(upstream_keys)}",
                CommitTaskType.CLONE_DOWNSTREAM_ISSUE.value,
                key,
            )

        labels = [label for label in source.labels if not label.startswith(self.policy.qualifier_label_prefix)]
        clone = await self.downstream_tracker.create_issue(
            summary=f"{release_version.summary_prefix()} {source.summary}",
            description=source.description,
            issue_type=source.type,
            assignee=source.assignee,
            upstream_link_text=upstream_keys[0],
            target_release=self.policy.release_name(release_version),
            labels=labels,
        )
        await self.downstream_tracker.link_issue(clone.key, key, CLONERS_LINK_TYPE)

        if upstream_keys[0] not in clone.linked_keys:
            clone.linked_keys.append(upstream_keys[0])
        self.registry.add_downstream(clone)
        return clone.key

    async def _clone_upstream_issue(self, key: str, commit: Commit, release_version: ReleaseVersion) -> str:
        """Create the first downstream issue for an upstream issue."""
        upstream_issue = self.registry.get_upstream(key)
        if upstream_issue is None:
            raise TaskExecutionError("Upstream issue not found", CommitTaskType.CLONE_UPSTREAM_ISSUE.value, key)

        labels = [release_version.qualifier]
        if commit.has_test_coverage:
            labels.append(self.policy.upstream_test_coverage_label)

        downstream_issue = await self.downstream_tracker.create_issue(
            summary=upstream_issue.summary,
            description=upstream_issue.description,
            issue_type=upstream_issue.type,
            assignee=self.assignee_resolver.get_downstream_username(commit.assignee),
            upstream_link_text=f"{self.upstream_browse_url}{upstream_issue.key}",
            target_release=self.policy.release_name(release_version),
            labels=labels,
        )

        if upstream_issue.key not in downstream_issue.linked_keys:
            downstream_issue.linked_keys.append(upstream_issue.key)
        self.registry.add_downstream(downstream_issue)
        return downstream_issue.key
