"""Commit triage engine.

``CommitProcessor.process`` decides what has to happen to one upstream
commit: whether it must be cherry-picked onto the midstream branch, whether
a downstream tracking issue must be created first, and which downstream
issues need their target release, labels or workflow state fixed.

Commits must be processed oldest first, one at a time. Executed tasks
update the issue registry and the cherry-pick index, and later commits
depend on those updates.

Decision Outline:
    1. The effective release is the one recorded at cherry-pick time, or
       the candidate release for commits not cherry-picked yet.
    2. The upstream issue key comes from the commit summary. Commits not
       cherry-picked yet without a single known issue end here.
    3. Linked downstream issues are grouped by target release and one
       group is selected.
    4. The state follows from whether a group was selected, whether the
       commit is already cherry-picked and whether the selected group has
       the required target release.
"""

import structlog

from release_triage.engine.assignee import AssigneeResolver
from release_triage.engine.cherry_pick_index import CherryPickIndex
from release_triage.engine.executor import TaskExecutor
from release_triage.engine.triage import (
    TriagePolicy,
    commit_tests,
    downstream_issue_tasks,
    extract_issue_keys,
    group_by_target_release,
    requires_cherry_pick,
    requires_downstream_clone,
    select_release,
)
from release_triage.git.models import GitCommit
from release_triage.git.repository import GitRepository
from release_triage.issues.registry import IssueRegistry
from release_triage.models.domain import (
    Commit,
    CommitReason,
    CommitState,
    CommitTask,
    CommitTaskState,
    CommitTaskType,
    Issue,
)
from release_triage.models.release import ReleaseVersion

log = structlog.get_logger(__name__)


class CommitProcessor:
    """Triage upstream commits against the downstream trackers.

    Business outcomes are recorded on the returned ``Commit``; only
    collaborator failures (git, tracker, filesystem) propagate.

    Example:
        >>> processor = CommitProcessor(repository, registry, index, executor, resolver, policy, confirmed)
        >>> commit = await processor.process(upstream_commit)
        >>> commit.state
        <CommitState.DONE: 'done'>
    """

    def __init__(
        self,
        repository: GitRepository,
        registry: IssueRegistry,
        cherry_pick_index: CherryPickIndex,
        executor: TaskExecutor,
        assignee_resolver: AssigneeResolver,
        policy: TriagePolicy,
        confirmed_commits: dict[str, Commit] | None = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.cherry_pick_index = cherry_pick_index
        self.executor = executor
        self.assignee_resolver = assignee_resolver
        self.policy = policy
        self.confirmed_commits = confirmed_commits if confirmed_commits is not None else {}

    async def process(self, upstream_commit: GitCommit) -> Commit:
        log.info("commit_processing", summary=upstream_commit.short_message)

        commit = await self._triage(upstream_commit)

        log.info(
            "commit_processed",
            state=commit.state.value,
            reason=commit.reason.value if commit.reason else None,
            tasks=len(commit.tasks),
        )
        return commit

    async def _triage(self, upstream_commit: GitCommit) -> Commit:
        policy = self.policy
        cherry_pick = self.cherry_pick_index.get(upstream_commit.id)
        cherry_picked = cherry_pick is not None

        release_version = cherry_pick.release_version if cherry_pick else policy.candidate_release
        release = policy.release_name(release_version)
        qualifier = release_version.qualifier

        confirmed_commit = self.confirmed_commits.get(upstream_commit.id)
        confirmed_tasks = confirmed_commit.tasks if confirmed_commit else None

        commit = Commit(
            upstream_commit=upstream_commit.id,
            summary=upstream_commit.short_message,
            state=CommitState.DONE,
        )

        issue_keys = extract_issue_keys(upstream_commit.short_message, policy.upstream_issue_pattern)
        upstream_issue: Issue | None = None
        if not issue_keys:
            if not cherry_picked:
                log.info("commit_skipped", reason=CommitReason.NO_UPSTREAM_ISSUE.value)
                return self._finish(commit, CommitState.SKIPPED, CommitReason.NO_UPSTREAM_ISSUE)
        else:
            commit.upstream_issue = issue_keys[0]

            if len(issue_keys) > 1 and not cherry_picked:
                log.warning("commit_failed", reason=CommitReason.MULTIPLE_UPSTREAM_ISSUES.value, keys=issue_keys)
                return self._finish(commit, CommitState.FAILED, CommitReason.MULTIPLE_UPSTREAM_ISSUES)

            upstream_issue = self.registry.get_upstream(issue_keys[0])
            if upstream_issue is None and not cherry_picked:
                log.warning("commit_failed", reason=CommitReason.UPSTREAM_ISSUE_NOT_FOUND.value, key=issue_keys[0])
                return self._finish(commit, CommitState.FAILED, CommitReason.UPSTREAM_ISSUE_NOT_FOUND)

        commit.author = upstream_commit.author_name
        commit.release_version = str(release_version)
        commit.downstream_commit = cherry_pick.downstream_commit.id if cherry_pick else None
        changed_files = await self.repository.get_changed_files(upstream_commit)
        commit.tests = commit_tests(changed_files, policy.test_path, policy.test_suffix)

        selected_release: str | None = None
        selected_issues: list[Issue] = []
        all_issues: list[Issue] = []
        groups = group_by_target_release(self._downstream_issues(upstream_issue), release, policy)
        if groups:
            selected_release = select_release(groups.keys(), release, policy.future_ga_release)
            selected_issues = groups[selected_release]
            for group in groups.values():
                for issue in group:
                    all_issues.append(issue)
                    commit.add_downstream_issue(issue.key)

        commit.assignee = self.assignee_resolver.get_assignee(upstream_commit, upstream_issue, selected_issues).username

        # Cherry-picked under another release: nothing to check for this one.
        same_release = policy.candidate_release.compare_without_qualifier(release_version) == 0
        target_matches = selected_release == release

        if selected_issues:
            if cherry_picked:
                if not same_release:
                    return commit
                if target_matches:
                    await self._check_downstream_issues(commit, release_version, selected_issues, confirmed_tasks)
                elif policy.requires_release_issues:
                    log.warning("commit_incomplete", reason="no downstream issues with the required target release")
                    if not await self._clone_downstream_issues(commit, release_version, selected_issues, confirmed_tasks):
                        self._finish(
                            commit,
                            CommitState.INCOMPLETE,
                            CommitReason.NO_DOWNSTREAM_ISSUES_WITH_REQUIRED_TARGET_RELEASE,
                        )
            elif target_matches:
                if await self._cherry_pick(commit, upstream_commit, release_version, selected_issues, confirmed_tasks):
                    await self._check_downstream_issues(commit, release_version, selected_issues, confirmed_tasks)
            elif requires_cherry_pick(all_issues, policy):
                if policy.requires_release_issues:
                    if not await self._clone_downstream_issues(commit, release_version, selected_issues, confirmed_tasks):
                        self._finish(
                            commit,
                            CommitState.BLOCKED,
                            CommitReason.NO_DOWNSTREAM_ISSUES_WITH_REQUIRED_TARGET_RELEASE,
                        )
                else:
                    await self._cherry_pick(commit, upstream_commit, release_version, selected_issues, confirmed_tasks)
            else:
                self._finish(commit, CommitState.SKIPPED, CommitReason.DOWNSTREAM_ISSUE_NOT_SUFFICIENT)
        elif cherry_picked:
            if (
                same_release
                and not commit.summary.startswith(policy.no_issue_prefix)
                and policy.check_incomplete_commits
            ):
                log.warning("commit_incomplete", reason=CommitReason.NO_DOWNSTREAM_ISSUES.value)
                self._finish(commit, CommitState.INCOMPLETE, CommitReason.NO_DOWNSTREAM_ISSUES)
        elif upstream_issue is not None and requires_downstream_clone(upstream_issue, policy):
            commit.state = CommitState.BLOCKED
            await self._run_task(
                commit,
                CommitTaskType.CLONE_UPSTREAM_ISSUE,
                upstream_issue.key,
                None,
                confirmed_tasks,
                release_version,
            )
        else:
            self._finish(commit, CommitState.SKIPPED, CommitReason.UPSTREAM_ISSUE_NOT_SUFFICIENT)

        return commit

    def _downstream_issues(self, upstream_issue: Issue | None) -> list[Issue]:
        if upstream_issue is None:
            return []

        issues = []
        for key in self.registry.downstream_keys_for(upstream_issue.key):
            issue = self.registry.get_downstream(key)
            if issue is None:
                log.warning("downstream_issue_not_found", key=key)
                continue
            issues.append(issue)
        return issues

    @staticmethod
    def _finish(commit: Commit, state: CommitState, reason: CommitReason | None = None) -> Commit:
        commit.state = state
        commit.reason = reason
        return commit

    async def _run_task(
        self,
        commit: Commit,
        task_type: CommitTaskType,
        key: str,
        value: str | None,
        confirmed_tasks: list[CommitTask] | None,
        release_version: ReleaseVersion,
    ) -> CommitTask:
        task = CommitTask(type=task_type, key=key, value=value, assignee=commit.assignee)
        await self.executor.execute(task, commit, confirmed_tasks, release_version)
        commit.tasks.append(task)
        return task

    async def _cherry_pick(
        self,
        commit: Commit,
        upstream_commit: GitCommit,
        release_version: ReleaseVersion,
        downstream_issues: list[Issue],
        confirmed_tasks: list[CommitTask] | None,
    ) -> bool:
        """Cherry-pick the commit; sets TODO or CONFLICTED when it does not land."""
        task = await self._run_task(
            commit,
            CommitTaskType.CHERRY_PICK_UPSTREAM_COMMIT,
            upstream_commit.id,
            ",".join(issue.key for issue in downstream_issues),
            confirmed_tasks,
            release_version,
        )
        if task.executed:
            commit.downstream_commit = task.result
            return True

        if task.state == CommitTaskState.FAILED:
            self._finish(commit, CommitState.CONFLICTED, CommitReason.CHERRY_PICK_FAILED)
        else:
            self._finish(commit, CommitState.TODO)
        return False

    async def _check_downstream_issues(
        self,
        commit: Commit,
        release_version: ReleaseVersion,
        downstream_issues: list[Issue],
        confirmed_tasks: list[CommitTask] | None,
    ) -> None:
        """Remediate the selected downstream issues; INCOMPLETE unless every task executed."""
        release = self.policy.release_name(release_version)
        executed = True
        for issue in downstream_issues:
            for task in downstream_issue_tasks(
                issue,
                release,
                release_version.qualifier,
                commit.has_test_coverage,
                self.policy,
            ):
                task.assignee = commit.assignee
                await self.executor.execute(task, commit, confirmed_tasks, release_version)
                commit.tasks.append(task)
                executed = executed and task.executed

        if not executed:
            self._finish(commit, CommitState.INCOMPLETE)

    async def _clone_downstream_issues(
        self,
        commit: Commit,
        release_version: ReleaseVersion,
        downstream_issues: list[Issue],
        confirmed_tasks: list[CommitTask] | None,
    ) -> bool:
        executed = True
        for issue in downstream_issues:
            task = await self._run_task(
                commit,
                CommitTaskType.CLONE_DOWNSTREAM_ISSUE,
                issue.key,
                None,
                confirmed_tasks,
                release_version,
            )
            executed = executed and task.executed
        return executed
