"""
Triage run orchestrator.

This module provides the TriageOrchestrator class, which wires the
collaborators of a run together and drives it from start to finish:

- Preparing the working clone and its midstream branch
- Loading both issue trackers (or their snapshots) into the IssueRegistry
- Building the CherryPickIndex from the midstream history
- Walking the upstream commits oldest first through the CommitProcessor
- Persisting commits, issue snapshots and the report

Persistence Guarantee:
    Once the commit walk has started, the commits processed so far and the
    current issue snapshots are written even if the run aborts, so a re-run
    has the right confirmation context.

Example:
    >>> orchestrator = TriageOrchestrator(settings, repository, upstream, downstream, state)
    >>> commits = await orchestrator.run()
"""

import asyncio
import re

import structlog

from release_triage.config.settings import TriageSettings
from release_triage.engine.assignee import AssigneeResolver, UserResolver
from release_triage.engine.cherry_pick_index import CherryPickIndex
from release_triage.engine.executor import TaskExecutor
from release_triage.engine.processor import CommitProcessor
from release_triage.engine.report import render_report
from release_triage.engine.state_manager import RunStateManager
from release_triage.engine.test_runner import CommitTestRunner
from release_triage.engine.triage import TriagePolicy
from release_triage.exceptions import ConfigurationError
from release_triage.git.models import GitCommit
from release_triage.git.repository import GitRepository
from release_triage.issues.base import IssueTracker
from release_triage.issues.registry import IssueRegistry
from release_triage.models.domain import Commit, Issue

log = structlog.get_logger(__name__)

MERGE_COMMIT_PREFIX = "Merge pull request"
DEFAULT_UPSTREAM_BROWSE_URL = "https://issues.apache.org/jira/browse/"


def build_policy(settings: TriageSettings) -> TriagePolicy:
    """Translate settings into the inputs of the triage rules."""
    policy = settings.policy
    run = settings.run

    return TriagePolicy(
        candidate_release=settings.candidate_release,
        upstream_issue_pattern=re.compile(policy.upstream_issue_pattern),
        release_prefix=policy.release_prefix,
        future_ga_release=policy.future_ga_release,
        upstream_test_coverage_label=policy.upstream_test_coverage_label,
        no_testing_needed_label=policy.no_testing_needed_label,
        no_issue_prefix=policy.no_issue_prefix,
        test_path=policy.test_path,
        test_suffix=policy.test_suffix,
        qualifier_label_prefix=policy.qualifier_label_prefix,
        customer_priority=policy.customer_priority,
        security_impact=policy.security_impact,
        confirmed_upstream_issues=(
            frozenset(run.confirmed_upstream_issues) if run.confirmed_upstream_issues is not None else None
        ),
        confirmed_downstream_issues=(
            frozenset(run.confirmed_downstream_issues) if run.confirmed_downstream_issues is not None else None
        ),
        check_incomplete_commits=run.check_incomplete_commits,
    )


class TriageOrchestrator:
    """Drive a complete triage run.

    Attributes:
        settings: Run configuration
        repository: Working clone
        upstream_tracker: Tracker of the upstream project
        downstream_tracker: Tracker of the downstream project
        state: Persisted run state
        registry: Issues of both trackers, populated by ``load_issues``
    """

    def __init__(
        self,
        settings: TriageSettings,
        repository: GitRepository,
        upstream_tracker: IssueTracker,
        downstream_tracker: IssueTracker,
        state: RunStateManager,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.upstream_tracker = upstream_tracker
        self.downstream_tracker = downstream_tracker
        self.state = state
        self.registry = IssueRegistry()
        self.policy = build_policy(settings)

    async def run(self) -> list[Commit]:
        """Triage every upstream commit missing from the midstream branch.

        Returns:
            Commit records of the whole run, oldest first
        """
        settings = self.settings
        repo = settings.repository
        if not settings.run.assignee:
            raise ConfigurationError("A default assignee is required (run.assignee)")

        log.info(
            "triage_started",
            release=str(self.policy.candidate_release),
            requires_release_issues=self.policy.requires_release_issues,
            scratch=settings.run.scratch,
        )

        users = await self.state.load_users()
        assignee_resolver = AssigneeResolver(UserResolver(users), settings.run.assignee)

        await self.repository.prepare(
            downstream_url=repo.downstream_url,
            upstream_url=repo.upstream_url,
            upstream_branch=repo.upstream_branch,
            midstream_branch=repo.midstream_branch,
            downstream_remote=repo.downstream_remote,
            upstream_remote=repo.upstream_remote,
        )

        await self.load_issues()
        self._check_confirmed_issues()

        upstream_ref = f"{repo.upstream_remote}/{repo.upstream_branch}"
        downstream_ref = f"{repo.downstream_remote}/{repo.midstream_branch}"
        upstream_commits = await self.load_upstream_commits(upstream_ref, downstream_ref)

        cherry_pick_index = await CherryPickIndex.build(
            self.repository,
            downstream_ref,
            upstream_ref,
            upstream_commits,
            self.policy.candidate_release,
        )

        confirmed_commits: dict[str, Commit] = {}
        if settings.run.confirmed_commits_file:
            confirmed_commits = await self.state.load_confirmed_commits(settings.run.confirmed_commits_file)

        executor = TaskExecutor(
            repository=self.repository,
            upstream_tracker=self.upstream_tracker,
            downstream_tracker=self.downstream_tracker,
            registry=self.registry,
            cherry_pick_index=cherry_pick_index,
            assignee_resolver=assignee_resolver,
            policy=self.policy,
            test_runner=CommitTestRunner(
                settings.run.test_command, self.repository.directory, timeout=settings.run.test_timeout
            ),
            committer_name=repo.committer_name,
            committer_email=repo.committer_email,
            push_remote=repo.downstream_remote,
            upstream_browse_url=settings.upstream_tracker.browse_url or DEFAULT_UPSTREAM_BROWSE_URL,
            scratch=settings.run.scratch,
            skip_commit_test=settings.run.skip_commit_test,
        )
        processor = CommitProcessor(
            repository=self.repository,
            registry=self.registry,
            cherry_pick_index=cherry_pick_index,
            executor=executor,
            assignee_resolver=assignee_resolver,
            policy=self.policy,
            confirmed_commits=confirmed_commits,
        )

        commits: list[Commit] = []
        try:
            for upstream_commit in upstream_commits:
                with structlog.contextvars.bound_contextvars(upstream_commit=upstream_commit.abbreviated_id):
                    commits.append(await processor.process(upstream_commit))
        finally:
            await self.persist(commits)

        log.info("triage_completed", commits=len(commits))
        return commits

    async def load_issues(self) -> None:
        """Populate the registry from snapshots, or from the trackers."""
        upstream_issues, downstream_issues = await asyncio.gather(
            self._load_tracker_issues(self.upstream_tracker, upstream=True),
            self._load_tracker_issues(self.downstream_tracker, upstream=False),
        )
        self.registry.load(upstream_issues, downstream_issues)

    async def _load_tracker_issues(self, tracker: IssueTracker, upstream: bool) -> list[Issue]:
        issues = await self.state.load_issue_snapshot(upstream)
        if issues is None:
            issues = await tracker.load_project_issues()
            await self.state.save_issue_snapshot(upstream, issues)
        return issues

    async def load_upstream_commits(self, upstream_ref: str, downstream_ref: str) -> list[GitCommit]:
        """Upstream commits missing downstream, oldest first, merges excluded."""
        commits = [
            commit
            for commit in await self.repository.log(upstream_ref, downstream_ref)
            if not commit.short_message.startswith(MERGE_COMMIT_PREFIX)
        ]
        commits.reverse()
        log.info("upstream_commits_loaded", commits=len(commits))
        return commits

    def _check_confirmed_issues(self) -> None:
        for key in self.policy.confirmed_upstream_issues or ():
            if self.registry.get_upstream(key) is None:
                log.warning("confirmed_issue_not_found", key=key, tracker="upstream")
        for key in self.policy.confirmed_downstream_issues or ():
            if self.registry.get_downstream(key) is None:
                log.warning("confirmed_issue_not_found", key=key, tracker="downstream")

    async def persist(self, commits: list[Commit]) -> None:
        """Write commits, issue snapshots and the report."""
        await self.state.save_commits(commits)
        await self.state.save_issue_snapshot(True, self.registry.upstream.values())
        await self.state.save_issue_snapshot(False, self.registry.downstream.values())
        path = await self.state.save_payload(render_report(commits, self.policy.candidate_release))
        log.info("run_state_persisted", commits=len(commits), report=str(path))
