"""Pytest configuration and shared fixtures."""

import itertools
import re
from pathlib import Path

import pytest

from release_triage.engine.assignee import AssigneeResolver, UserResolver
from release_triage.engine.cherry_pick_index import CherryPickIndex
from release_triage.engine.executor import TaskExecutor
from release_triage.engine.processor import CommitProcessor
from release_triage.engine.state_manager import RunStateManager
from release_triage.engine.triage import TriagePolicy
from release_triage.git.models import GitCommit
from release_triage.git.repository import GitRepository
from release_triage.issues.base import IssueTracker
from release_triage.issues.registry import IssueRegistry
from release_triage.models.domain import Issue, IssueState, IssueType, User
from release_triage.models.release import ReleaseVersion


def make_commit(
    commit_id: str,
    summary: str,
    author_email: str = "jdoe@apache.org",
    body: str = "",
) -> GitCommit:
    """Build a GitCommit; ``commit_id`` is padded to 40 hex characters."""
    full_id = (commit_id * 40)[:40] if len(commit_id) < 40 else commit_id
    return GitCommit(
        id=full_id,
        short_message=summary,
        full_message=f"{summary}\n\n{body}" if body else summary,
        author_name="Jane Doe",
        author_email=author_email,
        author_date="2024-05-02T10:11:12+02:00",
        committer_name="Jane Doe",
        committer_email=author_email,
    )


def make_issue(key: str, **fields) -> Issue:
    fields.setdefault("type", IssueType.BUG)
    fields.setdefault("state", IssueState.NEW)
    fields.setdefault("summary", f"Summary of {key}")
    return Issue(key=key, **fields)


class FakeGitRepository(GitRepository):
    """In-memory repository recording every mutating call."""

    def __init__(self, commits: list[GitCommit] = ()) -> None:
        self.commits = {commit.id: commit for commit in commits}
        self.logs: dict[tuple[str, str | None], list[GitCommit]] = {}
        self.changed_files: dict[str, set[str]] = {}
        self.conflicts: set[str] = set()
        self.cherry_picked: list[str] = []
        self.committed: list[dict] = []
        self.pushed: list[str] = []
        self.resets = 0
        self.prepared: dict | None = None
        self._ids = itertools.count(1)

    @property
    def directory(self) -> Path:
        return Path("/tmp/fake-repo")

    async def prepare(self, **kwargs) -> None:
        self.prepared = kwargs

    async def resolve_commit(self, commit_id: str) -> GitCommit:
        return self.commits[commit_id]

    async def log(self, from_ref: str, excluding_ref: str | None = None) -> list[GitCommit]:
        return list(self.logs.get((from_ref, excluding_ref), []))

    async def cherry_pick(self, commit: GitCommit) -> bool:
        self.cherry_picked.append(commit.id)
        return commit.id not in self.conflicts

    async def commit(self, message, author_name, author_email, author_date, committer_name, committer_email):
        new_id = f"{next(self._ids):040x}"
        self.committed.append(
            {
                "id": new_id,
                "message": message,
                "author_name": author_name,
                "author_email": author_email,
                "author_date": author_date,
                "committer_name": committer_name,
                "committer_email": committer_email,
            }
        )
        commit = GitCommit(
            id=new_id,
            short_message=message.split("\n", 1)[0],
            full_message=message,
            author_name=author_name,
            author_email=author_email,
            author_date=author_date,
            committer_name=committer_name,
            committer_email=committer_email,
        )
        self.commits[new_id] = commit
        return commit

    async def push(self, remote: str, branch: str | None = None) -> None:
        self.pushed.append(remote)

    async def reset_hard(self) -> None:
        self.resets += 1

    async def get_changed_files(self, commit: GitCommit) -> set[str]:
        return set(self.changed_files.get(commit.id, set()))


class FakeIssueTracker(IssueTracker):
    """In-memory tracker recording every mutating call."""

    def __init__(self, project_key: str, issues: list[Issue] = ()) -> None:
        self.project_key = project_key
        self.issues = {issue.key: issue.model_copy(deep=True) for issue in issues}
        self.created: list[dict] = []
        self.labels_added: list[tuple[str, tuple[str, ...]]] = []
        self.target_releases: list[tuple[str, str]] = []
        self.transitions: list[tuple[str, IssueState]] = []
        self.links: list[tuple[str, str, str]] = []
        self._ids = itertools.count(1000)

    async def get_issue(self, key: str) -> Issue:
        return self.issues[key]

    async def load_project_issues(self) -> list[Issue]:
        return [issue.model_copy(deep=True) for issue in self.issues.values()]

    async def create_issue(self, summary, description, issue_type, assignee, upstream_link_text, target_release, labels):
        key = f"{self.project_key}-{next(self._ids)}"
        self.created.append(
            {
                "key": key,
                "summary": summary,
                "description": description,
                "issue_type": issue_type,
                "assignee": assignee,
                "upstream_link_text": upstream_link_text,
                "target_release": target_release,
                "labels": list(labels),
            }
        )
        issue = Issue(
            key=key,
            type=issue_type,
            state=IssueState.NEW,
            summary=summary,
            description=description,
            assignee=assignee,
            labels=list(labels),
            target_release=target_release,
        )
        self.issues[key] = issue
        return issue.model_copy(deep=True)

    async def clone_issue(self, source_key: str, target_release: str) -> Issue:
        source = self.issues[source_key]
        return await self.create_issue(
            source.summary, source.description, source.type, source.assignee, "", target_release, source.labels
        )

    async def add_labels(self, key: str, *labels: str) -> None:
        self.labels_added.append((key, labels))

    async def set_target_release(self, key: str, release: str) -> None:
        self.target_releases.append((key, release))

    async def transition_issue(self, key: str, target_state: IssueState) -> None:
        self.transitions.append((key, target_state))

    async def link_issue(self, key: str, other_key: str, link_type: str) -> None:
        self.links.append((key, other_key, link_type))


class TriageHarness:
    """Wire a CommitProcessor to fakes."""

    def __init__(
        self,
        release: str = "7.11.0.CR1",
        upstream_issues: list[Issue] = (),
        downstream_issues: list[Issue] = (),
        commits: list[GitCommit] = (),
        users: list[User] = (),
        scratch: bool = False,
        **policy_fields,
    ) -> None:
        self.policy = TriagePolicy(
            candidate_release=ReleaseVersion.parse(release),
            upstream_issue_pattern=re.compile(r"ARTEMIS-[0-9]+"),
            **policy_fields,
        )
        self.repository = FakeGitRepository(commits)
        self.upstream_tracker = FakeIssueTracker("ARTEMIS", upstream_issues)
        self.downstream_tracker = FakeIssueTracker("ENTMQBR", downstream_issues)
        self.registry = IssueRegistry()
        self.registry.load(
            [issue.model_copy(deep=True) for issue in upstream_issues],
            [issue.model_copy(deep=True) for issue in downstream_issues],
        )
        self.index = CherryPickIndex()
        self.resolver = AssigneeResolver(UserResolver(users), "defaultuser")
        self.confirmed: dict = {}
        self.executor = TaskExecutor(
            repository=self.repository,
            upstream_tracker=self.upstream_tracker,
            downstream_tracker=self.downstream_tracker,
            registry=self.registry,
            cherry_pick_index=self.index,
            assignee_resolver=self.resolver,
            policy=self.policy,
            scratch=scratch,
        )
        self.processor = CommitProcessor(
            repository=self.repository,
            registry=self.registry,
            cherry_pick_index=self.index,
            executor=self.executor,
            assignee_resolver=self.resolver,
            policy=self.policy,
            confirmed_commits=self.confirmed,
        )


@pytest.fixture
def temp_state_dir(tmp_path: Path) -> Path:
    """Temporary state directory."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def state_manager(temp_state_dir: Path) -> RunStateManager:
    """RunStateManager instance with temp directory."""
    return RunStateManager(temp_state_dir)


@pytest.fixture
def upstream_commit() -> GitCommit:
    return make_commit("a", "ARTEMIS-1234 Fix leak")


@pytest.fixture
def sample_users() -> list[User]:
    return [
        User(
            username="jdoe",
            upstream_username="jdoe-apache",
            downstream_username="jdoe@redhat.com",
            emails=["jdoe@apache.org", "jdoe@redhat.com"],
        ),
        User(
            username="defaultuser",
            upstream_username="default-apache",
            downstream_username="default@redhat.com",
            emails=["default@redhat.com"],
        ),
    ]


@pytest.fixture
def sample_config_file(tmp_path: Path) -> Path:
    """A complete YAML configuration."""
    config = tmp_path / "release-triage.yaml"
    config.write_text(
        f"""
repository:
  directory: {tmp_path / "repo"}
  downstream_url: https://github.com/rh-messaging/activemq-artemis.git
  upstream_url: https://github.com/apache/activemq-artemis.git
  midstream_branch: 2.28.0.jbossorg-x

upstream_tracker:
  base_url: https://issues.apache.org/jira/rest/api/2
  project_key: ARTEMIS
  browse_url: https://issues.apache.org/jira/browse/

downstream_tracker:
  base_url: https://issues.redhat.com/rest/api/2
  project_key: ENTMQBR
  # auth_string: Bearer ${{DOWNSTREAM_TOKEN}}
  auth_string: Bearer ${{TRIAGE_TEST_TOKEN:-secret}}
  parse_custom_fields: true

policy:
  customer_priority: high

run:
  release: 7.11.0
  qualifier: CR1
  assignee: defaultuser
  state_directory: {tmp_path / "state"}
"""
    )
    return config


@pytest.fixture
def commit_factory():
    """Factory for GitCommit objects."""
    return make_commit


@pytest.fixture
def issue_factory():
    """Factory for Issue objects with bug/new defaults."""
    return make_issue


@pytest.fixture
def triage_harness():
    """Factory wiring a CommitProcessor to in-memory fakes."""
    return TriageHarness


@pytest.fixture
def fake_repository_factory():
    return FakeGitRepository


@pytest.fixture
def fake_tracker_factory():
    return FakeIssueTracker
