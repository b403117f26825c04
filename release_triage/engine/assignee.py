"""Resolve the person responsible for a commit.

Users are identified by several handles: commit email addresses, an upstream
tracker username and a downstream tracker username. ``UserResolver`` indexes
a user directory by each handle; ``AssigneeResolver`` walks the commit and
issue participants in priority order and falls back to a default user.
"""

from collections.abc import Iterable

import structlog

from release_triage.git.models import GitCommit
from release_triage.models.domain import Issue, User

log = structlog.get_logger(__name__)


class UserResolver:
    """Lookup of users by email address or tracker username."""

    def __init__(self, users: Iterable[User]) -> None:
        self.users = list(users)
        self._by_username: dict[str, User] = {}
        self._by_email: dict[str, User] = {}
        self._by_upstream_username: dict[str, User] = {}
        self._by_downstream_username: dict[str, User] = {}

        for user in self.users:
            self._by_username[user.username] = user
            for email in user.emails:
                self._by_email[email.lower()] = user
            if user.upstream_username:
                self._by_upstream_username[user.upstream_username] = user
            if user.downstream_username:
                self._by_downstream_username[user.downstream_username] = user

    def get_user_from_username(self, username: str | None) -> User | None:
        if not username:
            return None
        return self._by_username.get(username)

    def get_user_from_email_address(self, email: str | None) -> User | None:
        if not email:
            return None
        return self._by_email.get(email.lower())

    def get_user_from_upstream_username(self, username: str | None) -> User | None:
        if not username:
            return None
        return self._by_upstream_username.get(username)

    def get_user_from_downstream_username(self, username: str | None) -> User | None:
        if not username:
            return None
        return self._by_downstream_username.get(username)


class AssigneeResolver:
    """Pick the assignee of a commit.

    Candidates are tried in order: commit author email, committer email,
    upstream issue assignee/reporter/creator, then assignee/reporter/creator
    of each selected downstream issue. The first known user wins.
    """

    def __init__(self, user_resolver: UserResolver, default_assignee: str) -> None:
        self.user_resolver = user_resolver

        default_user = user_resolver.get_user_from_username(default_assignee)
        if default_user is None:
            log.warning("default_assignee_not_found", username=default_assignee)
            default_user = User(username=default_assignee, downstream_username=default_assignee)
        self.default_assignee = default_user

    def get_assignee(
        self,
        upstream_commit: GitCommit,
        upstream_issue: Issue | None,
        downstream_issues: Iterable[Issue] | None,
    ) -> User:
        resolver = self.user_resolver

        for email in (upstream_commit.author_email, upstream_commit.committer_email):
            user = resolver.get_user_from_email_address(email)
            if user is not None:
                return user

        if upstream_issue is not None:
            for username in (upstream_issue.assignee, upstream_issue.reporter, upstream_issue.creator):
                user = resolver.get_user_from_upstream_username(username)
                if user is not None:
                    return user

        for downstream_issue in downstream_issues or ():
            for username in (downstream_issue.assignee, downstream_issue.reporter, downstream_issue.creator):
                user = resolver.get_user_from_downstream_username(username)
                if user is not None:
                    return user

        return self.default_assignee

    def get_downstream_username(self, username: str | None) -> str | None:
        """Downstream tracker username of a resolved assignee."""
        user = self.user_resolver.get_user_from_username(username)
        if user is None:
            if username == self.default_assignee.username:
                return self.default_assignee.downstream_username
            return username
        return user.downstream_username or user.username
