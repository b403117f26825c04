"""
Abstract issue tracker interface.

One tracker instance serves one project (the upstream project or the
downstream one). Implementations normalize tracker-specific payloads into
the ``Issue`` domain model; the triage engine never sees wire formats.
"""

from abc import ABC, abstractmethod

from release_triage.models.domain import Issue, IssueState, IssueType


class IssueTracker(ABC):
    """Contract of the issue tracker collaborator.

    All methods are async to support non-blocking I/O with HTTP clients.
    Mutating methods act on the remote tracker only; keeping the in-memory
    IssueRegistry consistent is the caller's job.
    """

    project_key: str

    @abstractmethod
    async def get_issue(self, key: str) -> Issue:
        """Fetch a single issue.

        Raises:
            ExternalServiceError: If the issue cannot be fetched
        """
        pass

    @abstractmethod
    async def load_project_issues(self) -> list[Issue]:
        """Fetch every issue of the project.

        Raises:
            IssueLoadError: If the number of fetched issues differs from the
                total reported by the tracker
        """
        pass

    @abstractmethod
    async def create_issue(
        self,
        summary: str,
        description: str | None,
        issue_type: IssueType,
        assignee: str | None,
        upstream_link_text: str,
        target_release: str,
        labels: list[str],
    ) -> Issue:
        """Create an issue and return it as stored by the tracker."""
        pass

    @abstractmethod
    async def clone_issue(self, source_key: str, target_release: str) -> Issue:
        """Copy an issue with a new target release and a ``Cloners`` link."""
        pass

    @abstractmethod
    async def add_labels(self, key: str, *labels: str) -> None:
        """Add labels, keeping the existing ones."""
        pass

    @abstractmethod
    async def set_target_release(self, key: str, release: str) -> None:
        pass

    @abstractmethod
    async def transition_issue(self, key: str, target_state: IssueState) -> None:
        """Move an issue forward through the workflow until it reaches ``target_state``."""
        pass

    @abstractmethod
    async def link_issue(self, key: str, other_key: str, link_type: str) -> None:
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
