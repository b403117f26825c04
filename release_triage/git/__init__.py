"""Git collaborator: commit model and repository operations.

Example:
    >>> from release_triage.git import CliGitRepository
    >>> repository = CliGitRepository("target/repo")
    >>> commits = await repository.log("upstream/main", "origin/7.11.x")
"""

from release_triage.git.models import GitCommit
from release_triage.git.repository import CliGitRepository, GitRepository

__all__ = [
    "GitCommit",
    "GitRepository",
    "CliGitRepository",
]
