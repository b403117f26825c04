"""Git commit model.

Commits are owned by the git collaborator; the triage engine only reads
them.

Example:
    >>> commit = GitCommit(
    ...     id="0123456789abcdef0123456789abcdef01234567",
    ...     short_message="ARTEMIS-1234 Fix leak",
    ...     full_message="ARTEMIS-1234 Fix leak\\n\\nDetails",
    ...     author_name="Jane Doe",
    ...     author_email="jdoe@example.com",
    ...     author_date="2024-05-02T10:11:12+02:00",
    ...     committer_name="Jane Doe",
    ...     committer_email="jdoe@example.com",
    ... )
    >>> commit.abbreviated_id
    '0123456789ab'
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class GitCommit:
    """An immutable git commit.

    Attributes:
        id: Full 40-hex commit id
        short_message: First line of the commit message
        full_message: Complete commit message
        author_name: Author display name
        author_email: Author email address
        author_date: Author timestamp in ISO 8601 with its original offset
        committer_name: Committer display name
        committer_email: Committer email address
    """

    id: str
    short_message: str
    full_message: str
    author_name: str
    author_email: str
    author_date: str
    committer_name: str
    committer_email: str

    @property
    def abbreviated_id(self) -> str:
        return self.id[:12]
