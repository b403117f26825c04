"""Issue trackers and the in-memory issue registry."""

from release_triage.issues.base import IssueTracker
from release_triage.issues.jira import JiraIssueTracker
from release_triage.issues.registry import IssueRegistry, IssueStore

__all__ = [
    "IssueTracker",
    "JiraIssueTracker",
    "IssueRegistry",
    "IssueStore",
]
