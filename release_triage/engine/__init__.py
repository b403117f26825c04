"""Commit triage engine.

This package decides, commit by commit, what a downstream release branch
needs from the upstream history, and performs the approved remediations.

Key Components:
    - CommitProcessor: Per-commit triage decisions
    - TaskExecutor: Cherry-picks and downstream issue mutations
    - CherryPickIndex: Upstream commits already on the midstream branch
    - AssigneeResolver: Responsible person of a commit
    - RunStateManager: Persisted users, issue snapshots and commits
    - TriageOrchestrator: A complete run from clone to report

Example:
    >>> from release_triage.engine import TriageOrchestrator
    >>> orchestrator = TriageOrchestrator(settings, repository, upstream, downstream, state)
    >>> commits = await orchestrator.run()
"""

from release_triage.engine.assignee import AssigneeResolver, UserResolver
from release_triage.engine.cherry_pick_index import CherryPickEntry, CherryPickIndex
from release_triage.engine.executor import TaskExecutor
from release_triage.engine.orchestrator import TriageOrchestrator
from release_triage.engine.processor import CommitProcessor
from release_triage.engine.state_manager import RunStateManager
from release_triage.engine.triage import TriagePolicy

__all__ = [
    "AssigneeResolver",
    "CherryPickEntry",
    "CherryPickIndex",
    "CommitProcessor",
    "RunStateManager",
    "TaskExecutor",
    "TriageOrchestrator",
    "TriagePolicy",
    "UserResolver",
]
