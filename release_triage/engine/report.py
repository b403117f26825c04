"""CSV report of a triage run.

The report lists the commits cherry-picked for the candidate release first,
then every commit that still requires attention.
"""

import csv
import io
from collections.abc import Iterable

from release_triage.models.domain import Commit, CommitState
from release_triage.models.release import ReleaseVersion

HEADERS = [
    "state",
    "release",
    "commit",
    "author",
    "summary",
    "upstreamIssue",
    "downstreamIssues",
    "upstreamTestCoverage",
]


def _in_release(commit: Commit, candidate_release: ReleaseVersion) -> bool:
    if commit.state != CommitState.DONE or commit.downstream_commit is None or not commit.release_version:
        return False
    try:
        release_version = ReleaseVersion.parse(commit.release_version)
    except ValueError:
        return False
    return candidate_release.compare_without_qualifier(release_version) == 0


def _needs_attention(commit: Commit) -> bool:
    if commit.state not in (CommitState.SKIPPED, CommitState.DONE):
        return True
    return commit.state == CommitState.DONE and len(commit.tasks) > 0


def report_rows(commits: Iterable[Commit], candidate_release: ReleaseVersion) -> list[list[str]]:
    commits = list(commits)
    rows = []
    for commit in [c for c in commits if _in_release(c, candidate_release)] + [
        c for c in commits if _needs_attention(c)
    ]:
        rows.append(
            [
                commit.state.name,
                commit.release_version or "",
                commit.upstream_commit,
                commit.author or "",
                commit.summary,
                commit.upstream_issue or "",
                ",".join(commit.downstream_issues),
                str(commit.has_test_coverage).lower(),
            ]
        )
    return rows


def render_report(commits: Iterable[Commit], candidate_release: ReleaseVersion) -> str:
    """Render the report as CSV text with a header row."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(HEADERS)
    writer.writerows(report_rows(commits, candidate_release))
    return buffer.getvalue()
