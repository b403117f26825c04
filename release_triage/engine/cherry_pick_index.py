"""Index of upstream commits already cherry-picked downstream.

The index is built once per run from the downstream (midstream) branch
history and maps an upstream commit id to the release it was cherry-picked
under and the resulting downstream commit. The task executor adds an entry
whenever it commits a new cherry-pick, so later commits of the same run see
it.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from release_triage.git.models import GitCommit
from release_triage.git.repository import GitRepository
from release_triage.models.release import ReleaseVersion

log = structlog.get_logger(__name__)

PREPARE_RELEASE_PATTERN = re.compile(r"Prepare release ([0-9]+\.[0-9]+\.[0-9]+.[0-9A-Za-z]+)")
CHERRY_PICKED_PATTERN = re.compile(r"cherry picked from commit ([0-9a-f]{40})")

# Release commits of the 7.8 line predate the "Prepare release" convention.
LEGACY_RELEASE_PREFIX = "7.8."


@dataclass(frozen=True)
class CherryPickEntry:
    """Where an upstream commit landed downstream."""

    release_version: ReleaseVersion
    downstream_commit: GitCommit


class CherryPickIndex:
    """Mapping of upstream commit id to ``CherryPickEntry``."""

    def __init__(self) -> None:
        self._entries: dict[str, CherryPickEntry] = {}

    def get(self, upstream_commit_id: str) -> CherryPickEntry | None:
        return self._entries.get(upstream_commit_id)

    def put(self, upstream_commit_id: str, release_version: ReleaseVersion, downstream_commit: GitCommit) -> None:
        self._entries[upstream_commit_id] = CherryPickEntry(release_version, downstream_commit)

    def __contains__(self, upstream_commit_id: object) -> bool:
        return upstream_commit_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> dict[str, CherryPickEntry]:
        return dict(self._entries)

    @classmethod
    async def build(
        cls,
        repository: GitRepository,
        downstream_ref: str,
        upstream_ref: str,
        upstream_commits: Iterable[GitCommit],
        candidate_release: ReleaseVersion,
    ) -> "CherryPickIndex":
        """Scan the downstream history for cherry-picked upstream commits.

        The history is walked newest first. Commits newer than the latest
        release preparation belong to the candidate release; each
        "Prepare release" commit switches the release for the older ones.
        A trailer that references an upstream commit missing from
        ``upstream_commits`` is matched by identical summary instead.

        Args:
            repository: Working clone with both remotes fetched
            downstream_ref: Downstream branch, e.g. ``origin/2.28.0.jbossorg-x``
            upstream_ref: Upstream branch, e.g. ``upstream/main``
            upstream_commits: Upstream commits of the run
            candidate_release: Release for commits after the last preparation
        """
        index = cls()
        upstream_by_id = {commit.id: commit for commit in upstream_commits}
        upstream_by_summary: dict[str, GitCommit] = {}
        for commit in upstream_by_id.values():
            upstream_by_summary.setdefault(commit.short_message, commit)

        release = candidate_release
        for downstream_commit in await repository.log(downstream_ref, upstream_ref):
            prepare_match = PREPARE_RELEASE_PATTERN.search(downstream_commit.short_message)
            if prepare_match:
                release = ReleaseVersion.parse(prepare_match.group(1))
                log.info("prepare_release_commit", commit=downstream_commit.id, release=str(release))
            elif downstream_commit.short_message.startswith(LEGACY_RELEASE_PREFIX):
                try:
                    release = ReleaseVersion.parse(downstream_commit.short_message)
                    log.info("legacy_release_commit", commit=downstream_commit.id, release=str(release))
                except ValueError:
                    log.warning("legacy_release_unparsable", commit=downstream_commit.id)

            cherry_pick_match = CHERRY_PICKED_PATTERN.search(downstream_commit.full_message)
            if cherry_pick_match is None:
                continue

            upstream_commit_id = cherry_pick_match.group(1)
            if upstream_commit_id not in upstream_by_id:
                upstream_commit = upstream_by_summary.get(downstream_commit.short_message)
                if upstream_commit is None:
                    log.debug(
                        "cherry_picked_commit_not_upstream",
                        downstream_commit=downstream_commit.id,
                        upstream_commit=upstream_commit_id,
                    )
                    continue
                log.warning(
                    "cherry_picked_commit_matched_by_summary",
                    downstream_commit=downstream_commit.id,
                    recorded_upstream_commit=upstream_commit_id,
                    upstream_commit=upstream_commit.id,
                )
                upstream_commit_id = upstream_commit.id

            # Newest first, so an older cherry-pick of the same commit wins.
            index.put(upstream_commit_id, release, downstream_commit)

        log.info("cherry_pick_index_built", entries=len(index))
        return index
