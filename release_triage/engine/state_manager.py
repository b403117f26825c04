"""
Persisted run state.

A triage run reads and writes a handful of files in its state directory.
They make a run resumable: issue snapshots avoid reloading both trackers,
and the commit records written by one run are fed back into the next one
as the confirmation oracle.

State Directory Layout::

    target/
    ├── users.json               # user directory
    ├── upstream-issues.json     # upstream issue snapshot
    ├── downstream-issues.json   # downstream issue snapshot
    ├── commits.json             # commits requiring attention or newly completed
    └── payload.csv              # report, see release_triage.engine.report

Every file is written atomically: content goes to a ``.tmp`` file that is
then renamed over the target.

Example:
    >>> state = RunStateManager("target")
    >>> users = await state.load_users()
    >>> await state.save_commits(commits)
"""

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any, TypeVar

import aiofiles
import structlog
from pydantic import TypeAdapter, ValidationError

from release_triage.exceptions import StateError
from release_triage.models.domain import Commit, CommitState, Issue, User

log = structlog.get_logger(__name__)

T = TypeVar("T")

USERS_FILE = "users.json"
UPSTREAM_ISSUES_FILE = "upstream-issues.json"
DOWNSTREAM_ISSUES_FILE = "downstream-issues.json"
COMMITS_FILE = "commits.json"
PAYLOAD_FILE = "payload.csv"

_USERS = TypeAdapter(list[User])
_ISSUES = TypeAdapter(list[Issue])
_COMMITS = TypeAdapter(list[Commit])


def requires_attention(commit: Commit) -> bool:
    """Commits worth persisting: unfinished ones and those changed by this run."""
    if commit.state not in (CommitState.SKIPPED, CommitState.DONE):
        return True
    return commit.state == CommitState.DONE and any(task.executed for task in commit.tasks)


class RunStateManager:
    """Read and write the files of a run's state directory."""

    def __init__(self, state_dir: str | Path) -> None:
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def path(self, name: str) -> Path:
        return self.state_dir / name

    async def _read(self, path: Path, adapter: TypeAdapter[T]) -> T:
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
            return adapter.validate_json(content)
        except ValidationError as e:
            raise StateError(f"Malformed state file {path}: {e}") from e
        except OSError as e:
            raise StateError(f"Cannot read state file {path}: {e}") from e

    async def _write(self, path: Path, content: str) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")

        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(content)

        # Atomic rename - safe on POSIX when same filesystem
        tmp_path.replace(path)

    async def _write_json(self, path: Path, adapter: TypeAdapter[Any], items: Any) -> None:
        data = adapter.dump_python(items, mode="json")
        await self._write(path, json.dumps(data, indent=2))
        log.debug("state_written", path=str(path))

    async def load_users(self) -> list[User]:
        """Users known to the run; an empty directory when the file is missing."""
        path = self.path(USERS_FILE)
        if not path.exists():
            log.info("users_file_missing", path=str(path))
            return []
        return await self._read(path, _USERS)

    async def load_issue_snapshot(self, upstream: bool) -> list[Issue] | None:
        """Issues from a previous run, or None when no snapshot exists."""
        path = self.path(UPSTREAM_ISSUES_FILE if upstream else DOWNSTREAM_ISSUES_FILE)
        if not path.exists():
            return None

        issues = await self._read(path, _ISSUES)
        log.info("issue_snapshot_loaded", path=str(path), issues=len(issues))
        return issues

    async def save_issue_snapshot(self, upstream: bool, issues: Iterable[Issue]) -> None:
        path = self.path(UPSTREAM_ISSUES_FILE if upstream else DOWNSTREAM_ISSUES_FILE)
        await self._write_json(path, _ISSUES, list(issues))

    async def save_commits(self, commits: Iterable[Commit]) -> list[Commit]:
        """Persist the commits requiring attention and return them."""
        selected = [commit for commit in commits if requires_attention(commit)]
        await self._write_json(self.path(COMMITS_FILE), _COMMITS, selected)
        log.info("commits_saved", commits=len(selected))
        return selected

    async def load_confirmed_commits(self, path: str | Path) -> dict[str, Commit]:
        """Read a prior run's commits, keyed by upstream commit id.

        Raises:
            StateError: If the file is missing or malformed
        """
        commits = await self._read(Path(path), _COMMITS)
        log.info("confirmed_commits_loaded", path=str(path), commits=len(commits))
        return {commit.upstream_commit: commit for commit in commits}

    async def save_payload(self, content: str) -> Path:
        path = self.path(PAYLOAD_FILE)
        await self._write(path, content)
        return path
