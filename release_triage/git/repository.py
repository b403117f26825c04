"""Git repository operations used by a triage run.

``GitRepository`` is the collaborator interface the engine depends on.
``CliGitRepository`` implements it on a local working clone: history is read
through GitPython, and every operation that changes the repository (clone,
fetch, cherry-pick, commit, push, reset) runs the git CLI so hooks, config
and credential helpers behave exactly as they do for a developer.

Thread Safety:
    A repository instance is driven by one triage loop at a time. GitPython
    reads are pushed to a worker thread so the event loop stays responsive.
"""

import asyncio
import os
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

import structlog

try:
    import git
    from git.exc import BadName, InvalidGitRepositoryError, NoSuchPathError
except ImportError as e:
    raise ImportError("GitPython is required for repository access. Install it with: pip install gitpython") from e

from release_triage.exceptions import GitOperationError
from release_triage.git.models import GitCommit
from release_triage.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)


class GitRepository(ABC):
    """Contract of the git collaborator.

    ``log`` returns commits newest first, like ``git log``. ``cherry_pick``
    applies a commit to the index and working tree without committing; the
    caller decides whether to ``commit`` or ``reset_hard``.
    """

    @abstractmethod
    async def resolve_commit(self, commit_id: str) -> GitCommit:
        """Resolve a commit id or ref to a commit."""
        pass

    @abstractmethod
    async def log(self, from_ref: str, excluding_ref: str | None = None) -> list[GitCommit]:
        """Commits reachable from ``from_ref`` but not from ``excluding_ref``."""
        pass

    @abstractmethod
    async def cherry_pick(self, commit: GitCommit) -> bool:
        """Apply a commit without committing.

        Returns:
            True if the change applied cleanly, False on conflicts
        """
        pass

    @abstractmethod
    async def commit(
        self,
        message: str,
        author_name: str,
        author_email: str,
        author_date: str,
        committer_name: str,
        committer_email: str,
    ) -> GitCommit:
        """Commit the index with explicit author and committer identities."""
        pass

    @abstractmethod
    async def push(self, remote: str, branch: str | None = None) -> None:
        pass

    @abstractmethod
    async def reset_hard(self) -> None:
        """Discard index and working tree changes, aborting any cherry-pick."""
        pass

    @abstractmethod
    async def get_changed_files(self, commit: GitCommit) -> set[str]:
        pass

    @property
    @abstractmethod
    def directory(self) -> Path:
        """Root of the working tree."""
        pass

    async def prepare(
        self,
        downstream_url: str,
        upstream_url: str,
        upstream_branch: str,
        midstream_branch: str,
        downstream_remote: str = "origin",
        upstream_remote: str = "upstream",
    ) -> None:
        """Bring the working tree to the midstream branch before a run."""
        return None


class CliGitRepository(GitRepository):
    """Working clone driven by the git CLI and read through GitPython.

    Example:
        >>> repository = CliGitRepository("target/repo")
        >>> await repository.prepare(
        ...     downstream_url="https://github.com/rh-messaging/activemq-artemis.git",
        ...     upstream_url="https://github.com/apache/activemq-artemis.git",
        ...     upstream_branch="main",
        ...     midstream_branch="2.28.0.jbossorg-x",
        ... )
    """

    def __init__(self, repo_path: str | Path) -> None:
        self.repo_path = Path(repo_path).resolve()
        self._repo: git.Repo | None = None

    @property
    def directory(self) -> Path:
        return self.repo_path

    def _get_repo(self) -> git.Repo:
        if self._repo is None:
            try:
                self._repo = git.Repo(self.repo_path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise GitOperationError(f"Not a git repository: {self.repo_path}") from e
        return self._repo

    async def _git(self, *args: str, check: bool = True, env: dict[str, str] | None = None) -> tuple[str, int]:
        """Run a git command in the working clone."""
        try:
            stdout, stderr, code = await run_command(
                "git",
                *args,
                cwd=self.repo_path,
                check=check,
                env=env,
            )
        except subprocess.CalledProcessError as e:
            raise GitOperationError("Git command failed", command=list(args), stderr=e.stderr) from e

        if code != 0:
            log.debug("git_command_nonzero", args=list(args), code=code, stderr=stderr.strip())
        return stdout, code

    async def prepare(
        self,
        downstream_url: str,
        upstream_url: str,
        upstream_branch: str,
        midstream_branch: str,
        downstream_remote: str = "origin",
        upstream_remote: str = "upstream",
    ) -> None:
        """Clone or refresh the working clone and check out the midstream branch.

        The midstream branch is recreated from its remote tracking branch so
        leftovers of an aborted run never leak into a new one.
        """
        if (self.repo_path / ".git").exists():
            log.info("repository_refresh", path=str(self.repo_path))
            await self._git("fetch", downstream_remote)
            await self._git("fetch", upstream_remote)
        else:
            log.info("repository_clone", url=downstream_url, path=str(self.repo_path))
            self.repo_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                await run_command("git", "clone", "--origin", downstream_remote, downstream_url, str(self.repo_path))
            except subprocess.CalledProcessError as e:
                raise GitOperationError("Git clone failed", command=["clone", downstream_url], stderr=e.stderr) from e
            await self._git("remote", "add", upstream_remote, upstream_url)
            await self._git("fetch", upstream_remote)

        self._repo = None
        await self.reset_hard()
        await self._git("checkout", "--detach", f"{upstream_remote}/{upstream_branch}")
        await self._git("branch", "--force", midstream_branch, f"{downstream_remote}/{midstream_branch}")
        await self._git("checkout", midstream_branch)

    async def resolve_commit(self, commit_id: str) -> GitCommit:
        def resolve() -> GitCommit:
            try:
                return self._to_git_commit(self._get_repo().commit(commit_id))
            except (BadName, ValueError) as e:
                raise GitOperationError(f"Commit not found: {commit_id}") from e

        return await asyncio.to_thread(resolve)

    async def log(self, from_ref: str, excluding_ref: str | None = None) -> list[GitCommit]:
        rev = f"{excluding_ref}..{from_ref}" if excluding_ref else from_ref

        def walk() -> list[GitCommit]:
            try:
                return [self._to_git_commit(c) for c in self._get_repo().iter_commits(rev)]
            except git.GitCommandError as e:
                raise GitOperationError("Git log failed", command=["log", rev], stderr=str(e.stderr)) from e

        commits = await asyncio.to_thread(walk)
        log.info("git_log", rev=rev, count=len(commits))
        return commits

    async def cherry_pick(self, commit: GitCommit) -> bool:
        log.info("cherry_pick", commit=commit.id, summary=commit.short_message)
        _, code = await self._git("cherry-pick", "--no-commit", commit.id, check=False)
        return code == 0

    async def commit(
        self,
        message: str,
        author_name: str,
        author_email: str,
        author_date: str,
        committer_name: str,
        committer_email: str,
    ) -> GitCommit:
        env = dict(os.environ)
        env["GIT_COMMITTER_NAME"] = committer_name
        env["GIT_COMMITTER_EMAIL"] = committer_email

        await self._git(
            "commit",
            "--no-verify",
            "--allow-empty",
            "--message",
            message,
            "--author",
            f"{author_name} <{author_email}>",
            "--date",
            author_date,
            env=env,
        )
        stdout, _ = await self._git("rev-parse", "HEAD")
        return await self.resolve_commit(stdout.strip())

    async def push(self, remote: str, branch: str | None = None) -> None:
        args = ["push", remote]
        if branch:
            args.append(branch)
        log.info("git_push", remote=remote, branch=branch)
        await self._git(*args)

    async def reset_hard(self) -> None:
        await self._git("cherry-pick", "--abort", check=False)
        await self._git("reset", "--hard", "HEAD")

    async def get_changed_files(self, commit: GitCommit) -> set[str]:
        def changed() -> set[str]:
            return set(self._get_repo().commit(commit.id).stats.files.keys())

        return await asyncio.to_thread(changed)

    @staticmethod
    def _to_git_commit(commit: "git.Commit") -> GitCommit:
        message = commit.message if isinstance(commit.message, str) else commit.message.decode("utf-8", "replace")
        summary = commit.summary if isinstance(commit.summary, str) else commit.summary.decode("utf-8", "replace")
        return GitCommit(
            id=commit.hexsha,
            short_message=summary,
            full_message=message.rstrip("\n"),
            author_name=commit.author.name or "",
            author_email=commit.author.email or "",
            author_date=commit.authored_datetime.isoformat(),
            committer_name=commit.committer.name or "",
            committer_email=commit.committer.email or "",
        )
