"""Git backend for the committer.

Drives the ``git`` executable through ``subprocess`` (argument lists,
never a shell).  Only the primitives the engine needs are exposed:
staging, atomic commit, history inspection, revert and index reset.

Every failure -- non-zero exit, timeout, missing binary -- is raised as
``VersionControlError`` carrying git's stderr.  Git itself is
non-corrupting on failure (e.g. ``index.lock`` contention), so callers can
retry once the condition clears.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from pydantic import BaseModel

from gitpress.errors import VersionControlError

logger = logging.getLogger(__name__)

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"


class CommitRecord(BaseModel):
    """One commit as listed by ``GitBackend.history()``."""

    commit_id: str
    message: str

    model_config = {"frozen": True}

    @property
    def headline(self) -> str:
        return self.message.split("\n", 1)[0]


class GitBackend:
    """Run git commands against the repository at *repo_dir*.

    Args:
        repo_dir: Working tree root.
        author_name: Author/committer name for engine commits.
        author_email: Author/committer email for engine commits.
        timeout: Seconds before a single git command is abandoned.
    """

    def __init__(
        self,
        repo_dir: Path,
        author_name: str = "gitpress",
        author_email: str = "gitpress@localhost",
        timeout: float = 30.0,
    ) -> None:
        self.repo_dir = Path(repo_dir)
        self.author_name = author_name
        self.author_email = author_email
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Command runner
    # ------------------------------------------------------------------

    def _run(
        self,
        *args: str,
        input_text: str | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [
            "git",
            "-c",
            f"user.name={self.author_name}",
            "-c",
            f"user.email={self.author_email}",
            "-c",
            "core.quotepath=off",
            *args,
        ]
        try:
            result = subprocess.run(
                command,
                cwd=str(self.repo_dir),
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise VersionControlError(
                f"git {args[0]} timed out after {self.timeout}s", command
            ) from exc
        except FileNotFoundError as exc:
            raise VersionControlError(
                "git executable not found", command
            ) from exc

        if check and result.returncode != 0:
            raise VersionControlError(
                f"git {args[0]} failed with exit code {result.returncode}",
                command,
                result.stderr,
            )
        return result

    # ------------------------------------------------------------------
    # Repository setup
    # ------------------------------------------------------------------

    def is_repository(self) -> bool:
        return (self.repo_dir / ".git").exists()

    def ensure_repository(self) -> bool:
        """Initialise the repository if needed.

        Returns:
            ``True`` if a new repository was created.
        """
        self.repo_dir.mkdir(parents=True, exist_ok=True)
        if self.is_repository():
            return False
        self._run("init", "-q")
        logger.info("Initialised git repository in %s", self.repo_dir)
        return True

    @property
    def git_dir(self) -> Path:
        return self.repo_dir / ".git"

    # ------------------------------------------------------------------
    # Staging and committing
    # ------------------------------------------------------------------

    def stage_all(self) -> None:
        """Stage every change in the working tree (adds, edits, deletes)."""
        self._run("add", "-A")

    def stage(self, paths: list[str]) -> None:
        """Stage changes to *paths* only, including deletions.

        Paths that neither exist nor are tracked are skipped, since git
        rejects them as unmatched pathspecs.
        """
        if not paths:
            return
        tracked = self._tracked(paths)
        existing = [
            p for p in paths if p in tracked or (self.repo_dir / p).exists()
        ]
        if existing:
            self._run("add", "-A", "--", *existing)

    def _tracked(self, paths: list[str]) -> set[str]:
        result = self._run("ls-files", "-z", "--", *paths)
        return {p for p in result.stdout.split("\0") if p}

    def has_staged_changes(self) -> bool:
        result = self._run("diff", "--cached", "--quiet", check=False)
        if result.returncode not in (0, 1):
            raise VersionControlError(
                "git diff --cached failed", ["git", "diff"], result.stderr
            )
        return result.returncode == 1

    def commit(self, message: str) -> str:
        """Record the staged index as one commit and return its id."""
        self._run("commit", "-q", "--no-verify", "-F", "-", input_text=message)
        commit_id = self.head()
        if commit_id is None:
            raise VersionControlError("Commit succeeded but HEAD is unset")
        logger.info("Created commit %s", commit_id[:12])
        return commit_id

    def reset_index(self) -> None:
        """Make the index match ``HEAD`` (or empty it before the first commit)."""
        if self.head() is None:
            self._run("read-tree", "--empty")
        else:
            self._run("read-tree", "HEAD")

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def head(self) -> str | None:
        result = self._run("rev-parse", "--verify", "-q", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def commit_count(self) -> int:
        if self.head() is None:
            return 0
        result = self._run("rev-list", "--count", "HEAD")
        return int(result.stdout.strip())

    def history(self, limit: int | None = None) -> list[CommitRecord]:
        """Return commits newest first."""
        if self.head() is None:
            return []
        args = ["log", f"--format=%H{_FIELD_SEP}%B{_RECORD_SEP}"]
        if limit is not None:
            args.append(f"-n{limit}")
        result = self._run(*args)
        records: list[CommitRecord] = []
        for chunk in result.stdout.split(_RECORD_SEP):
            chunk = chunk.strip("\n")
            if not chunk:
                continue
            commit_id, _, message = chunk.partition(_FIELD_SEP)
            records.append(
                CommitRecord(commit_id=commit_id, message=message.rstrip("\n"))
            )
        return records

    def changed_paths(self, commit_id: str) -> list[str]:
        """Paths touched by *commit_id* (root commits included)."""
        result = self._run(
            "diff-tree", "--no-commit-id", "--name-only", "-r", "--root", commit_id
        )
        return [line for line in result.stdout.splitlines() if line]

    def show_file(self, commit_id: str, path: str) -> bytes | None:
        """Return *path* as of *commit_id*, or ``None`` if absent there."""
        result = subprocess.run(
            ["git", "show", f"{commit_id}:{path}"],
            cwd=str(self.repo_dir),
            capture_output=True,
            timeout=self.timeout,
        )
        if result.returncode != 0:
            return None
        return result.stdout

    def revert(self, commit_id: str, message: str | None = None) -> str:
        """Revert *commit_id* as a new commit and return the new id.

        With *message*, the revert is committed with that message instead
        of git's default ``Revert "..."`` text.
        """
        try:
            if message is None:
                self._run("revert", "--no-edit", commit_id)
            else:
                self._run("revert", "--no-commit", commit_id)
                self._run(
                    "commit", "-q", "--no-verify", "-F", "-", input_text=message
                )
        except VersionControlError:
            self._run("revert", "--abort", check=False)
            raise
        new_id = self.head()
        if new_id is None:
            raise VersionControlError("Revert succeeded but HEAD is unset")
        logger.info("Reverted %s as %s", commit_id[:12], new_id[:12])
        return new_id
