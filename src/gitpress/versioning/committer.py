"""Request-scoped committer: many entity mutations, one commit.

A ``Committer`` lives for exactly one host request.  Storages register
file mutations (and the ``ChangeInfo`` explaining them) as the request
runs; nothing touches the working tree or git until ``commit()`` is
called from the request's teardown path.

State machine::

    idle --register--> accumulating --commit ok / nothing to do--> flushed
                            ^                 |
                            +---- failure ----+

A path's pending state is either whole new content (``register_change``)
or a chain of patches (``register_patch``) that compute the new bytes
from whatever the file holds.  Patches are applied at flush time, over
the file as it is when the lock is held, so two requests that touch
different fields of the same entity both keep their changes.

``commit()`` is a single critical section under the shared commit lock:

1. Snapshot the current bytes of every touched path.
2. Compute and write the final content per path (a full write discards
   earlier patches, paths in first-registration order) and prune kind
   directories left empty.
3. Stage exactly those paths and create one commit.

Any failure in steps 2-3 restores the snapshot, resets the index to
``HEAD`` and re-raises as ``CommitError`` with the pending set intact, so
the host may retry.  There is no automatic retry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from pathlib import PurePosixPath

from gitpress.errors import (
    CommitError,
    CommitterClosedError,
    FileSystemError,
    LockContentionError,
    SerializationError,
    VersionControlError,
)
from gitpress.versioning.backend import GitBackend
from gitpress.versioning.filesystem import LocalFileSystem
from gitpress.versioning.lock import CommitLock
from gitpress.versioning.messages import render_commit_message
from gitpress.versioning.models import ChangeInfo, CommitResult, FileMutation

logger = logging.getLogger(__name__)


class CommitterState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHED = "flushed"


class _NotPending:
    def __repr__(self) -> str:
        return "NOT_PENDING"


#: Returned by ``Committer.pending_content`` for paths with no pending change.
NOT_PENDING = _NotPending()

#: Computes a file's new bytes from its current bytes (``None`` if absent).
FilePatch = Callable[[bytes | None], bytes | None]


class _PendingFile:
    """Pending state of one path: optional full content, then patches."""

    def __init__(self) -> None:
        self.replaced = False
        self.content: bytes | None = None
        self.patches: list[FilePatch] = []

    def replace(self, content: bytes | None) -> None:
        self.replaced = True
        self.content = content
        self.patches.clear()

    def resolve(self, on_disk: bytes | None) -> bytes | None:
        content = self.content if self.replaced else on_disk
        for patch in self.patches:
            content = patch(content)
        return content


class Committer:
    """Accumulate one request's changes and flush them as one commit.

    Args:
        backend: Git backend for the shared repository.
        filesystem: Adapter rooted at the repository's working tree.
        lock_factory: Returns a fresh ``CommitLock`` per commit attempt.
    """

    def __init__(
        self,
        backend: GitBackend,
        filesystem: LocalFileSystem,
        lock_factory: Callable[[], CommitLock],
    ) -> None:
        self._backend = backend
        self._fs = filesystem
        self._lock_factory = lock_factory

        self._state = CommitterState.IDLE
        self._changes: list[tuple[str | None, ChangeInfo | None]] = []
        self._pending: dict[str, _PendingFile] = {}
        self._headline: ChangeInfo | None = None
        self._result: CommitResult | None = None

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> CommitterState:
        return self._state

    @property
    def headline(self) -> ChangeInfo | None:
        return self._headline

    @property
    def change_infos(self) -> list[ChangeInfo]:
        return [info for _, info in self._changes if info is not None]

    @property
    def pending_paths(self) -> list[str]:
        return list(self._pending)

    @property
    def result(self) -> CommitResult | None:
        return self._result

    def pending_content(self, path: str) -> bytes | None | _NotPending:
        """Content *path* would get if the request committed now.

        Pending patches are applied over the current working tree file.
        Returns bytes for a pending write, ``None`` for a pending delete,
        and ``NOT_PENDING`` when this request has not touched *path*.
        """
        entry = self._pending.get(path)
        if entry is None:
            return NOT_PENDING
        on_disk = None if entry.replaced else self._fs.read_bytes(path)
        return entry.resolve(on_disk)

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def register_change(
        self, mutation: FileMutation, change_info: ChangeInfo | None = None
    ) -> None:
        """Append a full file write or delete and the reason for it."""
        self._ensure_open()
        self._changes.append((mutation.path, change_info))
        self._pending.setdefault(mutation.path, _PendingFile()).replace(
            mutation.content
        )
        self._state = CommitterState.ACCUMULATING

    def register_patch(
        self, path: str, patch: FilePatch, change_info: ChangeInfo | None = None
    ) -> None:
        """Append a change computed from the file's content at commit time.

        *patch* receives the file's bytes as they are under the commit
        lock (or as left by this request's earlier changes) and returns
        the new bytes, or ``None`` to delete the file.
        """
        self._ensure_open()
        self._changes.append((path, change_info))
        self._pending.setdefault(path, _PendingFile()).patches.append(patch)
        self._state = CommitterState.ACCUMULATING

    def add_change_info(self, change_info: ChangeInfo) -> None:
        """Append a message line that has no file mutation of its own."""
        self._ensure_open()
        self._changes.append((None, change_info))
        self._state = CommitterState.ACCUMULATING

    def force_change_info(self, change_info: ChangeInfo) -> None:
        """Use *change_info* as the commit headline.  Last call wins."""
        self._ensure_open()
        if self._headline is not None:
            logger.debug(
                "Headline '%s' replaced by '%s'",
                self._headline.describe(),
                change_info.describe(),
            )
        self._headline = change_info

    def _ensure_open(self) -> None:
        if self._state == CommitterState.FLUSHED:
            raise CommitterClosedError(
                "This request's changes were already committed"
            )

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    def commit(self) -> CommitResult | None:
        """Write all pending mutations and record them as one commit.

        Returns:
            The ``CommitResult``, or ``None`` when there was nothing to
            commit.  Calling again after a flush returns the same value.

        Raises:
            LockContentionError: The commit lock was not acquired in time.
            CommitError: Computing, writing or committing failed; the
                working tree was restored and the pending set is kept for
                a retry.
        """
        if self._state == CommitterState.FLUSHED:
            return self._result

        if not self._pending:
            if self._changes or self._headline is not None:
                logger.debug(
                    "No file mutations; dropping %d change info(s)",
                    len(self.change_infos) + (self._headline is not None),
                )
            self._finish(None)
            return None

        paths = list(self._pending)
        message = render_commit_message(
            self.change_infos, self._headline, paths
        )

        lock = self._lock_factory()
        try:
            lock.acquire()
        except LockContentionError:
            logger.error(
                "Commit lock contention; %d pending path(s) kept", len(paths)
            )
            raise

        snapshot: dict[str, bytes | None] = {}
        try:
            commit_id = self._apply_and_commit(paths, message, snapshot)
        except (FileSystemError, SerializationError, VersionControlError) as exc:
            logger.error("Commit failed, restoring working tree: %s", exc)
            self._rollback(snapshot)
            raise CommitError(f"Commit failed: {exc}") from exc
        finally:
            lock.release()

        if commit_id is None:
            logger.info(
                "Pending changes did not alter the working tree; no commit"
            )
            self._finish(None)
            return None

        result = CommitResult(
            commit_id=commit_id,
            message=message,
            paths=tuple(paths),
            change_count=len(self._changes),
        )
        self._finish(result)
        return result

    def _apply_and_commit(
        self,
        paths: list[str],
        message: str,
        snapshot: dict[str, bytes | None],
    ) -> str | None:
        for path in paths:
            snapshot[path] = self._fs.read_bytes(path)
            content = self._pending[path].resolve(snapshot[path])
            if content is None:
                self._fs.delete_file(path)
                self._prune_directories(path)
            else:
                self._fs.write_file(path, content)

        self._backend.stage(paths)
        if not self._backend.has_staged_changes():
            return None
        return self._backend.commit(message)

    def _prune_directories(self, path: str) -> None:
        parent = PurePosixPath(path).parent
        while str(parent) not in ("", "."):
            if not self._fs.remove_directory(str(parent)):
                break
            parent = parent.parent

    def _rollback(self, snapshot: dict[str, bytes | None]) -> None:
        for path, previous in snapshot.items():
            try:
                if previous is None:
                    self._fs.delete_file(path)
                    self._prune_directories(path)
                else:
                    self._fs.write_file(path, previous)
            except FileSystemError:
                logger.exception("Could not restore %s", path)
        try:
            self._backend.reset_index()
        except VersionControlError:
            logger.exception("Could not reset the index after a failed commit")

    def _finish(self, result: CommitResult | None) -> None:
        self._result = result
        self._changes.clear()
        self._pending.clear()
        self._headline = None
        self._state = CommitterState.FLUSHED
