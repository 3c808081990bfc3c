"""Exception hierarchy for gitpress.

Every error the engine raises derives from ``GitPressError`` so the host
can catch persistence failures with a single ``except`` clause.

Identity-resolution misses are deliberately absent: a dangling reference
is an expected steady-state condition and is reported as ``None`` by the
identity map, never as an exception.
"""


class GitPressError(Exception):
    """Base class for all gitpress errors."""


class UnknownEntityKindError(GitPressError):
    """The host asked to version an entity kind with no registered storage."""

    def __init__(self, kind: str, known: list[str]) -> None:
        self.kind = kind
        self.known = known
        super().__init__(
            f"Unknown entity kind '{kind}'. "
            f"Registered kinds: {', '.join(sorted(known)) or '(none)'}"
        )


class SerializationError(GitPressError):
    """An entity file could not be parsed back into an entity."""


class FileSystemError(GitPressError):
    """Writing, reading or deleting a file in the working tree failed."""


class VersionControlError(GitPressError):
    """The version-control backend reported a failure."""

    def __init__(
        self, message: str, command: list[str] | None = None, stderr: str = ""
    ) -> None:
        self.command = command or []
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr.strip() else ""
        super().__init__(f"{message}{detail}")


class CommitError(GitPressError):
    """``commit()`` failed; the pending change set is still available."""


class LockContentionError(CommitError):
    """The commit lock could not be acquired within the configured wait."""


class CommitterClosedError(GitPressError):
    """A change was registered after the request's commit was flushed."""
