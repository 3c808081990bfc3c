"""File-system adapter for the working tree.

All paths handed to ``LocalFileSystem`` are POSIX paths relative to the
repository root.  Writes are atomic (temp file + ``os.replace()``) so a
crash never leaves a half-written entity file.  ``OSError`` is wrapped in
``FileSystemError`` so the committer can tell storage failures apart from
programming errors.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path, PurePosixPath

from charset_normalizer import from_bytes

from gitpress.errors import FileSystemError

logger = logging.getLogger(__name__)


def decode_text(raw: bytes, path: str = "<bytes>") -> str:
    """Decode file bytes, trying UTF-8 first and detection second."""
    if not raw:
        return ""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass
    result = from_bytes(raw).best()
    if result is None:
        logger.warning("Could not detect encoding of %s", path)
        return raw.decode("utf-8", errors="replace")
    return str(result)


class LocalFileSystem:
    """Read and write files below *root*.

    Args:
        root: Repository root directory.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Path handling
    # ------------------------------------------------------------------

    def resolve(self, path: str) -> Path:
        """Return the absolute path for *path*.

        Raises:
            ValueError: If *path* is absolute or escapes the root.
        """
        relative = PurePosixPath(path)
        if relative.is_absolute():
            raise ValueError(f"Path must be relative to the root: {path}")
        resolved = (self._root / relative).resolve()
        if not resolved.is_relative_to(self._root):
            raise ValueError(
                f"Path is outside the working tree: {path} not under {self._root}"
            )
        return resolved

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read_bytes(self, path: str) -> bytes | None:
        """Return the file's bytes, or ``None`` if it does not exist."""
        target = self.resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise FileSystemError(f"Cannot read {path}: {exc}") from exc

    def read_text(self, path: str) -> str | None:
        """Read a text file with automatic encoding detection.

        Entity files are written as UTF-8, but hand-edited or merged files
        may not be.  Falls back to UTF-8 when detection fails.
        """
        raw = self.read_bytes(path)
        if raw is None:
            return None
        return decode_text(raw, path)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def write_file(self, path: str, content: bytes) -> int:
        """Atomically write *content* to *path*, creating parent dirs.

        Returns:
            Number of bytes written.
        """
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(target.parent), suffix=".tmp"
            )
        except OSError as exc:
            raise FileSystemError(f"Cannot write {path}: {exc}") from exc
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(content)
            os.replace(tmp_path, target)
        except BaseException as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            if isinstance(exc, OSError):
                raise FileSystemError(f"Cannot write {path}: {exc}") from exc
            raise
        return len(content)

    def delete_file(self, path: str) -> bool:
        """Delete *path*.  Returns ``False`` if it was already gone."""
        target = self.resolve(path)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise FileSystemError(f"Cannot delete {path}: {exc}") from exc
        return True

    def remove_directory(self, path: str) -> bool:
        """Remove directory *path* if it exists and is empty."""
        target = self.resolve(path)
        if target == self._root or not target.is_dir():
            return False
        try:
            next(target.iterdir())
        except StopIteration:
            pass
        else:
            return False
        try:
            target.rmdir()
        except OSError as exc:
            raise FileSystemError(
                f"Cannot remove directory {path}: {exc}"
            ) from exc
        logger.debug("Removed empty directory %s", path)
        return True
