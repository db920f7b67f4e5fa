"""Temporary changelog workspace.

Each invocation materializes its changelog into a private, uniquely-named
directory holding a single ``changelog.xml``.  The migration engine reads the
file from there; nothing outside the invocation ever sees it.

Lifecycle::

    acquire() ──Ok──> TemporaryWorkspace ──write──> ... ──release()
        │                                              (always, once)
        └──Err(WorkspaceError)   (nothing left behind, release never runs)

Deletion problems during ``release()`` are logged and swallowed.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from types import TracebackType

from schemaflow.core.errors import ChangelogIOError, WorkspaceError
from schemaflow.core.logging import get_logger
from schemaflow.core.result import Err, Ok, Result, try_result_with

logger = get_logger(__name__)

CHANGELOG_FILENAME = "changelog.xml"


class TemporaryWorkspace:
    """A directory plus the changelog file inside it, owned by one invocation."""

    def __init__(self, directory: Path, changelog_path: Path) -> None:
        self.directory = directory
        self.changelog_path = changelog_path
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Delete the changelog file and its directory.

        Safe to call more than once; only the first call does anything.
        """
        if self._released:
            return
        self._released = True

        try:
            self.changelog_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("workspace.file_delete_failed", path=str(self.changelog_path), error=str(e))

        try:
            self.directory.rmdir()
        except OSError as e:
            logger.warning("workspace.dir_delete_failed", path=str(self.directory), error=str(e))
        else:
            logger.debug("workspace.released", path=str(self.directory))

    def __enter__(self) -> TemporaryWorkspace:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"TemporaryWorkspace({str(self.directory)!r}, released={self._released})"


class WorkspaceManager:
    """Creates temporary workspaces.

    Parameters
    ----------
    prefix
        Directory name prefix passed to :func:`tempfile.mkdtemp`.
    parent
        Parent directory; the platform temp dir when ``None``.
    filename
        Name of the changelog file inside the workspace.
    """

    def __init__(
        self,
        prefix: str = "changelog",
        parent: Path | str | None = None,
        filename: str = CHANGELOG_FILENAME,
    ) -> None:
        self._prefix = prefix
        self._parent = Path(parent) if parent else None
        self._filename = filename

    def acquire(self) -> Result[TemporaryWorkspace]:
        """Create a fresh directory and an empty changelog file in it."""
        try:
            directory = Path(tempfile.mkdtemp(prefix=self._prefix, dir=self._parent))
        except OSError as e:
            return Err(WorkspaceError(f"Failed to create changelog directory: {e}", cause=e))

        changelog_path = directory / self._filename
        try:
            changelog_path.touch(exist_ok=True)
        except OSError as e:
            # the directory is ours and still empty
            try:
                directory.rmdir()
            except OSError:
                logger.warning("workspace.dir_delete_failed", path=str(directory))
            return Err(WorkspaceError(f"Failed to create changelog file: {e}", cause=e))

        logger.debug("workspace.created", path=str(directory))
        return Ok(TemporaryWorkspace(directory, changelog_path))


def write_changelog(workspace: TemporaryWorkspace, text: str) -> Result[Path]:
    """Write the changelog text to the workspace file as UTF-8."""

    def _write() -> Path:
        data = text.encode("utf-8")
        with open(workspace.changelog_path, "wb") as fh:
            fh.write(data)
        logger.debug("changelog.written", path=str(workspace.changelog_path), size=len(data))
        return workspace.changelog_path

    return try_result_with(
        _write,
        lambda e: ChangelogIOError(f"Failed to write changelog: {e}", cause=e),
    )


__all__ = [
    "CHANGELOG_FILENAME",
    "TemporaryWorkspace",
    "WorkspaceManager",
    "write_changelog",
]
