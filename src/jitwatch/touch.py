"""Touch files: sentinel files used to force host pipeline rebuilds.

The host pipeline is told to depend on one touch file per context. Bumping
the file's modification time makes the host re-run the compiler even though
it knows nothing about the content files themselves. Updating a timestamp
is much cheaper than rewriting the file.
"""

from __future__ import annotations

import logging
import os
import secrets
import string
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from jitwatch.exceptions import TouchFileError

if TYPE_CHECKING:
    from jitwatch.context import Context

__all__ = [
    "TOUCH_PREFIX",
    "TouchFileController",
    "generate_touch_file_name",
    "touch",
]

logger = logging.getLogger(__name__)

TOUCH_PREFIX = "touch"
RANDOM_SUFFIX_LENGTH = 12
_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase


def generate_touch_file_name(directory: Path, pid: int | None = None) -> Path:
    """Unique touch file path: ``touch-<pid>-<12 random alphanumerics>``."""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(RANDOM_SUFFIX_LENGTH))
    return directory / f"{TOUCH_PREFIX}-{os.getpid() if pid is None else pid}-{suffix}"


def touch(path: Path) -> None:
    """Set ``path``'s modification time to now, creating it if missing.

    Raises:
        TouchFileError: If the timestamp cannot be updated for any reason
            other than the file not existing.
    """
    try:
        os.utime(path, None)
    except FileNotFoundError:
        try:
            path.touch()
        except OSError as e:
            raise TouchFileError(f"Failed to create touch file {path}: {e}") from e
    except OSError as e:
        raise TouchFileError(f"Failed to touch {path}: {e}") from e


class TouchFileController:
    """Owns the per-user touch directory and one touch file per context.

    Usage::

        controller = TouchFileController(Path("~/.jitwatch/touch").expanduser())
        controller.init()
        path = controller.ensure_touch_file(context)
        controller.shutdown()
    """

    def __init__(self, directory: Path, *, enabled: bool = True) -> None:
        self.directory = directory
        self.enabled = enabled
        self._files: set[Path] = set()
        self._lock = threading.Lock()

    def init(self) -> None:
        """Prepare the directory, deleting touch files left by earlier processes."""
        if not self.enabled:
            return

        if self.directory.is_dir():
            removed = 0
            for entry in self.directory.iterdir():
                try:
                    entry.unlink()
                    removed += 1
                except OSError:
                    logger.debug("Could not remove stale touch file %s", entry)
            logger.info("Cleared %d stale touch file(s) in %s", removed, self.directory)
        else:
            self._make_directory()

    def shutdown(self) -> None:
        """Remove the touch files this controller created."""
        with self._lock:
            files, self._files = self._files, set()
        for path in files:
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.debug("Could not remove touch file %s", path)

    def _make_directory(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Failed to create touch directory %s: %s", self.directory, e)
            raise TouchFileError(f"Failed to create touch directory {self.directory}: {e}") from e

    def ensure_touch_file(self, context: Context) -> Path | None:
        """Return the context's touch file, creating it on first use.

        Returns None when touch files are disabled.
        """
        if not self.enabled:
            return None

        with self._lock:
            if context.touch_file is None:
                self._make_directory()
                path = generate_touch_file_name(self.directory)
                touch(path)
                context.touch_file = path
                self._files.add(path)
                logger.debug("Created touch file %s for context %s", path, context.id)
            return context.touch_file

    def release(self, context: Context) -> None:
        """Delete the context's touch file; used as a context disposable."""
        path = context.touch_file
        if path is None:
            return
        with self._lock:
            self._files.discard(path)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug("Could not remove touch file %s: %s", path, e)

    @property
    def files(self) -> frozenset[Path]:
        return frozenset(self._files)
