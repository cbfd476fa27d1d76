"""Environment-level switches for jitwatch.

All switches are read once into an immutable :class:`Environment` so that
sessions can be constructed with an explicit environment in tests.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

__all__ = [
    "BuildMode",
    "Environment",
    "default_touch_dir",
    "timed",
]

logger = logging.getLogger(__name__)

_TRUTHY = frozenset({"1", "true", "yes", "on"})


class BuildMode(StrEnum):
    """Change-detection strategy."""

    BUILD = "build"
    WATCH = "watch"


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "").strip().lower() in _TRUTHY


def default_touch_dir() -> Path:
    """Per-user directory holding touch files."""
    try:
        base = Path.home()
    except RuntimeError:
        base = Path(tempfile.gettempdir())
    return base / ".jitwatch" / "touch"


@dataclass(frozen=True)
class Environment:
    """Process-level switches that affect tracking behaviour."""

    debug: bool = False
    mode: BuildMode | None = None
    environment: str = ""
    disable_touch: bool = False
    touch_dir: Path | None = None
    dir_as_file_dependency: bool = False

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> Environment:
        """Read switches from ``environ`` (defaults to ``os.environ``)."""
        environ = os.environ if environ is None else environ

        raw_mode = environ.get("JITWATCH_MODE", "").strip().lower()
        mode: BuildMode | None = None
        if raw_mode:
            try:
                mode = BuildMode(raw_mode)
            except ValueError:
                logger.warning("Ignoring unknown JITWATCH_MODE=%r", raw_mode)

        touch_dir = environ.get("JITWATCH_TOUCH_DIR", "").strip()

        return cls(
            debug=_flag(environ, "JITWATCH_DEBUG"),
            mode=mode,
            environment=environ.get("JITWATCH_ENV", "").strip().lower(),
            disable_touch=_flag(environ, "JITWATCH_DISABLE_TOUCH"),
            touch_dir=Path(touch_dir).expanduser() if touch_dir else None,
            dir_as_file_dependency=_flag(environ, "JITWATCH_DIR_AS_FILE_DEPENDENCY"),
        )

    @property
    def resolved_mode(self) -> BuildMode:
        """Explicit mode, or watch mode when running in development."""
        if self.mode is not None:
            return self.mode
        if self.environment == "development":
            return BuildMode.WATCH
        return BuildMode.BUILD

    @property
    def resolved_touch_dir(self) -> Path:
        return self.touch_dir if self.touch_dir is not None else default_touch_dir()


@contextmanager
def timed(label: str, enabled: bool) -> Iterator[None]:
    """Log how long the wrapped block took when ``enabled`` is set."""
    if not enabled:
        yield
        return
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.info("%s: %.2fms", label, (time.perf_counter() - start) * 1000)
