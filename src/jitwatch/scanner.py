"""Poll-based change detection (build mode).

Each scan expands the candidate patterns from scratch, compares every
file's modification time against the context's file-modified map and reads
only files that are new or newer. Patterns are expanded by walking the
glob parent and filtering with :func:`~jitwatch.candidates.matches_glob`,
the same matcher the watcher uses for filesystem events.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from jitwatch.candidates import (
    expand_braces,
    glob_parent,
    is_glob,
    matches_glob,
    normalize_path,
    raw_content,
    split_exclusions,
)
from jitwatch.context import ChangedContent
from jitwatch.env import timed
from jitwatch.exceptions import ScanError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from jitwatch.context import Context

__all__ = [
    "ChangeScanner",
    "expand_candidates",
    "read_content",
]

logger = logging.getLogger(__name__)


def _walk(pattern: str) -> Iterator[str]:
    root = glob_parent(pattern)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            path = normalize_path(os.path.join(dirpath, name))
            if matches_glob(path, pattern):
                yield path


def expand_candidates(candidates: list[str]) -> list[str]:
    """Expand candidate patterns into a de-duplicated list of existing files."""
    include, exclude = split_exclusions(candidates)
    files: dict[str, None] = {}
    for pattern in include:
        for variant in expand_braces(pattern):
            if is_glob(variant):
                files.update(dict.fromkeys(_walk(variant)))
            elif os.path.isfile(variant):
                files[normalize_path(variant)] = None

    if not exclude:
        return list(files)
    return [f for f in files if not any(matches_glob(f, pattern) for pattern in exclude)]


def read_content(path: str | Path) -> ChangedContent:
    """Read a candidate file as a changed content record."""
    path = Path(path)
    content = path.read_text(encoding="utf-8")
    return ChangedContent(content=content, extension=path.suffix[1:])


class ChangeScanner:
    """One-shot scanner comparing modification times against a recorded map."""

    def __init__(self, *, debug: bool = False) -> None:
        self.debug = debug

    def find_changed(
        self, candidates: list[str], file_modified_map: dict[str, int]
    ) -> dict[str, int]:
        """Files that are new or strictly newer than their recorded time.

        Returns the current modification time of each changed file; the map
        itself is left untouched.
        """
        with timed("Finding changed files", self.debug):
            files = expand_candidates(candidates)

        changed: dict[str, int] = {}
        for file in files:
            try:
                modified = os.stat(file).st_mtime_ns
            except FileNotFoundError:
                logger.debug("Candidate %s vanished before it could be scanned", file)
                continue

            previous = file_modified_map.get(file)
            if previous is None or modified > previous:
                changed[file] = modified

        logger.debug("%d of %d candidate files changed", len(changed), len(files))
        return changed

    def changed_files(self, candidates: list[str], file_modified_map: dict[str, int]) -> list[str]:
        """Like :meth:`find_changed`, recording the new times in the map."""
        changed = self.find_changed(candidates, file_modified_map)
        file_modified_map.update(changed)
        return list(changed)

    def scan(
        self,
        context: Context,
        candidates: list[str] | None = None,
        file_modified_map: dict[str, int] | None = None,
    ) -> list[ChangedContent]:
        """Collect inline raw content plus every changed candidate file.

        The map is only updated once every changed file has been read, so a
        failed scan leaves all of its files to be picked up by the next one.

        Raises:
            ScanError: If a changed file cannot be read.
        """
        if candidates is None:
            candidates = context.candidate_files or []
        if file_modified_map is None:
            file_modified_map = context.file_modified_map

        records = raw_content(context.config.value)
        changed = self.find_changed(candidates, file_modified_map)
        for file in changed:
            try:
                records.append(read_content(file))
            except (OSError, UnicodeDecodeError) as e:
                logger.error("Failed to read %s: %s", file, e)
                raise ScanError(f"Failed to read {file}: {e}") from e
        file_modified_map.update(changed)
        return records
