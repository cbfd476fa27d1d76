"""Event-driven change detection (watch mode).

One :class:`ContextWatcher` per context schedules watchdog watches over the
context's candidate files and configuration dependencies:

* content file added or modified: read it, append it to the context's
  changed content, then touch the context's touch file;
* configuration dependency modified or removed: invalidate the loaded
  configuration and touch the configuration file, so the next build sees
  a changed configuration and replaces the context.

The watcher never rescans the candidate set on its own.
"""

from __future__ import annotations

import logging
import os
import threading
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer

from jitwatch.candidates import (
    expand_braces,
    glob_parent,
    is_glob,
    matches_glob,
    normalize_path,
    split_exclusions,
)
from jitwatch.exceptions import JitwatchError, WatcherError
from jitwatch.scanner import read_content
from jitwatch.touch import touch

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from watchdog.observers.api import BaseObserver

    from jitwatch.context import Context

__all__ = ["ContextWatcher", "WatcherState", "watch_roots"]

logger = logging.getLogger(__name__)

CLOSE_TIMEOUT = 2.0


class WatcherState(StrEnum):
    UNINITIALIZED = "uninitialized"
    WATCHING = "watching"
    CLOSED = "closed"


def watch_roots(
    candidates: Iterable[str], extra_files: Iterable[Path] = ()
) -> list[tuple[str, bool]]:
    """Directories to schedule as ``(path, recursive)`` pairs.

    Globs are watched recursively from their static parent; literal files
    through their parent directory. Roots already covered by a recursive
    ancestor are dropped.
    """
    roots: dict[str, bool] = {}
    include, _ = split_exclusions(list(candidates))
    for candidate in include:
        for variant in expand_braces(candidate):
            if is_glob(variant):
                root, recursive = glob_parent(variant), True
            else:
                root, recursive = normalize_path(os.path.dirname(variant)), False
            roots[root] = roots.get(root, False) or recursive
    for file in extra_files:
        root = normalize_path(file.parent)
        roots.setdefault(root, False)

    def covered(path: str) -> bool:
        for other, recursive in roots.items():
            if recursive and other != path and path.startswith(other.rstrip("/") + "/"):
                return True
        return False

    return sorted((root, recursive) for root, recursive in roots.items() if not covered(root))


class ContextWatcher(FileSystemEventHandler):
    """Filesystem watch for a single context.

    State moves ``uninitialized -> watching -> closed``; a closed watcher is
    never restarted, a replacement context gets a new watcher instead.
    """

    def __init__(
        self,
        context: Context,
        candidates: list[str],
        config_dependencies: Iterable[Path],
        *,
        config_path: Path | None = None,
        touch_file: Path | None = None,
        invalidate_config: Callable[[set[Path]], None] | None = None,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        super().__init__()
        self.context = context
        self.candidates = list(candidates)
        self.config_dependencies = {Path(normalize_path(p)) for p in config_dependencies}
        self.config_path = config_path
        self.touch_file = touch_file
        self._invalidate_config = invalidate_config
        self._observer_factory = observer_factory
        self._observer: BaseObserver | None = None
        self._include, self._exclude = split_exclusions(self.candidates)
        self._lock = threading.Lock()
        self.state = WatcherState.UNINITIALIZED

    def start(self) -> None:
        """Arm the watches.

        Raises:
            WatcherError: If the watcher was already started or the
                observer cannot be started.
        """
        with self._lock:
            if self.state is not WatcherState.UNINITIALIZED:
                raise WatcherError(f"Watcher for context {self.context.id} is {self.state}")

            observer = self._observer_factory()
            scheduled = 0
            for root, recursive in watch_roots(self.candidates, self.config_dependencies):
                if not os.path.isdir(root):
                    logger.debug("Skipping watch on missing directory %s", root)
                    continue
                observer.schedule(self, root, recursive=recursive)
                scheduled += 1

            try:
                observer.start()
            except (OSError, RuntimeError) as e:
                logger.error("Failed to start watcher: %s", e)
                raise WatcherError(f"Failed to start watcher: {e}") from e

            self._observer = observer
            self.state = WatcherState.WATCHING
        logger.info("Watching %d director(ies) for changes...", scheduled)

    def close(self) -> None:
        """Stop the observer. Safe to call more than once."""
        with self._lock:
            if self.state is WatcherState.CLOSED:
                return
            self.state = WatcherState.CLOSED
            observer, self._observer = self._observer, None

        if observer is not None:
            observer.stop()
            if observer.is_alive() and threading.current_thread() is not observer:
                observer.join(CLOSE_TIMEOUT)
        logger.debug("Closed watcher for context %s", self.context.id)

    # Classification

    def is_config_dependency(self, path: str | Path) -> bool:
        return Path(normalize_path(path)) in self.config_dependencies

    def is_candidate(self, path: str | Path) -> bool:
        target = normalize_path(path)
        if any(matches_glob(target, pattern) for pattern in self._exclude):
            return False
        return any(
            target == pattern or (is_glob(pattern) and matches_glob(target, pattern))
            for pattern in self._include
        )

    # watchdog callbacks

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.file_added(os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.file_modified(os.fsdecode(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.file_removed(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory or not isinstance(event, FileSystemMovedEvent):
            return
        self.file_removed(os.fsdecode(event.src_path))
        self.file_added(os.fsdecode(event.dest_path))

    # Event handling

    def file_added(self, path: str) -> None:
        if self.is_config_dependency(path):
            self._reload_config(path)
        elif self.is_candidate(path):
            self._push_content(path)

    def file_modified(self, path: str) -> None:
        if self.is_config_dependency(path):
            self._reload_config(path)
        elif self.is_candidate(path):
            self._push_content(path)

    def file_removed(self, path: str) -> None:
        if self.is_config_dependency(path):
            self._reload_config(path)

    def _push_content(self, path: str) -> None:
        try:
            record = read_content(path)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read changed file %s: %s", path, e)
            return

        self.context.append_content([record])
        logger.debug("Queued %s for context %s", path, self.context.id)
        if self.touch_file is not None:
            self._touch(self.touch_file)

    def _reload_config(self, path: str) -> None:
        logger.info("Config dependency %s changed", path)
        if self._invalidate_config is not None:
            try:
                self._invalidate_config(set(self.config_dependencies))
            except JitwatchError as e:
                logger.warning("Failed to invalidate config: %s", e)
        if self.config_path is not None:
            self._touch(self.config_path)

    def _touch(self, path: Path) -> None:
        try:
            touch(path)
        except JitwatchError as e:
            logger.error("%s", e)
