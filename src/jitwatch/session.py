"""Build sessions and the tracking/watching entry points.

A :class:`BuildSession` owns the process-wide services (configuration
loader, context cache, touch-file controller) and exposes the two entry
points used by host pipeline plugins:

* :meth:`BuildSession.tracking_build` polls candidate files on every
  request (build mode);
* :meth:`BuildSession.watching_build` arms one filesystem watcher per
  context and signals the host through touch files (watch mode).

Both return a callable taking a :class:`SourceEvent` and returning the
:class:`~jitwatch.context.Context` to compile with.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from watchdog.observers import Observer

from jitwatch.candidates import (
    candidate_files,
    expand_braces,
    glob_parent,
    is_glob,
    raw_content,
    split_exclusions,
)
from jitwatch.config import ConfigCache, ConfigLoader
from jitwatch.context import Context, ContextCache, ContextIdentity
from jitwatch.env import BuildMode, Environment, timed
from jitwatch.exceptions import JitwatchError
from jitwatch.scanner import ChangeScanner, expand_candidates, read_content
from jitwatch.touch import TouchFileController
from jitwatch.watcher import ContextWatcher

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from watchdog.observers.api import BaseObserver

    from jitwatch.config import ConfigInput, ResolvedConfig
    from jitwatch.context import ChangedContent

__all__ = [
    "BuildSession",
    "DependencyKind",
    "SourceEvent",
    "setup_context",
    "tracking_build",
    "watching_build",
]

logger = logging.getLogger(__name__)


class DependencyKind(StrEnum):
    """Kinds of dependencies reported to the host pipeline."""

    FILE = "dependency"
    DIRECTORY = "dir-dependency"


@dataclass(frozen=True)
class SourceEvent:
    """A compilation request for one source.

    ``dependencies`` are the files the source itself imports.
    """

    source: str
    dependencies: tuple[str, ...] = ()


class BuildSession:
    """Process-wide tracking services with an explicit lifecycle.

    Usage::

        with BuildSession(Environment.from_environ()) as session:
            build = session.tracking_build("jitwatch.config.toml", {"utilities"}, register)
            context = build(SourceEvent("/proj/app.css"))
            context.changed_content
    """

    def __init__(
        self,
        environment: Environment | None = None,
        *,
        cwd: Path | None = None,
        loader: ConfigLoader | None = None,
        contexts: ContextCache | None = None,
        touch_controller: TouchFileController | None = None,
        scanner: ChangeScanner | None = None,
        state_factory: Callable[[ResolvedConfig], Any] | None = None,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self.environment = environment or Environment()
        self.cwd = cwd
        self.loader = loader or ConfigLoader(ConfigCache(), cwd=cwd, debug=self.environment.debug)
        self.contexts = contexts if contexts is not None else ContextCache()
        self.touch_controller = touch_controller or TouchFileController(
            self.environment.resolved_touch_dir,
            enabled=not self.environment.disable_touch,
        )
        self.scanner = scanner or ChangeScanner(debug=self.environment.debug)
        self.state_factory = state_factory
        self.observer_factory = observer_factory
        self._initialized = False

    def init(self) -> BuildSession:
        """Prepare the touch directory. Subsequent calls are no-ops."""
        if not self._initialized:
            self.touch_controller.init()
            self._initialized = True
        return self

    def shutdown(self) -> None:
        """Dispose every context (closing watchers) and release touch files."""
        self.contexts.clear()
        self.touch_controller.shutdown()
        self.loader.clear()
        self._initialized = False

    def __enter__(self) -> BuildSession:
        return self.init()

    def __exit__(self, *args: object) -> None:
        self.shutdown()

    # Shared steps

    def _get_context(
        self,
        config: ResolvedConfig,
        directives: frozenset[str],
        event: SourceEvent,
    ) -> tuple[Context, bool]:
        identity = ContextIdentity.for_source(event.source, directives, config, event.dependencies)

        def factory(identity: ContextIdentity) -> Context:
            context = Context(identity=identity, config=config, config_path=config.source_path)
            if self.state_factory is not None:
                context.state = self.state_factory(config)
            return context

        return self.contexts.get_or_create(identity, factory)

    def _register_candidates(
        self,
        candidates: list[str],
        register_dependency: Callable[[str, DependencyKind], None],
    ) -> None:
        include, _ = split_exclusions(candidates)
        glob_kind = (
            DependencyKind.FILE
            if self.environment.dir_as_file_dependency
            else DependencyKind.DIRECTORY
        )
        for pattern in include:
            for variant in expand_braces(pattern):
                if is_glob(variant):
                    register_dependency(glob_parent(variant), glob_kind)
                else:
                    register_dependency(variant, DependencyKind.FILE)

    # Build mode

    def tracking_build(
        self,
        config_or_path: ConfigInput,
        directives: Iterable[str],
        register_dependency: Callable[[str, DependencyKind], None],
    ) -> Callable[[SourceEvent], Context]:
        """Entry point for build mode: rescan candidates on every request."""
        directives = frozenset(directives)

        def build(event: SourceEvent) -> Context:
            config = self.loader.resolve(config_or_path)
            context, _ = self._get_context(config, directives, event)
            candidates = candidate_files(context, self.cwd)

            if directives:
                self._register_candidates(candidates, register_dependency)
                with context.build_lock, timed("Build mode scan", self.environment.debug):
                    added = context.append_content(self.scanner.scan(context, candidates))
                logger.debug("Build mode scan added %d record(s) to %s", added, context.id)

            for file in sorted(config.dependencies):
                register_dependency(str(file), DependencyKind.FILE)
            return context

        return build

    # Watch mode

    def watching_build(
        self,
        config_or_path: ConfigInput,
        directives: Iterable[str],
        register_dependency: Callable[[str, DependencyKind], None],
    ) -> Callable[[SourceEvent], Context]:
        """Entry point for watch mode: one watcher per context, touch-file signalling."""
        directives = frozenset(directives)

        def build(event: SourceEvent) -> Context:
            self.init()
            config = self.loader.resolve(config_or_path, track_dependencies=False)
            context, is_new_context = self._get_context(config, directives, event)
            candidates = candidate_files(context, self.cwd)

            for file in sorted(config.dependencies):
                register_dependency(str(file), DependencyKind.FILE)

            if is_new_context:
                context.config_dependencies = {
                    dep for dep in config.dependencies if dep != config.source_path
                }
                context.disposables.extend([_close_watcher, self.touch_controller.release])
                try:
                    self._arm_watcher(context, candidates)
                except JitwatchError:
                    # Never cache a context without a running watcher
                    self.contexts.discard(event.source)
                    raise

            if context.touch_file is not None:
                register_dependency(str(context.touch_file), DependencyKind.FILE)

            if directives:
                with context.build_lock:
                    context.append_content(self._initial_content(context, candidates))
            return context

        return build

    def _arm_watcher(self, context: Context, candidates: list[str]) -> None:
        touch_file = self.touch_controller.ensure_touch_file(context)
        watcher = ContextWatcher(
            context,
            candidates,
            context.config_dependencies,
            config_path=context.config_path,
            touch_file=touch_file,
            invalidate_config=self.loader.invalidate,
            observer_factory=self.observer_factory,
        )
        context.watcher = watcher
        watcher.start()

    def _initial_content(self, context: Context, candidates: list[str]) -> list[ChangedContent]:
        records = raw_content(context.config.value)
        if context.scanned:
            return records

        with timed("Initial candidate scan", self.environment.debug):
            for file in expand_candidates(candidates):
                try:
                    records.append(read_content(file))
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning("Could not read %s: %s", file, e)
        context.scanned = True
        return records

    # Mode selection

    def setup_context(
        self,
        config_or_path: ConfigInput,
        directives: Iterable[str],
        register_dependency: Callable[[str, DependencyKind], None],
    ) -> Callable[[SourceEvent], Context]:
        """Pick the entry point for the current environment.

        Watch mode needs touch files; with them disabled the session always
        falls back to build mode.
        """
        env = self.environment
        if not env.disable_touch and env.resolved_mode is BuildMode.WATCH:
            return self.watching_build(config_or_path, directives, register_dependency)
        return self.tracking_build(config_or_path, directives, register_dependency)


def _close_watcher(context: Context) -> None:
    if context.watcher is not None:
        context.watcher.close()


def tracking_build(
    config_or_path: ConfigInput,
    directives: Iterable[str],
    register_dependency: Callable[[str, DependencyKind], None],
    *,
    session: BuildSession,
) -> Callable[[SourceEvent], Context]:
    return session.tracking_build(config_or_path, directives, register_dependency)


def watching_build(
    config_or_path: ConfigInput,
    directives: Iterable[str],
    register_dependency: Callable[[str, DependencyKind], None],
    *,
    session: BuildSession,
) -> Callable[[SourceEvent], Context]:
    return session.watching_build(config_or_path, directives, register_dependency)


def setup_context(
    config_or_path: ConfigInput,
    directives: Iterable[str],
    register_dependency: Callable[[str, DependencyKind], None],
    *,
    session: BuildSession,
) -> Callable[[SourceEvent], Context]:
    return session.setup_context(config_or_path, directives, register_dependency)
