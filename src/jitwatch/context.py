"""Compilation contexts and the context cache.

A :class:`Context` is the per-identity record the engine hands to the
compiler. Compiler-owned state lives in :attr:`Context.state`; the engine
only manages changed content, teardown callbacks and its own bookkeeping.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from jitwatch.config import ResolvedConfig
    from jitwatch.watcher import ContextWatcher

__all__ = [
    "ChangedContent",
    "Context",
    "ContextCache",
    "ContextIdentity",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangedContent:
    """Newly discovered source text and the extension it was read with."""

    content: str
    extension: str


@dataclass(frozen=True)
class ContextIdentity:
    """Composite key deciding whether a context can be reused."""

    source: str
    config_hash: str = ""
    dependencies: frozenset[str] = frozenset()

    @classmethod
    def for_source(
        cls,
        source: str,
        directives: Iterable[str],
        config: ResolvedConfig,
        source_dependencies: Iterable[str] = (),
    ) -> ContextIdentity:
        """Build the identity for a source.

        Sources without directives never depend on the configuration or
        content files, so their identity ignores both.
        """
        if not set(directives):
            return cls(source=source)

        dependencies = {str(dep) for dep in config.dependencies}
        dependencies.add(source)
        dependencies.update(str(dep) for dep in source_dependencies)
        return cls(source=source, config_hash=config.hash, dependencies=frozenset(dependencies))


@dataclass(eq=False)
class Context:
    """Per-identity compilation context.

    ``changed_content`` is append-only from the engine's side; appends and
    reads are serialized because watch-mode callbacks run on the observer
    thread.
    """

    identity: ContextIdentity
    config: ResolvedConfig
    state: Any = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    disposables: list[Callable[[Context], None]] = field(default_factory=list)
    candidate_files: list[str] | None = None
    file_modified_map: dict[str, int] = field(default_factory=dict)
    config_path: Path | None = None
    config_dependencies: set[Path] = field(default_factory=set)
    touch_file: Path | None = None
    watcher: ContextWatcher | None = None
    scanned: bool = False
    disposed: bool = False
    build_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _changed_content: list[ChangedContent] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def changed_content(self) -> list[ChangedContent]:
        """Snapshot of the content accumulated so far."""
        with self._lock:
            return list(self._changed_content)

    def append_content(self, records: Iterable[ChangedContent]) -> int:
        """Append records in order; returns how many were added."""
        records = list(records)
        with self._lock:
            self._changed_content.extend(records)
        return len(records)

    def consume_changed_content(self) -> list[ChangedContent]:
        """Hand accumulated content to the compiler and start a new batch."""
        with self._lock:
            records, self._changed_content = self._changed_content, []
        return records

    def dispose(self) -> None:
        """Run every disposable once; failures are logged and skipped."""
        if self.disposed:
            return
        self.disposed = True
        for disposable in self.disposables:
            try:
                disposable(self)
            except Exception as e:
                logger.warning("Disposable failed for context %s: %s", self.id, e)
        self.disposables.clear()


def _snapshot(paths: Iterable[str]) -> dict[str, int | None]:
    mtimes: dict[str, int | None] = {}
    for path in paths:
        try:
            mtimes[path] = Path(path).stat().st_mtime_ns
        except OSError:
            mtimes[path] = None
    return mtimes


class ContextCache:
    """Registry of live contexts, one slot per source.

    A slot is reused while the source's identity is unchanged and none of
    its dependency files were modified since the context was created.
    Otherwise the old context is disposed before its replacement is built.
    """

    def __init__(self) -> None:
        self._contexts: dict[str, Context] = {}
        self._snapshots: dict[str, dict[str, int | None]] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._contexts)

    def get(self, source: str) -> Context | None:
        return self._contexts.get(source)

    def get_or_create(
        self,
        identity: ContextIdentity,
        factory: Callable[[ContextIdentity], Context],
    ) -> tuple[Context, bool]:
        """Return the live context for ``identity`` or build a new one.

        Returns:
            ``(context, is_new_context)``.
        """
        with self._lock:
            existing = self._contexts.get(identity.source)
            if existing is not None:
                if existing.identity == identity and not self._is_stale(identity.source):
                    return existing, False
                logger.info("Replacing context %s for %s", existing.id, identity.source)
                self._evict(identity.source)

            context = factory(identity)
            self._contexts[identity.source] = context
            self._snapshots[identity.source] = _snapshot(identity.dependencies)
            logger.debug("Created context %s for %s", context.id, identity.source)
            return context, True

    def _is_stale(self, source: str) -> bool:
        recorded = self._snapshots.get(source, {})
        current = _snapshot(recorded)
        return any(current[path] != mtime for path, mtime in recorded.items())

    def _evict(self, source: str) -> None:
        context = self._contexts.pop(source, None)
        self._snapshots.pop(source, None)
        if context is not None:
            context.dispose()

    def discard(self, source: str) -> None:
        """Dispose and forget the context for ``source``, if any."""
        with self._lock:
            self._evict(source)

    def clear(self) -> None:
        """Dispose every live context."""
        with self._lock:
            for source in list(self._contexts):
                self._evict(source)
