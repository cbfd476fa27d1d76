"""Shared fixtures for jitwatch tests."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest

from jitwatch.config import ResolvedConfig, hash_config, normalize_config
from jitwatch.context import Context, ContextIdentity
from jitwatch.env import Environment

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


class FakeObserver:
    """Stands in for a watchdog observer; records scheduled watches."""

    def __init__(self) -> None:
        self.scheduled: list[tuple[str, bool]] = []
        self.started = False
        self.stopped = False

    def schedule(self, handler: object, path: str, recursive: bool = False) -> None:
        self.scheduled.append((path, recursive))

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def is_alive(self) -> bool:
        return False

    def join(self, timeout: float | None = None) -> None:
        pass


class ObserverFactory:
    def __init__(self) -> None:
        self.instances: list[FakeObserver] = []

    def __call__(self) -> FakeObserver:
        observer = FakeObserver()
        self.instances.append(observer)
        return observer


@pytest.fixture
def observer_factory() -> ObserverFactory:
    return ObserverFactory()


@pytest.fixture
def bump() -> Callable[..., None]:
    """Move a file's modification time forward without sleeping."""

    def _bump(path: Path, seconds: float = 10.0) -> None:
        st = path.stat()
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + int(seconds * 1_000_000_000)))

    return _bump


@pytest.fixture
def age() -> Callable[..., None]:
    """Move a file's modification time into the past."""

    def _age(path: Path, seconds: float = 3600.0) -> None:
        st = path.stat()
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns - int(seconds * 1_000_000_000)))

    return _age


@pytest.fixture
def make_context() -> Callable[..., Context]:
    """Build a context around an inline or file-backed config value."""

    def _make(value: dict[str, Any] | None = None, source_path: Path | None = None) -> Context:
        normalized = normalize_config(value or {})
        config = ResolvedConfig(
            value=normalized,
            hash=hash_config(normalized),
            source_path=source_path,
            dependencies=frozenset({source_path}) if source_path else frozenset(),
        )
        return Context(identity=ContextIdentity(source="app.css"), config=config)

    return _make


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project with a config, one template and a stylesheet."""
    root = tmp_path / "proj"
    (root / "src").mkdir(parents=True)
    (root / "tw.config.toml").write_text('content = ["./src/**/*.html"]\n', encoding="utf-8")
    (root / "src" / "a.html").write_text('<div class="p-4"></div>', encoding="utf-8")
    (root / "app.css").write_text("@tailwind utilities;\n", encoding="utf-8")
    return root


@pytest.fixture
def environment(tmp_path: Path) -> Environment:
    return Environment(touch_dir=tmp_path / "touch")
