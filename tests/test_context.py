"""Tests for jitwatch.context module."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import pytest

from jitwatch.config import ResolvedConfig
from jitwatch.context import ChangedContent, Context, ContextCache, ContextIdentity

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


def _config(hash_: str = "sha256:a", deps: frozenset = frozenset()) -> ResolvedConfig:
    return ResolvedConfig(value={"content": []}, hash=hash_, dependencies=deps)


def _factory(config: ResolvedConfig) -> Callable[[ContextIdentity], Context]:
    return lambda identity: Context(identity=identity, config=config)


class TestContextIdentity:
    def test_no_directives_ignores_config_and_dependencies(self, tmp_path: Path):
        a = ContextIdentity.for_source("app.css", set(), _config("sha256:a"), ["x.css"])
        b = ContextIdentity.for_source(
            "app.css", set(), _config("sha256:b", frozenset({tmp_path / "tw.toml"}))
        )
        assert a == b
        assert a.dependencies == frozenset()
        assert a.config_hash == ""

    def test_directives_include_source_config_and_imports(self, tmp_path: Path):
        config_path = tmp_path / "tw.toml"
        identity = ContextIdentity.for_source(
            "app.css", {"utilities"}, _config("sha256:a", frozenset({config_path})), ["base.css"]
        )
        assert identity.config_hash == "sha256:a"
        assert identity.dependencies == frozenset({str(config_path), "app.css", "base.css"})

    def test_config_hash_changes_identity(self):
        a = ContextIdentity.for_source("app.css", {"base"}, _config("sha256:a"))
        b = ContextIdentity.for_source("app.css", {"base"}, _config("sha256:b"))
        assert a != b


class TestContext:
    def test_append_and_snapshot(self, make_context: Callable[..., Context]):
        context = make_context()
        added = context.append_content([ChangedContent("a", "html"), ChangedContent("b", "js")])
        assert added == 2
        snapshot = context.changed_content
        snapshot.clear()
        assert [r.content for r in context.changed_content] == ["a", "b"]

    def test_consume_starts_new_batch(self, make_context: Callable[..., Context]):
        context = make_context()
        context.append_content([ChangedContent("a", "html")])
        assert context.consume_changed_content() == [ChangedContent("a", "html")]
        assert context.changed_content == []

    def test_concurrent_appends_are_not_lost(self, make_context: Callable[..., Context]):
        context = make_context()

        def _worker(n: int) -> None:
            for i in range(200):
                context.append_content([ChangedContent(f"{n}-{i}", "html")])

        threads = [threading.Thread(target=_worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(context.changed_content) == 1600

    def test_dispose_runs_every_disposable(
        self, make_context: Callable[..., Context], caplog: pytest.LogCaptureFixture
    ):
        context = make_context()
        calls: list[str] = []

        def _broken(_ctx: Context) -> None:
            raise RuntimeError("boom")

        context.disposables.extend([_broken, lambda ctx: calls.append(ctx.id)])
        with caplog.at_level(logging.WARNING, logger="jitwatch.context"):
            context.dispose()

        assert calls == [context.id]
        assert context.disposed
        assert "boom" in caplog.text

    def test_dispose_is_idempotent(self, make_context: Callable[..., Context]):
        context = make_context()
        calls: list[str] = []
        context.disposables.append(lambda ctx: calls.append(ctx.id))
        context.dispose()
        context.dispose()
        assert len(calls) == 1


class TestContextCache:
    def test_same_identity_reuses_context(self):
        cache = ContextCache()
        config = _config()
        identity = ContextIdentity("app.css", config.hash)
        first, new_first = cache.get_or_create(identity, _factory(config))
        second, new_second = cache.get_or_create(identity, _factory(config))
        assert second is first
        assert new_first is True
        assert new_second is False
        assert len(cache) == 1

    def test_changed_identity_disposes_old_context(self):
        cache = ContextCache()
        disposed: list[str] = []
        old, _ = cache.get_or_create(ContextIdentity("app.css", "sha256:a"), _factory(_config()))
        old.disposables.append(lambda ctx: disposed.append(ctx.id))

        new, is_new = cache.get_or_create(
            ContextIdentity("app.css", "sha256:b"), _factory(_config("sha256:b"))
        )
        assert is_new
        assert new is not old
        assert disposed == [old.id]
        assert cache.get("app.css") is new

    def test_old_context_disposed_before_factory_runs(self):
        cache = ContextCache()
        old, _ = cache.get_or_create(ContextIdentity("app.css", "sha256:a"), _factory(_config()))

        def _factory_checking(identity: ContextIdentity) -> Context:
            assert old.disposed
            return Context(identity=identity, config=_config("sha256:b"))

        cache.get_or_create(ContextIdentity("app.css", "sha256:b"), _factory_checking)

    def test_sources_have_independent_slots(self):
        cache = ContextCache()
        config = _config()
        a, _ = cache.get_or_create(ContextIdentity("a.css", config.hash), _factory(config))
        b, _ = cache.get_or_create(ContextIdentity("b.css", config.hash), _factory(config))
        assert a is not b
        assert not a.disposed

    def test_modified_dependency_replaces_context(
        self, tmp_path: Path, bump: Callable[..., None]
    ):
        dep = tmp_path / "base.css"
        dep.write_text("", encoding="utf-8")
        identity = ContextIdentity("app.css", "sha256:a", frozenset({str(dep)}))
        cache = ContextCache()
        first, _ = cache.get_or_create(identity, _factory(_config()))
        assert cache.get_or_create(identity, _factory(_config()))[0] is first

        bump(dep)
        second, is_new = cache.get_or_create(identity, _factory(_config()))
        assert is_new
        assert second is not first
        assert first.disposed

    def test_missing_dependency_is_not_stale(self, tmp_path: Path):
        identity = ContextIdentity("app.css", "sha256:a", frozenset({str(tmp_path / "nope")}))
        cache = ContextCache()
        first, _ = cache.get_or_create(identity, _factory(_config()))
        assert cache.get_or_create(identity, _factory(_config()))[0] is first

    def test_clear_disposes_all(self):
        cache = ContextCache()
        config = _config()
        a, _ = cache.get_or_create(ContextIdentity("a.css"), _factory(config))
        b, _ = cache.get_or_create(ContextIdentity("b.css"), _factory(config))
        cache.clear()
        assert a.disposed
        assert b.disposed
        assert len(cache) == 0

    def test_discard(self):
        cache = ContextCache()
        a, _ = cache.get_or_create(ContextIdentity("a.css"), _factory(_config()))
        cache.discard("a.css")
        assert a.disposed
        assert cache.get("a.css") is None
