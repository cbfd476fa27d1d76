"""Tests for jitwatch.candidates module."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from jitwatch.candidates import (
    candidate_files,
    content_entries,
    expand_braces,
    glob_parent,
    is_glob,
    matches_glob,
    normalize_path,
    raw_content,
    resolve_candidates,
    split_exclusions,
)
from jitwatch.config import ResolvedConfig, normalize_config
from jitwatch.context import ChangedContent

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from jitwatch.context import Context


def _config(value: dict, source_path: Path | None = None) -> ResolvedConfig:
    return ResolvedConfig(value=normalize_config(value), hash="h", source_path=source_path)


class TestContentEntries:
    def test_flat_list(self):
        assert content_entries({"content": ["a", "b"]}) == ["a", "b"]

    def test_structured(self):
        assert content_entries({"content": {"content": ["a"]}}) == ["a"]

    def test_missing(self):
        assert content_entries({}) == []


class TestRawContent:
    def test_only_raw_descriptors(self):
        value = {"content": ["src/*.html", {"raw": "<div class='p-4'>", "extension": "html"}]}
        assert raw_content(value) == [ChangedContent("<div class='p-4'>", "html")]

    def test_structured_content(self):
        value = {"content": {"content": [{"raw": "x", "extension": "js"}]}}
        assert raw_content(value) == [ChangedContent("x", "js")]

    def test_default_extension(self):
        assert raw_content({"content": [{"raw": "x"}]}) == [ChangedContent("x", "html")]

    def test_skips_non_string_raw(self):
        assert raw_content({"content": [{"raw": 1}, {"extension": "html"}]}) == []


class TestIsGlob:
    @pytest.mark.parametrize(
        "pattern",
        ["src/*.html", "src/**/x.js", "a?.html", "[ab].html", "src/*.{html,js}"],
    )
    def test_globs(self, pattern: str):
        assert is_glob(pattern)

    @pytest.mark.parametrize("pattern", ["src/index.html", "/abs/path.js", "{single}.html"])
    def test_literals(self, pattern: str):
        assert not is_glob(pattern)


class TestGlobParent:
    def test_recursive_glob(self):
        assert glob_parent("/proj/src/**/*.html") == "/proj/src"

    def test_glob_in_filename(self):
        assert glob_parent("/proj/src/*.html") == "/proj/src"

    def test_literal_returns_directory(self):
        assert glob_parent("/proj/src/index.html") == "/proj/src"

    def test_glob_at_root_of_relative(self):
        assert glob_parent("*.html") == "."


class TestExpandBraces:
    def test_no_braces(self):
        assert expand_braces("src/*.html") == ["src/*.html"]

    def test_alternation(self):
        assert expand_braces("src/*.{html,js}") == ["src/*.html", "src/*.js"]

    def test_multiple_groups(self):
        assert expand_braces("{a,b}/{x,y}") == ["a/x", "a/y", "b/x", "b/y"]

    def test_nested(self):
        assert expand_braces("{a,{b,c}}") == ["a", "b", "c"]

    def test_single_option_is_literal(self):
        assert expand_braces("{a}.html") == ["{a}.html"]


class TestMatchesGlob:
    @pytest.mark.parametrize(
        ("path", "pattern"),
        [
            ("/p/src/a.html", "/p/src/**/*.html"),
            ("/p/src/x/y/a.html", "/p/src/**/*.html"),
            ("/p/src/a.js", "/p/src/*.{html,js}"),
            ("/p/src/a1.html", "/p/src/a?.html"),
            ("/p/src/b.html", "/p/src/[ab].html"),
            ("/p/src/x/../a.html", "/p/src/*.html"),
        ],
    )
    def test_matches(self, path: str, pattern: str):
        assert matches_glob(path, pattern)

    @pytest.mark.parametrize(
        ("path", "pattern"),
        [
            ("/p/other/a.html", "/p/src/**/*.html"),
            ("/p/src/x/a.js", "/p/src/*.js"),
            ("/p/src/a.css", "/p/src/*.{html,js}"),
            ("/p/src/c.html", "/p/src/[ab].html"),
            ("/p/src/c.html", "/p/src/[!c].html"),
        ],
    )
    def test_does_not_match(self, path: str, pattern: str):
        assert not matches_glob(path, pattern)


class TestResolveCandidates:
    def test_relative_to_config_directory(self, tmp_path: Path):
        config = _config(
            {"content": ["./src/**/*.html", {"raw": "x"}, "../shared/*.js"]},
            source_path=tmp_path / "proj" / "tw.toml",
        )
        assert resolve_candidates(config) == [
            (tmp_path / "proj" / "src" / "**" / "*.html").as_posix(),
            (tmp_path / "shared" / "*.js").as_posix(),
        ]

    def test_inline_config_uses_cwd(self, tmp_path: Path):
        config = _config({"content": ["src/*.html"]})
        assert resolve_candidates(config, tmp_path) == [(tmp_path / "src" / "*.html").as_posix()]

    def test_absolute_entries_kept(self, tmp_path: Path):
        absolute = (tmp_path / "other" / "*.html").as_posix()
        config = _config({"content": [absolute]}, source_path=tmp_path / "proj" / "tw.toml")
        assert resolve_candidates(config) == [absolute]

    def test_exclusions_keep_prefix(self, tmp_path: Path):
        config = _config({"content": ["src/*.html", "!src/skip.html"]})
        include, exclude = split_exclusions(resolve_candidates(config, tmp_path))
        assert include == [(tmp_path / "src" / "*.html").as_posix()]
        assert exclude == [(tmp_path / "src" / "skip.html").as_posix()]

    def test_structured_content(self, tmp_path: Path):
        config = _config({"content": {"content": ["a.html"]}})
        assert resolve_candidates(config, tmp_path) == [normalize_path(tmp_path / "a.html")]


class TestCandidateFiles:
    def test_memoized_per_context(
        self, tmp_path: Path, make_context: Callable[..., Context]
    ):
        context = make_context({"content": ["src/*.html"]})
        first = candidate_files(context, tmp_path)
        context.config.value["content"].append("other/*.html")
        assert candidate_files(context, tmp_path) is first
        assert len(first) == 1
