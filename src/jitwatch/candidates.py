"""Candidate file resolution for jitwatch.

Turns the ``content`` declaration of a configuration into absolute,
forward-slash-normalized paths and glob patterns. Patterns may use ``*``,
``**``, ``?``, ``[...]`` and ``{a,b}``; entries starting with ``!``
exclude matching files.
"""

from __future__ import annotations

import functools
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from jitwatch.context import ChangedContent

if TYPE_CHECKING:
    from jitwatch.config import ResolvedConfig
    from jitwatch.context import Context

__all__ = [
    "candidate_files",
    "content_entries",
    "expand_braces",
    "glob_parent",
    "is_glob",
    "matches_glob",
    "normalize_path",
    "raw_content",
    "resolve_candidates",
    "split_exclusions",
]

logger = logging.getLogger(__name__)

_GLOB_RE = re.compile(r"[*?]|\[[^\]]+\]|\{[^}]*,[^}]*\}")


def content_entries(value: Mapping[str, Any]) -> list[Any]:
    """Return the raw content list of a normalized config value."""
    content = value.get("content", [])
    if isinstance(content, Mapping):
        content = content.get("content", [])
    return list(content or [])


def raw_content(value: Mapping[str, Any]) -> list[ChangedContent]:
    """Inline ``{raw, extension}`` descriptors as changed content records."""
    records: list[ChangedContent] = []
    for item in content_entries(value):
        if isinstance(item, Mapping) and isinstance(item.get("raw"), str):
            records.append(ChangedContent(item["raw"], str(item.get("extension", "html"))))
    return records


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Collapse ``..`` segments and use forward slashes."""
    return Path(os.path.normpath(path)).as_posix()


def is_glob(pattern: str) -> bool:
    return _GLOB_RE.search(pattern) is not None


def glob_parent(pattern: str) -> str:
    """Longest leading directory of ``pattern`` free of glob syntax."""
    parts = PurePosixPath(pattern).parts
    static: list[str] = []
    for part in parts:
        if is_glob(part):
            break
        static.append(part)
    else:
        static = static[:-1]
    if not static:
        return "."
    return str(PurePosixPath(*static))


def expand_braces(pattern: str) -> list[str]:
    """Expand the first (possibly nested) ``{a,b}`` group, recursively."""
    start = pattern.find("{")
    if start == -1:
        return [pattern]

    depth = 0
    options: list[str] = []
    last = start + 1
    for i in range(start, len(pattern)):
        char = pattern[i]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                options.append(pattern[last:i])
                prefix, suffix = pattern[:start], pattern[i + 1 :]
                if len(options) == 1:
                    # Not an alternation, keep the braces literally
                    literal = prefix + "{" + options[0] + "}"
                    return [literal + rest for rest in expand_braces(suffix)]
                expanded: list[str] = []
                for option in options:
                    expanded.extend(expand_braces(prefix + option + suffix))
                return expanded
        elif char == "," and depth == 1:
            options.append(pattern[last:i])
            last = i + 1
    return [pattern]


@functools.lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str]:
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        char = pattern[i]
        if char == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    i += 1
                    out.append("(?:.*/)?")
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        elif char == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(char))
            else:
                body = pattern[i + 1 : end].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end + 1
                continue
        else:
            out.append(re.escape(char))
        i += 1
    return re.compile("".join(out) + r"\Z")


def matches_glob(path: str | os.PathLike[str], pattern: str) -> bool:
    """Check whether an absolute path matches a candidate pattern."""
    target = normalize_path(path)
    return any(_compile(variant).match(target) for variant in expand_braces(pattern))


def split_exclusions(candidates: list[str]) -> tuple[list[str], list[str]]:
    """Separate ``!pattern`` exclusions from inclusion candidates."""
    include = [c for c in candidates if not c.startswith("!")]
    exclude = [c[1:] for c in candidates if c.startswith("!")]
    return include, exclude


def resolve_candidates(config: ResolvedConfig, cwd: Path | None = None) -> list[str]:
    """Compute absolute candidate patterns for a resolved configuration.

    Relative entries resolve against the directory holding the config file,
    or ``cwd`` for inline configuration. Non-string entries are skipped.
    """
    if config.source_path is not None:
        base = config.source_path.parent
    else:
        base = cwd or Path.cwd()

    candidates: list[str] = []
    for item in content_entries(config.value):
        if not isinstance(item, str):
            continue
        negated = item.startswith("!")
        entry = item[1:] if negated else item
        resolved = normalize_path(base / entry)
        candidates.append(f"!{resolved}" if negated else resolved)

    logger.debug("Resolved %d candidate patterns", len(candidates))
    return candidates


def candidate_files(context: Context, cwd: Path | None = None) -> list[str]:
    """Candidate patterns for ``context``, computed once per context."""
    if context.candidate_files is None:
        context.candidate_files = resolve_candidates(context.config, cwd)
    return context.candidate_files
