"""Helpers for reading directives and imports out of stylesheet sources."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

__all__ = ["find_directives", "find_imports"]

_DIRECTIVE_RE = re.compile(r"@tailwind\s+([\w-]+)\s*;?")
_IMPORT_RE = re.compile(r"""@import\s+(?:url\(\s*)?["']([^"']+)["']""")
_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)


def find_directives(text: str) -> set[str]:
    """Names of ``@tailwind`` directives in a source, ignoring comments."""
    return set(_DIRECTIVE_RE.findall(_COMMENT_RE.sub("", text)))


def find_imports(text: str, base: Path) -> list[str]:
    """Local files imported with ``@import``, resolved against ``base``.

    Remote URLs and imports that do not resolve to an existing file are
    skipped.
    """
    imports: list[str] = []
    for ref in _IMPORT_RE.findall(_COMMENT_RE.sub("", text)):
        if "://" in ref or ref.startswith("//"):
            continue
        path = (base / ref).resolve()
        if path.is_file() and str(path) not in imports:
            imports.append(str(path))
    return imports
