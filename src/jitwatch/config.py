"""Configuration loading for jitwatch.

Resolves a configuration input (inline mapping or file path) into a
:class:`ResolvedConfig` carrying a content hash and the dependency closure
of the configuration file. Configuration files are TOML (or JSON) and may
``extends`` other files; every extended file is part of the closure.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import sys
import threading
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import tomli_w

if sys.version_info >= (3, 12):
    import tomllib
else:
    import tomli as tomllib

from jitwatch.env import timed
from jitwatch.exceptions import ConfigLoadError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

__all__ = [
    "CONFIG_CACHE_SIZE",
    "DEFAULT_CONFIG_FILES",
    "ConfigCache",
    "ConfigCacheEntry",
    "ConfigLoader",
    "ResolvedConfig",
    "default_config",
    "hash_config",
    "load_config_file",
    "normalize_config",
    "resolve_config_path",
    "save_config",
]

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES = ("jitwatch.config.toml", "jitwatch.config.json")
CONFIG_CACHE_SIZE = 100

ConfigInput = Mapping[str, Any] | str | Path | None


@dataclass(frozen=True)
class ResolvedConfig:
    """A normalized configuration and its identity.

    Equality and hashing ignore ``value``: two configs with the same
    ``hash`` are interchangeable for caching purposes.
    """

    value: dict[str, Any] = field(compare=False, hash=False)
    hash: str
    source_path: Path | None = None
    dependencies: frozenset[Path] = frozenset()


@dataclass(frozen=True)
class ConfigCacheEntry:
    """A resolved config plus the dependency timestamps it was built from."""

    config: ResolvedConfig
    snapshot: dict[Path, int] = field(compare=False, hash=False)


class ConfigCache:
    """LRU cache from configuration file path to :class:`ConfigCacheEntry`."""

    def __init__(self, maxsize: int = CONFIG_CACHE_SIZE) -> None:
        self.maxsize = maxsize
        self._entries: OrderedDict[Path, ConfigCacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def get(self, path: Path) -> ConfigCacheEntry | None:
        entry = self._entries.get(path)
        if entry is not None:
            self._entries.move_to_end(path)
        return entry

    def set(self, path: Path, entry: ConfigCacheEntry) -> None:
        self._entries[path] = entry
        self._entries.move_to_end(path)
        while len(self._entries) > self.maxsize:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted config cache entry for %s", evicted)

    def pop(self, path: Path) -> ConfigCacheEntry | None:
        return self._entries.pop(path, None)

    def items(self) -> Iterator[tuple[Path, ConfigCacheEntry]]:
        return iter(list(self._entries.items()))

    def clear(self) -> None:
        self._entries.clear()


def default_config() -> dict[str, Any]:
    """Return a starter configuration with an empty content list."""
    return {"content": []}


def hash_config(value: Mapping[str, Any]) -> str:
    """Compute a SHA-256 fingerprint of a normalized configuration."""
    payload = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return f"sha256:{hashlib.sha256(payload.encode('utf-8')).hexdigest()}"


def normalize_config(value: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize a raw configuration mapping.

    ``purge`` is accepted as a legacy alias of ``content``. The result always
    has a ``content`` key holding either a list or a table with a
    ``content`` list.
    """
    config = copy.deepcopy(dict(value))
    config.pop("extends", None)

    legacy = config.pop("purge", None)
    if "content" not in config and legacy is not None:
        config["content"] = legacy

    content = config.get("content")
    if content is None:
        config["content"] = []
    elif isinstance(content, Mapping):
        table = dict(content)
        table["content"] = list(table.get("content") or [])
        config["content"] = table
    elif isinstance(content, (str, bytes)):
        raise ConfigLoadError("'content' must be a list or a table, not a string")
    else:
        config["content"] = list(content)

    return config


def _merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` onto ``base``; lists are replaced."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = _merge(dict(result[key]), value)
        else:
            result[key] = value
    return result


def resolve_config_path(config_or_path: ConfigInput, cwd: Path | None = None) -> Path | None:
    """Find the configuration file a config input refers to.

    Returns ``None`` for inline configuration, or when no input is given and
    no default configuration file exists in ``cwd``.
    """
    base = cwd or Path.cwd()

    if isinstance(config_or_path, Mapping):
        nested = config_or_path.get("config")
        if isinstance(nested, (str, Path)):
            return (base / nested).resolve()
        return None

    if isinstance(config_or_path, (str, Path)):
        return (base / config_or_path).resolve()

    for name in DEFAULT_CONFIG_FILES:
        candidate = base / name
        if candidate.is_file():
            return candidate.resolve()
    return None


def load_config_file(path: Path) -> dict[str, Any]:
    """Parse a single TOML or JSON configuration file."""
    if not path.is_file():
        raise ConfigLoadError(f"Config file not found: {path}")

    try:
        raw = path.read_bytes().decode("utf-8")
        if path.suffix == ".json":
            data = json.loads(raw)
        else:
            data = tomllib.loads(raw)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        logger.error("Failed to load config from %s: %s", path, e)
        raise ConfigLoadError(f"Failed to load config from {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigLoadError(f"Config file {path} must contain a table at the top level")
    return data


def save_config(value: Mapping[str, Any], path: Path) -> None:
    """Save a configuration mapping to a TOML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with path.open("wb") as f:
            tomli_w.dump(dict(value), f)
        logger.info("Saved config to %s", path)
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise ConfigLoadError(f"Failed to save config to {path}: {e}") from e


def _mtime(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None


class ConfigLoader:
    """Resolves configuration inputs, reusing unchanged configuration files.

    A parsed-document cache holds the files of every cached config, keyed
    by the modification time they were read at; dependency closures are
    walked through it, so an unchanged file is never read from disk twice.
    :meth:`invalidate` drops documents and cache entries and bumps
    :attr:`generation`. It is called from watcher threads, so every public
    method holds the loader lock.

    Usage::

        loader = ConfigLoader()
        config = loader.resolve("jitwatch.config.toml")
        config.hash, config.dependencies
    """

    def __init__(
        self,
        cache: ConfigCache | None = None,
        *,
        cwd: Path | None = None,
        debug: bool = False,
    ) -> None:
        self.cache = cache if cache is not None else ConfigCache()
        self.cwd = cwd
        self.debug = debug
        self.generation = 0
        self._documents: dict[Path, dict[str, Any]] = {}
        self._read_mtimes: dict[Path, int] = {}
        self._lock = threading.RLock()

    def resolve(
        self,
        config_or_path: ConfigInput = None,
        *,
        track_dependencies: bool = True,
    ) -> ResolvedConfig:
        """Resolve a config input into a :class:`ResolvedConfig`.

        Args:
            config_or_path: Inline mapping, path to a config file, or None to
                search for a default config file.
            track_dependencies: Compare timestamps of the whole dependency
                closure. When False only the config file itself is checked.

        Raises:
            ConfigLoadError: If the file is missing or cannot be parsed.
        """
        path = resolve_config_path(config_or_path, self.cwd)
        if path is None:
            return self._resolve_inline(config_or_path)

        with self._lock, timed(f"Loading config {path.name}", self.debug):
            return self._resolve_path(path, track_dependencies)

    def _resolve_inline(self, config_or_path: ConfigInput) -> ResolvedConfig:
        value: Mapping[str, Any] = {}
        if isinstance(config_or_path, Mapping):
            nested = config_or_path.get("config")
            value = nested if isinstance(nested, Mapping) else config_or_path
        normalized = normalize_config(value)
        return ResolvedConfig(value=normalized, hash=hash_config(normalized))

    def _resolve_path(self, path: Path, track_dependencies: bool) -> ResolvedConfig:
        entry = self.cache.get(path)
        if entry is not None:
            watched = entry.config.dependencies if track_dependencies else frozenset({path})
            if not self._is_modified(path, watched, entry.snapshot):
                return entry.config
            logger.info("Config %s changed, reloading", path)
            self._forget(entry.config.dependencies)

        if _mtime(path) is None:
            raise ConfigLoadError(f"Config file not found: {path}")

        closure: dict[Path, None] = {path: None}
        raw = self._load_closure(path, closure)
        normalized = normalize_config(raw)
        dependencies = frozenset(closure)

        config = ResolvedConfig(
            value=normalized,
            hash=hash_config(normalized),
            source_path=path,
            dependencies=dependencies,
        )
        snapshot = {dep: self._read_mtimes[dep] for dep in dependencies}
        self.cache.set(path, ConfigCacheEntry(config=config, snapshot=snapshot))
        self._prune_documents()
        logger.info("Loaded config from %s (%d dependencies)", path, len(dependencies))
        return config

    def _is_modified(
        self, root: Path, paths: Iterable[Path], snapshot: Mapping[Path, int]
    ) -> bool:
        for dep in paths:
            current = _mtime(dep)
            if current is None:
                if dep == root:
                    raise ConfigLoadError(f"Config dependency not found: {dep}")
                logger.debug("Config dependency %s disappeared", dep)
                return True
            previous = snapshot.get(dep)
            if previous is None or current > previous:
                return True
        return False

    def _load_closure(self, path: Path, closure: dict[Path, None]) -> dict[str, Any]:
        document = self._document(path)
        extends = document.get("extends", [])
        if isinstance(extends, (str, Path)):
            extends = [extends]

        merged: dict[str, Any] = {}
        for ref in extends:
            dep = (path.parent / ref).resolve()
            if dep in closure:
                continue
            closure[dep] = None
            merged = _merge(merged, self._load_closure(dep, closure))

        return _merge(merged, {k: v for k, v in document.items() if k != "extends"})

    def _document(self, path: Path) -> dict[str, Any]:
        mtime = _mtime(path)
        if mtime is None:
            raise ConfigLoadError(f"Config dependency not found: {path}")
        document = self._documents.get(path)
        if document is None or self._read_mtimes.get(path) != mtime:
            document = load_config_file(path)
            self._documents[path] = document
            self._read_mtimes[path] = mtime
        return document

    def _forget(self, paths: Iterable[Path]) -> None:
        for path in paths:
            self._documents.pop(path, None)
            self._read_mtimes.pop(path, None)

    def _prune_documents(self) -> None:
        """Drop documents that no cached config depends on any more."""
        referenced: set[Path] = set()
        for _, entry in self.cache.items():
            referenced.update(entry.config.dependencies)
        self._forget([path for path in self._documents if path not in referenced])

    def invalidate(self, paths: Iterable[Path]) -> None:
        """Drop cached documents for ``paths`` and every config depending on them."""
        targets = frozenset(paths)
        with self._lock:
            self._forget(targets)
            for key, entry in self.cache.items():
                if key in targets or entry.config.dependencies & targets:
                    self._forget(entry.config.dependencies)
                    self.cache.pop(key)
            self.generation += 1
        logger.debug(
            "Invalidated %d config dependencies (generation %d)", len(targets), self.generation
        )

    def clear(self) -> None:
        with self._lock:
            self.cache.clear()
            self._documents.clear()
            self._read_mtimes.clear()
