"""Custom exception hierarchy for jitwatch."""

__all__ = [
    "ConfigLoadError",
    "JitwatchError",
    "ScanError",
    "TouchFileError",
    "WatcherError",
]


class JitwatchError(Exception):
    """Base exception for all jitwatch errors."""


class ConfigLoadError(JitwatchError):
    """Raised when a configuration cannot be located, read or parsed."""


class ScanError(JitwatchError):
    """Raised when a candidate file cannot be read during a build-mode scan."""


class TouchFileError(JitwatchError):
    """Raised when the touch directory or a touch file cannot be prepared."""


class WatcherError(JitwatchError):
    """Raised when a filesystem watcher cannot be started."""
