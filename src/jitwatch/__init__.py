"""jitwatch: build-context tracking and invalidation for utility-class CSS compilers."""

__version__ = "0.1.0"
