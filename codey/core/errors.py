from __future__ import annotations


class CodeyError(Exception):
    pass


class LoadError(CodeyError):
    """Problem source is unreadable or a definition is malformed."""


class ExecutionError(CodeyError):
    """A single execution request failed before producing output."""


class StateError(CodeyError):
    """No active challenge to verify against."""
