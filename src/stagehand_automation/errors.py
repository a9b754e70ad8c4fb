from __future__ import annotations

from typing import Optional


class StagehandError(Exception):
    """Base class for errors raised by the reconciliation engine."""


class ConfigError(StagehandError, ValueError):
    """Raised when the plan or a target's configuration cannot be resolved."""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        super().__init__(message)
        self.line = line
        self.column = column


class TargetConnectionError(StagehandError, ConnectionError):
    """Raised when a target cannot be reached."""

    def __init__(self, target: str, message: str):
        super().__init__(f"{target}: {message}")
        self.target = target


class StepError(StagehandError):
    """Raised when a primitive fails to reach its desired state."""

    def __init__(self, step: str, message: str, pending: Optional[list[str]] = None):
        super().__init__(message)
        self.step = step
        self.pending = list(pending or [])
