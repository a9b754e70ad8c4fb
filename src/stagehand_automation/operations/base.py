from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from ..errors import StepError
from ..executors import Executor


class Operation(ABC):
    """Shared surface for idempotent step primitives.

    ``check`` reports what differs from the desired state, ``converge`` fixes
    it, and ``ensure`` ties the two together as probe, apply, re-probe.
    """

    action = "operation"

    def __init__(self, spec: dict[str, Any], *, variables: Optional[Mapping[str, Any]] = None):
        self.spec = spec
        self.variables = dict(variables or {})

    @property
    def resource(self) -> Optional[str]:
        return None

    @abstractmethod
    def check(self, executor: Executor) -> list[str]:
        """Return the pending changes needed on the host; empty when converged."""

    @abstractmethod
    def converge(self, executor: Executor, pending: list[str]) -> None:
        """Apply ``pending`` changes using ``executor``."""

    def ensure(self, executor: Executor) -> tuple[bool, str]:
        pending = self.check(executor)
        if not pending:
            return False, "noop"
        if executor.dry_run:
            return True, f"would change: {', '.join(pending)}"
        self.converge(executor, pending)
        remaining = self.check(executor)
        if remaining:
            raise StepError(
                self.action,
                f"{self.action} did not converge: {', '.join(remaining)}",
                pending=remaining,
            )
        return True, ", ".join(pending)


def to_bool(value: Any | None) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1", "on"}:
            return True
        if lowered in {"false", "no", "0", "off"}:
            return False
        raise ValueError(f"Unable to interpret boolean value '{value}'")
    return bool(value)


def bool_with_default(value: Any | None, default: bool) -> bool:
    result = to_bool(value)
    return default if result is None else result


def parse_mode(value: Optional[object]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    base = 8 if text.startswith("0") else 10
    return int(text, base)
