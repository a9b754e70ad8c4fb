from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from .types import Outcome, Status


class Report:
    """Per-target, per-step outcomes of one run."""

    def __init__(self, outcomes: Iterable[Outcome] = (), *, targets: Iterable[str] = ()):
        self.outcomes: list[Outcome] = list(outcomes)
        # Selected targets, listed even when no step applied to them.
        self.declared: list[str] = list(targets)

    def __iter__(self) -> Iterator[Outcome]:
        return iter(self.outcomes)

    def __len__(self) -> int:
        return len(self.outcomes)

    def add(self, outcome: Outcome) -> None:
        self.outcomes.append(outcome)

    @property
    def failed(self) -> bool:
        return any(outcome.failed for outcome in self.outcomes)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def targets(self) -> list[str]:
        seen: dict[str, None] = dict.fromkeys(self.declared)
        for outcome in self.outcomes:
            seen.setdefault(outcome.host, None)
        return list(seen)

    def for_target(self, name: str) -> list[Outcome]:
        return [outcome for outcome in self.outcomes if outcome.host == name]

    def counts(self, name: Optional[str] = None) -> dict[str, int]:
        counts = {status.value: 0 for status in Status}
        for outcome in self.outcomes:
            if name is None or outcome.host == name:
                counts[outcome.status.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        targets: dict[str, Any] = {}
        for name in self.targets():
            entry: dict[str, Any] = dict(self.counts(name))
            entry["outcomes"] = [
                {
                    "step": outcome.step,
                    "action": outcome.action,
                    "resource": outcome.resource,
                    "status": outcome.status.value,
                    "details": outcome.details,
                    "error": outcome.error,
                }
                for outcome in self.for_target(name)
            ]
            targets[name] = entry
        return {"ok": not self.failed, "totals": self.counts(), "targets": targets}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def write(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json() + "\n")
