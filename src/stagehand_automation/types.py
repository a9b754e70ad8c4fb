from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class Target:
    name: str
    connection: str = "local"
    address: Optional[str] = None
    credentials: Optional[str] = None
    tags: tuple[str, ...] = ()


@dataclass
class StepSpec:
    type: str
    data: dict[str, Any]
    name: Optional[str] = None
    when: Any = None
    depends_on: list[str] = field(default_factory=list)
    on_success: list["StepSpec"] = field(default_factory=list)
    on_failure: list["StepSpec"] = field(default_factory=list)


@dataclass
class TaskSpec:
    name: str
    hosts: list[str]
    steps: list[StepSpec]


@dataclass
class VariableLayers:
    defaults: dict[str, Any] = field(default_factory=dict)
    globals: dict[str, Any] = field(default_factory=dict)
    groups: dict[str, dict[str, Any]] = field(default_factory=dict)
    hosts: dict[str, dict[str, Any]] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)


@dataclass
class Plan:
    targets: dict[str, Target]
    tasks: list[TaskSpec]
    layers: VariableLayers = field(default_factory=VariableLayers)
    gather_facts: bool = True


class Status(str, Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    FAILED = "failed"


@dataclass
class Outcome:
    host: str
    step: str
    action: str
    status: Status
    details: str
    error: Optional[str] = None
    resource: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.status is Status.CHANGED

    @property
    def failed(self) -> bool:
        return self.status is Status.FAILED
