from __future__ import annotations

import re
from pathlib import Path
from typing import Any

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError
from .executors import CONNECTIONS
from .operations import OPERATION_REGISTRY
from .types import Plan, StepSpec, Target, TaskSpec, VariableLayers

_LOCATION_RE = re.compile(r"line (\d+), column (\d+)")

STEP_KEYS = {"type", "name", "when", "depends_on", "on_success", "on_failure"}


class InventoryLoader:
    """Loads targets, variable layers and tasks from a TOML plan."""

    def load(self, path: Path) -> Plan:
        path = Path(path)
        try:
            text = path.read_text()
        except FileNotFoundError:
            raise ConfigError(f"{path}: plan file not found") from None
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            lineno = getattr(exc, "lineno", None)
            colno = getattr(exc, "colno", None)
            if lineno is None:
                match = _LOCATION_RE.search(str(exc))
                if match:
                    lineno, colno = int(match.group(1)), int(match.group(2))
            location = f"{lineno}:{colno}" if lineno is not None else "?"
            raise ConfigError(f"{path}:{location} {getattr(exc, 'msg', exc)}", lineno, colno) from None
        try:
            plan = self.parse(data)
        except ConfigError as exc:
            raise ConfigError(f"{path}: {exc}") from None
        self._attach_plan_dir(plan, path.parent)
        return plan

    def parse(self, data: dict[str, Any]) -> Plan:
        layers = VariableLayers(
            defaults=self._mapping(data.get("defaults", {}), "defaults"),
            globals=self._mapping(data.get("vars", {}), "vars"),
            required=self._string_list(data.get("required", []), "required"),
        )
        group_members: dict[str, list[str]] = {}
        for group, payload in self._mapping(data.get("groups", {}), "groups").items():
            payload = self._mapping(payload, f"groups.{group}")
            layers.groups[group] = self._mapping(payload.get("vars", {}), f"groups.{group}.vars")
            for member in self._string_list(payload.get("hosts", []), f"groups.{group}.hosts"):
                group_members.setdefault(member, []).append(group)

        targets = self._parse_targets(data.get("hosts", {}), group_members, layers)
        for member in group_members:
            if member not in targets:
                raise ConfigError(f"group member '{member}' is not a declared host")
        tasks = self._parse_tasks(data.get("tasks", []), targets, layers)
        gather_facts = data.get("gather_facts", True)
        if not isinstance(gather_facts, bool):
            raise ConfigError("gather_facts must be true or false")
        return Plan(targets=targets, tasks=tasks, layers=layers, gather_facts=gather_facts)

    def _parse_targets(
        self, host_data: Any, group_members: dict[str, list[str]], layers: VariableLayers
    ) -> dict[str, Target]:
        host_data = self._mapping(host_data, "hosts")
        if not host_data:
            host_data = {"local": {"connection": "local"}}
        targets: dict[str, Target] = {}
        for name, payload in host_data.items():
            payload = self._mapping(payload, f"hosts.{name}")
            connection = str(payload.get("connection", "local"))
            if connection not in CONNECTIONS:
                raise ConfigError(f"hosts.{name}: unknown connection type '{connection}'")
            tags = self._string_list(payload.get("tags", []), f"hosts.{name}.tags")
            for group in group_members.get(name, []):
                if group not in tags:
                    tags.append(group)
            address = payload.get("address")
            credentials = payload.get("credentials")
            targets[name] = Target(
                name=name,
                connection=connection,
                address=str(address) if address is not None else None,
                credentials=str(credentials) if credentials is not None else None,
                tags=tuple(tags),
            )
            layers.hosts[name] = self._mapping(payload.get("vars", {}), f"hosts.{name}.vars")
        return targets

    def _parse_tasks(
        self, raw_tasks: Any, targets: dict[str, Target], layers: VariableLayers
    ) -> list[TaskSpec]:
        if not isinstance(raw_tasks, list):
            raise ConfigError("tasks must be an array of tables")
        known = {"all", *targets, *layers.groups}
        for target in targets.values():
            known.update(target.tags)
        tasks: list[TaskSpec] = []
        for index, task in enumerate(raw_tasks, start=1):
            task = self._mapping(task, f"tasks[{index}]")
            name = str(task.get("name", f"task-{index}"))
            raw_hosts = task.get("hosts", ["all"])
            hosts = [raw_hosts] if isinstance(raw_hosts, str) else self._string_list(raw_hosts, f"task {name} hosts")
            unknown = [pattern for pattern in hosts if pattern not in known]
            if unknown:
                raise ConfigError(f"task {name}: unknown host or group {', '.join(unknown)}")
            steps = [
                self._parse_step(step, f"{index}.{pos}")
                for pos, step in enumerate(task.get("steps", []), start=1)
            ]
            tasks.append(TaskSpec(name=name, hosts=hosts, steps=steps))
        return tasks

    def _parse_step(self, step: Any, step_index: str) -> StepSpec:
        step = self._mapping(step, f"step {step_index}")
        step_type = step.get("type")
        if not step_type:
            raise ConfigError(f"Step {step_index} is missing a type")
        if step_type not in OPERATION_REGISTRY:
            raise ConfigError(f"Step {step_index}: unknown step type '{step_type}'")
        depends = step.get("depends_on", [])
        if isinstance(depends, str):
            depends_list = [depends]
        else:
            depends_list = self._string_list(depends, f"step {step_index} depends_on")
        name = step.get("name")
        data = {k: v for k, v in step.items() if k not in STEP_KEYS}
        return StepSpec(
            type=str(step_type),
            data=data,
            name=str(name) if name is not None else None,
            when=step.get("when"),
            depends_on=depends_list,
            on_success=self._parse_nested(step.get("on_success", []), f"{step_index}.s"),
            on_failure=self._parse_nested(step.get("on_failure", []), f"{step_index}.f"),
        )

    def _parse_nested(self, value: Any, step_index: str) -> list[StepSpec]:
        if not value:
            return []
        items = value if isinstance(value, list) else [value]
        return [self._parse_step(raw, f"{step_index}{idx}") for idx, raw in enumerate(items, start=1)]

    @staticmethod
    def _attach_plan_dir(plan: Plan, base_dir: Path) -> None:
        base = str(base_dir)

        def _assign(step: StepSpec) -> None:
            step.data.setdefault("_plan_dir", base)
            for child in step.on_success:
                _assign(child)
            for child in step.on_failure:
                _assign(child)

        for task in plan.tasks:
            for step in task.steps:
                _assign(step)

    @staticmethod
    def _mapping(value: Any, where: str) -> dict[str, Any]:
        if not isinstance(value, dict):
            raise ConfigError(f"{where} must be a table")
        return dict(value)

    @staticmethod
    def _string_list(value: Any, where: str) -> list[str]:
        if not isinstance(value, list):
            raise ConfigError(f"{where} must be a list")
        return [str(item) for item in value]

