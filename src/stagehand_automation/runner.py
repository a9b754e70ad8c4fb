from __future__ import annotations

import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from .config import DEFAULT_FORKS
from .errors import ConfigError, StepError, TargetConnectionError
from .executors import CONNECTIONS, Executor, ExecutorFactory, default_executor_factory
from .facts import gather_facts
from .operations import OPERATION_REGISTRY, Operation
from .reporter import Report
from .templating import evaluate_guard, render_value
from .types import Outcome, Plan, Status, StepSpec, Target, TaskSpec
from .variables import EffectiveConfig, VariableResolver

logger = logging.getLogger(__name__)


@dataclass
class ResolvedStep:
    id: str
    spec: StepSpec
    operation: Operation
    on_success: list["ResolvedStep"] = field(default_factory=list)
    on_failure: list["ResolvedStep"] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.spec.name or self.id


@dataclass
class TargetJob:
    target: Target
    config: EffectiveConfig
    steps: list[ResolvedStep]


class TaskRunner:
    """Coordinates the execution of a plan across its targets."""

    def __init__(
        self,
        plan: Plan,
        *,
        dry_run: bool = False,
        forks: int = DEFAULT_FORKS,
        extra_vars: Optional[dict[str, Any]] = None,
        limit: Optional[Sequence[str]] = None,
        executor_factory: Optional[ExecutorFactory] = None,
    ):
        if forks < 1:
            raise ConfigError("forks must be at least 1")
        self.plan = plan
        self.dry_run = dry_run
        self.forks = forks
        self.limit = list(limit or [])
        self.resolver = VariableResolver(plan.layers, extra_vars)
        self.executor_factory = executor_factory or default_executor_factory

    def run(self) -> Report:
        # Every target is resolved before any of them is contacted.
        jobs = self.prepare()
        report = Report(targets=[job.target.name for job in jobs])
        if not jobs:
            return report
        workers = max(1, min(self.forks, len(jobs)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stagehand") as pool:
            futures = [pool.submit(self._run_target, job) for job in jobs]
            for future in futures:
                for outcome in future.result():
                    report.add(outcome)
        return report

    # Resolution ------------------------------------------------------------
    def prepare(self) -> list[TargetJob]:
        jobs: list[TargetJob] = []
        for target in self._selected_targets():
            if self.executor_factory is default_executor_factory and target.connection not in CONNECTIONS:
                raise ConfigError(f"Unknown connection type '{target.connection}' for {target.name}")
            config = self.resolver.resolve(target)
            steps: list[ResolvedStep] = []
            for task in self.plan.tasks:
                if self._task_applies(task, target):
                    steps.extend(self._resolve_task(task, target, config))
            self._check_dependencies(target, steps)
            jobs.append(TargetJob(target=target, config=config, steps=steps))
        return jobs

    def _selected_targets(self) -> list[Target]:
        targets = list(self.plan.targets.values())
        if not self.limit:
            return targets
        selected = [t for t in targets if any(self._matches(p, t) for p in self.limit)]
        if not selected:
            raise ConfigError(f"--limit {','.join(self.limit)} matched no targets")
        return selected

    @staticmethod
    def _matches(pattern: str, target: Target) -> bool:
        return pattern == "all" or pattern == target.name or pattern in target.tags

    def _task_applies(self, task: TaskSpec, target: Target) -> bool:
        return any(self._matches(pattern, target) for pattern in task.hosts)

    def _resolve_task(self, task: TaskSpec, target: Target, config: EffectiveConfig) -> list[ResolvedStep]:
        resolved = [
            self._resolve_step(spec, target, config, f"{task.name}.{index}")
            for index, spec in enumerate(task.steps, start=1)
        ]
        seen: dict[str, int] = {}
        for step in resolved:
            count = seen.get(step.id, 0) + 1
            seen[step.id] = count
            if count > 1:
                step.id = f"{step.id}#{count}"
        try:
            return self._order_steps(resolved)
        except ConfigError as exc:
            raise ConfigError(f"{target.name}: task {task.name}: {exc}") from None

    def _resolve_step(
        self, spec: StepSpec, target: Target, config: EffectiveConfig, position: str
    ) -> ResolvedStep:
        operation_cls = OPERATION_REGISTRY.get(spec.type)
        if operation_cls is None:
            raise ConfigError(f"step {position}: unknown step type '{spec.type}'")
        context = config.as_dict()
        try:
            data = render_value(spec.data, context)
            operation = operation_cls(data, variables=context)
        except ValueError as exc:
            raise ConfigError(f"{target.name}: step {spec.name or position}: {exc}") from None
        resource = operation.resource
        if spec.name:
            step_id = spec.name
        elif resource:
            step_id = f"{spec.type}.{resource}"
        else:
            step_id = f"{spec.type}.__{position}"
        return ResolvedStep(
            id=step_id,
            spec=spec,
            operation=operation,
            on_success=[
                self._resolve_step(child, target, config, f"{position}.s{idx}")
                for idx, child in enumerate(spec.on_success, start=1)
            ],
            on_failure=[
                self._resolve_step(child, target, config, f"{position}.f{idx}")
                for idx, child in enumerate(spec.on_failure, start=1)
            ],
        )

    @staticmethod
    def _check_dependencies(target: Target, steps: list[ResolvedStep]) -> None:
        known: set[str] = set()
        pending = list(steps)
        while pending:
            step = pending.pop()
            known.add(step.id)
            pending.extend(step.on_success)
            pending.extend(step.on_failure)
        pending = list(steps)
        while pending:
            step = pending.pop()
            for dep in step.spec.depends_on:
                if dep not in known:
                    raise ConfigError(f"{target.name}: step {step.label} depends on unknown step '{dep}'")
            pending.extend(step.on_success)
            pending.extend(step.on_failure)

    @staticmethod
    def _order_steps(steps: list[ResolvedStep]) -> list[ResolvedStep]:
        if not steps:
            return []
        id_map = {step.id: step for step in steps}
        graph: dict[str, set[str]] = {}
        in_degree: dict[str, int] = {}
        for step in steps:
            deps = {dep for dep in step.spec.depends_on if dep in id_map}
            graph[step.id] = deps
            in_degree[step.id] = len(deps)

        queue = [step.id for step in steps if in_degree[step.id] == 0]
        ordered_ids: list[str] = []
        while queue:
            current = queue.pop(0)
            ordered_ids.append(current)
            for node, deps in graph.items():
                if current in deps:
                    in_degree[node] -= 1
                    if in_degree[node] == 0:
                        queue.append(node)

        if len(ordered_ids) < len(steps):
            placed = set(ordered_ids)
            cycle = [step.id for step in steps if step.id not in placed]
            raise ConfigError(f"dependency cycle between steps: {', '.join(cycle)}")
        return [id_map[sid] for sid in ordered_ids]

    # Execution -------------------------------------------------------------
    def _run_target(self, job: TargetJob) -> list[Outcome]:
        outcomes: list[Outcome] = []
        target = job.target
        logger.debug("host=%s steps=%d", target.name, len(job.steps))
        phase = "connect"
        try:
            executor = self.executor_factory(target, self.dry_run)
            with executor:
                facts: dict[str, Any] = {}
                if self.plan.gather_facts:
                    phase = "facts"
                    facts = gather_facts(executor)
                context = job.config.as_dict()
                context["facts"] = facts
                failed: set[str] = set()
                phase = "steps"
                for step in job.steps:
                    self._run_step(target, executor, step, context, failed, outcomes)
                phase = "disconnect"
        except TargetConnectionError as exc:
            logger.error("host=%s unreachable: %s", target.name, exc)
            if not outcomes or outcomes[-1].error != type(exc).__name__:
                outcomes.append(self._target_failure(target, phase, exc))
        except Exception as exc:  # noqa: BLE001
            logger.error("host=%s %s failed: %s", target.name, phase, exc, exc_info=True)
            outcomes.append(self._target_failure(target, phase, exc))
        return outcomes

    @staticmethod
    def _target_failure(target: Target, phase: str, exc: BaseException) -> Outcome:
        return Outcome(
            host=target.name,
            step=phase,
            action=phase,
            status=Status.FAILED,
            details=error_detail(exc),
            error=type(exc).__name__,
        )

    def _run_step(
        self,
        target: Target,
        executor: Executor,
        step: ResolvedStep,
        context: dict[str, Any],
        failed: set[str],
        outcomes: list[Outcome],
    ) -> None:
        def _record(status: Status, details: str, error: Optional[str] = None) -> None:
            outcomes.append(
                Outcome(
                    host=target.name,
                    step=step.label,
                    action=step.spec.type,
                    status=status,
                    details=details,
                    error=error,
                    resource=step.operation.resource,
                )
            )

        failed_deps = [dep for dep in step.spec.depends_on if dep in failed]
        if failed_deps:
            failed.add(step.id)
            _record(Status.FAILED, f"dependency '{failed_deps[0]}' failed", "StepError")
            return

        try:
            if not self._guard_allows(step, context):
                logger.debug("step=%s host=%s skipped by guard", step.label, target.name)
                _record(Status.UNCHANGED, "skipped (when)")
                return
            changed, detail = step.operation.ensure(executor)
        except TargetConnectionError as exc:
            failed.add(step.id)
            _record(Status.FAILED, str(exc), type(exc).__name__)
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "step=%s host=%s failed: %s", step.label, target.name, exc, exc_info=True
            )
            failed.add(step.id)
            _record(Status.FAILED, error_detail(exc), type(exc).__name__)
            for child in step.on_failure:
                self._run_step(target, executor, child, context, failed, outcomes)
            return

        logger.debug("step=%s host=%s changed=%s", step.label, target.name, changed)
        _record(Status.CHANGED if changed else Status.UNCHANGED, detail)
        if changed:
            for child in step.on_success:
                self._run_step(target, executor, child, context, failed, outcomes)

    @staticmethod
    def _guard_allows(step: ResolvedStep, context: dict[str, Any]) -> bool:
        try:
            return evaluate_guard(step.spec.when, context)
        except ConfigError as exc:
            raise StepError(step.label, f"guard failed: {exc}") from exc


def error_detail(exc: BaseException) -> str:
    message = str(exc) or type(exc).__name__
    if isinstance(exc, subprocess.CalledProcessError):
        for text in (exc.stderr, exc.output):
            if not text or not str(text).strip():
                continue
            line = str(text).strip().splitlines()[0]
            line = (line[:157] + "...") if len(line) > 160 else line
            return f"rc={exc.returncode}: {line}"
        return f"rc={exc.returncode}"
    return message
