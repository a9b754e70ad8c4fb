from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional

from .base import Operation, parse_mode
from ..executors import Executor
from ..templating import render_text


class FileOperation(Operation):
    """Ensure files exist with the requested contents.

    Content comes from ``content``, a local ``source`` file copied to the host,
    or a Jinja2 ``template`` rendered with the target's variables. Relative
    ``source`` and ``template`` paths resolve against the plan directory.
    """

    action = "file"

    def __init__(self, spec: dict[str, Any], *, variables: Optional[Mapping[str, Any]] = None):
        super().__init__(spec, variables=variables)
        raw_path = spec.get("path")
        if not raw_path:
            raise ValueError("file operation requires a path")
        self.path = Path(str(raw_path))
        self.link_target = spec.get("link_target")
        default_state = "link" if self.link_target else "present"
        self.state = str(spec.get("state", default_state))
        if self.state not in {"present", "absent", "directory", "link"}:
            raise ValueError(
                "file operation state must be 'present', 'absent', 'directory', or 'link'"
            )
        if self.state == "link" and not self.link_target:
            raise ValueError("file operation with state 'link' requires link_target")
        raw_content = spec.get("content")
        self.content = None if raw_content is None else str(raw_content)
        self.source = str(spec["source"]) if spec.get("source") else None
        self.template = str(spec["template"]) if spec.get("template") else None
        if sum(value is not None for value in (self.content, self.source, self.template)) > 1:
            raise ValueError("file operation accepts only one of content, source, or template")
        self.mode = parse_mode(spec.get("mode"))
        self.owner = spec.get("owner")
        self.group = spec.get("group")
        self.template_vars = spec.get("variables", {})
        if not isinstance(self.template_vars, dict):
            raise ValueError("file operation variables must be a mapping")
        plan_dir = spec.get("_plan_dir")
        self.plan_dir = Path(str(plan_dir)) if plan_dir is not None else None
        self._desired: Optional[str] = None

    @property
    def resource(self) -> Optional[str]:
        return str(self.path)

    def check(self, executor: Executor) -> list[str]:
        if self.state == "absent":
            return ["removed"] if executor.exists(self.path) else []

        if self.state == "link":
            current = executor.read_link(self.path)
            return [] if current == self.link_target else [f"link->{self.link_target}"]

        pending: list[str] = []
        current_stat = executor.stat(self.path)
        if self.state == "directory":
            if current_stat is None:
                pending.append("created")
            elif not current_stat.is_dir:
                pending.append("replaced-non-dir")
        else:
            desired = self._desired_content()
            if desired is not None and executor.read_file(self.path) != desired:
                pending.append("content")
            elif desired is None and current_stat is None:
                pending.append("created")
        if self.mode is not None and (current_stat is None or current_stat.mode != self.mode):
            pending.append(f"mode->{self.mode:04o}")
        if self.owner is not None or self.group is not None:
            if current_stat is None:
                if self.owner is not None:
                    pending.append(f"owner->{self.owner}")
                if self.group is not None:
                    pending.append(f"group->{self.group}")
            else:
                pending.extend(
                    executor.ownership_changes(self.path, owner=self.owner, group=self.group)
                )
        return pending

    def converge(self, executor: Executor, pending: list[str]) -> None:
        if self.state == "absent":
            executor.remove_path(self.path)
            return
        if self.state == "link":
            executor.ensure_symlink(self.path, str(self.link_target))
            return
        if self.state == "directory":
            executor.ensure_directory(self.path, mode=self.mode)
        else:
            desired = self._desired_content()
            if desired is None:
                desired = executor.read_file(self.path) or ""
            executor.write_file(self.path, content=desired, mode=self.mode)
        if self.owner is not None or self.group is not None:
            executor.set_ownership(self.path, owner=self.owner, group=self.group)

    def _desired_content(self) -> Optional[str]:
        if self._desired is not None:
            return self._desired
        if self.source:
            self._desired = self._local_path(self.source).read_text()
        elif self.template:
            template_text = self._local_path(self.template).read_text()
            context: dict[str, Any] = dict(self.variables)
            context.update(self.template_vars)
            self._desired = render_text(template_text, context)
        else:
            self._desired = self.content
        return self._desired

    def _local_path(self, value: str) -> Path:
        path = Path(value).expanduser()
        if not path.is_absolute() and self.plan_dir is not None:
            path = self.plan_dir / path
        if not path.exists():
            raise FileNotFoundError(f"{path} does not exist")
        return path
