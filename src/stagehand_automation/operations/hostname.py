from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Mapping, Optional

from .base import Operation
from ..executors import Executor

HOSTNAME_RE = re.compile(r"^(?=.{1,253}$)[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$")


class HostnameOperation(Operation):
    """Set the running and persistent hostname."""

    action = "hostname"

    def __init__(self, spec: dict[str, Any], *, variables: Optional[Mapping[str, Any]] = None):
        super().__init__(spec, variables=variables)
        raw_name = spec.get("hostname")
        if not raw_name:
            raise ValueError("hostname operation requires a hostname")
        self.hostname = str(raw_name).strip()
        if not HOSTNAME_RE.match(self.hostname):
            raise ValueError(f"invalid hostname '{self.hostname}'")
        self.use = str(spec.get("use", "auto"))
        if self.use not in {"auto", "systemd", "file"}:
            raise ValueError("hostname use must be 'auto', 'systemd', or 'file'")
        self.hostname_path = Path(spec.get("hostname_path", "/etc/hostname"))

    @property
    def resource(self) -> Optional[str]:
        return self.hostname

    def strategy(self, executor: Executor) -> str:
        if self.use != "auto":
            return self.use
        return "systemd" if executor.which("hostnamectl") else "file"

    def check(self, executor: Executor) -> list[str]:
        pending: list[str] = []
        if self.strategy(executor) == "systemd":
            static = executor.run(["hostnamectl", "--static"], check=False, mutable=False)
            if static.stdout.strip() != self.hostname:
                pending.append("static")
        else:
            current = (executor.read_file(self.hostname_path) or "").strip()
            if current != self.hostname:
                pending.append(str(self.hostname_path))
        running = executor.run(["hostname"], check=False, mutable=False)
        if running.stdout.strip() != self.hostname:
            pending.append(f"hostname->{self.hostname}")
        return pending

    def converge(self, executor: Executor, pending: list[str]) -> None:
        if self.strategy(executor) == "systemd":
            executor.run(["hostnamectl", "set-hostname", self.hostname])
            return
        if str(self.hostname_path) in pending:
            executor.write_file(self.hostname_path, content=f"{self.hostname}\n", mode=0o644)
        if f"hostname->{self.hostname}" in pending:
            executor.run(["hostname", self.hostname])
