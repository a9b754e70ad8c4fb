from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional

from .base import Operation, to_bool
from ..executors import Executor


class TimezoneOperation(Operation):
    action = "timezone"

    def __init__(self, spec: dict[str, Any], *, variables: Optional[Mapping[str, Any]] = None):
        super().__init__(spec, variables=variables)
        zone = spec.get("zone")
        if not zone:
            raise ValueError("timezone operation requires a zone")
        self.zone = str(zone)
        self.localtime_path = Path(spec.get("localtime_path", "/etc/localtime"))
        self.zoneinfo_dir = Path(spec.get("zoneinfo_dir", "/usr/share/zoneinfo"))
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("timezone state must be 'present' or 'absent'")
        self.manage_etc_timezone = bool(to_bool(spec.get("manage_etc_timezone", False)))
        self.etc_timezone = Path(spec.get("etc_timezone_path", "/etc/timezone"))

    @property
    def resource(self) -> Optional[str]:
        return self.zone

    def check(self, executor: Executor) -> list[str]:
        pending: list[str] = []
        if self.state == "absent":
            if executor.exists(self.localtime_path):
                pending.append("localtime")
            if self.manage_etc_timezone and executor.exists(self.etc_timezone):
                pending.append("etc_timezone")
            return pending

        target_file = self.zoneinfo_dir / self.zone
        if not executor.exists(target_file):
            raise FileNotFoundError(f"Zone file {target_file} does not exist")
        if executor.read_link(self.localtime_path) != str(target_file):
            pending.append(f"zone->{self.zone}")
        if self.manage_etc_timezone:
            current = (executor.read_file(self.etc_timezone) or "").strip()
            if current != self.zone:
                pending.append("etc_timezone")
        return pending

    def converge(self, executor: Executor, pending: list[str]) -> None:
        if self.state == "absent":
            if "localtime" in pending:
                executor.remove_path(self.localtime_path)
            if "etc_timezone" in pending:
                executor.remove_path(self.etc_timezone)
            return
        if f"zone->{self.zone}" in pending:
            executor.ensure_symlink(self.localtime_path, str(self.zoneinfo_dir / self.zone))
        if "etc_timezone" in pending:
            executor.write_file(self.etc_timezone, content=f"{self.zone}\n", mode=None)
