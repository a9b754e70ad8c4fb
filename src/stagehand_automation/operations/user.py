from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .base import Operation, bool_with_default, to_bool
from ..executors import Executor

logger = logging.getLogger(__name__)


@dataclass
class UserInfo:
    name: str
    shell: str
    home: str
    comment: str = ""


class UserManager:
    def get(self, executor: Executor, username: str) -> UserInfo | None:
        result = executor.run(["getent", "passwd", username], check=False, mutable=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        fields = result.stdout.strip().splitlines()[0].split(":")
        if len(fields) < 7:
            return None
        return UserInfo(name=fields[0], comment=fields[4], home=fields[5], shell=fields[6])

    def groups(self, executor: Executor, username: str) -> tuple[set[str], str]:
        """Return the supplementary groups of ``username`` and its primary group."""
        result = executor.run(["id", "-nG", username], check=False, mutable=False)
        primary = executor.run(["id", "-gn", username], check=False, mutable=False)
        names = set(result.stdout.split()) if result.returncode == 0 else set()
        primary_name = primary.stdout.strip() if primary.returncode == 0 else ""
        names.discard(primary_name)
        return names, primary_name

    def password_hash(self, executor: Executor, username: str) -> Optional[str]:
        result = executor.run(["getent", "shadow", username], check=False, mutable=False)
        if result.returncode != 0:
            return None
        fields = result.stdout.strip().split(":")
        return fields[1] if len(fields) > 1 else None

    def add(
        self,
        executor: Executor,
        name: str,
        *,
        shell: str | None,
        system: bool,
        create_home: bool,
        comment: str | None,
        groups: list[str],
        password: str | None,
    ) -> None:
        cmd = ["useradd"]
        if shell:
            cmd += ["--shell", shell]
        if create_home:
            cmd.append("--create-home")
        if system:
            cmd.append("--system")
        if comment:
            cmd += ["--comment", comment]
        if groups:
            cmd += ["--groups", ",".join(groups)]
        if password:
            cmd += ["--password", password]
        cmd.append(name)
        executor.run(cmd)

    def delete(self, executor: Executor, name: str, *, remove_home: bool) -> None:
        cmd = ["userdel"]
        if remove_home:
            cmd.append("--remove")
        cmd.append(name)
        executor.run(cmd)

    def modify(self, executor: Executor, name: str, options: list[str]) -> None:
        executor.run(["usermod", *options, name])

    def lock(self, executor: Executor, name: str) -> None:
        executor.run(["passwd", "-l", name])

    def unlock(self, executor: Executor, name: str) -> None:
        executor.run(["passwd", "-u", name])

    def is_locked(self, executor: Executor, name: str) -> bool:
        result = executor.run(["passwd", "-S", name], check=False, mutable=False)
        if result.returncode != 0:
            return False
        parts = result.stdout.strip().split()
        if len(parts) < 2:
            return False
        return parts[1].upper().startswith("L")


class UserOperation(Operation):
    """Ensure user accounts exist with their shell, groups and lock state."""

    action = "user"

    def __init__(self, spec: dict[str, Any], *, variables: Optional[Mapping[str, Any]] = None):
        super().__init__(spec, variables=variables)
        raw_name = spec.get("user")
        if not raw_name:
            raise ValueError("user operation requires a user")
        self.name = str(raw_name)
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("user operation state must be 'present' or 'absent'")
        self.shell = str(spec["shell"]) if spec.get("shell") else None
        self.system = bool(to_bool(spec.get("system", False)))
        self.create_home = bool_with_default(spec.get("create_home"), True)
        self.remove_home = bool(to_bool(spec.get("remove_home", False)))
        self.locked: Optional[bool] = to_bool(spec.get("locked"))
        self.comment = str(spec["comment"]) if spec.get("comment") else None
        self.password = str(spec["password"]) if spec.get("password") else None
        self.append = bool_with_default(spec.get("append"), True)
        raw_groups = spec.get("groups") or []
        if isinstance(raw_groups, str):
            raw_groups = [g.strip() for g in raw_groups.split(",")]
        self.groups = [str(g) for g in raw_groups if str(g)]
        self.manager = UserManager()

    @property
    def resource(self) -> Optional[str]:
        return self.name

    def check(self, executor: Executor) -> list[str]:
        info = self.manager.get(executor, self.name)
        if self.state == "absent":
            return ["removed"] if info else []

        pending: list[str] = []
        if not info:
            pending.append("created")
            if self.locked:
                pending.append("locked")
            return pending

        if self.shell and info.shell != self.shell:
            pending.append("shell")
        if self.comment is not None and info.comment != self.comment:
            pending.append("comment")
        if self.groups or not self.append:
            current, _ = self.manager.groups(executor, self.name)
            wanted = set(self.groups)
            if self.append:
                if wanted - current:
                    pending.append("groups")
            elif wanted != current:
                pending.append("groups")
        if self.password and self.manager.password_hash(executor, self.name) != self.password:
            pending.append("password")
        if self.locked is not None:
            locked = self.manager.is_locked(executor, self.name)
            if self.locked and not locked:
                pending.append("locked")
            elif not self.locked and locked:
                pending.append("unlocked")
        return pending

    def converge(self, executor: Executor, pending: list[str]) -> None:
        if "removed" in pending:
            logger.debug("Removing user %s", self.name)
            self.manager.delete(executor, self.name, remove_home=self.remove_home)
            return

        if "created" in pending:
            logger.debug("Creating user %s", self.name)
            self.manager.add(
                executor,
                self.name,
                shell=self.shell,
                system=self.system,
                create_home=self.create_home,
                comment=self.comment,
                groups=self.groups,
                password=self.password,
            )
        else:
            options: list[str] = []
            if "shell" in pending:
                options += ["--shell", str(self.shell)]
            if "comment" in pending:
                options += ["--comment", str(self.comment)]
            if "groups" in pending:
                if self.append:
                    options.append("--append")
                options += ["--groups", ",".join(self.groups)]
            if "password" in pending:
                options += ["--password", str(self.password)]
            if options:
                logger.debug("Updating %s for %s", ",".join(pending), self.name)
                self.manager.modify(executor, self.name, options)

        if "locked" in pending:
            logger.debug("Locking password for %s", self.name)
            self.manager.lock(executor, self.name)
        elif "unlocked" in pending:
            logger.debug("Unlocking password for %s", self.name)
            self.manager.unlock(executor, self.name)
