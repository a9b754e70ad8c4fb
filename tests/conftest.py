from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pytest

from stagehand_automation.errors import TargetConnectionError
from stagehand_automation.executors import CommandResult, Executor, FileStat
from stagehand_automation.types import Target


@dataclass
class FakeAccount:
    shell: str = "/bin/sh"
    home: str = ""
    comment: str = ""
    groups: set[str] = field(default_factory=set)
    password: str = "!"
    locked: bool = False


@dataclass
class FakeHost:
    """In-memory machine state shared by every executor opened against it."""

    hostname: str = "localhost"
    static_hostname: str = "localhost"
    users: dict[str, FakeAccount] = field(default_factory=dict)
    installed: set[str] = field(default_factory=set)
    upgradable: set[str] = field(default_factory=set)
    binaries: set[str] = field(default_factory=lambda: {"apt-get", "dpkg-query", "hostnamectl"})
    files: dict[Path, str] = field(default_factory=dict)
    modes: dict[Path, int] = field(default_factory=dict)
    owners: dict[Path, tuple[Optional[str], Optional[str]]] = field(default_factory=dict)
    links: dict[Path, str] = field(default_factory=dict)
    directories: set[Path] = field(default_factory=set)
    unreachable: bool = False
    drop_on: Optional[str] = None
    commands: list[list[str]] = field(default_factory=list)
    opened: int = 0


class FakeExecutor(Executor):
    def __init__(self, target: Target, *, dry_run: bool = False, host: FakeHost):
        super().__init__(target, dry_run=dry_run)
        self.host = host

    def open(self) -> None:
        if self.host.unreachable:
            raise TargetConnectionError(self.target.name, "connection refused")
        self.host.opened += 1
        super().open()

    def run(self, command, *, check=True, mutable=True, env=None, cwd=None, timeout=None):  # noqa: ARG002
        cmd = [str(part) for part in command]
        if self.host.drop_on and cmd[0] == self.host.drop_on:
            raise TargetConnectionError(self.target.name, "connection lost")
        if self.dry_run and mutable:
            return CommandResult(cmd, "", "skipped (dry-run)", 0)
        self.host.commands.append(cmd)
        rc, out = self._dispatch(cmd)
        if check and rc != 0:
            raise RuntimeError(f"Command failed: {' '.join(cmd)}")
        return CommandResult(cmd, out, "", rc)

    def _dispatch(self, cmd: list[str]) -> tuple[int, str]:
        host = self.host
        name = cmd[0]
        args = cmd[1:]
        if name == "getent":
            account = host.users.get(args[1])
            if account is None:
                return 2, ""
            if args[0] == "shadow":
                return 0, f"{args[1]}:{account.password}:19000:0:99999:7:::\n"
            return 0, f"{args[1]}:x:1000:1000:{account.comment}:{account.home}:{account.shell}\n"
        if name == "id":
            if args == ["-un"]:
                return 0, "root\n"
            account = host.users.get(args[-1])
            if account is None:
                return 1, ""
            if args[0] == "-gn":
                return 0, f"{args[-1]}\n"
            return 0, " ".join([args[-1], *sorted(account.groups)]) + "\n"
        if name == "useradd":
            opts = self._options(args[:-1])
            host.users[args[-1]] = FakeAccount(
                shell=opts.get("--shell", "/bin/sh"),
                home=f"/home/{args[-1]}",
                comment=opts.get("--comment", ""),
                groups=set(filter(None, opts.get("--groups", "").split(","))),
                password=opts.get("--password", "!"),
            )
            return 0, ""
        if name == "usermod":
            account = host.users[args[-1]]
            opts = self._options(args[:-1])
            if "--shell" in opts:
                account.shell = opts["--shell"]
            if "--comment" in opts:
                account.comment = opts["--comment"]
            if "--password" in opts:
                account.password = opts["--password"]
            if "--groups" in opts:
                groups = set(filter(None, opts["--groups"].split(",")))
                account.groups = account.groups | groups if "--append" in opts else groups
            return 0, ""
        if name == "userdel":
            host.users.pop(args[-1], None)
            return 0, ""
        if name == "passwd":
            account = host.users.get(args[1])
            if account is None:
                return 1, ""
            if args[0] == "-S":
                return 0, f"{args[1]} {'L' if account.locked else 'P'} 01/01/2024 0 99999 7 -1\n"
            account.locked = args[0] == "-l"
            return 0, ""
        if name == "hostname":
            if args:
                host.hostname = args[0]
            return 0, f"{host.hostname}\n"
        if name == "hostnamectl":
            if args and args[0] == "set-hostname":
                host.hostname = host.static_hostname = args[1]
                return 0, ""
            return 0, f"{host.static_hostname}\n"
        if name == "uname":
            return 0, {"-s": "Linux", "-r": "6.1.0", "-m": "x86_64"}[args[0]] + "\n"
        if name == "dpkg-query":
            if args[-1] in host.installed:
                return 0, "install ok installed"
            return 1, ""
        if name == "apt-get":
            if args[:1] == ["-s"]:
                return 0, "".join(f"Inst {pkg} [1.0] (1.1 stable)\n" for pkg in sorted(host.upgradable))
            if args[0] == "install":
                host.installed.update(args[2:])
            elif args[0] == "remove":
                host.installed.difference_update(args[2:])
            elif args[0] == "upgrade":
                host.upgradable.clear()
            return 0, ""
        return 127, ""

    @staticmethod
    def _options(args: list[str]) -> dict[str, str]:
        opts: dict[str, str] = {}
        idx = 0
        while idx < len(args):
            key = args[idx]
            if idx + 1 < len(args) and not args[idx + 1].startswith("--"):
                opts[key] = args[idx + 1]
                idx += 2
            else:
                opts[key] = ""
                idx += 1
        return opts

    def which(self, binary: str) -> Optional[str]:
        return f"/usr/bin/{binary}" if binary in self.host.binaries else None

    def exists(self, path: Path) -> bool:
        return path in self.host.files or path in self.host.links or path in self.host.directories

    def stat(self, path: Path) -> Optional[FileStat]:
        if not self.exists(path):
            return None
        return FileStat(
            mode=self.host.modes.get(path, 0o644),
            uid=0,
            gid=0,
            is_dir=path in self.host.directories,
            is_link=path in self.host.links,
        )

    def read_file(self, path: Path) -> Optional[str]:
        return self.host.files.get(path)

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        changed = self.host.files.get(path) != content
        if not self.dry_run:
            self.host.files[path] = content
            if mode is not None:
                self.host.modes[path] = mode
        return changed, "content" if changed else "noop"

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        changed = path not in self.host.directories
        if not self.dry_run:
            self.host.files.pop(path, None)
            self.host.directories.add(path)
            if mode is not None:
                self.host.modes[path] = mode
        return changed, "created" if changed else "noop"

    def remove_path(self, path: Path) -> bool:
        existed = self.exists(path)
        if not self.dry_run:
            self.host.files.pop(path, None)
            self.host.links.pop(path, None)
            self.host.directories.discard(path)
        return existed

    def ownership_changes(self, path: Path, *, owner, group) -> list[str]:
        current_owner, current_group = self.host.owners.get(path, ("root", "root"))
        reasons = []
        if owner is not None and str(owner) != current_owner:
            reasons.append(f"owner->{owner}")
        if group is not None and str(group) != current_group:
            reasons.append(f"group->{group}")
        return reasons

    def set_ownership(self, path: Path, *, owner, group) -> tuple[bool, str]:
        reasons = self.ownership_changes(path, owner=owner, group=group)
        if reasons and not self.dry_run:
            current_owner, current_group = self.host.owners.get(path, ("root", "root"))
            self.host.owners[path] = (
                str(owner) if owner is not None else current_owner,
                str(group) if group is not None else current_group,
            )
        return bool(reasons), ", ".join(reasons) or "noop"

    def read_link(self, path: Path) -> Optional[str]:
        return self.host.links.get(path)

    def ensure_symlink(self, path: Path, target: str) -> bool:
        if self.host.links.get(path) == target:
            return False
        if not self.dry_run:
            self.host.files.pop(path, None)
            self.host.links[path] = target
        return True


@pytest.fixture
def fake_hosts():
    """Map of target name to FakeHost plus an executor factory bound to it."""

    hosts: dict[str, FakeHost] = {}

    def factory(target: Target, dry_run: bool) -> FakeExecutor:
        host = hosts.setdefault(target.name, FakeHost())
        return FakeExecutor(target, dry_run=dry_run, host=host)

    return hosts, factory


@pytest.fixture
def fake_executor():
    host = FakeHost()
    return FakeExecutor(Target(name="h1"), host=host)
