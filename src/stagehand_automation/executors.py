from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, Union
import grp
import logging
import os
import pwd
import shutil
import socket
import stat
import subprocess

from .errors import ConfigError, TargetConnectionError
from .types import Target

logger = logging.getLogger(__name__)

LOCAL_ADDRESSES = {"localhost", "127.0.0.1", "::1"}


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


@dataclass
class FileStat:
    mode: int
    uid: int
    gid: int
    is_dir: bool
    is_link: bool


class Executor:
    """Connection handle for a single target.

    One executor is opened per target for the duration of its step sequence;
    operations receive it explicitly and never share it across targets.
    """

    def __init__(self, target: Target, *, dry_run: bool = False):
        self.target = target
        self.dry_run = dry_run
        self.is_open = False

    def __enter__(self) -> "Executor":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        raise NotImplementedError

    def which(self, binary: str) -> Optional[str]:
        raise NotImplementedError

    # File primitives -----------------------------------------------------
    def exists(self, path: Path) -> bool:
        raise NotImplementedError

    def stat(self, path: Path) -> Optional[FileStat]:
        raise NotImplementedError

    def read_file(self, path: Path) -> Optional[str]:
        raise NotImplementedError

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def remove_path(self, path: Path) -> bool:
        raise NotImplementedError

    def ownership_changes(
        self, path: Path, *, owner: Optional[Union[str, int]], group: Optional[Union[str, int]]
    ) -> list[str]:
        raise NotImplementedError

    def set_ownership(
        self, path: Path, *, owner: Optional[Union[str, int]], group: Optional[Union[str, int]]
    ) -> tuple[bool, str]:
        raise NotImplementedError

    def read_link(self, path: Path) -> Optional[str]:
        raise NotImplementedError

    def ensure_symlink(self, path: Path, target: str) -> bool:
        raise NotImplementedError


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def open(self) -> None:
        address = self.target.address
        if address and address not in self._local_names():
            raise TargetConnectionError(
                self.target.name, f"address {address} is not reachable over a local connection"
            )
        super().open()

    @staticmethod
    def _local_names() -> set[str]:
        names = set(LOCAL_ADDRESSES)
        try:
            names.add(socket.gethostname())
            names.add(socket.getfqdn())
        except OSError:
            logger.debug("Unable to determine local host names", exc_info=True)
        return names

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        cmd_list = list(command)
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)

        logger.debug("host=%s run=%s", self.target.name, cmd_list)
        proc = subprocess.run(
            cmd_list,
            capture_output=True,
            text=True,
            check=False,
            env=exec_env,
            cwd=str(cwd) if cwd is not None else None,
            timeout=timeout,
        )
        if check and proc.returncode != 0:
            raise subprocess.CalledProcessError(
                proc.returncode,
                cmd_list,
                proc.stdout,
                proc.stderr,
            )
        return CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)

    def which(self, binary: str) -> Optional[str]:
        return shutil.which(binary)

    def exists(self, path: Path) -> bool:
        return path.exists() or path.is_symlink()

    def stat(self, path: Path) -> Optional[FileStat]:
        try:
            st = path.lstat()
        except FileNotFoundError:
            return None
        return FileStat(
            mode=stat.S_IMODE(st.st_mode),
            uid=st.st_uid,
            gid=st.st_gid,
            is_dir=stat.S_ISDIR(st.st_mode),
            is_link=stat.S_ISLNK(st.st_mode),
        )

    def read_file(self, path: Path) -> Optional[str]:
        try:
            return path.read_text()
        except FileNotFoundError:
            return None

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            if not self.dry_run:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)

        if mode is not None:
            existing_mode = self._file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run:
                    # ``chmod`` fails if the file is absent, so guard it.
                    if path.exists():
                        os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        changed = False
        reasons: list[str] = []

        if not path.exists():
            changed = True
            reasons.append("created")
            if not self.dry_run:
                path.mkdir(parents=True, exist_ok=True)
        elif not path.is_dir():
            changed = True
            reasons.append("replaced-non-dir")
            if not self.dry_run:
                self.remove_path(path)
                path.mkdir(parents=True, exist_ok=True)

        if mode is not None:
            existing_mode = self._file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run and path.exists():
                    os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def remove_path(self, path: Path) -> bool:
        if not self.exists(path):
            return False
        if self.dry_run:
            return True
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def ownership_changes(
        self, path: Path, *, owner: Optional[Union[str, int]], group: Optional[Union[str, int]]
    ) -> list[str]:
        current = self.stat(path)
        # Names resolve at call time; an earlier step may have created the account.
        uid = resolve_uid(owner)
        gid = resolve_gid(group)
        reasons: list[str] = []
        if uid is not None and (current is None or current.uid != uid):
            reasons.append(f"owner->{owner}")
        if gid is not None and (current is None or current.gid != gid):
            reasons.append(f"group->{group}")
        return reasons

    def set_ownership(
        self, path: Path, *, owner: Optional[Union[str, int]], group: Optional[Union[str, int]]
    ) -> tuple[bool, str]:
        reasons = self.ownership_changes(path, owner=owner, group=group)
        if not reasons or not self.exists(path):
            return False, "noop"
        if not self.dry_run:
            uid = resolve_uid(owner)
            gid = resolve_gid(group)
            os.chown(path, -1 if uid is None else uid, -1 if gid is None else gid)
        return True, ", ".join(reasons)

    def read_link(self, path: Path) -> Optional[str]:
        try:
            return os.readlink(path)
        except OSError:
            return None

    def ensure_symlink(self, path: Path, target: str) -> bool:
        if self.read_link(path) == target:
            return False
        if not self.dry_run:
            self.remove_path(path)
            path.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(target, path)
        return True

    @staticmethod
    def _file_mode(path: Path) -> Optional[int]:
        try:
            return stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            return None


def resolve_uid(value: Optional[Union[str, int]]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        try:
            return pwd.getpwnam(text).pw_uid
        except KeyError:
            raise ValueError(f"unknown user '{text}'")


def resolve_gid(value: Optional[Union[str, int]]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        try:
            return grp.getgrnam(text).gr_gid
        except KeyError:
            raise ValueError(f"unknown group '{text}'")


ExecutorFactory = Callable[[Target, bool], Executor]

CONNECTIONS: dict[str, type[Executor]] = {
    "local": LocalExecutor,
}


def default_executor_factory(target: Target, dry_run: bool) -> Executor:
    executor_cls = CONNECTIONS.get(target.connection)
    if executor_cls is None:
        raise ConfigError(f"Unknown connection type '{target.connection}' for {target.name}")
    return executor_cls(target, dry_run=dry_run)
