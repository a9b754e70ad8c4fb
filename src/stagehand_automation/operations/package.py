from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional
import logging

from .base import Operation, to_bool
from ..executors import Executor

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class PackageOperation(Operation):
    """Install or remove packages using the detected package manager."""

    action = "package"

    def __init__(self, spec: dict[str, Any], *, variables: Optional[Mapping[str, Any]] = None):
        super().__init__(spec, variables=variables)
        packages = spec.get("packages")
        if isinstance(packages, str):
            self.packages = [packages]
        else:
            self.packages = [str(p) for p in (packages or [])]
        if not self.packages:
            raise ValueError("package operation requires at least one package")
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("package operation state must be 'present' or 'absent'")
        self.update_cache = bool(to_bool(spec.get("update_cache", False)))
        self.preferred_manager = spec.get("manager")
        self._manager: Optional[PackageManager] = None
        self._pending_packages: list[str] = []

    @property
    def resource(self) -> Optional[str]:
        rendered = ", ".join(self.packages[:3])
        if len(self.packages) > 3:
            rendered += ", ..."
        return rendered

    def manager(self, executor: Executor) -> "PackageManager":
        if self._manager is None:
            self._manager = PackageManagerFactory.create(self.preferred_manager, executor)
            logger.debug(
                "package-manager=%s host=%s packages=%s",
                self._manager.name,
                executor.target.name,
                self.packages,
            )
        return self._manager

    def check(self, executor: Executor) -> list[str]:
        manager = self.manager(executor)
        if self.state == "present":
            self._pending_packages = manager.missing(executor, self.packages)
            return [f"installed={','.join(self._pending_packages)}"] if self._pending_packages else []
        self._pending_packages = manager.installed(executor, self.packages)
        return [f"removed={','.join(self._pending_packages)}"] if self._pending_packages else []

    def converge(self, executor: Executor, pending: list[str]) -> None:
        manager = self.manager(executor)
        if self.state == "present":
            if self.update_cache:
                manager.update_cache(executor)
            manager.install(executor, self._pending_packages)
        else:
            manager.remove(executor, self._pending_packages)


class UpgradeOperation(Operation):
    """Refresh package metadata and upgrade every installed package."""

    action = "upgrade"

    def __init__(self, spec: dict[str, Any], *, variables: Optional[Mapping[str, Any]] = None):
        super().__init__(spec, variables=variables)
        self.update_cache = bool(to_bool(spec.get("update_cache", True)))
        self.preferred_manager = spec.get("manager")
        self._manager: Optional[PackageManager] = None
        self._cache_updated = False

    @property
    def resource(self) -> Optional[str]:
        return "system"

    def manager(self, executor: Executor) -> "PackageManager":
        if self._manager is None:
            self._manager = PackageManagerFactory.create(self.preferred_manager, executor)
        return self._manager

    def check(self, executor: Executor) -> list[str]:
        manager = self.manager(executor)
        if self.update_cache and not self._cache_updated:
            manager.update_cache(executor)
            self._cache_updated = True
        upgrades = manager.pending_upgrades(executor)
        if not upgrades:
            return []
        return [f"upgraded={len(upgrades)} package(s)"]

    def converge(self, executor: Executor, pending: list[str]) -> None:
        self.manager(executor).upgrade(executor)


class PackageManagerFactory:
    _MANAGERS = [
        ("apt-get", "apt", lambda: AptPackageManager()),
        ("dnf", "dnf", lambda: DnfPackageManager()),
        ("yum", "yum", lambda: YumPackageManager()),
        ("pacman", "pacman", lambda: PacmanPackageManager()),
        ("brew", "brew", lambda: BrewPackageManager()),
    ]

    @classmethod
    def create(cls, preferred: Optional[object], executor: Executor) -> "PackageManager":
        if isinstance(preferred, str):
            preferred = preferred.lower()
            for _, key, factory in cls._MANAGERS:
                if key == preferred:
                    return factory()
            raise ValueError(f"Unknown package manager '{preferred}'")
        for binary, _, factory in cls._MANAGERS:
            if executor.which(binary):
                return factory()
        raise RuntimeError("No supported package manager found on PATH")


class PackageManager:
    name = "generic"

    def missing(self, executor: Executor, packages: Iterable[str]) -> list[str]:
        return [pkg for pkg in packages if not self.is_installed(executor, pkg)]

    def installed(self, executor: Executor, packages: Iterable[str]) -> list[str]:
        return [pkg for pkg in packages if self.is_installed(executor, pkg)]

    def update_cache(self, executor: Executor) -> None:
        raise NotImplementedError

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def remove(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def upgrade(self, executor: Executor) -> None:
        raise NotImplementedError

    def pending_upgrades(self, executor: Executor) -> list[str]:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str) -> bool:
        raise NotImplementedError


@dataclass
class DpkgQuery:
    executable: str = "dpkg-query"

    def check(self, executor: Executor, package: str) -> bool:
        result = executor.run(
            [self.executable, "-W", "-f", "${Status}", package],
            check=False,
            mutable=False,
        )
        return result.returncode == 0 and "install ok installed" in result.stdout


class AptPackageManager(PackageManager):
    name = "apt"

    def __init__(self) -> None:
        self.query = DpkgQuery()

    def update_cache(self, executor: Executor) -> None:
        executor.run(["apt-get", "update"], env=APT_ENV)

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "install", "-y", *packages], env=APT_ENV)

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "remove", "-y", *packages], env=APT_ENV)

    def upgrade(self, executor: Executor) -> None:
        executor.run(["apt-get", "upgrade", "-y"], env=APT_ENV)

    def pending_upgrades(self, executor: Executor) -> list[str]:
        result = executor.run(["apt-get", "-s", "upgrade"], mutable=False, env=APT_ENV)
        return [
            line.split()[1]
            for line in result.stdout.splitlines()
            if line.startswith("Inst ") and len(line.split()) > 1
        ]

    def is_installed(self, executor: Executor, package: str) -> bool:
        return self.query.check(executor, package)


class DnfPackageManager(PackageManager):
    name = "dnf"

    def update_cache(self, executor: Executor) -> None:
        executor.run([self.name, "makecache", "-q"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.name, "install", "-y", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.name, "remove", "-y", *packages])

    def upgrade(self, executor: Executor) -> None:
        executor.run([self.name, "upgrade", "-y"])

    def pending_upgrades(self, executor: Executor) -> list[str]:
        # check-update exits 100 when updates are available.
        result = executor.run([self.name, "check-update", "-q"], check=False, mutable=False)
        if result.returncode != 100:
            return []
        return [line.split()[0] for line in result.stdout.splitlines() if line.strip()]

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["rpm", "-q", package], check=False, mutable=False)
        return result.returncode == 0


class YumPackageManager(DnfPackageManager):
    name = "yum"


class PacmanPackageManager(PackageManager):
    name = "pacman"

    def update_cache(self, executor: Executor) -> None:
        executor.run(["pacman", "-Sy", "--noconfirm"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["pacman", "-S", "--noconfirm", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["pacman", "-R", "--noconfirm", *packages])

    def upgrade(self, executor: Executor) -> None:
        executor.run(["pacman", "-Su", "--noconfirm"])

    def pending_upgrades(self, executor: Executor) -> list[str]:
        result = executor.run(["pacman", "-Qu"], check=False, mutable=False)
        if result.returncode != 0:
            return []
        return [line.split()[0] for line in result.stdout.splitlines() if line.strip()]

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["pacman", "-Qi", package], check=False, mutable=False)
        return result.returncode == 0


class BrewPackageManager(PackageManager):
    name = "brew"

    def update_cache(self, executor: Executor) -> None:
        executor.run(["brew", "update"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["brew", "install", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["brew", "uninstall", *packages])

    def upgrade(self, executor: Executor) -> None:
        executor.run(["brew", "upgrade"])

    def pending_upgrades(self, executor: Executor) -> list[str]:
        result = executor.run(["brew", "outdated", "--quiet"], check=False, mutable=False)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["brew", "list", package], check=False, mutable=False)
        return result.returncode == 0
