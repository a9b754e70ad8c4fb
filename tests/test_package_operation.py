import pytest

from stagehand_automation.errors import StepError
from stagehand_automation.operations import package as pkg
from stagehand_automation.operations.package import PackageManager


class FakePackageManager(PackageManager):
    name = "fake"

    def __init__(self, installed: set[str], upgradable: set[str] | None = None):
        self._installed = installed
        self.upgradable = upgradable if upgradable is not None else set()
        self.installed_calls: list[list[str]] = []
        self.removed_calls: list[list[str]] = []
        self.cache_updates = 0

    def update_cache(self, executor) -> None:  # type: ignore[override]
        self.cache_updates += 1

    def install(self, executor, packages: list[str]) -> None:  # type: ignore[override]
        self.installed_calls.append(packages)
        self._installed.update(packages)

    def remove(self, executor, packages: list[str]) -> None:  # type: ignore[override]
        self.removed_calls.append(packages)
        for pkg_name in packages:
            self._installed.discard(pkg_name)

    def upgrade(self, executor) -> None:  # type: ignore[override]
        self.upgradable.clear()

    def pending_upgrades(self, executor) -> list[str]:  # type: ignore[override]
        return sorted(self.upgradable)

    def is_installed(self, executor, package: str) -> bool:  # type: ignore[override]
        return package in self._installed


@pytest.fixture
def fake_manager(monkeypatch):
    manager = FakePackageManager({"git"}, {"openssl", "bash"})

    def create(cls, preferred, executor):
        return manager

    monkeypatch.setattr(pkg.PackageManagerFactory, "create", classmethod(create))
    return manager


def test_package_present_installs_missing(fake_manager, fake_executor):
    op = pkg.PackageOperation({"packages": ["git", "htop"], "state": "present", "update_cache": True})
    changed, detail = op.ensure(fake_executor)

    assert changed is True
    assert detail == "installed=htop"
    assert fake_manager.installed_calls == [["htop"]]
    assert fake_manager.cache_updates == 1


def test_package_present_is_noop_when_installed(fake_manager, fake_executor):
    op = pkg.PackageOperation({"packages": "git"})
    changed, detail = op.ensure(fake_executor)

    assert changed is False
    assert detail == "noop"
    assert fake_manager.installed_calls == []


def test_package_absent_removes_installed(fake_manager, fake_executor):
    op = pkg.PackageOperation({"packages": ["git"], "state": "absent"})
    changed, _ = op.ensure(fake_executor)

    assert changed is True
    assert fake_manager.removed_calls == [["git"]]


def test_package_install_that_does_not_stick_fails(fake_manager, fake_executor):
    fake_manager.install = lambda executor, packages: None  # type: ignore[assignment]
    op = pkg.PackageOperation({"packages": ["htop"]})

    with pytest.raises(StepError):
        op.ensure(fake_executor)


def test_upgrade_applies_pending_upgrades(fake_manager, fake_executor):
    op = pkg.UpgradeOperation({})
    changed, detail = op.ensure(fake_executor)

    assert changed is True
    assert detail == "upgraded=2 package(s)"
    assert fake_manager.cache_updates == 1

    changed, _ = pkg.UpgradeOperation({}).ensure(fake_executor)
    assert changed is False


def test_package_requires_names():
    with pytest.raises(ValueError):
        pkg.PackageOperation({})


def test_factory_detects_manager_through_executor(fake_executor):
    fake_executor.host.binaries = {"pacman"}
    manager = pkg.PackageManagerFactory.create(None, fake_executor)
    assert manager.name == "pacman"


def test_factory_rejects_unknown_manager(fake_executor):
    with pytest.raises(ValueError):
        pkg.PackageManagerFactory.create("zypper", fake_executor)


def test_apt_against_fake_host(fake_executor):
    fake_executor.host.upgradable = {"openssl"}
    upgrade = pkg.UpgradeOperation({"manager": "apt"})
    install = pkg.PackageOperation({"packages": ["jq", "tmux"], "manager": "apt"})

    assert upgrade.ensure(fake_executor) == (True, "upgraded=1 package(s)")
    assert install.ensure(fake_executor) == (True, "installed=jq,tmux")
    assert fake_executor.host.installed == {"jq", "tmux"}
    assert ["apt-get", "update"] in fake_executor.host.commands
