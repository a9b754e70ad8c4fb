from pathlib import Path
import os

import pytest

from stagehand_automation.errors import ConfigError
from stagehand_automation.executors import LocalExecutor
from stagehand_automation.operations.file import FileOperation
from stagehand_automation.types import Target


def build_executor(dry_run: bool = False) -> LocalExecutor:
    return LocalExecutor(Target(name="local"), dry_run=dry_run)


def test_file_present_creates_content(tmp_path: Path) -> None:
    target = tmp_path / "config.txt"
    spec = {
        "path": str(target),
        "state": "present",
        "content": "hello",
        "mode": "0640",
    }
    op = FileOperation(spec)
    changed, detail = op.ensure(build_executor())

    assert changed is True
    assert detail == "content, mode->0640"
    assert target.read_text() == "hello"
    assert oct(os.stat(target).st_mode & 0o777) == "0o640"

    assert op.ensure(build_executor()) == (False, "noop")


def test_file_directory_creates_and_sets_mode(tmp_path: Path) -> None:
    target = tmp_path / "config.d"
    spec = {"path": str(target), "state": "directory", "mode": "0750"}
    op = FileOperation(spec)

    changed, _ = op.ensure(build_executor())

    assert changed is True
    assert target.is_dir()
    assert oct(os.stat(target).st_mode & 0o777) == "0o750"

    # Second run should be idempotent
    changed, _ = op.ensure(build_executor())
    assert changed is False


def test_file_directory_replaces_existing_file(tmp_path: Path) -> None:
    target = tmp_path / "config-dir"
    target.write_text("old")
    op = FileOperation({"path": str(target), "state": "directory"})

    changed, detail = op.ensure(build_executor())

    assert changed is True
    assert detail == "replaced-non-dir"
    assert target.is_dir()


def test_file_absent_removes_files(tmp_path: Path) -> None:
    target = tmp_path / "obsolete.txt"
    target.write_text("old")
    op = FileOperation({"path": str(target), "state": "absent"})

    assert op.ensure(build_executor()) == (True, "removed")
    assert not target.exists()
    assert op.ensure(build_executor()) == (False, "noop")


def test_file_symlink_creation(tmp_path: Path) -> None:
    target = tmp_path / "target"
    target.write_text("data")
    link = tmp_path / "link"
    op = FileOperation({"path": str(link), "link_target": str(target)})

    changed, _ = op.ensure(build_executor())

    assert changed is True
    assert link.is_symlink()
    assert os.readlink(link) == str(target)

    # Running again should be noop
    changed, _ = op.ensure(build_executor())
    assert changed is False


def test_file_symlink_removed(tmp_path: Path) -> None:
    target = tmp_path / "target2"
    target.write_text("data")
    link = tmp_path / "link2"
    os.symlink(target, link)
    op = FileOperation({"path": str(link), "link_target": str(target), "state": "absent"})

    changed, _ = op.ensure(build_executor())

    assert changed is True
    assert not link.is_symlink()


def test_file_copies_source_relative_to_plan_dir(tmp_path: Path) -> None:
    (tmp_path / "files").mkdir()
    (tmp_path / "files" / "motd.sh").write_text("#!/bin/sh\necho welcome\n")
    target = tmp_path / "etc" / "update-motd.d" / "01-custom"
    op = FileOperation(
        {"path": str(target), "source": "files/motd.sh", "mode": "0755", "_plan_dir": str(tmp_path)}
    )

    changed, _ = op.ensure(build_executor())

    assert changed is True
    assert target.read_text() == "#!/bin/sh\necho welcome\n"
    assert os.stat(target).st_mode & 0o777 == 0o755


def test_file_template_renders_target_variables(tmp_path: Path) -> None:
    template = tmp_path / "motd.j2"
    template.write_text("Hello {{ name }} from {{ env }}\n")
    target = tmp_path / "motd.txt"
    spec = {
        "path": str(target),
        "state": "present",
        "template": str(template),
        "variables": {"env": "Dev"},
    }
    op = FileOperation(spec, variables={"name": "Stagehand", "env": "Prod"})

    changed, _ = op.ensure(build_executor())

    assert changed is True
    assert target.read_text() == "Hello Stagehand from Dev\n"


def test_file_template_renders_jinja_loop(tmp_path: Path) -> None:
    template = tmp_path / "hosts.j2"
    template.write_text(
        "allowed_hosts:\n"
        "{% for host in allowed_hosts %}"
        "  - {{ host }}\n"
        "{% endfor %}"
    )
    target = tmp_path / "hosts.yaml"
    spec = {
        "path": str(target),
        "template": str(template),
        "variables": {"allowed_hosts": ["a.example", "b.example"]},
    }
    op = FileOperation(spec)

    changed, _ = op.ensure(build_executor())

    assert changed is True
    assert "  - b.example" in target.read_text()


def test_file_template_missing_variable_is_an_error(tmp_path: Path) -> None:
    template = tmp_path / "optional.j2"
    template.write_text("primary = {{ primary_group }}\n")
    target = tmp_path / "out.txt"
    op = FileOperation({"path": str(target), "template": str(template)})

    with pytest.raises(ConfigError):
        op.ensure(build_executor())
    assert not target.exists()


def test_file_dry_run_leaves_disk_untouched(tmp_path: Path) -> None:
    target = tmp_path / "config.txt"
    op = FileOperation({"path": str(target), "content": "hello"})

    changed, detail = op.ensure(build_executor(dry_run=True))

    assert changed is True
    assert detail == "would change: content"
    assert not target.exists()


def test_file_ownership_through_executor(fake_executor) -> None:
    path = Path("/etc/update-motd.d/01-custom")
    op = FileOperation({"path": str(path), "content": "banner", "owner": "bob", "group": "staff"})

    changed, detail = op.ensure(fake_executor)

    assert changed is True
    assert detail == "content, owner->bob, group->staff"
    assert fake_executor.host.owners[path] == ("bob", "staff")
    assert op.ensure(fake_executor) == (False, "noop")


def test_file_rejects_multiple_content_sources() -> None:
    with pytest.raises(ValueError):
        FileOperation({"path": "/tmp/x", "content": "a", "source": "b"})
