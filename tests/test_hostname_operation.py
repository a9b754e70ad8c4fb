from pathlib import Path

import pytest

from stagehand_automation.operations.hostname import HostnameOperation


def test_hostname_systemd_sets_static_and_running(fake_executor):
    op = HostnameOperation({"hostname": "web01.example.com"})

    changed, detail = op.ensure(fake_executor)

    assert changed is True
    assert detail == "static, hostname->web01.example.com"
    assert fake_executor.host.static_hostname == "web01.example.com"
    assert fake_executor.host.hostname == "web01.example.com"
    assert ["hostnamectl", "set-hostname", "web01.example.com"] in fake_executor.host.commands

    assert op.ensure(fake_executor) == (False, "noop")


def test_hostname_file_strategy_without_hostnamectl(fake_executor):
    fake_executor.host.binaries = {"apt-get"}
    op = HostnameOperation({"hostname": "db01"})

    changed, detail = op.ensure(fake_executor)

    assert changed is True
    assert detail == "/etc/hostname, hostname->db01"
    assert fake_executor.host.files[Path("/etc/hostname")] == "db01\n"
    assert fake_executor.host.hostname == "db01"
    assert op.ensure(fake_executor) == (False, "noop")


def test_hostname_only_running_name_differs(fake_executor):
    fake_executor.host.binaries = set()
    fake_executor.host.files[Path("/etc/hostname")] = "db01\n"
    op = HostnameOperation({"hostname": "db01", "use": "file"})

    assert op.check(fake_executor) == ["hostname->db01"]
    op.ensure(fake_executor)
    assert ["hostname", "db01"] in fake_executor.host.commands


def test_hostname_dry_run_does_not_rename(fake_executor):
    fake_executor.dry_run = True
    op = HostnameOperation({"hostname": "web02"})

    changed, detail = op.ensure(fake_executor)

    assert changed is True
    assert detail.startswith("would change:")
    assert fake_executor.host.hostname == "localhost"


@pytest.mark.parametrize("name", ["", "bad_name", "-leading", "a" * 64])
def test_hostname_rejects_invalid_names(name):
    with pytest.raises(ValueError):
        HostnameOperation({"hostname": name})


def test_hostname_rejects_unknown_strategy():
    with pytest.raises(ValueError):
        HostnameOperation({"hostname": "web01", "use": "nmcli"})
