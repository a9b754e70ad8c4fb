from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import Any

from .errors import TargetConnectionError
from .executors import Executor

logger = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")

PACKAGE_MANAGERS = [("apt-get", "apt"), ("dnf", "dnf"), ("yum", "yum"), ("pacman", "pacman"), ("brew", "brew")]

OS_FAMILIES = {
    "debian": "debian",
    "ubuntu": "debian",
    "fedora": "redhat",
    "rhel": "redhat",
    "centos": "redhat",
    "rocky": "redhat",
    "almalinux": "redhat",
    "arch": "archlinux",
    "manjaro": "archlinux",
}


def parse_os_release(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        try:
            parsed = shlex.split(raw)
        except ValueError:
            parsed = [raw]
        values[key.strip()] = parsed[0] if parsed else ""
    return values


def gather_facts(executor: Executor) -> dict[str, Any]:
    """Discover the host properties guards may refer to as ``facts.<name>``."""

    facts: dict[str, Any] = {}
    for key, command in (
        ("hostname", ["hostname"]),
        ("kernel", ["uname", "-s"]),
        ("kernel_release", ["uname", "-r"]),
        ("architecture", ["uname", "-m"]),
        ("user", ["id", "-un"]),
    ):
        try:
            result = executor.run(command, check=False, mutable=False)
        except TargetConnectionError:
            raise
        except OSError:
            logger.debug("host=%s fact=%s unavailable", executor.target.name, key, exc_info=True)
            facts[key] = None
            continue
        facts[key] = result.stdout.strip() if result.returncode == 0 else None

    try:
        release = parse_os_release(executor.read_file(OS_RELEASE) or "")
    except TargetConnectionError:
        raise
    except (OSError, UnicodeDecodeError):
        logger.debug("host=%s %s unreadable", executor.target.name, OS_RELEASE, exc_info=True)
        release = {}
    os_id = release.get("ID", "").lower() or None
    facts["os_id"] = os_id
    facts["os_version"] = release.get("VERSION_ID")
    facts["os_name"] = release.get("PRETTY_NAME") or release.get("NAME")
    family = OS_FAMILIES.get(os_id or "")
    if family is None:
        for like in release.get("ID_LIKE", "").lower().split():
            family = OS_FAMILIES.get(like)
            if family:
                break
    if family is None and facts.get("kernel") == "Darwin":
        family = "darwin"
    facts["os_family"] = family

    facts["package_manager"] = None
    for binary, name in PACKAGE_MANAGERS:
        if executor.which(binary):
            facts["package_manager"] = name
            break
    logger.debug("host=%s facts=%s", executor.target.name, facts)
    return facts
