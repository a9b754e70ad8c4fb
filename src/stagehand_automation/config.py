from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError


DEFAULT_PLAN = Path("/etc/stagehand/plan.toml")
DEFAULT_CONFIG = Path("/etc/stagehand/main.conf")
DEFAULT_FORKS = 5


@dataclass
class StagehandConfig:
    plan: Path = DEFAULT_PLAN
    forks: int = DEFAULT_FORKS
    report_file: Optional[Path] = None
    log_level: str = "INFO"


def load_config(path: Path) -> StagehandConfig:
    if not path.exists():
        return StagehandConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: {exc}") from None
    defaults = data.get("defaults", {})
    plan = Path(defaults.get("plan", DEFAULT_PLAN))
    report_file = defaults.get("report_file")
    try:
        forks = int(defaults.get("forks", DEFAULT_FORKS))
    except (TypeError, ValueError):
        raise ConfigError(f"{path}: forks must be an integer") from None
    if forks < 1:
        raise ConfigError(f"{path}: forks must be at least 1")
    return StagehandConfig(
        plan=plan,
        forks=forks,
        report_file=Path(report_file) if report_file else None,
        log_level=str(defaults.get("log_level", "INFO")),
    )
