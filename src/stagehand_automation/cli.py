from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, load_config
from .errors import ConfigError
from .inventory import InventoryLoader
from .reporter import Report
from .runner import TaskRunner
from .types import Outcome
from .variables import parse_extra_vars

EXIT_FAILED = 1
EXIT_INVALID = 2


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stagehand provisioning runner")
    parser.add_argument(
        "plan",
        nargs="?",
        default=None,
        type=Path,
        help="Path to a plan file (default from config or /etc/stagehand/plan.toml)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to stagehand config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument("--dry-run", action="store_true", help="Calculate changes without executing")
    parser.add_argument("--forks", type=int, help="Number of targets processed in parallel")
    parser.add_argument(
        "--limit",
        action="append",
        default=[],
        help="Only run against these hosts or groups (repeatable)",
    )
    parser.add_argument(
        "-e",
        "--extra-var",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a variable at the highest precedence (repeatable)",
    )
    parser.add_argument("--report", type=Path, help="Write the JSON status report to this file")
    parser.add_argument("--json", action="store_true", help="Print the JSON status report instead of lines")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Python logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        configure_logging(args.log_level or "INFO")
        print(colorize(f"Config load failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_INVALID
    configure_logging(args.log_level or cfg.log_level)

    plan_path = args.plan or cfg.plan
    try:
        plan = InventoryLoader().load(plan_path)
        runner = TaskRunner(
            plan,
            dry_run=args.dry_run,
            forks=cfg.forks if args.forks is None else args.forks,
            extra_vars=parse_extra_vars(args.extra_var),
            limit=[item for value in args.limit for item in value.split(",") if item],
        )
        report = runner.run()
    except ConfigError as exc:
        print(colorize(f"Plan validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_INVALID

    report_path = args.report or cfg.report_file
    if report_path:
        report.write(report_path)

    if args.json:
        print(report.to_json())
    else:
        print_report(report)
    return EXIT_FAILED if report.failed else 0


def print_report(report: Report) -> None:
    effective_level = logging.getLogger().getEffectiveLevel()
    summary = Summary()
    summary.hosts.update(report.targets())
    for outcome in report:
        summary.add(outcome)
        if not should_display_outcome(outcome, effective_level):
            continue
        print(format_outcome(outcome))
    print(summary.render())


def format_outcome(outcome: Outcome) -> str:
    status = outcome.status.value
    if outcome.failed:
        color = Ansi.RED
    elif outcome.changed:
        color = Ansi.GREEN
    else:
        color = Ansi.BLUE
    resource = f"[{outcome.resource}]" if outcome.resource else ""
    line = f"{outcome.host}::{outcome.step}{resource} {status} - {outcome.details}"
    return colorize(line, color)


def should_display_outcome(outcome: Outcome, log_level: int) -> bool:
    if outcome.failed or outcome.changed:
        return True
    return log_level <= logging.DEBUG


class Summary:
    def __init__(self) -> None:
        self.hosts: set[str] = set()
        self.changes = 0
        self.unchanged = 0
        self.failures = 0

    def add(self, outcome: Outcome) -> None:
        self.hosts.add(outcome.host)
        if outcome.failed:
            self.failures += 1
        elif outcome.changed:
            self.changes += 1
        else:
            self.unchanged += 1

    def render(self) -> str:
        parts = [
            f"Hosts: {len(self.hosts)}",
            f"Changes: {self.changes}",
            f"Unchanged: {self.unchanged}",
            f"Failures: {self.failures}",
        ]
        text = " | ".join(parts)
        color = Ansi.GREEN if self.failures == 0 else Ansi.RED
        return colorize(text, color)


if __name__ == "__main__":
    raise SystemExit(main())
