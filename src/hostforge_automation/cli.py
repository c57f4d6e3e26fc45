from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, HostforgeConfig, load_config
from .errors import HostforgeError
from .fleet import FleetOrchestrator
from .inventory import InventoryLoader
from .playbook import PlaybookLoader
from .renderer import Renderer
from .secrets import SecretResolver
from .types import Disposition, FleetReport, HostStatus, OperationReport, worst_status


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    ORANGE = "\033[38;5;208m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"


@dataclass(frozen=True)
class Action:
    description: str
    playbooks: tuple[str, ...] = ()


ACTIONS = {
    "provision-load-balancer": Action("Installing load balancer", ("load_balancer",)),
    "deploy-binary": Action("Deploying binary", ("deploy_binary",)),
    "provision-domain-and-scheduler": Action("Preparing service", ("domain", "scheduler")),
    "print-config": Action("Printing inventory"),
    "renew-certificates": Action("Renewing certificates", ("certificate_renewal",)),
}

# Single-letter commands accepted by the old deploy wrapper.
ACTION_ALIASES = {
    "l": "provision-load-balancer",
    "b": "deploy-binary",
    "s": "provision-domain-and-scheduler",
    "i": "print-config",
}

EXIT_CODES = {
    HostStatus.SUCCESS: 0,
    HostStatus.FAILED: 1,
    HostStatus.PARTIAL: 3,
}

STATUS_COLORS = {
    Disposition.APPLIED_SUCCESS: Ansi.GREEN,
    Disposition.APPLIED_FAILURE: Ansi.RED,
    Disposition.SKIPPED: Ansi.BLUE,
    Disposition.NOT_REACHED: Ansi.ORANGE,
}

_last_progress_len = 0
_progress_lock = threading.Lock()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="hostforge", description="Hostforge provisioning runner")
    parser.add_argument("environment", help="Inventory environment name (e.g. production)")
    parser.add_argument(
        "action",
        choices=sorted([*ACTIONS, *ACTION_ALIASES]),
        metavar="action",
        help="One of: " + ", ".join(ACTIONS),
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to hostforge config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument("--fanout", type=_positive_int, help="Maximum hosts converged in parallel")
    parser.add_argument(
        "-e",
        "--extra-var",
        dest="extra_vars",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a variable binding for every host",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    args = parser.parse_args(argv)
    args.action = ACTION_ALIASES.get(args.action, args.action)
    try:
        args.extra_vars = parse_extra_vars(args.extra_vars)
    except ValueError as exc:
        parser.error(str(exc))
    return args


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value}") from None
    if number < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return number


def parse_extra_vars(values: Sequence[str]) -> dict[str, str]:
    result: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"extra variable '{item}' must look like KEY=VALUE")
        result[key.strip()] = value
    return result


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    action = ACTIONS[args.action]

    try:
        cfg = load_config(args.config)
        _apply_aws_env(cfg)
        if not action.playbooks:
            print(InventoryLoader(cfg.inventory_dir).path_for(args.environment).read_text(), end="")
            return 0
        resolver = SecretResolver(region=cfg.aws_region, profile=cfg.aws_profile)
        inventory = InventoryLoader(cfg.inventory_dir, secret_resolver=resolver).load(args.environment)
        loader = PlaybookLoader()
        playbooks = [loader.load(cfg.playbook_dir / f"{name}.toml") for name in action.playbooks]
    except (HostforgeError, OSError) as exc:
        _clear_progress()
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            raise
        print(colorize(f"Configuration failed: {exc}", Ansi.RED), file=sys.stderr)
        return 1

    print(colorize(action.description, Ansi.BLUE))
    orchestrator = FleetOrchestrator(
        fanout=args.fanout or cfg.fanout,
        renderer=Renderer(_template_dirs(cfg)),
        progress_callback=print_progress,
    )
    effective_level = logging.getLogger().getEffectiveLevel()
    summary = Summary()
    interrupted = False
    try:
        for playbook in playbooks:
            report = orchestrator.run(inventory, playbook, args.extra_vars)
            _clear_progress()
            summary.add(report)
            for line in render_report(report, effective_level):
                print(line)
            if report.interrupted:
                interrupted = True
                break
    except KeyboardInterrupt:
        orchestrator.cancel()
        interrupted = True

    if interrupted:
        _clear_progress()
        print(colorize("Interrupted", Ansi.RED), file=sys.stderr)
        return EXIT_CODES[HostStatus.FAILED]
    print(summary.render())
    return EXIT_CODES[summary.status]


def render_report(report: FleetReport, log_level: int) -> list[str]:
    lines: list[str] = []
    for host in sorted(report.hosts):
        host_report = report.hosts[host]
        for operation in host_report.operations:
            if should_display_result(operation, log_level):
                lines.append(format_result(host, report.playbook, operation))
        if host_report.error and host_report.status is HostStatus.FAILED:
            lines.append(colorize(f"{host}::{report.playbook} failed - {host_report.error}", Ansi.RED))
    return lines


def format_result(host: str, playbook: str, operation: OperationReport) -> str:
    status = operation.disposition.value
    line = f"{host}::{playbook}::{operation.name} {status}"
    if operation.detail:
        line = f"{line} - {operation.detail}"
    return colorize(line, STATUS_COLORS.get(operation.disposition))


def should_display_result(operation: OperationReport, log_level: int) -> bool:
    if operation.disposition is not Disposition.SKIPPED:
        return True
    return log_level <= logging.DEBUG


def print_progress(host, operation) -> None:
    global _last_progress_len
    line = f"{host.name}::{operation.name} pending..."
    with _progress_lock:
        _last_progress_len = max(_last_progress_len, len(line))
        print(colorize(line.ljust(_last_progress_len), Ansi.YELLOW), end="\r", flush=True)


def _clear_progress() -> None:
    global _last_progress_len
    with _progress_lock:
        if _last_progress_len:
            print(" " * _last_progress_len, end="\r", flush=True)
            _last_progress_len = 0


def _template_dirs(cfg: HostforgeConfig) -> list[Path]:
    return [cfg.template_dir] if cfg.template_dir else []


def _apply_aws_env(cfg) -> None:
    if getattr(cfg, "aws_profile", None) and "AWS_PROFILE" not in os.environ:
        os.environ["AWS_PROFILE"] = cfg.aws_profile  # type: ignore[assignment]
    if getattr(cfg, "aws_region", None):
        if "AWS_REGION" not in os.environ:
            os.environ["AWS_REGION"] = cfg.aws_region  # type: ignore[assignment]
        if "AWS_DEFAULT_REGION" not in os.environ:
            os.environ["AWS_DEFAULT_REGION"] = cfg.aws_region  # type: ignore[assignment]


class Summary:
    def __init__(self) -> None:
        self.applied = 0
        self.skipped = 0
        self.failures = 0
        self.not_reached = 0
        self.statuses: list[HostStatus] = []

    def add(self, report: FleetReport) -> None:
        self.statuses.append(report.status)
        for host_report in report.hosts.values():
            for operation in host_report.operations:
                if operation.disposition is Disposition.APPLIED_SUCCESS:
                    self.applied += 1
                elif operation.disposition is Disposition.SKIPPED:
                    self.skipped += 1
                elif operation.disposition is Disposition.APPLIED_FAILURE:
                    self.failures += 1
                else:
                    self.not_reached += 1

    @property
    def status(self) -> HostStatus:
        return worst_status(self.statuses)

    def render(self) -> str:
        parts = [
            f"Applied: {self.applied}",
            f"Skipped: {self.skipped}",
            f"Failures: {self.failures}",
            f"Not reached: {self.not_reached}",
            f"Status: {self.status.value}",
        ]
        text = " | ".join(parts)
        color = {HostStatus.SUCCESS: Ansi.GREEN, HostStatus.PARTIAL: Ansi.YELLOW}.get(self.status, Ansi.RED)
        return colorize(text, color)


if __name__ == "__main__":
    raise SystemExit(main())
