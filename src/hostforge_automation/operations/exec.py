from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Sequence
import logging
import shlex

from .base import Operation, all_of
from ..executors import CommandResult, Executor
from ..types import ActionResult, Check, HostConfig

logger = logging.getLogger(__name__)

MAX_DETAIL = 160


class ExecOperation(Operation):
    """Run a command, guarded by ``creates``/``unless``/``only_if``.

    The guards are not evaluated here. They become the operation's default
    :class:`Check`, so the runner decides whether the command runs at all.
    """

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_command = spec.get("command") or spec.get("cmd")
        if raw_command is None:
            raise ValueError("exec operation requires a command")
        self.command = normalize_command(raw_command)
        self.cwd = Path(str(spec["cwd"])) if spec.get("cwd") else None
        creates = spec.get("creates")
        self.creates = self._under_cwd(Path(str(creates))) if creates else None
        self.only_if = spec.get("only_if")
        self.unless = spec.get("unless")
        self.env = _env_mapping(spec.get("env") or spec.get("environment"))
        self.allowed_returns = _return_codes(spec.get("returns"))
        self.timeout = _seconds(spec.get("timeout"))

    def guard(self) -> Optional[Check]:
        checks: list[Check] = []
        if self.creates:
            checks.append(Check("path_exists", {"path": str(self.creates)}))
        if self.unless:
            checks.append(Check("command", {"command": self.unless}))
        if self.only_if:
            # Holds (nothing to do) while the only_if probe fails.
            checks.append(Check("command", {"command": self.only_if}, negate=True))
        return all_of(checks)

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        result = executor.run(self.command, check=False, env=self.env, cwd=self.cwd, timeout=self.timeout)
        if result.returncode in self.allowed_returns:
            return ActionResult(host=host.name, action="exec", changed=True, details=f"ran (rc={result.returncode})")
        logger.debug("exec host=%s rc=%s cmd=%s", host.name, result.returncode, shlex.join(self.command))
        return ActionResult(host=host.name, action="exec", changed=False, details=failure_detail(result), failed=True)

    def _under_cwd(self, path: Path) -> Path:
        if path.is_absolute() or self.cwd is None:
            return path
        return self.cwd / path


def normalize_command(value: Any) -> list[str]:
    if isinstance(value, str):
        return ["sh", "-c", value]
    if isinstance(value, Sequence):
        return [str(v) for v in value]
    raise ValueError("exec command must be a string or list")


def summarize_output(result: CommandResult) -> Optional[str]:
    """First non-empty line of stderr (else stdout), clipped for one-line reports."""
    for text in (result.stderr, result.stdout):
        lines = (text or "").strip().splitlines()
        if lines:
            line = lines[0]
            return line if len(line) <= MAX_DETAIL else line[: MAX_DETAIL - 3] + "..."
    return None


def failure_detail(result: CommandResult) -> str:
    message = summarize_output(result)
    return f"rc={result.returncode}: {message}" if message else f"rc={result.returncode}"


def _env_mapping(value: Any) -> Optional[dict[str, str]]:
    if value is None:
        return None
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        pairs = [str(item).partition("=") for item in value]
        if any(not sep for _, sep, _ in pairs):
            raise ValueError("exec env entries must be KEY=VALUE")
        return {key: val for key, _, val in pairs}
    raise ValueError("exec env must be a table or a list of KEY=VALUE strings")


def _return_codes(value: Any) -> set[int]:
    if value is None:
        return {0}
    if isinstance(value, int):
        return {value}
    if isinstance(value, (list, tuple)):
        return {int(v) for v in value}
    raise ValueError("exec returns must be an int or list of ints")


def _seconds(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError("exec timeout must be numeric") from None
