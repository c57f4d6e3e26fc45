"""Guard probes: decide whether an operation's postcondition already holds.

Every probe goes through the host's executor and only reads state. A probe
that cannot produce an answer raises :class:`ProbeUnknown` (or
:class:`TransportUnreachable` when the host itself is gone); it never reports
``False`` in place of "don't know".
"""

from __future__ import annotations

import hashlib
import logging
import subprocess
from pathlib import Path
from typing import Any, Callable, Optional

from .errors import ProbeUnknown, TransportUnreachable
from .executors import CommandResult, Executor
from .operations.base import parse_mode
from .operations.exec import normalize_command, summarize_output
from .operations.package import PackageManagerFactory
from .types import Check, HostConfig

logger = logging.getLogger(__name__)

# Exit statuses meaning the probe itself could not run.
UNKNOWN_RETURN_CODES = {124, 126, 127}
SECONDS_PER_DAY = 86400

CHECK_KINDS = frozenset(
    {
        "all",
        "path_exists",
        "file_matches",
        "files_match",
        "command",
        "service_active",
        "service_enabled",
        "package_installed",
        "user_exists",
        "user_in_groups",
        "group_exists",
        "firewall_rule",
        "certificate_valid",
    }
)


class ConditionEvaluator:
    """Evaluates :class:`Check` values against one host."""

    def __init__(self, executor: Executor):
        self.executor = executor
        self._probes: dict[str, Callable[[dict[str, Any]], bool]] = {
            "all": self._all,
            "path_exists": self._path_exists,
            "file_matches": self._file_matches,
            "files_match": self._files_match,
            "command": self._command,
            "service_active": self._service_active,
            "service_enabled": self._service_enabled,
            "package_installed": self._package_installed,
            "user_exists": self._user_exists,
            "user_in_groups": self._user_in_groups,
            "group_exists": self._group_exists,
            "firewall_rule": self._firewall_rule,
            "certificate_valid": self._certificate_valid,
        }

    def holds(self, host: HostConfig, check: Check) -> bool:
        probe = self._probes.get(check.kind)
        if probe is None:
            raise ProbeUnknown(f"unknown check kind '{check.kind}'")
        try:
            answer = probe(check.params)
        except (ProbeUnknown, TransportUnreachable):
            raise
        except Exception as exc:  # noqa: BLE001
            raise ProbeUnknown(f"{check.kind} check failed: {exc}") from exc
        result = not answer if check.negate else answer
        logger.debug("check=%s host=%s negate=%s holds=%s", check.kind, host.name, check.negate, result)
        return result

    # Probes --------------------------------------------------------------
    def _all(self, params: dict[str, Any]) -> bool:
        for nested in params.get("checks", []):
            if not self.holds(self.executor.host, nested):
                return False
        return True

    def _path_exists(self, params: dict[str, Any]) -> bool:
        flag = {"directory": "-d", "file": "-f"}.get(str(params.get("type", "")), "-e")
        path = _require(params, "path")
        exists = self._status(["test", flag, path], ok={0}, missing={1})
        mode = parse_mode(params.get("mode"))
        if not exists or mode is None:
            return exists
        return self.executor.file_mode(Path(path)) == mode

    def _file_matches(self, params: dict[str, Any]) -> bool:
        path = Path(_require(params, "path"))
        current = self._read(path)
        if current is None or current != str(params.get("content", "")):
            return False
        mode = parse_mode(params.get("mode"))
        if mode is not None:
            return self.executor.file_mode(path) == mode
        return True

    def _files_match(self, params: dict[str, Any]) -> bool:
        source = Path(_require(params, "src"))
        dest = Path(_require(params, "dest"))
        if not source.exists():
            raise ProbeUnknown(f"copy source {source} does not exist")
        if source.is_dir():
            pairs = {
                str(dest / item.relative_to(source)): _sha256(item)
                for item in sorted(source.rglob("*"))
                if item.is_file()
            }
        else:
            pairs = {str(dest): _sha256(source)}
        if not pairs:
            return self._status(["test", "-d", str(dest)], ok={0}, missing={1})
        result = self._run(["sha256sum", "--", *pairs])
        if result.returncode not in {0, 1}:
            raise ProbeUnknown(_describe(result))
        remote: dict[str, str] = {}
        for line in result.stdout.splitlines():
            digest, _, name = line.partition("  ")
            if name:
                remote[name] = digest
        return all(remote.get(name) == digest for name, digest in pairs.items())

    def _command(self, params: dict[str, Any]) -> bool:
        command = params.get("command")
        if not command:
            raise ProbeUnknown("check is missing 'command'")
        command = normalize_command(command)
        result = self._run(command)
        if result.returncode in UNKNOWN_RETURN_CODES:
            raise ProbeUnknown(_describe(result))
        return result.returncode == 0

    def _service_active(self, params: dict[str, Any]) -> bool:
        # is-active: 0 active, 3 inactive/failed, 4 unknown unit.
        return self._status(["systemctl", "is-active", _require(params, "name")], ok={0}, missing={1, 3, 4})

    def _service_enabled(self, params: dict[str, Any]) -> bool:
        return self._status(["systemctl", "is-enabled", _require(params, "name")], ok={0}, missing={1, 4})

    def _package_installed(self, params: dict[str, Any]) -> bool:
        packages = params.get("packages") or [params.get("name")]
        try:
            manager = PackageManagerFactory.create(params.get("manager"), self.executor)
        except (RuntimeError, ValueError) as exc:
            raise ProbeUnknown(str(exc)) from exc
        for package in packages:
            result = manager.query(self.executor, str(package))
            if result.returncode in UNKNOWN_RETURN_CODES:
                raise ProbeUnknown(_describe(result))
            if not manager.installed(result):
                return False
        return True

    def _user_exists(self, params: dict[str, Any]) -> bool:
        # getent: 0 found, 2 key not found.
        return self._status(["getent", "passwd", _require(params, "name")], ok={0}, missing={2})

    def _user_in_groups(self, params: dict[str, Any]) -> bool:
        result = self._run(["id", "-nG", _require(params, "name")])
        # id: 0 found, 1 no such user.
        if result.returncode == 1:
            return False
        if result.returncode != 0:
            raise ProbeUnknown(_describe(result))
        return set(map(str, params.get("groups", []))) <= set(result.stdout.split())

    def _group_exists(self, params: dict[str, Any]) -> bool:
        return self._status(["getent", "group", _require(params, "name")], ok={0}, missing={2})

    def _firewall_rule(self, params: dict[str, Any]) -> bool:
        cmd = ["iptables", "-t", str(params.get("table", "filter")), "-C", _require(params, "chain")]
        cmd += [str(arg) for arg in params.get("rule", [])]
        # iptables -C: 0 present, 1 absent; anything else is a usage or permission error.
        return self._status(cmd, ok={0}, missing={1})

    def _certificate_valid(self, params: dict[str, Any]) -> bool:
        path = _require(params, "path")
        if not self._status(["test", "-f", path], ok={0}, missing={1}):
            return False
        seconds = int(params.get("renew_before_days", 0)) * SECONDS_PER_DAY
        # openssl x509 -checkend: 0 valid past the window, 1 expiring within it.
        return self._status(
            ["openssl", "x509", "-checkend", str(seconds), "-noout", "-in", path], ok={0}, missing={1}
        )

    # Helpers -------------------------------------------------------------
    def _run(self, command: list[str]) -> CommandResult:
        return self.executor.run(command, check=False)

    def _status(self, command: list[str], *, ok: set[int], missing: set[int]) -> bool:
        result = self._run(command)
        if result.returncode in ok:
            return True
        if result.returncode in missing:
            return False
        raise ProbeUnknown(_describe(result))

    def _read(self, path: Path) -> Optional[str]:
        try:
            return self.executor.read_file(path)
        except TransportUnreachable:
            raise
        except (OSError, subprocess.CalledProcessError) as exc:
            raise ProbeUnknown(f"cannot read {path}: {exc}") from exc


def _require(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    if value is None or value == "":
        raise ProbeUnknown(f"check is missing '{key}'")
    return str(value)


def _sha256(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _describe(result: CommandResult) -> str:
    message = summarize_output(result)
    text = f"probe `{' '.join(result.command)}` rc={result.returncode}"
    return f"{text}: {message}" if message else text
