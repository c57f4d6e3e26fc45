from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .base import Operation, all_of, coerce_bool
from ..executors import Executor
from ..types import ActionResult, Check, HostConfig

logger = logging.getLogger(__name__)


@dataclass
class SystemCtl:
    executable: str = "systemctl"

    def is_enabled(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-enabled", service], check=False)
        return result.returncode == 0

    def is_active(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-active", service], check=False)
        return result.returncode == 0

    def daemon_reload(self, executor: Executor) -> None:
        executor.run([self.executable, "daemon-reload"])

    def enable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "enable", service])

    def disable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "disable", service])

    def start(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "start", service])

    def stop(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "stop", service])

    def restart(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "restart", service])


class ServiceOperation(Operation):
    """Manage systemd units: enable, start, stop, restart."""

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("service")
        if not raw_name:
            raise ValueError("service operation requires a service")
        self.service = str(raw_name)
        self._enabled = coerce_bool(spec.get("enabled"))
        self._state = spec.get("state")
        if self._state not in {None, "running", "stopped", "restarted"}:
            raise ValueError("service state must be 'running', 'stopped' or 'restarted'")
        self.daemon_reload = bool(coerce_bool(spec.get("daemon_reload", False)))
        self.systemctl = SystemCtl()

    def guard(self) -> Optional[Check]:
        # A restart or a daemon reload is an event, not a state; it always applies.
        if self._state == "restarted" or self.daemon_reload:
            return None
        checks: list[Check] = []
        if self._enabled is not None:
            checks.append(Check("service_enabled", {"name": self.service}, negate=not self._enabled))
        if self._state is not None:
            checks.append(
                Check("service_active", {"name": self.service}, negate=self._state == "stopped")
            )
        return all_of(checks)

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        changes: list[str] = []

        if self.daemon_reload:
            logger.debug("Reloading systemd units on %s", host.name)
            self.systemctl.daemon_reload(executor)
            changes.append("daemon-reloaded")

        if self._enabled is not None:
            enabled = self.systemctl.is_enabled(executor, self.service)
            if self._enabled and not enabled:
                logger.debug("Enabling service %s", self.service)
                self.systemctl.enable(executor, self.service)
                changes.append("enabled")
            elif not self._enabled and enabled:
                logger.debug("Disabling service %s", self.service)
                self.systemctl.disable(executor, self.service)
                changes.append("disabled")

        if self._state == "restarted":
            logger.debug("Restarting service %s", self.service)
            self.systemctl.restart(executor, self.service)
            changes.append("restarted")
        elif self._state is not None:
            active = self.systemctl.is_active(executor, self.service)
            if self._state == "running" and not active:
                logger.debug("Starting service %s", self.service)
                self.systemctl.start(executor, self.service)
                changes.append("started")
            elif self._state == "stopped" and active:
                logger.debug("Stopping service %s", self.service)
                self.systemctl.stop(executor, self.service)
                changes.append("stopped")

        changed = bool(changes)
        detail = ", ".join(changes) if changes else "noop"
        return ActionResult(
            host=host.name, action="service", changed=changed, details=detail, resource=self.service
        )
