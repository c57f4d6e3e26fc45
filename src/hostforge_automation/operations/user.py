from __future__ import annotations

import logging
from typing import Any, Optional

from .base import Operation, all_of, coerce_bool
from ..executors import Executor
from ..types import ActionResult, Check, HostConfig

logger = logging.getLogger(__name__)


class AccountManager:
    """Thin wrapper over the shadow-utils commands on the target host."""

    def exists(self, executor: Executor, database: str, name: str) -> bool:
        result = executor.run(["getent", database, name], check=False)
        return result.returncode == 0

    def add_user(
        self,
        executor: Executor,
        name: str,
        *,
        groups: list[str],
        shell: Optional[str],
        system: bool,
        create_home: bool,
    ) -> None:
        cmd = ["useradd"]
        if shell:
            cmd += ["--shell", shell]
        if groups:
            cmd += ["--groups", ",".join(groups)]
        if create_home:
            cmd.append("--create-home")
        if system:
            cmd.append("--system")
        cmd.append(name)
        executor.run(cmd)

    def groups_of(self, executor: Executor, name: str) -> set[str]:
        return set(executor.run(["id", "-nG", name]).stdout.split())

    def append_groups(self, executor: Executor, name: str, groups: list[str]) -> None:
        executor.run(["usermod", "--append", "--groups", ",".join(groups), name])

    def add_group(self, executor: Executor, name: str, *, system: bool) -> None:
        cmd = ["groupadd"]
        if system:
            cmd.append("--system")
        cmd.append(name)
        executor.run(cmd)


class UserOperation(Operation):
    """Ensure a user account exists."""

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("user")
        if not raw_name:
            raise ValueError("user operation requires a user")
        self.user = str(raw_name)
        raw_groups = spec.get("groups") or []
        if isinstance(raw_groups, str):
            raw_groups = [g.strip() for g in raw_groups.split(",") if g.strip()]
        self.groups = [str(g) for g in raw_groups]
        shell = spec.get("shell")
        self.shell = str(shell) if shell else None
        self.system = bool(coerce_bool(spec.get("system", False)))
        create_home = coerce_bool(spec.get("create_home"))
        self.create_home = True if create_home is None else create_home
        self.manager = AccountManager()

    def guard(self) -> Optional[Check]:
        checks = [Check("user_exists", {"name": self.user})]
        if self.groups:
            checks.append(Check("user_in_groups", {"name": self.user, "groups": list(self.groups)}))
        return all_of(checks)

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if self.manager.exists(executor, "passwd", self.user):
            current = self.manager.groups_of(executor, self.user) if self.groups else set()
            missing = [g for g in self.groups if g not in current]
            if not missing:
                return ActionResult(host=host.name, action="user", changed=False, details="noop", resource=self.user)
            logger.debug("Adding user %s to groups %s on %s", self.user, ",".join(missing), host.name)
            self.manager.append_groups(executor, self.user, missing)
            detail = f"groups+={','.join(missing)}"
            return ActionResult(host=host.name, action="user", changed=True, details=detail, resource=self.user)
        logger.debug("Creating user %s on %s", self.user, host.name)
        self.manager.add_user(
            executor,
            self.user,
            groups=self.groups,
            shell=self.shell,
            system=self.system,
            create_home=self.create_home,
        )
        return ActionResult(host=host.name, action="user", changed=True, details="created", resource=self.user)


class GroupOperation(Operation):
    """Ensure a group exists."""

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("group")
        if not raw_name:
            raise ValueError("group operation requires a group")
        self.group = str(raw_name)
        self.system = bool(coerce_bool(spec.get("system", False)))
        self.manager = AccountManager()

    def guard(self) -> Optional[Check]:
        return Check("group_exists", {"name": self.group})

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if self.manager.exists(executor, "group", self.group):
            return ActionResult(host=host.name, action="group", changed=False, details="noop", resource=self.group)
        logger.debug("Creating group %s on %s", self.group, host.name)
        self.manager.add_group(executor, self.group, system=self.system)
        return ActionResult(host=host.name, action="group", changed=True, details="created", resource=self.group)
