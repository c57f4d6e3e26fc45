from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional
import logging

from .base import Operation, coerce_bool
from ..executors import CommandResult, Executor
from ..types import ActionResult, Check, HostConfig

logger = logging.getLogger(__name__)


class PackageOperation(Operation):
    """Install or remove packages using the detected package manager."""

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        packages = spec.get("package") or spec.get("packages")
        if isinstance(packages, str):
            self.packages = [packages]
        else:
            self.packages = [str(pkg) for pkg in packages or []]
        if not self.packages:
            raise ValueError("package operation requires at least one package")
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("package operation state must be 'present' or 'absent'")
        self.preferred_manager = spec.get("manager")
        self.update_cache = bool(coerce_bool(spec.get("update_cache", False)))

    def guard(self) -> Optional[Check]:
        return Check(
            "package_installed",
            {"packages": list(self.packages), "manager": self.preferred_manager},
            negate=self.state == "absent",
        )

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        manager = PackageManagerFactory.create(self.preferred_manager, executor)
        logger.debug(
            "package-manager=%s host=%s packages=%s", manager.name, host.name, self.packages
        )
        if self.update_cache:
            manager.refresh(executor)
        if self.state == "present":
            changed, details = manager.ensure_present(executor, self.packages)
        else:
            changed, details = manager.ensure_absent(executor, self.packages)
        detail_msg = f"manager={manager.name} {details}" if details else f"manager={manager.name}"
        return ActionResult(
            host=host.name,
            action="package",
            changed=changed,
            details=detail_msg,
            resource=", ".join(self.packages),
        )


class SystemUpgradeOperation(Operation):
    """Refresh package metadata and apply a full distribution upgrade."""

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.preferred_manager = spec.get("manager")

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        manager = PackageManagerFactory.create(self.preferred_manager, executor)
        manager.refresh(executor)
        manager.upgrade(executor)
        return ActionResult(
            host=host.name, action="system_upgrade", changed=True, details=f"manager={manager.name} upgraded"
        )


class PackageManagerFactory:
    _MANAGERS = [
        ("apt-get", "apt", lambda: AptPackageManager()),
        ("dnf", "dnf", lambda: DnfPackageManager()),
        ("yum", "yum", lambda: YumPackageManager()),
    ]

    @classmethod
    def create(cls, preferred: Optional[object], executor: Executor) -> "PackageManager":
        if isinstance(preferred, str):
            preferred = preferred.lower()
            for _, key, factory in cls._MANAGERS:
                if key == preferred:
                    return factory()
            raise ValueError(f"Unknown package manager '{preferred}'")
        for binary, _, factory in cls._MANAGERS:
            probe = executor.run(["sh", "-c", f"command -v {binary}"], check=False)
            if probe.returncode == 0:
                return factory()
        raise RuntimeError(f"No supported package manager found on {executor.host.name}")


class PackageManager:
    name = "generic"

    def ensure_present(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        needed = [pkg for pkg in packages if not self.is_installed(executor, pkg)]
        if not needed:
            return False, "already-installed"
        self.install(executor, needed)
        return True, f"installed={','.join(needed)}"

    def ensure_absent(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        removable = [pkg for pkg in packages if self.is_installed(executor, pkg)]
        if not removable:
            return False, "already-removed"
        self.remove(executor, removable)
        return True, f"removed={','.join(removable)}"

    def refresh(self, executor: Executor) -> None:
        raise NotImplementedError

    def upgrade(self, executor: Executor) -> None:
        raise NotImplementedError

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def remove(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def query(self, executor: Executor, package: str) -> CommandResult:
        raise NotImplementedError

    def installed(self, result: CommandResult) -> bool:
        return result.returncode == 0

    def is_installed(self, executor: Executor, package: str) -> bool:
        return self.installed(self.query(executor, package))


@dataclass
class DpkgQuery:
    executable: str = "dpkg-query"

    def run(self, executor: Executor, package: str) -> CommandResult:
        return executor.run([self.executable, "-W", "-f", "${Status}", package], check=False)


class AptPackageManager(PackageManager):
    name = "apt"
    env = {"DEBIAN_FRONTEND": "noninteractive"}

    def __init__(self) -> None:
        self.dpkg = DpkgQuery()

    def refresh(self, executor: Executor) -> None:
        executor.run(["apt-get", "update"], env=self.env)

    def upgrade(self, executor: Executor) -> None:
        executor.run(["apt-get", "dist-upgrade", "-y"], env=self.env)

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "install", "-y", *packages], env=self.env)

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "remove", "-y", *packages], env=self.env)

    def query(self, executor: Executor, package: str) -> CommandResult:
        return self.dpkg.run(executor, package)

    def installed(self, result: CommandResult) -> bool:
        return result.returncode == 0 and "install ok installed" in result.stdout


class DnfPackageManager(PackageManager):
    name = "dnf"
    tool = "dnf"
    upgrade_verb = "upgrade"

    def refresh(self, executor: Executor) -> None:
        executor.run([self.tool, "makecache"])

    def upgrade(self, executor: Executor) -> None:
        executor.run([self.tool, self.upgrade_verb, "-y"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.tool, "install", "-y", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.tool, "remove", "-y", *packages])

    def query(self, executor: Executor, package: str) -> CommandResult:
        return executor.run(["rpm", "-q", package], check=False)


class YumPackageManager(DnfPackageManager):
    name = "yum"
    tool = "yum"
    upgrade_verb = "update"
