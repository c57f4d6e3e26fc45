from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import InventoryError
from .secrets import SecretResolver
from .types import HostConfig

CONNECTIONS = {"local", "ssh"}


@dataclass
class Inventory:
    environment: str
    hosts: dict[str, HostConfig]
    group_variables: dict[str, dict[str, Any]] = field(default_factory=dict)
    source: Optional[Path] = None

    def hosts_in_group(self, group: str) -> list[HostConfig]:
        if group == "all":
            return list(self.hosts.values())
        return [host for host in self.hosts.values() if group in host.groups or host.name == group]

    def bindings_for(self, host: HostConfig) -> dict[str, Any]:
        """Group variables in group order, then the host's own variables."""
        bindings: dict[str, Any] = dict(self.group_variables.get("all", {}))
        for group in host.groups:
            bindings.update(self.group_variables.get(group, {}))
        bindings.update(host.variables)
        bindings.setdefault("inventory_hostname", host.name)
        return bindings


class InventoryLoader:
    """Resolves an environment name to its hosts and group-scoped bindings."""

    def __init__(self, inventory_dir: Path, *, secret_resolver: Optional[SecretResolver] = None):
        self.inventory_dir = Path(inventory_dir)
        self.secret_resolver = secret_resolver or SecretResolver()

    def path_for(self, environment: str) -> Path:
        if not environment or "/" in environment or environment.startswith("."):
            raise InventoryError(f"Invalid environment name '{environment}'")
        return self.inventory_dir / f"{environment}.toml"

    def load(self, environment: str) -> Inventory:
        path = self.path_for(environment)
        if not path.exists():
            raise InventoryError(f"No inventory for environment '{environment}' at {path}")
        try:
            data = tomllib.loads(path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise InventoryError(f"{path}: {exc}") from None

        group_variables = {
            name: self.secret_resolver.resolve(dict(payload.get("variables", {})))
            for name, payload in data.get("groups", {}).items()
        }
        hosts = self._parse_hosts(data.get("hosts", {}))
        if not hosts:
            raise InventoryError(f"{path}: inventory defines no hosts")
        return Inventory(environment=environment, hosts=hosts, group_variables=group_variables, source=path)

    def _parse_hosts(self, host_data: dict[str, Any]) -> dict[str, HostConfig]:
        hosts: dict[str, HostConfig] = {}
        for name, payload in host_data.items():
            connection = payload.get("connection", "ssh" if payload.get("address") else "local")
            if connection not in CONNECTIONS:
                raise InventoryError(f"Host '{name}' has unknown connection '{connection}'")
            groups = payload.get("groups", [])
            if isinstance(groups, str):
                groups = [groups]
            hosts[name] = HostConfig(
                name=name,
                connection=connection,
                address=payload.get("address"),
                port=int(payload.get("port", 22)),
                user=payload.get("user"),
                become=bool(payload.get("become", False)),
                groups=tuple(str(g) for g in groups),
                variables=self.secret_resolver.resolve(dict(payload.get("variables", {}))),
            )
        return hosts
