from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError
from .fleet import DEFAULT_FANOUT

DEFAULT_CONFIG = Path("/etc/hostforge/main.conf")
DEFAULT_INVENTORY_DIR = Path("/etc/hostforge/inventory")
DEFAULT_PLAYBOOK_DIR = Path("/etc/hostforge/playbooks")


@dataclass
class HostforgeConfig:
    inventory_dir: Path = DEFAULT_INVENTORY_DIR
    playbook_dir: Path = DEFAULT_PLAYBOOK_DIR
    template_dir: Optional[Path] = None
    fanout: int = DEFAULT_FANOUT
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None


def load_config(path: Path) -> HostforgeConfig:
    if not path.exists():
        return HostforgeConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    defaults = data.get("defaults", {})
    base = path.parent
    inventory_dir = defaults.get("inventory_dir", DEFAULT_INVENTORY_DIR)
    playbook_dir = defaults.get("playbook_dir", DEFAULT_PLAYBOOK_DIR)
    template_dir = defaults.get("template_dir")
    aws_region = defaults.get("aws_region")
    aws_profile = defaults.get("aws_profile")
    try:
        fanout = int(defaults.get("fanout", DEFAULT_FANOUT))
    except (TypeError, ValueError):
        raise ConfigError(f"{path}: fanout must be an integer") from None
    if fanout < 1:
        raise ConfigError(f"{path}: fanout must be at least 1")
    return HostforgeConfig(
        inventory_dir=base / Path(inventory_dir),
        playbook_dir=base / Path(playbook_dir),
        template_dir=base / Path(template_dir) if template_dir else None,
        fanout=fanout,
        aws_region=str(aws_region) if aws_region else None,
        aws_profile=str(aws_profile) if aws_profile else None,
    )
