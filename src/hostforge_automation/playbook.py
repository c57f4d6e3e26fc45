from __future__ import annotations

from pathlib import Path
from typing import Any

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .conditions import CHECK_KINDS
from .errors import PlaybookError
from .operations import OPERATION_REGISTRY
from .types import Check, FailurePolicy, OperationSpec, Playbook

RESERVED_KEYS = {"name", "type", "guard", "on_failure"}


class PlaybookLoader:
    """Loads playbook declarations from TOML files."""

    def load(self, path: Path) -> Playbook:
        path = Path(path)
        try:
            data = tomllib.loads(path.read_text())
        except FileNotFoundError:
            raise PlaybookError(f"{path}: playbook not found") from None
        except tomllib.TOMLDecodeError as exc:
            raise PlaybookError(f"{path}: {exc}") from None
        try:
            return self.parse(data, name=path.stem, source_dir=path.parent)
        except PlaybookError as exc:
            raise PlaybookError(f"{path}: {exc}") from None

    def parse(self, data: dict[str, Any], *, name: str = "playbook", source_dir: Path | None = None) -> Playbook:
        hosts = data.get("hosts")
        if not hosts or not isinstance(hosts, str):
            raise PlaybookError("playbook requires a 'hosts' group name")
        raw_operations = data.get("operations", [])
        if not isinstance(raw_operations, list):
            raise PlaybookError("'operations' must be an array of tables")
        operations = [
            self._parse_operation(raw, index, source_dir)
            for index, raw in enumerate(raw_operations, start=1)
        ]
        return Playbook(
            name=str(data.get("name", name)),
            hosts=hosts,
            operations=operations,
            source_dir=source_dir,
        )

    @staticmethod
    def _parse_operation(raw: Any, index: int, source_dir: Path | None) -> OperationSpec:
        if not isinstance(raw, dict):
            raise PlaybookError(f"operation {index} must be a table")
        op_type = raw.get("type")
        if not op_type:
            raise PlaybookError(f"operation {index} is missing a type")
        if op_type not in OPERATION_REGISTRY:
            raise PlaybookError(f"operation {index} has unknown type '{op_type}'")
        name = str(raw.get("name") or f"{op_type}-{index}")
        policy = raw.get("on_failure", FailurePolicy.HALT.value)
        try:
            on_failure = FailurePolicy(policy)
        except ValueError:
            raise PlaybookError(f"operation {index} on_failure must be 'halt' or 'continue'") from None
        guard = PlaybookLoader._parse_check(raw["guard"], f"{index}.guard") if "guard" in raw else None
        data = {k: v for k, v in raw.items() if k not in RESERVED_KEYS}
        if source_dir is not None:
            data.setdefault("_playbook_dir", str(source_dir))
        return OperationSpec(name=name, type=op_type, data=data, guard=guard, on_failure=on_failure)

    @staticmethod
    def _parse_check(raw: Any, label: str) -> Check:
        if not isinstance(raw, dict):
            raise PlaybookError(f"operation {label} must be a table")
        kind = raw.get("kind")
        if not kind:
            raise PlaybookError(f"operation {label} is missing a kind")
        if kind not in CHECK_KINDS:
            raise PlaybookError(f"operation {label} has unknown kind '{kind}'")
        params = {k: v for k, v in raw.items() if k not in {"kind", "negate", "checks"}}
        if kind == "all":
            nested = raw.get("checks", [])
            params["checks"] = [
                PlaybookLoader._parse_check(item, f"{label}.{pos}") for pos, item in enumerate(nested, start=1)
            ]
        return Check(kind=str(kind), params=params, negate=bool(raw.get("negate", False)))


def load_playbook(path: Path) -> Playbook:
    return PlaybookLoader().load(path)
