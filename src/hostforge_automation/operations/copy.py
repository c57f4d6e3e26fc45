from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from .base import Operation, parse_mode
from ..executors import Executor
from ..types import ActionResult, Check, HostConfig


class CopyOperation(Operation):
    """Copy a local file or directory tree (build artifacts) onto the host."""

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_src = spec.get("src") or spec.get("source")
        if not raw_src:
            raise ValueError("copy operation requires a src")
        raw_dest = spec.get("dest") or spec.get("path")
        if not raw_dest:
            raise ValueError("copy operation requires a dest")
        source = Path(str(raw_src)).expanduser()
        base_dir = spec.get("_playbook_dir")
        if not source.is_absolute() and base_dir is not None:
            source = Path(str(base_dir)) / source
        self.source = source
        self.dest = Path(str(raw_dest))
        self.mode = parse_mode(spec.get("mode"))
        owner = spec.get("owner")
        group = spec.get("group")
        self.owner = str(owner) if owner else None
        self.group = str(group) if group else None

    def guard(self) -> Optional[Check]:
        return Check("files_match", {"src": str(self.source), "dest": str(self.dest)})

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if not self.source.exists():
            raise FileNotFoundError(f"Source {self.source} not found")
        changed, detail = executor.copy(
            self.source, self.dest, mode=self.mode, owner=self.owner, group=self.group
        )
        return ActionResult(
            host=host.name, action="copy", changed=changed, details=detail, resource=str(self.dest)
        )
