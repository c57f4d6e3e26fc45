from __future__ import annotations

from pathlib import Path
from typing import Optional

from .base import Operation, parse_mode
from ..executors import Executor
from ..types import ActionResult, Check, HostConfig


class FileOperation(Operation):
    """Ensure files exist with the requested contents."""

    action = "file"

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        raw_path = spec.get("path") or spec.get("dest")
        if not raw_path:
            raise ValueError(f"{self.action} operation requires a path")
        self.path = Path(str(raw_path))
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent", "directory"}:
            raise ValueError("file operation state must be 'present', 'absent', or 'directory'")
        raw_content = spec.get("content")
        self.content = "" if raw_content is None else str(raw_content)
        self.mode = parse_mode(spec.get("mode"))
        owner = spec.get("owner")
        group = spec.get("group")
        self.owner = str(owner) if owner else None
        self.group = str(group) if group else None

    def guard(self) -> Optional[Check]:
        if self.state == "absent":
            return Check("path_exists", {"path": str(self.path)}, negate=True)
        if self.state == "directory":
            return Check("path_exists", {"path": str(self.path), "type": "directory", "mode": self.mode})
        return Check(
            "file_matches",
            {"path": str(self.path), "content": self.content, "mode": self.mode},
        )

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if self.state == "directory":
            changed, detail = executor.ensure_directory(self.path, mode=self.mode)
        elif self.state == "absent":
            changed = executor.remove_path(self.path)
            detail = "removed" if changed else "noop"
        else:
            changed, detail = executor.write_file(self.path, content=self.content, mode=self.mode)
        if self.state != "absent":
            changed, detail = self._apply_ownership(executor, changed, detail)
        return ActionResult(
            host=host.name, action=self.action, changed=changed, details=detail, resource=str(self.path)
        )

    def _apply_ownership(self, executor: Executor, changed: bool, detail: str) -> tuple[bool, str]:
        if self.owner is None and self.group is None:
            return changed, detail
        chown_changed, chown_detail = executor.set_ownership(self.path, owner=self.owner, group=self.group)
        if chown_changed:
            changed = True
            detail = f"{detail}, {chown_detail}" if detail and detail != "noop" else chown_detail
        return changed, detail


class TemplateOperation(FileOperation):
    """Install a rendered template; ``content`` is filled in before the run starts."""

    action = "template"

    def __init__(self, spec: dict[str, object]):
        if not spec.get("src"):
            raise ValueError("template operation requires a src")
        if "content" not in spec:
            raise ValueError(f"template '{spec['src']}' has not been rendered")
        super().__init__({**spec, "state": "present"})
        self.source = str(spec["src"])
