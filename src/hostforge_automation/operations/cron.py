from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from .base import Operation
from ..executors import Executor
from ..types import ActionResult, Check, HostConfig

SPECIAL_TIMES = {"reboot", "yearly", "annually", "monthly", "weekly", "daily", "hourly"}


class CronOperation(Operation):
    """Manage a single job file under ``/etc/cron.d``."""

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("entry")
        if not raw_name:
            raise ValueError("cron operation requires an entry name")
        self.entry = str(raw_name)
        self.user = str(spec.get("user", "root"))
        self.command = spec.get("command") or spec.get("job")
        if not self.command:
            raise ValueError("cron operation requires a command")
        special = spec.get("special_time")
        if special is not None and str(special) not in SPECIAL_TIMES:
            raise ValueError(f"cron special_time must be one of {', '.join(sorted(SPECIAL_TIMES))}")
        self.special_time = str(special) if special is not None else None
        self.schedule = {
            "minute": str(spec.get("minute", "*")),
            "hour": str(spec.get("hour", "*")),
            "day": str(spec.get("day", spec.get("day_of_month", "*"))),
            "month": str(spec.get("month", "*")),
            "weekday": str(spec.get("weekday", spec.get("day_of_week", "*"))),
        }
        self.env = spec.get("env", {})
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ValueError("cron state must be 'present' or 'absent'")
        cron_dir = Path(str(spec.get("cron_dir", "/etc/cron.d")))
        # cron ignores files in /etc/cron.d whose names contain dots.
        self.cron_file = cron_dir / self.entry.replace(".", "_")

    def render(self) -> str:
        content_lines = []
        for key in sorted(self.env):
            content_lines.append(f"{key}={self.env[key]}")
        if self.special_time:
            schedule = f"@{self.special_time}"
        else:
            schedule = "{minute} {hour} {day} {month} {weekday}".format(**self.schedule)
        content_lines.append(f"{schedule} {self.user} {self.command}")
        return "\n".join(content_lines) + "\n"

    def guard(self) -> Optional[Check]:
        if self.state == "absent":
            return Check("path_exists", {"path": str(self.cron_file)}, negate=True)
        return Check("file_matches", {"path": str(self.cron_file), "content": self.render(), "mode": 0o644})

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if self.state == "absent":
            removed = executor.remove_path(self.cron_file)
            detail = "removed" if removed else "noop"
            return ActionResult(host=host.name, action="cron", changed=removed, details=detail, resource=self.entry)

        content = self.render()
        existing = executor.read_file(self.cron_file)
        changed, _ = executor.write_file(self.cron_file, content=content, mode=0o644)
        if existing is None:
            detail = "created"
        else:
            detail = "updated" if changed else "noop"
        return ActionResult(host=host.name, action="cron", changed=changed, details=detail, resource=self.entry)
