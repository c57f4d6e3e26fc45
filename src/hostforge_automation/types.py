from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class FailurePolicy(str, Enum):
    HALT = "halt"
    CONTINUE = "continue"


class Disposition(str, Enum):
    SKIPPED = "skipped"
    APPLIED_SUCCESS = "applied-success"
    APPLIED_FAILURE = "applied-failure"
    NOT_REACHED = "not-reached"


class HostStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class RunState(str, Enum):
    PENDING = "pending"
    RENDERING = "rendering"
    CONVERGING = "converging"
    DONE = "done"


@dataclass(frozen=True)
class HostConfig:
    name: str
    connection: str = "local"
    address: Optional[str] = None
    port: int = 22
    user: Optional[str] = None
    become: bool = False
    groups: tuple[str, ...] = ()
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Check:
    """A side-effect-free probe of host state."""

    kind: str
    params: dict[str, Any] = field(default_factory=dict)
    negate: bool = False


@dataclass
class OperationSpec:
    name: str
    type: str
    data: dict[str, Any]
    guard: Optional[Check] = None
    on_failure: FailurePolicy = FailurePolicy.HALT


@dataclass
class Playbook:
    name: str
    hosts: str
    operations: list[OperationSpec]
    source_dir: Optional[Path] = None


@dataclass(frozen=True)
class RenderedOperation:
    index: int
    name: str
    type: str
    data: dict[str, Any]
    guard: Optional[Check] = None
    on_failure: FailurePolicy = FailurePolicy.HALT


@dataclass
class ActionResult:
    host: str
    action: str
    changed: bool
    details: str
    failed: bool = False
    resource: Optional[str] = None


@dataclass
class OperationReport:
    name: str
    type: str
    disposition: Disposition
    detail: str = ""

    @property
    def failed(self) -> bool:
        return self.disposition is Disposition.APPLIED_FAILURE


@dataclass
class HostReport:
    host: str
    playbook: str
    status: HostStatus = HostStatus.SUCCESS
    operations: list[OperationReport] = field(default_factory=list)
    error: Optional[str] = None

    def dispositions(self) -> list[Disposition]:
        return [op.disposition for op in self.operations]


@dataclass
class FleetReport:
    playbook: str
    hosts: dict[str, HostReport] = field(default_factory=dict)
    interrupted: bool = False

    @property
    def status(self) -> HostStatus:
        statuses = {report.status for report in self.hosts.values()}
        if HostStatus.FAILED in statuses:
            return HostStatus.FAILED
        if HostStatus.PARTIAL in statuses:
            return HostStatus.PARTIAL
        return HostStatus.SUCCESS


def worst_status(statuses) -> HostStatus:
    """Fold several run statuses into one, failed beating partial beating success."""
    result = HostStatus.SUCCESS
    for status in statuses:
        if status is HostStatus.FAILED:
            return HostStatus.FAILED
        if status is HostStatus.PARTIAL:
            result = HostStatus.PARTIAL
    return result
