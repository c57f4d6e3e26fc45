from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..executors import Executor
from ..types import ActionResult, Check, HostConfig


class Operation(ABC):
    """Shared surface for runnable automation actions.

    ``guard`` describes the postcondition the action establishes. The runner
    skips the action while the guard holds and re-checks it after applying.
    """

    def __init__(self, spec: dict[str, Any]):
        self.spec = spec

    def guard(self) -> Optional[Check]:
        """Default postcondition probe; ``None`` means the operation always applies."""
        return None

    @abstractmethod
    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        """Perform the operation against ``host`` using ``executor``."""


def coerce_bool(value: Any | None) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
        raise ValueError(f"Unable to interpret boolean value '{value}'")
    return bool(value)


def parse_mode(value: Optional[object]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    return int(text, 8)


def all_of(checks: list[Check]) -> Optional[Check]:
    if not checks:
        return None
    if len(checks) == 1:
        return checks[0]
    return Check("all", {"checks": checks})
