from __future__ import annotations

import logging
from typing import Any, Optional

from .base import Operation, coerce_bool
from ..executors import Executor
from ..types import ActionResult, Check, HostConfig

logger = logging.getLogger(__name__)

IPTABLES = "iptables"


def rule_arguments(
    *,
    in_interface: Optional[str] = None,
    protocol: Optional[str] = None,
    destination_port: Optional[str] = None,
    ctstate: Optional[str] = None,
    jump: str,
) -> list[str]:
    """Build the match/target part of an iptables rule, in iptables' canonical order."""
    args: list[str] = []
    if in_interface:
        args += ["-i", in_interface]
    if protocol:
        args += ["-p", protocol]
    if ctstate:
        args += ["-m", "conntrack", "--ctstate", ctstate]
    if destination_port:
        if not protocol:
            raise ValueError("iptables destination_port requires a protocol")
        args += ["--dport", destination_port]
    args += ["-j", jump]
    return args


class IptablesOperation(Operation):
    """Flush a chain, or ensure a single rule is present in it."""

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.flush = bool(coerce_bool(spec.get("flush", False)))
        chain = spec.get("chain")
        self.chain = str(chain) if chain else None
        self.table = str(spec.get("table", "filter"))
        self.position = str(spec.get("action", "append"))
        if self.position not in {"append", "insert"}:
            raise ValueError("iptables action must be 'append' or 'insert'")
        if self.flush:
            self.rule: list[str] = []
            return
        if not self.chain:
            raise ValueError("iptables rule requires a chain")
        jump = spec.get("jump")
        if not jump:
            raise ValueError("iptables rule requires a jump target")
        port = spec.get("destination_port")
        self.rule = rule_arguments(
            in_interface=_optional_str(spec.get("in_interface")),
            protocol=_optional_str(spec.get("protocol")),
            destination_port=str(port) if port is not None else None,
            ctstate=_optional_str(spec.get("ctstate")),
            jump=str(jump),
        )

    def guard(self) -> Optional[Check]:
        if self.flush:
            return None
        return Check("firewall_rule", {"table": self.table, "chain": self.chain, "rule": list(self.rule)})

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        base = [IPTABLES, "-t", self.table]
        if self.flush:
            cmd = base + ["-F"]
            if self.chain:
                cmd.append(self.chain)
            logger.debug("Flushing iptables chain=%s host=%s", self.chain or "*", host.name)
            executor.run(cmd)
            return ActionResult(
                host=host.name, action="iptables", changed=True, details="flushed", resource=self.chain
            )
        flag = "-A" if self.position == "append" else "-I"
        executor.run(base + [flag, str(self.chain)] + self.rule)
        detail = f"{self.position}ed {' '.join(self.rule)}"
        return ActionResult(host=host.name, action="iptables", changed=True, details=detail, resource=self.chain)


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value else None
