from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any, Optional
import logging

from .base import Operation
from .exec import failure_detail
from ..executors import Executor
from ..types import ActionResult, Check, HostConfig

logger = logging.getLogger(__name__)

DEFAULT_LIVE_DIR = "/etc/letsencrypt/live"
DEFAULT_RENEW_BEFORE_DAYS = 30


class CertificateOperation(Operation):
    """Issue (or re-issue) an ACME certificate through the webroot challenge.

    The guard asks only whether a certificate for the domain is present and
    valid beyond the renewal window, so the same operation covers first
    issuance and periodic renewal.
    """

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        for key in ("domain", "webroot", "email"):
            if not spec.get(key):
                raise ValueError(f"certificate operation requires {key}")
        self.domain = str(spec["domain"])
        self.webroot = str(spec["webroot"])
        self.email = str(spec["email"])
        self.client = str(spec.get("client", "letsencrypt"))
        self.live_dir = str(spec.get("live_dir", DEFAULT_LIVE_DIR))
        self.renew_before_days = int(spec.get("renew_before_days", DEFAULT_RENEW_BEFORE_DAYS))
        if self.renew_before_days < 0:
            raise ValueError("certificate renew_before_days must not be negative")
        hook = spec.get("deploy_hook")
        self.deploy_hook = str(hook) if hook else None

    @property
    def certificate_path(self) -> str:
        return str(PurePosixPath(self.live_dir) / self.domain / "fullchain.pem")

    def guard(self) -> Optional[Check]:
        return Check(
            "certificate_valid",
            {"path": self.certificate_path, "renew_before_days": self.renew_before_days},
        )

    def command(self) -> list[str]:
        cmd = [
            self.client,
            "certonly",
            "-n",
            "--webroot",
            "-w",
            self.webroot,
            "-m",
            self.email,
            "--agree-tos",
            "-d",
            self.domain,
            # apply runs only once the guard has found the certificate missing or expiring.
            "--force-renewal",
        ]
        if self.deploy_hook:
            cmd += ["--deploy-hook", self.deploy_hook]
        return cmd

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        logger.debug("Requesting certificate domain=%s host=%s", self.domain, host.name)
        result = executor.run(self.command(), check=False)
        if result.returncode != 0:
            return ActionResult(
                host=host.name,
                action="certificate",
                changed=False,
                details=failure_detail(result),
                failed=True,
                resource=self.domain,
            )
        return ActionResult(host=host.name, action="certificate", changed=True, details="issued", resource=self.domain)
