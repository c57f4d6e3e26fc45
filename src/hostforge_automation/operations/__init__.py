from .base import Operation
from .certificate import CertificateOperation
from .copy import CopyOperation
from .cron import CronOperation
from .exec import ExecOperation
from .file import FileOperation, TemplateOperation
from .firewall import IptablesOperation
from .package import PackageOperation, SystemUpgradeOperation
from .service import ServiceOperation
from .user import GroupOperation, UserOperation

OPERATION_REGISTRY = {
    "exec": ExecOperation,
    "file": FileOperation,
    "template": TemplateOperation,
    "copy": CopyOperation,
    "service": ServiceOperation,
    "package": PackageOperation,
    "system_upgrade": SystemUpgradeOperation,
    "user": UserOperation,
    "group": GroupOperation,
    "iptables": IptablesOperation,
    "cron": CronOperation,
    "certificate": CertificateOperation,
}

__all__ = [
    "Operation",
    "ExecOperation",
    "FileOperation",
    "TemplateOperation",
    "CopyOperation",
    "ServiceOperation",
    "PackageOperation",
    "SystemUpgradeOperation",
    "UserOperation",
    "GroupOperation",
    "IptablesOperation",
    "CronOperation",
    "CertificateOperation",
    "OPERATION_REGISTRY",
]
