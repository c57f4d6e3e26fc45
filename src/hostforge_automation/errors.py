from __future__ import annotations

from typing import Optional


class HostforgeError(Exception):
    """Base class for engine errors."""


class RenderError(HostforgeError, ValueError):
    """Raised when a playbook cannot be rendered against its bindings."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UnresolvedVariable(RenderError):
    def __init__(self, variable: str, field: Optional[str] = None):
        location = f" in {field}" if field else ""
        super().__init__(f"unresolved variable '{variable}'{location}", field=field)
        self.variable = variable


class MalformedTemplate(RenderError):
    def __init__(self, message: str, field: Optional[str] = None, line: Optional[int] = None):
        location = f" in {field}" if field else ""
        if line is not None:
            location = f"{location} (line {line})"
        super().__init__(f"malformed template{location}: {message}", field=field)
        self.line = line


class TemplateMissing(MalformedTemplate):
    def __init__(self, source: str, field: Optional[str] = None):
        super().__init__(f"template '{source}' not found", field=field)
        self.source = source


class ProbeUnknown(HostforgeError, RuntimeError):
    """A guard probe could not determine whether its condition holds."""


class ActionFailed(HostforgeError, RuntimeError):
    """An action ran but its postcondition still does not hold."""


class TransportUnreachable(HostforgeError, ConnectionError):
    """The host cannot be contacted."""

    def __init__(self, host: str, detail: str = ""):
        message = f"host {host} unreachable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.host = host


class PlaybookError(HostforgeError, ValueError):
    """Raised when a playbook declaration is invalid."""


class InventoryError(HostforgeError, ValueError):
    """Raised when an inventory cannot be resolved."""


class ConfigError(HostforgeError, ValueError):
    """Raised when the main config file is unreadable or out of range."""
