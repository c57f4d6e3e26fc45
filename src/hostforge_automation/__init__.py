"""Hostforge host provisioning toolkit."""

from .fleet import FleetOrchestrator
from .inventory import InventoryLoader
from .playbook import PlaybookLoader
from .renderer import Renderer
from .runner import ConvergenceRunner

__all__ = ["ConvergenceRunner", "FleetOrchestrator", "InventoryLoader", "PlaybookLoader", "Renderer"]
