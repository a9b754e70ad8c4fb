"""Stagehand host provisioning toolkit."""

from .runner import TaskRunner
from .inventory import InventoryLoader

__all__ = ["TaskRunner", "InventoryLoader"]
