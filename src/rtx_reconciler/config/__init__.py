"""Inventory and engine settings."""
from .inventory import DeviceInventory
from .settings import EngineSettings

__all__ = ["DeviceInventory", "EngineSettings"]
