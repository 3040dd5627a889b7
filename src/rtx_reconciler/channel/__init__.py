"""Command channels to RTX routers."""
from .base import CommandChannel, DeviceConfig, StopPredicate
from .ssh import SSHCommandChannel

__all__ = ["CommandChannel", "DeviceConfig", "StopPredicate", "SSHCommandChannel"]
