"""Router inventory management from YAML configuration."""
import logging
from dataclasses import fields
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import yaml

from ..channel import DeviceConfig, SSHCommandChannel
from .settings import EngineSettings

if TYPE_CHECKING:
    from ..client import RouterClient

logger = logging.getLogger(__name__)

_DEVICE_FIELDS = {f.name for f in fields(DeviceConfig)}
_ENGINE_FIELDS = {"save_command", "error_markers"}


class DeviceInventory:
    """Manages the router inventory loaded from YAML config.

    ```yaml
    defaults:
      username: admin
      password_env: RTX_PASSWORD
      admin_password_env: RTX_ADMIN_PASSWORD

    devices:
      rtx-edge:
        host: 192.168.100.1
        model: RTX1220
      rtx-branch:
        host: 10.20.0.1
        terminal_width: 120
        save_command: save

    groups:
      branches:
        - rtx-branch
    ```
    """

    def __init__(self, config_path: Optional[str] = None, settings: Optional[EngineSettings] = None):
        self.config_path = config_path or self._find_config()
        self.settings = settings or EngineSettings.from_env()
        self._config: dict = {}
        self._load_config()

    def _find_config(self) -> str:
        """Find the devices.yaml config file."""
        search_paths = [
            Path.cwd() / "configs" / "devices.yaml",
            Path.cwd() / "devices.yaml",
            Path.home() / ".config" / "rtx-reconciler" / "devices.yaml",
            Path("/etc/rtx-reconciler/devices.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        raise FileNotFoundError(
            "Could not find devices.yaml. Create one in ./configs/devices.yaml"
        )

    def _load_config(self) -> None:
        """Load the YAML configuration."""
        with open(self.config_path) as f:
            self._config = yaml.safe_load(f) or {}

        defaults = self._config.get("defaults", {}) or {}
        for device_id, device_config in (self._config.get("devices", {}) or {}).items():
            if not device_config or "host" not in device_config:
                raise ValueError(f"Device '{device_id}' has no host")
            for key, value in defaults.items():
                if key not in device_config:
                    device_config[key] = value
            unknown = set(device_config) - _DEVICE_FIELDS - _ENGINE_FIELDS
            if unknown:
                logger.warning(f"Device '{device_id}' has unknown keys: {sorted(unknown)}")

        self._validate_groups()

    def get_device_ids(self) -> list[str]:
        """Get all device IDs."""
        return list(self._config.get("devices", {}).keys())

    def get_device_config(self, device_id: str) -> dict:
        """Get raw config for a device."""
        devices = self._config.get("devices", {})
        if device_id not in devices:
            raise KeyError(f"Unknown device: {device_id}")
        return devices[device_id]

    def get_connection_config(self, device_id: str) -> DeviceConfig:
        """Connection settings for a device."""
        raw = self.get_device_config(device_id)
        values = {k: v for k, v in raw.items() if k in _DEVICE_FIELDS and k != "name"}
        # The shell must wrap at the width the parsers unwrap at
        values["terminal_width"] = self.get_engine_settings(device_id).terminal_width
        return DeviceConfig(name=device_id, **values)

    def get_engine_settings(self, device_id: str) -> EngineSettings:
        """Engine settings with the device's overrides applied."""
        raw = self.get_device_config(device_id)
        return self.settings.with_overrides(
            save_command=raw.get("save_command"),
            terminal_width=raw.get("terminal_width"),
            error_markers=raw.get("error_markers"),
        )

    def create_channel(self, device_id: str) -> SSHCommandChannel:
        """New SSH channel for a device. The session opens on first use."""
        return SSHCommandChannel(device_id, self.get_connection_config(device_id))

    def get_client(self, device_id: str) -> "RouterClient":
        """New client bound to a fresh channel for a device."""
        from ..client import RouterClient

        return RouterClient(self.create_channel(device_id), self.get_engine_settings(device_id))

    # === Group Management ===

    def _validate_groups(self) -> None:
        """Validate that all group members reference valid devices."""
        groups = self._config.get("groups", {}) or {}
        devices = self._config.get("devices", {}) or {}

        for group_name, members in groups.items():
            if not isinstance(members, list):
                logger.warning(f"Group '{group_name}' should be a list of device IDs")
                continue
            for device_id in members:
                if device_id not in devices:
                    logger.warning(
                        f"Group '{group_name}' references unknown device: {device_id}"
                    )

    def get_groups(self) -> dict[str, list[str]]:
        """Get all defined groups and their members."""
        return dict(self._config.get("groups", {}) or {})

    def get_group_members(self, group_name: str) -> list[str]:
        """Get device IDs in a group.

        Raises:
            KeyError: If group doesn't exist
        """
        groups = self._config.get("groups", {}) or {}
        if group_name not in groups:
            raise KeyError(f"Unknown group: {group_name}")
        return list(groups[group_name])
