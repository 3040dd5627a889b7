"""Engine settings from environment variables.

Environment Variables:
    RTX_RECONCILER_SAVE_COMMAND: Command that saves the configuration (default: save)
    RTX_RECONCILER_TERMINAL_WIDTH: Console width used to unwrap dump lines (default: 80)
    RTX_RECONCILER_ERROR_MARKERS: Extra comma-separated line prefixes treated as errors
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from ..engine.executor import DEFAULT_SAVE_COMMAND, ExecutionCoordinator
from ..engine.formats import DEFAULT_TERMINAL_WIDTH

logger = logging.getLogger(__name__)


@dataclass
class EngineSettings:
    """Settings shared by every domain service of one client."""
    save_command: str = DEFAULT_SAVE_COMMAND
    terminal_width: int = DEFAULT_TERMINAL_WIDTH
    error_markers: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "EngineSettings":
        """Build settings from the environment, falling back to defaults."""
        env = os.environ if environ is None else environ

        width_str = env.get("RTX_RECONCILER_TERMINAL_WIDTH", str(DEFAULT_TERMINAL_WIDTH))
        try:
            width = int(width_str)
        except ValueError:
            logger.warning(f"Ignoring invalid RTX_RECONCILER_TERMINAL_WIDTH: {width_str!r}")
            width = DEFAULT_TERMINAL_WIDTH

        markers = [
            marker.strip()
            for marker in env.get("RTX_RECONCILER_ERROR_MARKERS", "").split(",")
            if marker.strip()
        ]

        return cls(
            save_command=env.get("RTX_RECONCILER_SAVE_COMMAND", DEFAULT_SAVE_COMMAND).strip()
            or DEFAULT_SAVE_COMMAND,
            terminal_width=width if width > 0 else DEFAULT_TERMINAL_WIDTH,
            error_markers=markers,
        )

    def with_overrides(self, **overrides) -> "EngineSettings":
        """Copy with per-device overrides applied (None values are ignored)."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return EngineSettings(
            save_command=values.get("save_command", self.save_command),
            terminal_width=int(values.get("terminal_width", self.terminal_width)),
            error_markers=list(values.get("error_markers", self.error_markers)),
        )

    def create_coordinator(self) -> ExecutionCoordinator:
        return ExecutionCoordinator(
            save_command=self.save_command,
            extra_error_markers=self.error_markers,
        )
