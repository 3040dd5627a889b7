"""Command channel abstraction for line-oriented router consoles."""
import os
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# (command, output) -> True when the rest of the batch must not be sent
StopPredicate = Callable[[str, str], bool]


@dataclass
class DeviceConfig:
    """Connection settings for one router."""
    name: str
    host: str
    port: int = 22
    username: str = "admin"
    password: Optional[str] = None
    password_env: str = "RTX_PASSWORD"
    admin_password: Optional[str] = None
    admin_password_env: str = "RTX_ADMIN_PASSWORD"
    model: Optional[str] = None
    timeout: int = 30
    retries: int = 3
    retry_delay: float = 2
    terminal_width: int = 80

    def get_password(self) -> str:
        """Get login password from config or environment variable."""
        if self.password:
            return self.password
        return os.environ.get(self.password_env, "")

    def get_admin_password(self) -> str:
        """Get the administrator password, falling back to the login password."""
        if self.admin_password:
            return self.admin_password
        return os.environ.get(self.admin_password_env, "") or self.get_password()


class CommandChannel(ABC):
    """Ordered, session-scoped command execution against one router.

    Implementations raise ChannelError for transport failures. Device error
    text is returned like any other output; classifying it is the caller's job.
    """

    def __init__(self, device_id: str):
        self.device_id = device_id

    @abstractmethod
    async def run_one(self, command: str) -> str:
        """Run a single command and return its raw output."""
        pass

    @abstractmethod
    async def run_batch(
        self,
        commands: list[str],
        stop_on: Optional[StopPredicate] = None,
    ) -> list[str]:
        """Run commands in order over one session.

        Args:
            commands: Commands to send, in order
            stop_on: Called after each command; when it returns True the
                remaining commands are not sent

        Returns:
            One output per command actually sent. A shorter list than
            ``commands`` means the batch stopped early.
        """
        pass

    @asynccontextmanager
    async def session(self):
        """Keep one session open for every command run inside the block."""
        yield self

    async def close(self) -> None:
        """Release any session held by the channel."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
