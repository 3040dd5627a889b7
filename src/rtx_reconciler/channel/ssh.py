"""Yamaha RTX console over SSH.

Technical details:
- Interactive shell via invoke_shell(), prompt ends with ">" (user) or "#" (administrator)
- Configuration commands require the "administrator" escalation
- "console character ascii" avoids Shift_JIS error messages
- "console lines infinity" disables the ---More--- pager for the session
- "show config | grep <pattern>" gives a filtered configuration dump
"""
import asyncio
import logging
import re
import time
from contextlib import asynccontextmanager
from typing import Optional

import paramiko

from ..errors import ChannelError
from ..utils.connection import with_retry
from ..utils.logging_config import perf_logger, redact_secrets, timed
from .base import CommandChannel, DeviceConfig, StopPredicate

logger = logging.getLogger(__name__)

PROMPT_PATTERN = re.compile(r"[>#]\s?$")
PASSWORD_PATTERN = re.compile(r"Password:\s*$", re.IGNORECASE)
MORE_PATTERN = re.compile(r"---\s*(more|続きます)\s*---", re.IGNORECASE)
ANSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]")

SESSION_SETUP = ["console character ascii", "console lines infinity"]

# Transport failures surfaced as ChannelError
TRANSPORT_ERRORS = (OSError, EOFError, asyncio.TimeoutError, paramiko.SSHException)


class RTXShell:
    """Low-level SSH shell handler for RTX routers."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        timeout: float = 30,
        width: int = 80,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout
        self.width = width
        self._client: Optional[paramiko.SSHClient] = None
        self._shell: Optional[paramiko.Channel] = None

    @property
    def is_open(self) -> bool:
        return self._shell is not None

    async def connect(self) -> None:
        """Establish SSH connection with interactive shell."""
        loop = asyncio.get_running_loop()

        def _connect():
            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            client.connect(
                self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            return client

        self._client = await loop.run_in_executor(None, _connect)

        def _get_shell():
            shell = self._client.invoke_shell(width=self.width)
            shell.settimeout(self.timeout)
            return shell

        self._shell = await loop.run_in_executor(None, _get_shell)
        await self._read_until(PROMPT_PATTERN, timeout=10)

    async def close(self) -> None:
        """Close SSH connection."""
        if self._shell:
            self._shell.close()
            self._shell = None
        if self._client:
            self._client.close()
            self._client = None

    async def _read_available(self) -> str:
        """Read available data from shell."""
        if not self._shell:
            raise ConnectionError("Not connected")

        loop = asyncio.get_running_loop()

        def _recv():
            if self._shell.recv_ready():
                data = self._shell.recv(65535)
                return ANSI_PATTERN.sub("", data.decode("utf-8", errors="ignore"))
            if self._shell.closed:
                raise EOFError("shell closed by router")
            return ""

        return await loop.run_in_executor(None, _recv)

    async def _read_until(self, pattern: re.Pattern, timeout: float) -> str:
        """Read until ``pattern`` matches the tail of the output."""
        output = ""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while loop.time() < deadline:
            chunk = await self._read_available()
            if not chunk:
                await asyncio.sleep(0.1)
                continue
            output += chunk

            if MORE_PATTERN.search(output):
                await self._send_raw(" ")
                output = MORE_PATTERN.sub("", output)
                continue
            if pattern.search(output.rstrip("\r\n")):
                return output

        raise asyncio.TimeoutError(f"no prompt from {self.host} after {timeout}s")

    async def _send_raw(self, data: str) -> None:
        """Send raw string to shell."""
        if not self._shell:
            raise ConnectionError("Not connected")
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._shell.send, data)

    async def send_command(self, command: str, timeout: float = 30) -> str:
        """Send a command and return the output without echo and prompt."""
        await self._send_raw(f"{command}\r")
        output = await self._read_until(PROMPT_PATTERN, timeout=timeout)

        lines = output.replace("\r\n", "\n").split("\n")
        if lines and command in lines[0]:
            lines = lines[1:]
        if lines and PROMPT_PATTERN.search(lines[-1]):
            lines = lines[:-1]
        return "\n".join(lines).strip()

    async def escalate(self, admin_password: str, timeout: float = 10) -> None:
        """Enter administrator mode."""
        await self._send_raw("administrator\r")
        await self._read_until(PASSWORD_PATTERN, timeout=timeout)
        await self._send_raw(f"{admin_password}\r")
        output = await self._read_until(PROMPT_PATTERN, timeout=timeout)
        if not output.rstrip().endswith("#"):
            raise paramiko.AuthenticationException("administrator login rejected")


class SSHCommandChannel(CommandChannel):
    """Command channel to an RTX router over SSH."""

    def __init__(self, device_id: str, config: DeviceConfig):
        super().__init__(device_id)
        self.config = config
        self._shell: Optional[RTXShell] = None

    @property
    def is_connected(self) -> bool:
        return self._shell is not None and self._shell.is_open

    async def connect(self) -> None:
        """Open the shell, retrying transient network failures."""
        attempt = with_retry(
            max_attempts=max(1, self.config.retries),
            min_wait=self.config.retry_delay,
            max_wait=self.config.retry_delay * 5,
        )(self._open)
        await attempt()

    @timed("connect")
    async def _open(self) -> None:
        """Open the shell, set up the console and escalate to administrator."""
        logger.info(f"Connecting to {self.device_id} at {self.config.host}")

        shell = RTXShell(
            self.config.host,
            self.config.port,
            self.config.username,
            self.config.get_password(),
            timeout=self.config.timeout,
            width=self.config.terminal_width,
        )
        try:
            await shell.connect()
            for command in SESSION_SETUP:
                await shell.send_command(command, timeout=self.config.timeout)
            await shell.escalate(self.config.get_admin_password())
        except BaseException:
            await shell.close()
            raise

        self._shell = shell
        logger.info(f"Connected to {self.device_id}")

    async def close(self) -> None:
        if self._shell:
            await self._shell.close()
            self._shell = None
            logger.info(f"Disconnected from {self.device_id}")

    @asynccontextmanager
    async def session(self):
        """Use the open session, or open one for the duration of the block."""
        opened_here = not self.is_connected
        try:
            if opened_here:
                await self.connect()
            yield self
        except TRANSPORT_ERRORS as e:
            await self.close()
            raise ChannelError(f"{self.device_id}: {e}") from e
        finally:
            if opened_here:
                await self.close()

    async def _send(self, shell: RTXShell, command: str) -> str:
        start = time.perf_counter()
        output = await shell.send_command(command, timeout=self.config.timeout)
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.debug(
            f"{'execute':20s} | {self.device_id:15s} | {elapsed:8.2f}ms | "
            f"cmd={redact_secrets(command)[:60]}"
        )
        return output

    @timed("run_one")
    async def run_one(self, command: str) -> str:
        async with self.session():
            return await self._send(self._shell, command)

    @timed("run_batch")
    async def run_batch(
        self,
        commands: list[str],
        stop_on: Optional[StopPredicate] = None,
    ) -> list[str]:
        outputs: list[str] = []
        async with self.session():
            for command in commands:
                output = await self._send(self._shell, command)
                outputs.append(output)
                if stop_on is not None and stop_on(command, output):
                    logger.debug(f"{self.device_id}: batch stopped after '{redact_secrets(command)}'")
                    break
        return outputs
