"""Shared fixtures for rtx-reconciler tests."""
from contextlib import asynccontextmanager
from typing import Optional

import pytest

from rtx_reconciler.channel.base import CommandChannel, StopPredicate


class ScriptedChannel(CommandChannel):
    """Command channel that replays canned outputs and records what was sent.

    ``dump`` is returned for every ``show config`` command. ``responses``
    maps exact commands to their output; anything else answers with "".
    """

    def __init__(
        self,
        device_id: str = "rtx-test",
        dump: str = "",
        responses: Optional[dict[str, str]] = None,
    ):
        super().__init__(device_id)
        self.dump = dump
        self.responses = dict(responses or {})
        self.sent: list[str] = []
        self.batches: list[list[str]] = []
        self.sessions = 0
        self.closed = False
        self.raise_on: dict[str, Exception] = {}
        self.ignore_stop = False

    def _respond(self, command: str) -> str:
        self.sent.append(command)
        if command in self.raise_on:
            raise self.raise_on[command]
        if command.startswith("show config"):
            return self.dump
        return self.responses.get(command, "")

    @property
    def config_commands(self) -> list[str]:
        """Everything sent except reads."""
        return [c for c in self.sent if not c.startswith("show ")]

    @asynccontextmanager
    async def session(self):
        self.sessions += 1
        yield self

    async def run_one(self, command: str) -> str:
        return self._respond(command)

    async def run_batch(
        self,
        commands: list[str],
        stop_on: Optional[StopPredicate] = None,
    ) -> list[str]:
        self.batches.append(list(commands))
        outputs = []
        for command in commands:
            output = self._respond(command)
            outputs.append(output)
            if stop_on is not None and stop_on(command, output) and not self.ignore_stop:
                break
        return outputs

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def channel():
    return ScriptedChannel()


@pytest.fixture
def make_channel():
    """Factory for channels with scripted dumps and responses."""
    return ScriptedChannel
