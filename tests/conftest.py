"""Pytest configuration and fixtures for Voxbridge tests."""

import asyncio
import contextlib
from typing import Any, Sequence

import pytest
import pytest_asyncio

from voxbridge.config.settings import Settings
from voxbridge.core.commands import Command, ToolResult
from voxbridge.core.session import CallSession


class RecordingSink:
    """Command sink that records everything it is asked to send."""

    def __init__(self):
        self.sent: list[tuple[str, Any]] = []

    async def reply(self, msgid: str | None, commands: Sequence[Command]) -> None:
        self.sent.append(("reply", (msgid, list(commands))))

    async def redirect(self, commands: Sequence[Command]) -> None:
        self.sent.append(("redirect", list(commands)))

    async def send_tool_output(self, result: ToolResult) -> None:
        self.sent.append(("tool-output", result))

    @property
    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.sent]

    def verbs(self) -> list[str]:
        """Verb names of every command sent, in order."""
        names = []
        for kind, item in self.sent:
            if kind == "reply":
                names.extend(command.verb for command in item[1])
            elif kind == "redirect":
                names.extend(command.verb for command in item)
        return names

    def tool_results(self) -> list[ToolResult]:
        return [item for kind, item in self.sent if kind == "tool-output"]


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        ultravox_api_key="test-key",
        human_agent_number="+15551230000",
        human_agent_trunk="agent-trunk",
        human_agent_callerid="+15559870000",
        transfer_delay_seconds=0.01,
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def session(settings: Settings, sink: RecordingSink) -> CallSession:
    """Create a call session writing to the recording sink."""
    return CallSession("test-call", settings, sink)


@pytest_asyncio.fixture
async def running_session(session: CallSession):
    """Call session with its event worker running."""
    worker = asyncio.create_task(session.run())
    yield session
    session.close("test finished")
    worker.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await worker
