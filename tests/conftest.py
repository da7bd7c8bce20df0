from __future__ import annotations

import pytest

from wezterm_mcp import CommandError, Toolset


class FakeRunner:
    """Stands in for CommandRunner: records command lines, replays scripted output.

    ``responses`` maps a wezterm subcommand (``list``, ``send-text`` ...) to the
    stdout it should produce, or to an exception instance to raise.
    """

    def __init__(self, responses: dict[str, object] | None = None) -> None:
        self.responses = dict(responses or {})
        self.commands: list[str] = []

    def fail_all(self, message: str) -> None:
        self.responses = {"*": CommandError("wezterm cli", 1, stderr=message)}

    async def run(self, command: str) -> str:
        self.commands.append(command)
        for key, value in self.responses.items():
            if key == "*" or command.startswith(f"wezterm cli {key}"):
                if isinstance(value, BaseException):
                    raise value
                return str(value)
        return ""


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def tools(runner: FakeRunner) -> Toolset:
    return Toolset.create("wezterm cli", runner)
