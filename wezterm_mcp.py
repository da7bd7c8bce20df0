#!/usr/bin/env python3
"""WezTerm MCP Server - Drive WezTerm panes from Claude and other MCP clients."""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

__version__ = "0.1.0"

logger = logging.getLogger("wezterm-mcp")

server = Server("wezterm-mcp", version=__version__)


# =============================================================================
# SETTINGS - Read once from the environment, never mutated
# =============================================================================

DEFAULT_CLI = "wezterm cli"
DEFAULT_SHELL = "bash"
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_READ_LINES = 50

EMPTY_OUTPUT = "(empty output)"
MUX_HINT = "Make sure WezTerm is running and the mux server is enabled."


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration."""
    cli: str = DEFAULT_CLI
    shell: str = DEFAULT_SHELL
    log_level: str = DEFAULT_LOG_LEVEL


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from WEZTERM_* environment variables."""
    env = os.environ if env is None else env
    return Settings(
        cli=env.get("WEZTERM_CLI", "").strip() or DEFAULT_CLI,
        shell=env.get("WEZTERM_MCP_SHELL", "").strip() or DEFAULT_SHELL,
        log_level=env.get("WEZTERM_MCP_LOG_LEVEL", "").strip().upper() or DEFAULT_LOG_LEVEL,
    )


settings = load_settings()

# Control character key -> escape understood by bash $'...' quoting
CONTROL_SEQUENCES: Mapping[str, str] = MappingProxyType({
    "a": "\\x01",  # Ctrl+A
    "c": "\\x03",  # Ctrl+C
    "d": "\\x04",  # Ctrl+D
    "e": "\\x05",  # Ctrl+E
    "k": "\\x0b",  # Ctrl+K
    "l": "\\x0c",  # Ctrl+L
    "u": "\\x15",  # Ctrl+U
    "w": "\\x17",  # Ctrl+W
    "z": "\\x1a",  # Ctrl+Z
})


# =============================================================================
# RESULTS & ERRORS
# =============================================================================

class Outcome(Enum):
    OK = "ok"
    FAILED = "failed"      # success envelope whose text reports the failure
    REJECTED = "rejected"  # propagated to the client as a protocol-level error


@dataclass(frozen=True)
class ToolResult:
    """What a handler hands back to the dispatcher."""
    text: str
    outcome: Outcome = Outcome.OK

    @classmethod
    def ok(cls, text: str) -> "ToolResult":
        return cls(text, Outcome.OK)

    @classmethod
    def failed(cls, text: str) -> "ToolResult":
        return cls(text, Outcome.FAILED)

    @classmethod
    def rejected(cls, text: str) -> "ToolResult":
        return cls(text, Outcome.REJECTED)

    @property
    def is_rejected(self) -> bool:
        return self.outcome is Outcome.REJECTED

    def envelope(self) -> dict[str, Any]:
        return {"content": [{"type": "text", "text": self.text}]}

    def to_content(self) -> list[TextContent]:
        return [TextContent(type="text", text=self.text)]


class ToolError(Exception):
    """Protocol-level failure: unknown tool or unsupported control character."""


class CommandError(Exception):
    """An external command exited with a non-zero status."""

    def __init__(self, command: str, returncode: int, stderr: str = "", stdout: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or stdout.strip() or f"exit status {returncode}"
        super().__init__(detail)


# Failures a handler turns into response text instead of propagating
HANDLED_ERRORS = (CommandError, OSError, ValueError, TypeError)


# =============================================================================
# COMMAND BUILDER - Pure functions producing wezterm cli command lines
# =============================================================================

def escape_single_quotes(text: str) -> str:
    """Make text safe to embed between single quotes in a POSIX shell.

    Each ' closes the quoted literal, emits a double-quoted ', and reopens
    the literal, so '<escaped>' always reaches the program as one argument
    with the original bytes.
    """
    if not isinstance(text, str):
        raise TypeError(f"expected text, got {type(text).__name__}")
    return text.replace("'", "'\"'\"'")


def _as_int(value: Any, what: str) -> int:
    """Coerce a JSON number (possibly 3.0) to an int without truncating."""
    if isinstance(value, bool):
        raise TypeError(f"{what} must be a number, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{what} must be a whole number, got {value!r}")
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value.strip())
    raise TypeError(f"{what} must be a number, got {value!r}")


def build_list_command(cli: str) -> str:
    return f"{cli} list"


def build_write_command(cli: str, text: str, pane_id: Any = None) -> str:
    """send-text the escaped text plus a newline so the shell executes it."""
    escaped = escape_single_quotes(text)
    if pane_id is None:
        return f"{cli} send-text --no-paste '{escaped}\n'"
    return f"{cli} send-text --pane-id {_as_int(pane_id, 'pane_id')} --no-paste '{escaped}\n'"


def build_read_command(cli: str, lines: Any = None) -> str:
    """get-text for the last N scrollback lines, or the screen when N <= 0."""
    if lines is None:
        return f"{cli} get-text --escapes"
    count = _as_int(lines, "lines")
    if count <= 0:
        return f"{cli} get-text --escapes"
    return f"{cli} get-text --escapes --start-line {-count}"


def lookup_control_sequence(character: Any) -> Optional[str]:
    """Case-insensitive lookup in CONTROL_SEQUENCES; None when unsupported."""
    if not isinstance(character, str):
        return None
    return CONTROL_SEQUENCES.get(character.lower())


def build_control_command(cli: str, sequence: str) -> str:
    return f"{cli} send-text $'{sequence}'"


def build_activate_command(cli: str, pane_id: Any) -> str:
    return f"{cli} activate-pane --pane-id {_as_int(pane_id, 'pane_id')}"


# =============================================================================
# PROCESS INVOKER
# =============================================================================

class CommandRunner:
    """Runs one command line through the configured shell and returns stdout.

    No timeout and no retry: a hung wezterm blocks the call until it exits.
    """

    def __init__(self, shell: str = DEFAULT_SHELL):
        self.shell = shell

    async def run(self, command: str) -> str:
        logger.debug("exec: %s", command)
        proc = await asyncio.create_subprocess_exec(
            self.shell, "-c", command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_bytes, stderr_bytes = await proc.communicate()
        stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
        stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise CommandError(command, proc.returncode, stderr=stderr, stdout=stdout)
        return stdout


# =============================================================================
# TOOL HANDLERS
# =============================================================================

class _Handler:
    def __init__(self, runner: CommandRunner, cli: str = DEFAULT_CLI):
        self.runner = runner
        self.cli = cli

    def _failure(self, message: str) -> ToolResult:
        logger.warning("%s", message.splitlines()[0])
        return ToolResult.failed(message)


class TerminalWriter(_Handler):
    """write_to_terminal and write_to_specific_pane."""

    async def write_to_terminal(self, command: str) -> ToolResult:
        try:
            pane_info = await self.runner.run(build_list_command(self.cli))
            await self.runner.run(build_write_command(self.cli, command))
        except HANDLED_ERRORS as e:
            return self._failure(f"Failed to write to terminal: {e}\n{MUX_HINT}")
        return ToolResult.ok(f"Command sent to WezTerm: {command}\n\nCurrent panes:\n{pane_info}")

    async def write_to_specific_pane(self, command: str, pane_id: Any) -> ToolResult:
        try:
            await self.runner.run(build_write_command(self.cli, command, pane_id))
        except HANDLED_ERRORS as e:
            return self._failure(f"Failed to write to pane {pane_id}: {e}")
        return ToolResult.ok(f"Command sent to pane {pane_id}: {command}")


class OutputReader(_Handler):
    """read_terminal_output; empty captures become EMPTY_OUTPUT."""

    async def read_output(self, lines: Any = DEFAULT_READ_LINES) -> ToolResult:
        try:
            output = await self.runner.run(build_read_command(self.cli, lines))
        except HANDLED_ERRORS as e:
            return self._failure(
                f"Failed to read terminal output: {e}\n{MUX_HINT}\nTry running: {self.cli} list"
            )
        return ToolResult.ok(output or EMPTY_OUTPUT)

    async def read_current_screen(self) -> ToolResult:
        try:
            output = await self.runner.run(build_read_command(self.cli))
        except HANDLED_ERRORS as e:
            return self._failure(f"Failed to read current screen: {e}")
        return ToolResult.ok(output or EMPTY_OUTPUT)


class ControlCharacterSender(_Handler):
    """send_control_character. Unsupported keys are rejected before any exec."""

    async def send(self, character: Any) -> ToolResult:
        sequence = lookup_control_sequence(character)
        if sequence is None:
            label = character if isinstance(character, str) else repr(character)
            return ToolResult.rejected(f"Unknown control character: {label}")
        try:
            await self.runner.run(build_control_command(self.cli, sequence))
        except HANDLED_ERRORS as e:
            return self._failure(f"Failed to send control character: {e}\n{MUX_HINT}")
        return ToolResult.ok(f"Sent control character: Ctrl+{character.upper()}")


class PaneManager(_Handler):
    """list_panes and switch_pane."""

    async def list_panes(self) -> ToolResult:
        try:
            output = await self.runner.run(build_list_command(self.cli))
        except HANDLED_ERRORS as e:
            return self._failure(f"Failed to list panes: {e}\n{MUX_HINT}")
        return ToolResult.ok(output or EMPTY_OUTPUT)

    async def switch_pane(self, pane_id: Any) -> ToolResult:
        try:
            await self.runner.run(build_activate_command(self.cli, pane_id))
        except HANDLED_ERRORS as e:
            return self._failure(f"Failed to switch pane: {e}\nMake sure the pane ID {pane_id} exists.")
        return ToolResult.ok(f"Switched to pane {pane_id}")


@dataclass
class Toolset:
    """One instance of each handler, sharing a runner and CLI prefix."""
    writer: TerminalWriter
    reader: OutputReader
    control: ControlCharacterSender
    panes: PaneManager

    @classmethod
    def create(cls, cli: str = DEFAULT_CLI, runner: Optional[CommandRunner] = None) -> "Toolset":
        runner = runner or CommandRunner()
        return cls(
            writer=TerminalWriter(runner, cli),
            reader=OutputReader(runner, cli),
            control=ControlCharacterSender(runner, cli),
            panes=PaneManager(runner, cli),
        )


toolset = Toolset.create(settings.cli, CommandRunner(settings.shell))


# =============================================================================
# DISPATCHER
# =============================================================================

async def dispatch(name: str, arguments: Optional[dict[str, Any]], tools: Toolset) -> ToolResult:
    """Route a tool call to its handler. Unknown names are rejected."""
    arguments = arguments or {}

    if name == "write_to_terminal":
        return await tools.writer.write_to_terminal(arguments.get("command"))

    elif name == "read_terminal_output":
        lines = arguments.get("lines")
        return await tools.reader.read_output(DEFAULT_READ_LINES if lines is None else lines)

    elif name == "send_control_character":
        return await tools.control.send(arguments.get("character"))

    elif name == "list_panes":
        return await tools.panes.list_panes()

    elif name == "switch_pane":
        return await tools.panes.switch_pane(arguments.get("pane_id"))

    elif name == "write_to_specific_pane":
        return await tools.writer.write_to_specific_pane(
            arguments.get("command"), arguments.get("pane_id")
        )

    return ToolResult.rejected(f"Unknown tool: {name}")


# =============================================================================
# MCP SURFACE
# =============================================================================

COMMAND_PARAM = {"type": "string", "description": "The command to run or text to write to the terminal"}

TOOLS: list[Tool] = [
    Tool(
        name="write_to_terminal",
        description="Writes text to the active WezTerm pane - often used to run commands",
        inputSchema={
            "type": "object",
            "properties": {"command": COMMAND_PARAM},
            "required": ["command"],
        },
    ),
    Tool(
        name="read_terminal_output",
        description="Reads output from the active WezTerm pane",
        inputSchema={
            "type": "object",
            "properties": {
                "lines": {
                    "type": "number",
                    "description": f"Number of lines to read from the terminal (default: {DEFAULT_READ_LINES})",
                },
            },
        },
    ),
    Tool(
        name="send_control_character",
        description="Sends control characters to the active WezTerm pane",
        inputSchema={
            "type": "object",
            "properties": {
                "character": {
                    "type": "string",
                    "description": "Control character to send (e.g., 'c' for Ctrl+C)",
                },
            },
            "required": ["character"],
        },
    ),
    Tool(
        name="list_panes",
        description="Lists all panes in the current WezTerm window",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="switch_pane",
        description="Switches to a specific pane in WezTerm",
        inputSchema={
            "type": "object",
            "properties": {"pane_id": {"type": "number", "description": "ID of the pane to switch to"}},
            "required": ["pane_id"],
        },
    ),
    Tool(
        name="write_to_specific_pane",
        description="Writes text to a specific WezTerm pane by pane ID",
        inputSchema={
            "type": "object",
            "properties": {
                "command": COMMAND_PARAM,
                "pane_id": {"type": "number", "description": "ID of the pane to write to"},
            },
            "required": ["command", "pane_id"],
        },
    ),
]


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List the WezTerm control tools."""
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Execute a WezTerm control tool."""
    result = await dispatch(name, arguments, toolset)
    if result.is_rejected:
        logger.info("rejected %s: %s", name, result.text)
        raise ToolError(result.text)
    return result.to_content()


async def main():
    """Run the MCP server."""
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("wezterm-mcp %s using %r via %s", __version__, settings.cli, settings.shell)
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
