"""Interactive MCP client: a small command interpreter over connected servers."""

from __future__ import annotations

import enum
import inspect
import json
from typing import Callable

from cli.style import BOLD, CYAN, DIM, RED, RESET, YELLOW, error
from orchestrator.config import OrchestratorConfig
from orchestrator.exceptions import ActionNotFound, InputError, NoProvidersError
from orchestrator.logs import build_file_logger, close_file_logger
from tools.dispatcher import Dispatcher
from tools.tool_registry import QUALIFIER, ProviderRegistry

PROMPT = "\nmcp> "


class SessionState(enum.Enum):
    AWAITING_COMMAND = "awaiting_command"
    TERMINATED = "terminated"


class MCPClientApp:
    """Reads one command per line until ``exit``, ``quit`` or end of input."""

    def __init__(
        self,
        config: OrchestratorConfig,
        registry: ProviderRegistry | None = None,
        dispatcher: Dispatcher | None = None,
        input_fn: Callable[[str], str] = input,
    ):
        self.config = config
        self._logger = build_file_logger(f"mcp_client.{id(self)}", config.log_dir, "mcp_client.log")
        self.registry = registry or ProviderRegistry(config.mcp, config.log_dir)
        self.dispatcher = dispatcher or Dispatcher(
            self.registry,
            call_timeout=config.mcp.call_timeout,
            logger=self._logger,
        )
        self.input_fn = input_fn
        self.state = SessionState.AWAITING_COMMAND
        self._commands = {
            "tools": self._cmd_tools,
            "servers": self._cmd_servers,
            "tool": self._cmd_tool,
            "help": self._cmd_help,
            "exit": self._cmd_exit,
            "quit": self._cmd_exit,
        }

    async def start(self) -> int:
        """Connect, then run the command loop. Returns the process exit status."""
        try:
            report = await self.registry.connect_all(self.config.mcp.servers)
        except NoProvidersError as e:
            for _, failure in e.failures:
                error(f"Error: {failure}")
            error(f"Fatal: {e}")
            return 1

        for _, failure in report.failures:
            error(f"Error: {failure}")
        for provider in report.connected:
            print(f"Successfully connected to '{provider.name}' ({len(provider.actions)} tools found)")

        try:
            if self.config.mcp.show_instructions:
                self._cmd_help("")
            await self.run_interactive()
        finally:
            await self.registry.close()
            close_file_logger(self._logger)
        return 0

    async def run_interactive(self) -> None:
        while self.state is not SessionState.TERMINATED:
            try:
                line = self.input_fn(PROMPT)
            except (EOFError, KeyboardInterrupt):
                print()
                self.state = SessionState.TERMINATED
                break
            await self.handle_line(line)

    async def handle_line(self, line: str) -> SessionState:
        """Interpret one input line and return the resulting state."""
        line = line.strip()
        if not line:
            return self.state

        command, _, rest = line.partition(" ")
        handler = self._commands.get(command)
        if handler is None:
            error(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
            return self.state

        self._logger.info("Command: %s", command)
        outcome = handler(rest.strip())
        if inspect.isawaitable(outcome):
            await outcome
        return self.state

    # ── Commands ─────────────────────────────────────────────────────

    def _cmd_help(self, _: str) -> None:
        print(f"""
{BOLD}Commands:{RESET}
  {CYAN}tools{RESET}                  List all available tools from all servers
  {CYAN}servers{RESET}                List connected servers
  {CYAN}tool{RESET} <name> <json>     Call a tool, e.g. tool read_file {{"path": "a.txt"}}
  {CYAN}help{RESET}                   Show this help
  {CYAN}exit{RESET} | {CYAN}quit{RESET}            Leave the client
{DIM}A tool offered by several servers resolves to the last one connected;
use <server>{QUALIFIER}<tool> to pick a specific server.{RESET}""")

    def _cmd_exit(self, _: str) -> None:
        self.state = SessionState.TERMINATED

    def _cmd_servers(self, _: str) -> None:
        print(f"{BOLD}--- Connected Servers ---{RESET}")
        for provider in self.registry.providers:
            print(f"- {provider.name} ({provider.type}) at {provider.address}")

    def _cmd_tools(self, _: str) -> None:
        print(f"{BOLD}--- Available Tools ---{RESET}")
        for provider in self.registry.providers:
            print(f"\nFrom server '{provider.name}' ({provider.type}):")
            if not provider.actions:
                print(f"  {DIM}(no tools){RESET}")
            for action in provider.actions:
                owner = self.registry.owner_of(action.name)
                note = ""
                if owner != provider.name:
                    note = f" {YELLOW}[shadowed by '{owner}'; call as {provider.name}{QUALIFIER}{action.name}]{RESET}"
                description = action.description or "No description"
                print(f"  - {action.name}: {description}{note}")

    async def _cmd_tool(self, rest: str) -> None:
        name, _, blob = rest.partition(" ")
        if not name:
            error("Usage: tool <name> <json_args>")
            return
        try:
            args = self._parse_arguments(blob.strip())
        except InputError as e:
            error(f"Error: {e}")
            return

        try:
            provider = self.registry.resolve(name)
        except ActionNotFound:
            provider = None
        if provider is not None:
            print(f"Executing tool '{name}' on server '{provider.name}'...")

        result = await self.dispatcher.dispatch(name, args)
        if result.error is not None:
            print(f"{RED}Error: {result.error}{RESET}")
            return
        print(f"Result:\n{result.output}")

    @staticmethod
    def _parse_arguments(blob: str) -> dict:
        if not blob:
            return {}
        try:
            args = json.loads(blob)
        except json.JSONDecodeError as e:
            raise InputError(f"Invalid JSON arguments: {e}") from e
        if not isinstance(args, dict):
            raise InputError("Tool arguments must be a JSON object")
        return args
