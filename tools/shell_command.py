"""shell_command tool: runs one command line through the shell, optionally after confirmation."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from orchestrator.exceptions import ArgumentError, ExecutionError
from orchestrator.response import ToolInvocation, ToolResult
from tools.base_tool import Tool

ALWAYS = "always"
ASK = "ask"

AFFIRMATIVE = ("y", "yes")


def ask_operator(question: str) -> str:
    """Read one answer from the terminal; end of input counts as no answer."""
    try:
        return input(question)
    except EOFError:
        return ""


class ShellCommandTool(Tool):
    name = "shell_command"
    description = "Execute a shell command and return the output"
    input_schema = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            }
        },
        "required": ["command"],
    }

    def __init__(
        self,
        confirm: bool = False,
        prompt_fn: Callable[[str], str] = ask_operator,
        logger: logging.Logger | None = None,
    ):
        self.policy = ASK if confirm else ALWAYS
        self._prompt_fn = prompt_fn
        self._logger = logger or logging.getLogger(__name__)

    async def execute(self, invocation: ToolInvocation) -> ToolResult:
        try:
            command = self.decode_command(invocation)
        except ArgumentError as e:
            self._logger.warning("shell_command rejected arguments %r: %s", invocation.arguments, e)
            return ToolResult(name=self.name, error=e, call_id=invocation.id)

        if self.policy == ASK and not self.confirm(command):
            self._logger.info("shell_command declined: %s", command)
            return ToolResult(name=self.name, declined=True, call_id=invocation.id)

        try:
            output = await self.run(command)
        except ExecutionError as e:
            self._logger.warning("shell_command failed to start %r: %s", command, e)
            return ToolResult(name=self.name, error=e, call_id=invocation.id)

        self._logger.info("shell_command ran %r (%d bytes of output)", command, len(output))
        return ToolResult(name=self.name, output=output, call_id=invocation.id)

    @staticmethod
    def decode_command(invocation: ToolInvocation) -> str:
        args = invocation.decode_arguments()
        command = args.get("command")
        if not isinstance(command, str):
            raise ArgumentError("Error parsing arguments: 'command' must be a string")
        return command

    def confirm(self, command: str) -> bool:
        answer = self._prompt_fn("  Execute this command? (y/N): ")
        return answer.strip().lower() in AFFIRMATIVE

    async def run(self, command: str) -> str:
        """Run ``command`` and return stdout and stderr combined, exit status ignored."""
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ExecutionError(f"Failed to execute command: {e}") from e

        stdout, _ = await process.communicate()
        return stdout.decode("utf-8", errors="replace")
