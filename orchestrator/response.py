"""Conversation message, tool invocation and tool result dataclasses."""

from __future__ import annotations

import json
from dataclasses import dataclass

from orchestrator.exceptions import ArgumentError, OrchestratorError

ROLES = ("system", "user", "assistant", "tool")


@dataclass(frozen=True)
class ToolInvocation:
    """Parsed request to run a named action.

    ``arguments`` is the serialized payload exactly as the model produced it.
    It may not be valid JSON; consumers validate it.
    """
    name: str
    arguments: str = "{}"
    id: str = ""

    def decode_arguments(self) -> dict:
        """Decode the payload into a JSON object or raise ArgumentError."""
        raw = self.arguments.strip() if self.arguments else ""
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ArgumentError(f"Error parsing arguments for '{self.name}': {e}") from e
        if not isinstance(data, dict):
            raise ArgumentError(
                f"Error parsing arguments for '{self.name}': expected a JSON object, "
                f"got {type(data).__name__}"
            )
        return data


@dataclass(frozen=True)
class ConversationMessage:
    """One message of an append-only conversation."""
    role: str
    content: str = ""
    tool_calls: tuple[ToolInvocation, ...] = ()
    reasoning_content: str = ""
    tool_name: str = ""
    tool_call_id: str = ""

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role}")
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class ToolResult:
    """Outcome of running a single invocation."""
    name: str
    output: str = ""
    error: OrchestratorError | None = None
    declined: bool = False
    value: object = None
    call_id: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and not self.declined

    @property
    def message(self) -> str:
        """Single line (or block) suitable for the conversation or the console."""
        if self.error is not None:
            return f"Error: {self.error}"
        if self.declined:
            return "declined"
        return self.output
