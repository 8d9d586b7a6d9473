"""Action descriptors and the abstract base class for local tools."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from orchestrator.response import ToolInvocation, ToolResult


@dataclass(frozen=True)
class ActionDescriptor:
    """A named action offered by a provider or a local tool."""
    name: str
    description: str = ""
    input_schema: dict = field(default_factory=dict, hash=False, compare=False)

    @property
    def required(self) -> list[str]:
        required = self.input_schema.get("required", []) if isinstance(self.input_schema, dict) else []
        return [str(r) for r in required] if isinstance(required, list) else []

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.input_schema or {"type": "object", "properties": {}},
        }


class Tool(ABC):
    """Base class for actions executed in this process. Subclass this to add one."""

    name: str = ""
    description: str = ""
    input_schema: dict = {}

    def descriptor(self) -> ActionDescriptor:
        return ActionDescriptor(
            name=self.name,
            description=self.description,
            input_schema=dict(self.input_schema),
        )

    def handles(self, invocation: ToolInvocation) -> bool:
        return invocation.name == self.name

    @abstractmethod
    async def execute(self, invocation: ToolInvocation) -> ToolResult:
        """Run the invocation. Failures are returned in the result, never raised."""
        ...
