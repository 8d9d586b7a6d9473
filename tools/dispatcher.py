"""Dispatcher: forward an action call to the provider that owns it."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from orchestrator.exceptions import ActionNotFound, ArgumentError, ExecutionError
from orchestrator.response import ToolResult
from tools.mcp_bridge import format_result
from tools.tool_registry import ProviderRegistry


class Dispatcher:
    """Resolve action names through the registry and run them remotely.

    Failures never propagate: an unknown name, bad arguments or a transport
    error all come back as a ``ToolResult`` carrying the error.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        call_timeout: float | None = None,
        logger: logging.Logger | None = None,
    ):
        self.registry = registry
        self.call_timeout = call_timeout
        self._logger = logger or logging.getLogger(__name__)

    async def dispatch(self, name: str, args: Any, call_id: str = "") -> ToolResult:
        try:
            provider, action = self.registry.resolve_action(name)
        except ActionNotFound as e:
            self._logger.info("Dispatch of unknown tool '%s'", name)
            return ToolResult(name=name, error=e, call_id=call_id)

        if not isinstance(args, dict):
            error = ArgumentError(f"Arguments for '{name}' must be a JSON object")
            return ToolResult(name=name, error=error, call_id=call_id)

        self._logger.info("Executing tool '%s' on server '%s'", action.name, provider.name)
        try:
            if self.call_timeout is None:
                result = await provider.call(action.name, args)
            else:
                result = await asyncio.wait_for(provider.call(action.name, args), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            limit = f" after {self.call_timeout:g}s" if self.call_timeout is not None else ""
            error = ExecutionError(f"Tool '{name}' on '{provider.name}' timed out{limit}")
            self._logger.warning("%s", error)
            return ToolResult(name=name, error=error, call_id=call_id)
        except Exception as e:
            error = ExecutionError(f"Exception during tool execution: {e}")
            self._logger.warning("Tool '%s' on '%s' failed: %s", name, provider.name, e)
            return ToolResult(name=name, error=error, call_id=call_id)

        return ToolResult(name=name, output=format_result(result), value=result, call_id=call_id)
