"""Function-call session: format, generate, parse and run tools over a conversation."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from orchestrator.chat_format import ChatFormatter
from orchestrator.config import GenerationConfig
from orchestrator.exceptions import ActionNotFound, ArgumentError
from orchestrator.generation import GenerationLoop, GenerationResult
from orchestrator.models import InferenceEngine
from orchestrator.output_parser import OutputParser
from orchestrator.response import ConversationMessage, ToolInvocation, ToolResult
from tools.base_tool import ActionDescriptor, Tool
from tools.dispatcher import Dispatcher


class InvocationRouter:
    """Runs invocations one at a time, locally or through the dispatcher."""

    def __init__(
        self,
        local_tools: Iterable[Tool] = (),
        dispatcher: Dispatcher | None = None,
        logger: logging.Logger | None = None,
    ):
        self.local_tools = list(local_tools)
        self.dispatcher = dispatcher
        self._logger = logger or logging.getLogger(__name__)

    def available_actions(self) -> list[ActionDescriptor]:
        """Local tools first; a remote action with a local tool's name is hidden."""
        actions = [tool.descriptor() for tool in self.local_tools]
        local_names = {a.name for a in actions}
        if self.dispatcher is not None:
            for action in self.dispatcher.registry.action_descriptors():
                if action.name in local_names:
                    self._logger.warning("Remote tool '%s' hidden by the local tool of the same name", action.name)
                    continue
                actions.append(action)
        return actions

    async def run_one(self, invocation: ToolInvocation) -> ToolResult:
        for tool in self.local_tools:
            if tool.handles(invocation):
                return await tool.execute(invocation)

        if self.dispatcher is None:
            return ToolResult(name=invocation.name, error=ActionNotFound(invocation.name), call_id=invocation.id)

        try:
            args = invocation.decode_arguments()
        except ArgumentError as e:
            return ToolResult(name=invocation.name, error=e, call_id=invocation.id)
        return await self.dispatcher.dispatch(invocation.name, args, call_id=invocation.id)

    async def run_all(
        self,
        invocations: Iterable[ToolInvocation],
        before: Callable[[ToolInvocation], None] | None = None,
        after: Callable[[ToolResult], None] | None = None,
    ) -> list[ToolResult]:
        """Run every invocation in order; one failing never stops the others."""
        results = []
        for invocation in invocations:
            if before:
                before(invocation)
            result = await self.run_one(invocation)
            if result.error is not None:
                self._logger.warning("Tool '%s' failed (%s): %s", invocation.name, result.error.kind, result.error)
            if after:
                after(result)
            results.append(result)
        return results


@dataclass
class SessionOutcome:
    """What a session run produced."""
    message: ConversationMessage
    results: list[ToolResult] = field(default_factory=list)
    rounds: int = 0
    generations: list[GenerationResult] = field(default_factory=list)


class FunctionCallSession:
    """
    Owns one conversation. Each round renders the conversation, generates a
    response, parses it and runs the tool calls it contains, appending the
    assistant message and one tool message per result. Stops when a round
    has no tool calls or after ``max_rounds`` rounds.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        router: InvocationRouter,
        settings: GenerationConfig,
        formatter: ChatFormatter | None = None,
        parser: OutputParser | None = None,
        on_text: Callable[[str], None] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.router = router
        self.settings = settings
        self.formatter = formatter or ChatFormatter(settings.chat_format)
        self.parser = parser or OutputParser()
        self.loop = GenerationLoop(engine, on_text=on_text)
        self._logger = logger or logging.getLogger(__name__)
        self.conversation: list[ConversationMessage] = []
        if settings.system_prompt:
            self.conversation.append(ConversationMessage(role="system", content=settings.system_prompt))

    async def run(
        self,
        user_prompt: str,
        before_tool: Callable[[ToolInvocation], None] | None = None,
        after_tool: Callable[[ToolResult], None] | None = None,
        on_round_end: Callable[[ConversationMessage], None] | None = None,
    ) -> SessionOutcome:
        self.conversation.append(ConversationMessage(role="user", content=user_prompt))
        outcome = SessionOutcome(message=ConversationMessage(role="assistant"))

        while outcome.rounds < self.settings.max_rounds:
            outcome.rounds += 1
            formatted = self.formatter.apply(
                self.conversation,
                self.router.available_actions(),
                self.settings.tool_choice,
            )
            generation = await self.loop.run(formatted.prompt, n_predict=self.settings.n_predict)
            outcome.generations.append(generation)
            self._logger.info(
                "Round %d: %d prompt units, %d generated, format %s",
                outcome.rounds, generation.n_prompt, generation.n_generated, formatted.chat_format,
            )

            message = self._with_call_ids(
                self.parser.parse(generation.text, formatted.chat_format, parse_tool_calls=True),
                outcome.rounds,
            )
            self.conversation.append(message)
            outcome.message = message
            if on_round_end:
                on_round_end(message)
            if not message.has_tool_calls:
                break

            results = await self.router.run_all(message.tool_calls, before=before_tool, after=after_tool)
            outcome.results.extend(results)
            for invocation, result in zip(message.tool_calls, results):
                self.conversation.append(
                    ConversationMessage(
                        role="tool",
                        content=result.message,
                        tool_name=invocation.name,
                        tool_call_id=invocation.id,
                    )
                )
        return outcome

    @staticmethod
    def _with_call_ids(message: ConversationMessage, round_no: int) -> ConversationMessage:
        if not message.tool_calls or all(c.id for c in message.tool_calls):
            return message
        calls = tuple(
            c if c.id else dataclasses.replace(c, id=f"call_{round_no}_{idx}")
            for idx, c in enumerate(message.tool_calls)
        )
        return dataclasses.replace(message, tool_calls=calls)
