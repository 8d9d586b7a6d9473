"""Single-prompt function calling: generate, detect tool calls, run them."""

from __future__ import annotations

import sys
from typing import Callable

from cli.style import BOLD, CYAN, DIM, GREEN, RED, RESET, YELLOW, error, warn
from orchestrator.config import OrchestratorConfig
from orchestrator.exceptions import (
    ArgumentError,
    GenerationFailure,
    InferenceError,
    NoProvidersError,
    PromptTemplateError,
)
from orchestrator.logs import build_file_logger, close_file_logger
from orchestrator.models import InferenceEngine, OllamaClient, OllamaEngine
from orchestrator.response import ConversationMessage, ToolInvocation, ToolResult
from orchestrator.session import FunctionCallSession, InvocationRouter
from tools.dispatcher import Dispatcher
from tools.shell_command import ShellCommandTool, ask_operator
from tools.tool_registry import ProviderRegistry


class FunctionCallApp:
    """Runs one prompt through the model and executes the tool calls it makes."""

    def __init__(
        self,
        config: OrchestratorConfig,
        engine: InferenceEngine | None = None,
        registry: ProviderRegistry | None = None,
        prompt_fn: Callable[[str], str] = ask_operator,
    ):
        self.config = config
        self._engine = engine
        self._registry = registry
        self._logger = build_file_logger(f"orchestrator.{id(self)}", config.log_dir, "orchestrator.log")
        self.shell = ShellCommandTool(
            confirm=config.shell.confirm,
            prompt_fn=prompt_fn,
            logger=self._logger,
        )

    async def run(self, prompt: str) -> int:
        """Returns the process exit status."""
        try:
            return await self._run(prompt)
        finally:
            close_file_logger(self._logger)

    async def _run(self, prompt: str) -> int:
        self._print_header(prompt)

        engine = self._engine
        if engine is None:
            if not await self._preflight_ollama():
                return 1
            engine = self._build_engine()

        dispatcher = await self._connect_providers()
        router = InvocationRouter([self.shell], dispatcher=dispatcher, logger=self._logger)
        session = FunctionCallSession(
            engine,
            router,
            self.config.generation,
            on_text=self._stream_handler,
            logger=self._logger,
        )

        try:
            outcome = await session.run(
                prompt,
                before_tool=self._before_tool,
                after_tool=self._after_tool,
                on_round_end=self._round_end,
            )
        except (GenerationFailure, PromptTemplateError) as e:
            self._logger.error("Generation failed: %s", e)
            error(f"\nError: {e}")
            return 1
        finally:
            if self._registry is not None:
                await self._registry.close()

        self._logger.info(
            "Finished after %d round(s), %d tool call(s)", outcome.rounds, len(outcome.results)
        )
        return 0

    # ── Setup ────────────────────────────────────────────────────────

    def _print_header(self, prompt: str) -> None:
        gen = self.config.generation
        print(f"{BOLD}{CYAN}Simple Function Call Example{RESET}")
        print(f"{DIM}Model: {self.config.model.model_name}")
        print(f"Prompt: {prompt}")
        print(f"Max tokens: {gen.n_predict}")
        print(f"Chat format: {gen.chat_format} (tool choice: {gen.tool_choice})")
        if self.config.shell.confirm:
            print("Command confirmation: enabled")
        print(RESET)

    def _build_engine(self) -> OllamaEngine:
        client = OllamaClient(
            base_url=self.config.model.base_url,
            connect_timeout=self.config.ollama.connect_timeout,
            read_timeout=self.config.ollama.read_timeout,
            max_retries=self.config.ollama.max_retries,
        )
        return OllamaEngine(
            client,
            model=self.config.model.model_name,
            temperature=self.config.model.temperature,
            options=self.config.model.options,
        )

    async def _preflight_ollama(self) -> bool:
        """Check Ollama connectivity and model availability before starting."""
        base_url = self.config.model.base_url
        client = OllamaClient(
            base_url=base_url,
            connect_timeout=self.config.ollama.connect_timeout,
            read_timeout=self.config.ollama.read_timeout,
            max_retries=self.config.ollama.max_retries,
        )
        if not await client.health_check():
            error(f"[Error] Cannot connect to Ollama at {base_url}")
            print(f"{DIM}Make sure Ollama is running: ollama serve{RESET}")
            return False

        try:
            models = await client.list_models()
        except InferenceError as e:
            error(f"[Error] {e}")
            return False

        model_names = [m.get("name", "") for m in models]
        missing = OllamaClient.filter_missing_models([self.config.model.model_name], model_names)
        if missing:
            error(f"[Error] Missing model at {base_url}: {', '.join(missing)}")
            print(f"{DIM}Pull with: ollama pull {missing[0]}{RESET}")
            return False
        return True

    async def _connect_providers(self) -> Dispatcher | None:
        if not self.config.mcp.servers and self._registry is None:
            return None
        if self._registry is None:
            self._registry = ProviderRegistry(self.config.mcp, self.config.log_dir)
        try:
            report = await self._registry.connect_all(self.config.mcp.servers)
        except NoProvidersError as e:
            for _, failure in e.failures:
                error(f"Error: {failure}")
            warn("No MCP servers connected; only shell_command is available.")
            return None
        for _, failure in report.failures:
            error(f"Error: {failure}")
        for provider in report.connected:
            print(f"Successfully connected to '{provider.name}' ({len(provider.actions)} tools found)")
        return Dispatcher(self._registry, call_timeout=self.config.mcp.call_timeout, logger=self._logger)

    # ── Output ───────────────────────────────────────────────────────

    def _stream_handler(self, chunk: str) -> None:
        sys.stdout.write(chunk)
        sys.stdout.flush()

    def _round_end(self, message: ConversationMessage) -> None:
        print("\n")
        if message.reasoning_content:
            print(f"{DIM}Reasoning: {message.reasoning_content}{RESET}")
        if message.has_tool_calls:
            print(f"{BOLD}Function calls detected:{RESET}")
        elif message.content:
            print(f"{BOLD}{GREEN}Response:{RESET} {message.content}")

    def _before_tool(self, invocation: ToolInvocation) -> None:
        print(f"  Function: {invocation.name}")
        print(f"  Arguments: {invocation.arguments}")
        if self.shell.handles(invocation):
            try:
                print(f"  Command: {self.shell.decode_command(invocation)}")
            except ArgumentError:
                pass

    def _after_tool(self, result: ToolResult) -> None:
        if result.declined:
            print(f"  {YELLOW}Command execution cancelled.{RESET}")
        elif result.error is not None:
            print(f"  {RED}Error: {result.error}{RESET}")
        else:
            print(f"  Result:\n{result.output}")
