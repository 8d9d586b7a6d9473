"""Prompt formatter: render a conversation and its tools for one chat format.

The format id returned with the prompt is the contract with the response
parser; the two must always agree on how tool calls are written.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, Sequence

from orchestrator.config import CHAT_FORMATS, TOOL_CHOICES
from orchestrator.response import ConversationMessage, ToolInvocation
from prompts.template_engine import PromptTemplateEngine
from tools.base_tool import ActionDescriptor

CONTENT_ONLY = "content_only"
GENERIC = "generic"
HERMES_2_PRO = "hermes_2_pro"
LLAMA_3_X = "llama_3_x"
MISTRAL_NEMO = "mistral_nemo"


@dataclass(frozen=True)
class FormattedPrompt:
    prompt: str
    chat_format: str


class ChatFormatter:
    """Builds the raw prompt text for a model family."""

    def __init__(
        self,
        chat_format: str = HERMES_2_PRO,
        template_engine: PromptTemplateEngine | None = None,
    ):
        if chat_format not in CHAT_FORMATS:
            raise ValueError(f"Unknown chat format: {chat_format}")
        self.chat_format = chat_format
        self._templates = template_engine or PromptTemplateEngine()

    def apply(
        self,
        conversation: Sequence[ConversationMessage],
        actions: Iterable[ActionDescriptor],
        tool_choice: str = "auto",
    ) -> FormattedPrompt:
        """Render ``conversation`` with ``actions`` offered under ``tool_choice``."""
        if tool_choice not in TOOL_CHOICES:
            raise ValueError(f"Unknown tool choice: {tool_choice}")

        actions = list(actions)
        chat_format = self.chat_format
        if tool_choice == "none" or not actions:
            chat_format = CONTENT_ONLY
            actions = []

        instructions = self._tool_instructions(chat_format, actions, tool_choice)

        if chat_format == LLAMA_3_X:
            prompt = self._render_llama3(conversation, instructions)
        elif chat_format == MISTRAL_NEMO:
            prompt = self._render_mistral(conversation, actions, instructions)
        else:
            prompt = self._render_chatml(conversation, instructions, chat_format)
        return FormattedPrompt(prompt=prompt, chat_format=chat_format)

    def _tool_instructions(
        self,
        chat_format: str,
        actions: list[ActionDescriptor],
        tool_choice: str,
    ) -> str:
        if chat_format == CONTENT_ONLY:
            return ""
        variables = {
            "tools": "\n".join(json.dumps(a.to_dict()) for a in actions),
            "tool_names": ", ".join(a.name for a in actions),
        }
        parts = [self._templates.render(f"tools.{chat_format}.md", variables)]
        if tool_choice == "required":
            parts.append(self._templates.render("tool_choice.required.md", variables))
        return "\n\n".join(parts)

    # ── ChatML (generic, hermes_2_pro, content_only) ─────────────────

    def _render_chatml(
        self,
        conversation: Sequence[ConversationMessage],
        instructions: str,
        chat_format: str,
    ) -> str:
        system, rest = _split_system(conversation, instructions)
        out = []
        if system:
            out.append(f"<|im_start|>system\n{system}<|im_end|>\n")
        for msg in rest:
            if msg.role == "tool":
                if chat_format == HERMES_2_PRO:
                    body = f"<tool_response>\n{msg.content}\n</tool_response>"
                    out.append(f"<|im_start|>user\n{body}<|im_end|>\n")
                else:
                    out.append(f"<|im_start|>tool\n{msg.content}<|im_end|>\n")
            elif msg.role == "assistant" and msg.tool_calls:
                out.append(f"<|im_start|>assistant\n{_chatml_tool_calls(msg, chat_format)}<|im_end|>\n")
            elif msg.role == "assistant" and chat_format == GENERIC:
                out.append(f"<|im_start|>assistant\n{json.dumps({'response': msg.content})}<|im_end|>\n")
            else:
                out.append(f"<|im_start|>{msg.role}\n{msg.content}<|im_end|>\n")
        out.append("<|im_start|>assistant\n")
        return "".join(out)

    # ── Llama 3.x ────────────────────────────────────────────────────

    def _render_llama3(self, conversation: Sequence[ConversationMessage], instructions: str) -> str:
        system, rest = _split_system(conversation, instructions)
        out = ["<|begin_of_text|>"]
        if system:
            out.append(_llama3_turn("system", system))
        for msg in rest:
            if msg.role == "tool":
                out.append(_llama3_turn("ipython", msg.content))
            elif msg.role == "assistant" and msg.tool_calls:
                calls = "; ".join(
                    json.dumps({"name": c.name, "parameters": _arguments_value(c)})
                    for c in msg.tool_calls
                )
                out.append(_llama3_turn("assistant", calls))
            else:
                out.append(_llama3_turn(msg.role, msg.content))
        out.append("<|start_header_id|>assistant<|end_header_id|>\n\n")
        return "".join(out)

    # ── Mistral Nemo ─────────────────────────────────────────────────

    def _render_mistral(
        self,
        conversation: Sequence[ConversationMessage],
        actions: list[ActionDescriptor],
        instructions: str,
    ) -> str:
        system, rest = _split_system(conversation, instructions)
        last_user = max((i for i, m in enumerate(rest) if m.role == "user"), default=-1)
        first_user = min((i for i, m in enumerate(rest) if m.role == "user"), default=-1)
        out = ["<s>"]
        for idx, msg in enumerate(rest):
            if msg.role == "user":
                if idx == last_user and actions:
                    available = json.dumps([{"type": "function", "function": a.to_dict()} for a in actions])
                    out.append(f"[AVAILABLE_TOOLS]{available}[/AVAILABLE_TOOLS]")
                content = msg.content
                if idx == first_user and system:
                    content = f"{system}\n\n{content}"
                out.append(f"[INST]{content}[/INST]")
            elif msg.role == "assistant" and msg.tool_calls:
                calls = [
                    {"name": c.name, "arguments": _arguments_value(c), "id": c.id}
                    for c in msg.tool_calls
                ]
                out.append(f"[TOOL_CALLS]{json.dumps(calls)}</s>")
            elif msg.role == "assistant":
                out.append(f"{msg.content}</s>")
            elif msg.role == "tool":
                result = {"content": msg.content, "call_id": msg.tool_call_id}
                out.append(f"[TOOL_RESULTS]{json.dumps(result)}[/TOOL_RESULTS]")
        if first_user == -1 and system:
            out.append(f"[INST]{system}[/INST]")
        return "".join(out)


def _split_system(
    conversation: Sequence[ConversationMessage],
    instructions: str,
) -> tuple[str, list[ConversationMessage]]:
    """Merge leading system messages with the tool instructions."""
    system_parts = [m.content for m in conversation if m.role == "system" and m.content]
    rest = [m for m in conversation if m.role != "system"]
    if instructions:
        system_parts.append(instructions)
    return "\n\n".join(system_parts), rest


def _llama3_turn(role: str, content: str) -> str:
    return f"<|start_header_id|>{role}<|end_header_id|>\n\n{content}<|eot_id|>"


def _arguments_value(invocation: ToolInvocation) -> object:
    """Arguments as JSON data when they parse, otherwise the raw string."""
    try:
        return json.loads(invocation.arguments)
    except (json.JSONDecodeError, TypeError):
        return invocation.arguments


def _chatml_tool_calls(msg: ConversationMessage, chat_format: str) -> str:
    calls = [{"name": c.name, "arguments": _arguments_value(c)} for c in msg.tool_calls]
    if chat_format == HERMES_2_PRO:
        return "\n".join(f"<tool_call>\n{json.dumps(call)}\n</tool_call>" for call in calls)
    if len(calls) == 1:
        return json.dumps({"tool_call": calls[0]})
    return json.dumps({"tool_calls": calls})
