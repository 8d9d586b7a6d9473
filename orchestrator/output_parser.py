"""Extract structured tool invocations from a finished model response."""

from __future__ import annotations

import json
import re
from typing import Callable

from orchestrator.chat_format import CONTENT_ONLY, GENERIC, HERMES_2_PRO, LLAMA_3_X, MISTRAL_NEMO
from orchestrator.response import ConversationMessage, ToolInvocation

_NAME_KEYS = ("name", "tool_name", "tool")
_ARGS_KEYS = ("arguments", "parameters", "tool_args", "args")

_THINK_OPEN = "<think>"
_THINK_CLOSE = "</think>"
_PYTHON_TAG = "<|python_tag|>"
_TOOL_CALLS_TAG = "[TOOL_CALLS]"

_HERMES_BLOCK = re.compile(r"<tool_call>(.*?)(?:</tool_call>|\Z)", re.DOTALL)
_HERMES_FUNCTION = re.compile(r"<function=([^>\s]+)>(.*?)(?:</function>|\Z)", re.DOTALL)
_CODE_FENCE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_NAME_FIELD = re.compile(r"[\"'](?:name|tool_name|tool)[\"']\s*:\s*[\"']((?:[^\"'\\]|\\.)+)[\"']")
_ARGS_FIELD = re.compile(r"[\"'](?:arguments|parameters|tool_args|args)[\"']\s*:\s*")


class OutputParser:
    """
    Turn raw response text into an assistant message.

    The chat format decides which markers delimit tool calls. Argument
    payloads are never validated here: an invocation whose arguments are
    not valid JSON is still returned, carrying the raw text.
    """

    def __init__(self):
        self._parsers: dict[str, Callable[[str], tuple[list[ToolInvocation], str]]] = {
            GENERIC: self._parse_generic,
            HERMES_2_PRO: self._parse_hermes,
            LLAMA_3_X: self._parse_llama3,
            MISTRAL_NEMO: self._parse_mistral,
        }

    def parse(
        self,
        raw_text: str,
        chat_format: str,
        parse_tool_calls: bool = True,
    ) -> ConversationMessage:
        """Parse ``raw_text`` produced under ``chat_format``."""
        if chat_format != CONTENT_ONLY and chat_format not in self._parsers:
            raise ValueError(f"Unknown chat format: {chat_format}")

        reasoning, text = self._split_reasoning(raw_text)

        if not parse_tool_calls or chat_format == CONTENT_ONLY:
            return ConversationMessage(role="assistant", content=text, reasoning_content=reasoning)

        calls, content = self._parsers[chat_format](text)
        if calls:
            content = ""
        return ConversationMessage(
            role="assistant",
            content=content,
            tool_calls=tuple(calls),
            reasoning_content=reasoning,
        )

    # ── Reasoning ────────────────────────────────────────────────────

    def _split_reasoning(self, text: str) -> tuple[str, str]:
        stripped = text.lstrip()
        if not stripped.startswith(_THINK_OPEN):
            return "", text
        body = stripped[len(_THINK_OPEN):]
        end = body.find(_THINK_CLOSE)
        if end == -1:
            return body.strip(), ""
        return body[:end].strip(), body[end + len(_THINK_CLOSE):].lstrip()

    # ── Formats ──────────────────────────────────────────────────────

    def _parse_generic(self, text: str) -> tuple[list[ToolInvocation], str]:
        strategies = [
            ("code_fence", self._extract_from_code_fence),
            ("whole_text", lambda t: [t.strip()] if t.strip().startswith("{") else []),
            ("bracket_match", lambda t: [t[s:e] for s, e in _find_json_spans(t, "{", "}")]),
        ]
        for _, strategy in strategies:
            for payload in strategy(text):
                data = _parse_json(payload)
                if not isinstance(data, dict):
                    call = _salvage_call(payload)
                    if call:
                        return [call], ""
                    continue
                if "response" in data and not any(k in data for k in ("tool_call", "tool_calls")):
                    response = data["response"]
                    return [], response if isinstance(response, str) else json.dumps(response)
                calls = self._generic_calls(data)
                if calls:
                    return calls, ""
        return [], text

    def _generic_calls(self, data: dict) -> list[ToolInvocation]:
        if isinstance(data.get("tool_calls"), list):
            items = data["tool_calls"]
        elif isinstance(data.get("tool_call"), dict):
            items = [data["tool_call"]]
        else:
            items = [data]
        return [call for call in (_call_from_object(item) for item in items) if call]

    def _parse_hermes(self, text: str) -> tuple[list[ToolInvocation], str]:
        calls: list[ToolInvocation] = []
        for match in _HERMES_BLOCK.finditer(text):
            block = match.group(1).strip()
            fenced = self._extract_from_code_fence(block)
            call = _call_from_snippet(fenced[0] if fenced else block)
            if call:
                calls.append(call)
        if not calls:
            for match in _HERMES_FUNCTION.finditer(text):
                name = match.group(1).strip()
                calls.append(ToolInvocation(name=name, arguments=match.group(2).strip() or "{}"))
        return calls, text

    def _parse_llama3(self, text: str) -> tuple[list[ToolInvocation], str]:
        body = text.strip()
        if body.startswith(_PYTHON_TAG):
            body = body[len(_PYTHON_TAG):].lstrip()
        if not body.startswith("{"):
            return [], text

        calls: list[ToolInvocation] = []
        position = 0
        for start, end in _find_json_spans(body, "{", "}"):
            gap = body[position:start]
            if gap.strip(" \t\r\n;"):
                break
            call = _call_from_snippet(body[start:end])
            if call is None:
                break
            calls.append(call)
            position = end
        if not calls:
            return [], text
        return calls, text

    def _parse_mistral(self, text: str) -> tuple[list[ToolInvocation], str]:
        idx = text.find(_TOOL_CALLS_TAG)
        if idx == -1:
            return [], text
        tail = text[idx + len(_TOOL_CALLS_TAG):]

        calls: list[ToolInvocation] = []
        spans = _find_json_spans(tail, "[", "]")
        data = _parse_json(tail[spans[0][0]:spans[0][1]]) if spans else None
        if isinstance(data, list):
            calls = [call for call in (_call_from_object(item) for item in data) if call]
        else:
            for start, end in _find_json_spans(tail, "{", "}"):
                call = _call_from_snippet(tail[start:end])
                if call:
                    calls.append(call)
        return calls, text

    def _extract_from_code_fence(self, text: str) -> list[str]:
        fenced = _CODE_FENCE.findall(text)
        return [block.strip() for block in fenced if block.strip()]


def _find_json_spans(text: str, open_ch: str, close_ch: str) -> list[tuple[int, int]]:
    """Top-level balanced ``open_ch``...``close_ch`` spans, skipping string contents."""
    spans: list[tuple[int, int]] = []
    depth = 0
    start = -1
    in_string = False
    escape = False

    for idx, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == "\"":
                in_string = False
            continue
        if ch == "\"" and depth > 0:
            in_string = True
        elif ch == open_ch:
            if depth == 0:
                start = idx
            depth += 1
        elif ch == close_ch and depth > 0:
            depth -= 1
            if depth == 0:
                spans.append((start, idx + 1))

    return spans


def _parse_json(text: str) -> object | None:
    """Parse JSON text, attempting repair when needed."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        repaired = _repair_json(text)
        if repaired == text:
            return None
        try:
            return json.loads(repaired)
        except json.JSONDecodeError:
            return None


def _repair_json(text: str) -> str:
    cleaned = text.strip()
    cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)
    cleaned = re.sub(r"(?<!\\)'", '"', cleaned)
    return cleaned


def _call_from_snippet(snippet: str) -> ToolInvocation | None:
    data = _parse_json(snippet)
    if isinstance(data, dict):
        return _call_from_object(data)
    return _salvage_call(snippet)


def _call_from_object(data: object) -> ToolInvocation | None:
    """Build an invocation from a parsed JSON object, if it names a tool."""
    if not isinstance(data, dict):
        return None
    if isinstance(data.get("function"), dict):
        data = {**data["function"], "id": data.get("id", "")}

    name = next((data[k] for k in _NAME_KEYS if isinstance(data.get(k), str)), "")
    name = name.strip()
    if not name:
        return None

    args = next((data[k] for k in _ARGS_KEYS if k in data), {})
    call_id = data.get("id", "")
    return ToolInvocation(
        name=name,
        arguments=_serialize_arguments(args),
        id=call_id if isinstance(call_id, str) else str(call_id),
    )


def _serialize_arguments(args: object) -> str:
    if isinstance(args, str):
        return args
    if args is None:
        return "{}"
    return json.dumps(args, ensure_ascii=False)


def _salvage_call(snippet: str) -> ToolInvocation | None:
    """Recover name and raw argument text from a payload that is not valid JSON."""
    name_match = _NAME_FIELD.search(snippet)
    if not name_match:
        return None

    args_match = _ARGS_FIELD.search(snippet)
    if not args_match:
        return ToolInvocation(name=name_match.group(1).strip(), arguments="{}")

    rest = snippet[args_match.end():]
    spans = _find_json_spans(rest, "{", "}")
    if spans and not rest[:spans[0][0]].strip():
        raw = rest[spans[0][0]:spans[0][1]]
    else:
        raw = rest.rstrip()
        if raw.endswith("}"):
            raw = raw[:-1].rstrip()
    return ToolInvocation(name=name_match.group(1).strip(), arguments=raw)
