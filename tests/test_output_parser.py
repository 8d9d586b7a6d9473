import unittest

from orchestrator.exceptions import ArgumentError
from orchestrator.output_parser import OutputParser


class TestOutputParser(unittest.TestCase):
    def setUp(self):
        self.parser = OutputParser()

    def test_plain_text_has_no_invocations(self):
        raw = "The current directory contains three files."
        for chat_format in ("content_only", "generic", "hermes_2_pro", "llama_3_x", "mistral_nemo"):
            with self.subTest(chat_format=chat_format):
                message = self.parser.parse(raw, chat_format)
                self.assertEqual(message.role, "assistant")
                self.assertEqual(message.content, raw)
                self.assertEqual(message.tool_calls, ())

    def test_parse_is_repeatable(self):
        raw = '<tool_call>\n{"name": "shell_command", "arguments": {"command": "ls"}}\n</tool_call>'
        first = self.parser.parse(raw, "hermes_2_pro")
        second = self.parser.parse(raw, "hermes_2_pro")
        self.assertEqual(first, second)

    def test_hermes_single_call(self):
        raw = '<tool_call>\n{"name": "shell_command", "arguments": {"command": "ls -la"}}\n</tool_call>'
        message = self.parser.parse(raw, "hermes_2_pro")

        self.assertEqual(len(message.tool_calls), 1)
        call = message.tool_calls[0]
        self.assertEqual(call.name, "shell_command")
        self.assertEqual(call.decode_arguments(), {"command": "ls -la"})
        self.assertEqual(message.content, "")

    def test_hermes_multiple_calls_keep_order(self):
        raw = (
            '<tool_call>{"name": "search", "arguments": {"q": "a"}}</tool_call>\n'
            '<tool_call>{"name": "fetch", "arguments": {"url": "b"}}</tool_call>'
        )
        message = self.parser.parse(raw, "hermes_2_pro")
        self.assertEqual([c.name for c in message.tool_calls], ["search", "fetch"])

    def test_hermes_unterminated_last_block(self):
        raw = '<tool_call>\n{"name": "shell_command", "arguments": {"command": "pwd"}}'
        message = self.parser.parse(raw, "hermes_2_pro")
        self.assertEqual(message.tool_calls[0].decode_arguments(), {"command": "pwd"})

    def test_malformed_arguments_are_kept_raw(self):
        raw = '<tool_call>{"name": "shell_command", "arguments": {command: ls}}</tool_call>'
        message = self.parser.parse(raw, "hermes_2_pro")

        self.assertEqual(len(message.tool_calls), 1)
        call = message.tool_calls[0]
        self.assertEqual(call.name, "shell_command")
        self.assertEqual(call.arguments, "{command: ls}")
        with self.assertRaises(ArgumentError):
            call.decode_arguments()

    def test_generic_single_and_multiple_calls(self):
        single = '{"tool_call": {"name": "shell_command", "arguments": {"command": "date"}}}'
        message = self.parser.parse(single, "generic")
        self.assertEqual(message.tool_calls[0].decode_arguments(), {"command": "date"})

        multiple = (
            '```json\n{"tool_calls": [{"name": "a", "arguments": {}}, '
            '{"name": "b", "arguments": {"x": 1}}]}\n```'
        )
        message = self.parser.parse(multiple, "generic")
        self.assertEqual([c.name for c in message.tool_calls], ["a", "b"])

    def test_generic_response_object(self):
        message = self.parser.parse('{"response": "Hello there"}', "generic")
        self.assertEqual(message.content, "Hello there")
        self.assertEqual(message.tool_calls, ())

    def test_generic_repairs_single_quotes(self):
        message = self.parser.parse("{'tool_call': {'name': 'shell_command', 'arguments': {'command': 'ls'}}}", "generic")
        self.assertEqual(message.tool_calls[0].decode_arguments(), {"command": "ls"})

    def test_llama3_python_tag_and_semicolons(self):
        raw = (
            '<|python_tag|>{"name": "search", "parameters": {"q": "cats"}}; '
            '{"name": "fetch", "parameters": {"url": "http://x"}}'
        )
        message = self.parser.parse(raw, "llama_3_x")
        self.assertEqual([c.name for c in message.tool_calls], ["search", "fetch"])
        self.assertEqual(message.tool_calls[0].decode_arguments(), {"q": "cats"})

    def test_llama3_text_before_json_is_content(self):
        raw = 'Sure, I would call {"name": "search"} here.'
        message = self.parser.parse(raw, "llama_3_x")
        self.assertEqual(message.tool_calls, ())
        self.assertEqual(message.content, raw)

    def test_mistral_tool_calls_keep_ids(self):
        raw = '[TOOL_CALLS][{"name": "shell_command", "arguments": {"command": "uptime"}, "id": "abc123def"}]'
        message = self.parser.parse(raw, "mistral_nemo")
        self.assertEqual(message.tool_calls[0].name, "shell_command")
        self.assertEqual(message.tool_calls[0].id, "abc123def")

    def test_content_only_ignores_markers(self):
        raw = '<tool_call>{"name": "shell_command", "arguments": {}}</tool_call>'
        message = self.parser.parse(raw, "content_only")
        self.assertEqual(message.tool_calls, ())
        self.assertEqual(message.content, raw)

    def test_parse_tool_calls_disabled(self):
        raw = '<tool_call>{"name": "shell_command", "arguments": {}}</tool_call>'
        message = self.parser.parse(raw, "hermes_2_pro", parse_tool_calls=False)
        self.assertEqual(message.tool_calls, ())

    def test_reasoning_is_extracted(self):
        raw = "<think>The user wants the date.</think>\nIt is Monday."
        message = self.parser.parse(raw, "hermes_2_pro")
        self.assertEqual(message.reasoning_content, "The user wants the date.")
        self.assertEqual(message.content, "It is Monday.")

    def test_unknown_format_raises(self):
        with self.assertRaises(ValueError):
            self.parser.parse("hi", "alpaca")
