import contextlib
import io
import json
import tempfile
import unittest

from cli.function_call_app import FunctionCallApp
from orchestrator.config import OrchestratorConfig
from orchestrator.exceptions import InferenceError
from orchestrator.models import END_OF_GENERATION, InferenceEngine


class CannedEngine(InferenceEngine):
    """Replies to every prompt with the same text, a word at a time."""

    def __init__(self, reply, fail=False):
        self.reply = reply
        self.fail = fail
        self._units = []

    async def tokenize(self, text):
        return text.split(" ")

    async def decode(self, batch):
        if self.fail:
            raise InferenceError("llama_decode() failed")
        if len(batch) > 1:
            self._units = [w + " " for w in self.reply.split(" ")]
            self._units[-1] = self._units[-1].rstrip(" ")

    async def sample(self):
        return self._units.pop(0) if self._units else END_OF_GENERATION

    def is_end_of_generation(self, unit):
        return unit is END_OF_GENERATION

    def unit_to_text(self, unit):
        return unit


def _shell_call(command):
    return "<tool_call>" + json.dumps({"name": "shell_command", "arguments": {"command": command}}) + "</tool_call>"


class TestFunctionCallApp(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.config = OrchestratorConfig(log_dir=self._tmp.name)
        self.config.model.model_name = "qwen2.5:7b"

    async def _run(self, app, prompt="list files"):
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = await app.run(prompt)
        return code, out.getvalue(), err.getvalue()

    async def test_runs_shell_command(self):
        app = FunctionCallApp(self.config, engine=CannedEngine(_shell_call("echo hello")))
        code, out, _ = await self._run(app)

        self.assertEqual(code, 0)
        self.assertIn("Simple Function Call Example", out)
        self.assertIn("Function calls detected:", out)
        self.assertIn("  Function: shell_command", out)
        self.assertIn("  Command: echo hello", out)
        self.assertIn("  Result:\nhello\n", out)

    async def test_declined_command(self):
        self.config.shell.confirm = True
        app = FunctionCallApp(
            self.config,
            engine=CannedEngine(_shell_call("touch should-not-exist")),
            prompt_fn=lambda _q: "n",
        )
        code, out, _ = await self._run(app)

        self.assertEqual(code, 0)
        self.assertIn("Command confirmation: enabled", out)
        self.assertIn("Command execution cancelled.", out)

    async def test_plain_response(self):
        app = FunctionCallApp(self.config, engine=CannedEngine("Nothing to run here."))
        code, out, _ = await self._run(app)

        self.assertEqual(code, 0)
        self.assertIn("Response:", out)
        self.assertIn("Nothing to run here.", out)

    async def test_generation_failure_exits_one(self):
        app = FunctionCallApp(self.config, engine=CannedEngine("", fail=True))
        code, _, err = await self._run(app)

        self.assertEqual(code, 1)
        self.assertIn("failed to eval", err)
