import contextlib
import io
import tempfile
import unittest

from cli.mcp_client_app import MCPClientApp, SessionState
from orchestrator.config import MCPServerConfig, OrchestratorConfig
from tools.base_tool import ActionDescriptor
from tools.tool_registry import ProviderRegistry


class FakeClient:
    def __init__(self, server, tools, fail=False):
        self.server = server
        self.tools = [ActionDescriptor(name=t, description=f"{t} tool") for t in tools]
        self.fail = fail
        self.calls = []

    def set_timeout(self, seconds):
        pass

    async def initialize(self, client_name, client_version):
        if self.fail:
            raise ConnectionRefusedError("Connection refused")
        return True

    async def list_tools(self):
        return self.tools

    async def call_tool(self, tool_name, args):
        self.calls.append((tool_name, args))
        return {"echo": args}

    async def close(self):
        return None


class TestMCPClientApp(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.clients = {}

    def _app(self, specs, inputs=()):
        config = OrchestratorConfig(log_dir=self._tmp.name)
        config.mcp.servers = [
            MCPServerConfig(name=name, host="localhost", port=9000 + i, type="service")
            for i, name in enumerate(specs)
        ]

        def factory(server, logger):
            tools, fail = specs[server.name]
            client = FakeClient(server, tools, fail)
            self.clients[server.name] = client
            return client

        registry = ProviderRegistry(config.mcp, config.log_dir, client_factory=factory)
        lines = iter(inputs)

        def read(prompt):
            try:
                return next(lines)
            except StopIteration:
                raise EOFError

        return MCPClientApp(config, registry=registry, input_fn=read)

    async def _run(self, app):
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = await app.start()
        return code, out.getvalue(), err.getvalue()

    async def test_tool_command_dispatches(self):
        app = self._app({"A": (["search"], False)}, ['tool search {"q": "cats"}', "exit"])
        code, out, _ = await self._run(app)

        self.assertEqual(code, 0)
        self.assertEqual(self.clients["A"].calls, [("search", {"q": "cats"})])
        self.assertIn("Executing tool 'search' on server 'A'...", out)
        self.assertIn('"q": "cats"', out)
        self.assertEqual(app.state, SessionState.TERMINATED)

    async def test_empty_arguments_default_to_object(self):
        app = self._app({"A": (["ping"], False)}, ["tool ping", "quit"])
        await self._run(app)
        self.assertEqual(self.clients["A"].calls, [("ping", {})])

    async def test_invalid_arguments_never_dispatch(self):
        app = self._app({"A": (["search"], False)}, ["tool search {q: cats}", "tool search [1]", "exit"])
        code, _, err = await self._run(app)

        self.assertEqual(code, 0)
        self.assertEqual(self.clients["A"].calls, [])
        self.assertIn("Invalid JSON arguments", err)
        self.assertIn("must be a JSON object", err)

    async def test_unknown_tool_reports_not_found(self):
        app = self._app({"A": (["search"], False)}, ["tool summarize {}"])
        _, out, _ = await self._run(app)
        self.assertIn("Tool 'summarize' not found on any connected server", out)

    async def test_listing_commands(self):
        app = self._app(
            {"A": (["read_file"], False), "B": (["read_file", "fetch"], False)},
            ["tools", "servers", "", "bogus"],
        )
        _, out, err = await self._run(app)

        self.assertIn("--- Available Tools ---", out)
        self.assertIn("From server 'A' (service):", out)
        self.assertIn("shadowed by 'B'", out)
        self.assertIn("- B (service) at localhost:9001", out)
        self.assertIn("Unknown command: 'bogus'. Type 'help' for a list of commands.", err)

    async def test_partial_connection_failure(self):
        app = self._app({"A": ([], True), "B": (["fetch"], False)}, ["exit"])
        code, out, err = await self._run(app)

        self.assertEqual(code, 0)
        self.assertIn("Failed to initialize connection to 'A'", err)
        self.assertIn("Successfully connected to 'B' (1 tools found)", out)

    async def test_no_servers_is_fatal(self):
        app = self._app({"A": ([], True)}, ["exit"])
        code, _, err = await self._run(app)

        self.assertEqual(code, 1)
        self.assertIn("Fatal: No servers could be connected", err)

    async def test_handle_line_state(self):
        app = self._app({"A": (["search"], False)})
        with contextlib.redirect_stdout(io.StringIO()):
            self.assertEqual(await app.handle_line("help"), SessionState.AWAITING_COMMAND)
            self.assertEqual(await app.handle_line("exit"), SessionState.TERMINATED)
