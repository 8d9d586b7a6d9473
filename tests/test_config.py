import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from orchestrator.config import default_server, load_config, parse_server_spec
from orchestrator.exceptions import ConfigError


class TestConfig(unittest.TestCase):
    def _write(self, tmpdir, data) -> str:
        config_path = Path(tmpdir) / "config.json"
        config_path.write_text(json.dumps(data))
        return str(config_path)

    def test_load_config_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with mock.patch.dict(os.environ, {}, clear=False):
                os.environ.pop("OLLAMA_BASE_URL", None)
                config = load_config(self._write(tmpdir, {"log_dir": str(Path(tmpdir) / "logs")}))

            self.assertEqual(config.model.base_url, "http://localhost:11434")
            self.assertEqual(config.ollama.connect_timeout, 5.0)
            self.assertEqual(config.ollama.read_timeout, 120.0)
            self.assertEqual(config.ollama.max_retries, 3)
            self.assertEqual(config.generation.n_predict, 256)
            self.assertEqual(config.generation.chat_format, "hermes_2_pro")
            self.assertEqual(config.generation.tool_choice, "auto")
            self.assertEqual(config.generation.max_rounds, 1)
            self.assertIn("execute shell commands", config.generation.system_prompt)
            self.assertFalse(config.shell.confirm)
            self.assertEqual(config.mcp.client_name, "llama-mcp-client")
            self.assertEqual(config.mcp.handshake_timeout, 5.0)
            self.assertIsNone(config.mcp.call_timeout)
            self.assertTrue(config.mcp.show_instructions)
            self.assertEqual(config.mcp.servers, [])

    def test_missing_file_gives_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = load_config(str(Path(tmpdir) / "absent.json"))
            self.assertEqual(config.generation.n_predict, 256)

    def test_servers_are_parsed(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = load_config(self._write(tmpdir, {
                "mcp": {
                    "call_timeout": 30,
                    "servers": [
                        {"name": "search", "host": "127.0.0.1", "port": 8890, "type": "service"},
                        {"name": "files", "transport": "stdio", "command": "mcp-files", "args": ["--root", "/"]},
                    ],
                },
            }))

            search, files = config.mcp.servers
            self.assertEqual(config.mcp.call_timeout, 30.0)
            self.assertEqual(search.address, "127.0.0.1:8890")
            self.assertEqual(files.transport, "stdio")
            self.assertEqual(files.address, "mcp-files --root /")

    def test_invalid_values_raise(self):
        bad_configs = [
            {"ollama": {"connect_timeout": -1}},
            {"generation": {"chat_format": "alpaca"}},
            {"generation": {"tool_choice": "sometimes"}},
            {"generation": {"max_rounds": 0}},
            {"generation": {"n_predict": True}},
            {"shell": {"confirm": "yes"}},
            {"mcp": {"servers": [{"name": "x", "port": 70000}]}},
            {"mcp": {"servers": [{"name": "x", "transport": "stdio"}]}},
            {"mcp": {"servers": [{"port": 1}]}},
            {"model": "qwen"},
        ]
        with tempfile.TemporaryDirectory() as tmpdir:
            for data in bad_configs:
                with self.subTest(data=data):
                    with self.assertRaises(ConfigError):
                        load_config(self._write(tmpdir, data))

    def test_invalid_json_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.json"
            config_path.write_text("{not json")
            with self.assertRaises(ConfigError):
                load_config(str(config_path))

    def test_env_overrides_ollama_base_url(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with mock.patch.dict(os.environ, {"OLLAMA_BASE_URL": "http://ollama:11434"}):
                config = load_config(self._write(tmpdir, {}))
            self.assertEqual(config.model.base_url, "http://ollama:11434")

    def test_parse_server_spec(self):
        server = parse_server_spec("agent", "localhost", "8889", "llama-agent")
        self.assertEqual(server.port, 8889)
        self.assertEqual(server.transport, "sse")
        with self.assertRaises(ConfigError):
            parse_server_spec("agent", "localhost", "eighty", "llama-agent")

    def test_default_server(self):
        server = default_server()
        self.assertEqual((server.name, server.host, server.port, server.type),
                         ("default-agent", "localhost", 8889, "llama-agent"))
