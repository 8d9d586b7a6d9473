"""Command-line parsing for both programs; flags override the config file."""

from __future__ import annotations

import argparse
import sys

from orchestrator.config import (
    CHAT_FORMATS,
    TOOL_CHOICES,
    OrchestratorConfig,
    default_server,
    parse_server_spec,
)


class ArgumentParser(argparse.ArgumentParser):
    """argparse that exits with status 1 on bad usage (help still exits 0)."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _add_server_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--add-server",
        nargs=4,
        action="append",
        default=[],
        metavar=("NAME", "HOST", "PORT", "TYPE"),
        help="connect to an MCP server over SSE (repeatable)",
    )


def _add_config_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default="config.json", help="path to the JSON config file")


def build_function_call_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="run_function_call.py",
        description="Simple function call example - real shell command execution.",
    )
    parser.add_argument("-m", "--model", required=True, help="Ollama model name")
    parser.add_argument("-p", "--prompt", required=True, help="prompt to generate text from")
    parser.add_argument("-n", "--n-predict", type=int, default=None, help="number of units to predict")
    parser.add_argument("--chat-format", choices=CHAT_FORMATS, default=None, help="prompt/response format")
    parser.add_argument("--tool-choice", choices=TOOL_CHOICES, default=None, help="tool choice policy")
    parser.add_argument("--confirm", action="store_true", help="ask before running each shell command")
    parser.add_argument("--max-rounds", type=int, default=None, help="generate/execute rounds (default 1)")
    _add_server_flag(parser)
    _add_config_flag(parser)
    return parser


def build_mcp_client_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="run_mcp_client.py",
        description="Interactive client for one or more MCP servers.",
    )
    _add_server_flag(parser)
    parser.add_argument(
        "--hide-instructions",
        action="store_true",
        help="do not print the command list at startup",
    )
    _add_config_flag(parser)
    return parser


def apply_function_call_args(config: OrchestratorConfig, args: argparse.Namespace) -> OrchestratorConfig:
    """Overlay function-call flags onto ``config``. Raises ConfigError on bad servers."""
    config.model.model_name = args.model
    if args.n_predict is not None:
        config.generation.n_predict = args.n_predict
    if args.chat_format is not None:
        config.generation.chat_format = args.chat_format
    if args.tool_choice is not None:
        config.generation.tool_choice = args.tool_choice
    if args.max_rounds is not None:
        config.generation.max_rounds = max(1, args.max_rounds)
    if args.confirm:
        config.shell.confirm = True
    config.mcp.servers.extend(parse_server_spec(*spec) for spec in args.add_server)
    return config


def apply_mcp_client_args(config: OrchestratorConfig, args: argparse.Namespace) -> OrchestratorConfig:
    """Overlay MCP client flags onto ``config``; fall back to the default server."""
    config.mcp.servers.extend(parse_server_spec(*spec) for spec in args.add_server)
    if not config.mcp.servers:
        config.mcp.servers.append(default_server())
    if args.hide_instructions:
        config.mcp.show_instructions = False
    return config
