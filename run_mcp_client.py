#!/usr/bin/env python3
"""CLI entry point for the interactive MCP client."""

import asyncio
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from cli.arguments import apply_mcp_client_args, build_mcp_client_parser
from cli.mcp_client_app import MCPClientApp
from cli.style import error
from orchestrator.config import load_config
from orchestrator.exceptions import ConfigError


def main(argv=None):
    args = build_mcp_client_parser().parse_args(argv)
    try:
        config = apply_mcp_client_args(load_config(args.config), args)
    except ConfigError as e:
        error(f"Error: {e}")
        sys.exit(1)
    app = MCPClientApp(config)
    sys.exit(asyncio.run(app.start()))


if __name__ == "__main__":
    main()
