#!/usr/bin/env python3
"""CLI entry point for the single-prompt function call example."""

import asyncio
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from cli.arguments import apply_function_call_args, build_function_call_parser
from cli.function_call_app import FunctionCallApp
from cli.style import error
from orchestrator.config import load_config
from orchestrator.exceptions import ConfigError


def main(argv=None):
    args = build_function_call_parser().parse_args(argv)
    try:
        config = apply_function_call_args(load_config(args.config), args)
    except ConfigError as e:
        error(f"Error: {e}")
        sys.exit(1)
    app = FunctionCallApp(config)
    sys.exit(asyncio.run(app.run(args.prompt)))


if __name__ == "__main__":
    main()
