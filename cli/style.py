"""ANSI colors and console helpers shared by the command-line apps."""

import sys

# ANSI color codes
RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
CYAN = "\033[36m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
RED = "\033[31m"


def error(message: str) -> None:
    """Print one error line to stderr."""
    print(f"{RED}{message}{RESET}", file=sys.stderr)


def warn(message: str) -> None:
    print(f"{YELLOW}{message}{RESET}", file=sys.stderr)
