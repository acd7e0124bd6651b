"""CLI utility functions for scpbuild.

This module provides common utilities used across CLI commands including:
- Parsing of ``-D FLAG=VALUE`` option overrides
- Logging setup
- Error handling and formatting
- Path validation
"""

import logging
import sys
import traceback
from pathlib import Path
from typing import Dict, Iterable, Optional


class DefineParseError(ValueError):
    """Raised for a malformed ``-D`` argument."""
    pass


def parse_define_overrides(defines: Optional[Iterable[str]]) -> Dict[str, str]:
    """Parse ``FLAG=VALUE`` strings into an override mapping.

    A bare ``FLAG`` is shorthand for ``FLAG=ON``. Option ids are
    case-insensitive and normalized to upper case. A CMake-style type
    suffix (``FLAG:BOOL=ON``) is accepted and dropped.

    Args:
        defines: Raw ``-D`` arguments

    Returns:
        Option id -> raw value (later definitions win)

    Raises:
        DefineParseError: If a definition has an empty option id
    """
    overrides: Dict[str, str] = {}
    for define in defines or []:
        name, sep, value = define.partition("=")
        if not sep:
            value = "ON"
        name = name.split(":", 1)[0].strip().upper()
        if not name:
            raise DefineParseError(f"Invalid option definition '{define}': expected FLAG=VALUE")
        overrides[name] = value.strip()
    return overrides


def setup_logging(verbose: bool = False) -> None:
    """Configure the root logger for CLI use."""
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)


class ErrorFormatter:
    """Formats and displays error messages with ANSI color codes."""

    # ANSI color codes
    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    @staticmethod
    def print_error(title: str, message: str) -> None:
        """Print formatted error message.

        Args:
            title: Error title (e.g., "Build failed!")
            message: Error message details
        """
        print()
        print(f"{ErrorFormatter.RED}✗ {title}{ErrorFormatter.RESET}")
        print()
        print(message)
        print()

    @staticmethod
    def print_success(message: str) -> None:
        print()
        print(f"{ErrorFormatter.GREEN}✓ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def print_warning(message: str) -> None:
        print()
        print(f"{ErrorFormatter.YELLOW}✗ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def handle_keyboard_interrupt() -> None:
        """Handle KeyboardInterrupt with standard formatting."""
        ErrorFormatter.print_warning("Build interrupted")
        sys.exit(130)  # Standard exit code for SIGINT

    @staticmethod
    def handle_unexpected_error(error: Exception, verbose: bool = False) -> None:
        """Handle unexpected errors with standard formatting.

        Args:
            error: The exception to handle
            verbose: Whether to print traceback
        """
        message = f"{type(error).__name__}: {error}"
        ErrorFormatter.print_error("Unexpected error", message)

        if verbose:
            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)


class PathValidator:
    """Validates project paths and directories."""

    @staticmethod
    def validate_dir(path: Path) -> None:
        """Validate that a path exists and is a directory.

        Args:
            path: Path to validate

        Raises:
            SystemExit: If path doesn't exist or isn't a directory
        """
        if not path.exists():
            print(f"{ErrorFormatter.RED}✗ Error: Path does not exist: {path}{ErrorFormatter.RESET}")
            sys.exit(2)
        if not path.is_dir():
            print(f"{ErrorFormatter.RED}✗ Error: Path is not a directory: {path}{ErrorFormatter.RESET}")
            sys.exit(2)
