# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Logging interface for intuneappbuilder.

Library modules report progress through a small logger protocol instead of
printing directly, so the packaging and upload code stays usable without the
CLI. The logger can be configured globally or passed in explicitly.

Output levels:

- Step: Always printed (for progress indicators)
- Warning: Always printed, to stderr (degraded behavior the user should see,
    such as missing installer tooling or a retried block)
- Verbose: Only printed when verbose mode is enabled
- Debug: Only printed when debug mode is enabled (implies verbose)

Example:
    Configure global logger:
        ```python
        from intuneappbuilder.logging import get_logger, set_global_logger

        set_global_logger(get_logger(verbose=True))
        ```

    Use in library code:
        ```python
        from intuneappbuilder.logging import get_global_logger

        logger = get_global_logger()
        logger.step(1, 3, "Encrypting source...")
        logger.verbose("UPLOAD", "Uploading block 0001 of 0004")
        logger.debug("GRAPH", "POST .../contentVersions")
        ```

Note:
    The default logger is silent, so library functions won't print anything
    unless explicitly configured. The CLI configures the global logger when
    commands are executed.
"""

from __future__ import annotations

import sys
from typing import Protocol


class Logger(Protocol):
    """Protocol for logger implementations."""

    def step(self, step: int, total: int, message: str) -> None:
        """Print a step indicator.

        Args:
            step: Current step number (1-based).
            total: Total number of steps.
            message: Step description.
        """
        ...

    def warning(self, prefix: str, message: str) -> None:
        """Print a warning regardless of verbosity.

        Args:
            prefix: Message prefix (e.g., "MSI", "UPLOAD").
            message: Warning message.
        """
        ...

    def verbose(self, prefix: str, message: str) -> None:
        """Print a verbose log message.

        Args:
            prefix: Message prefix (e.g., "UPLOAD", "STATE").
            message: Log message.
        """
        ...

    def debug(self, prefix: str, message: str) -> None:
        """Print a debug log message.

        Args:
            prefix: Message prefix (e.g., "GRAPH", "MSI").
            message: Log message.
        """
        ...


class DefaultLogger:
    """Logger that prints to stdout, respecting verbose and debug flags."""

    def __init__(self, verbose: bool = False, debug: bool = False) -> None:
        """Initialize logger with verbosity settings.

        Args:
            verbose: If True, print verbose messages.
            debug: If True, print debug messages (implies verbose).
        """
        self._verbose = verbose or debug
        self._debug = debug

    def step(self, step: int, total: int, message: str) -> None:
        """Print a step indicator."""
        print(f"[{step}/{total}] {message}")

    def warning(self, prefix: str, message: str) -> None:
        """Print a warning to stderr."""
        print(f"[{prefix}] [WARNING] {message}", file=sys.stderr)

    def verbose(self, prefix: str, message: str) -> None:
        """Print a verbose log message (only when verbose mode is active)."""
        if self._verbose:
            print(f"[{prefix}] {message}")

    def debug(self, prefix: str, message: str) -> None:
        """Print a debug log message (only when debug mode is active)."""
        if self._debug:
            print(f"[{prefix}] {message}")


class SilentLogger:
    """Logger that suppresses all output."""

    def step(self, step: int, total: int, message: str) -> None:
        pass

    def warning(self, prefix: str, message: str) -> None:
        pass

    def verbose(self, prefix: str, message: str) -> None:
        pass

    def debug(self, prefix: str, message: str) -> None:
        pass


# Global logger instance (defaults to silent)
_global_logger: Logger = SilentLogger()


def get_logger(verbose: bool = False, debug: bool = False) -> Logger:
    """Get a stdout logger with the specified verbosity.

    Args:
        verbose: If True, logger will print verbose messages.
        debug: If True, logger will print debug messages (implies verbose).

    Returns:
        A logger instance configured with the specified verbosity.
    """
    return DefaultLogger(verbose=verbose, debug=debug)


def get_global_logger() -> Logger:
    """Get the global logger instance.

    Returns:
        The current global logger instance.
    """
    return _global_logger


def set_global_logger(logger: Logger) -> None:
    """Set the global logger instance.

    Args:
        logger: Logger instance to use as the global logger.

    Note:
        This affects all library functions that fall back to
        get_global_logger(). Components that accept a logger argument use
        the one passed in instead.
    """
    global _global_logger
    _global_logger = logger
