"""
Centralized logging configuration for amqp-cli.

Command output goes to stdout, so log records are written to stderr.
"""

import logging
import sys
from typing import Optional


def setup_logging(
    level: int = logging.WARNING,
    component_name: Optional[str] = None,
    force_setup: bool = False,
    stream=None,
) -> None:
    """
    Setup logging configuration for amqp-cli commands.

    Args:
        level: Logging level (default: WARNING)
        component_name: Name of the CLI component (e.g., 'publish', 'consume')
        force_setup: Whether to force reconfiguration even if already setup
        stream: Stream for the console handler (default: sys.stderr)
    """
    root_logger = logging.getLogger()
    if root_logger.handlers and not force_setup:
        # Logging already configured, just ensure our level is set
        root_logger.setLevel(level)
        logging.getLogger("amqpcli").setLevel(level)
        return

    if force_setup:
        root_logger.handlers.clear()

    _setup_console_logging(component_name, stream)

    root_logger.setLevel(level)

    # Reduce noise from the transport library
    logging.getLogger("amqpstorm").setLevel(max(level, logging.WARNING))

    logging.getLogger("amqpcli").setLevel(level)


def create_formatter(component_name: Optional[str] = None) -> logging.Formatter:
    """
    Create a standardized formatter for amqp-cli.

    Args:
        component_name: Name of the CLI component for log identification

    Returns:
        Configured logging formatter
    """
    if component_name:
        component_prefix = f"[{component_name}] "
    else:
        component_prefix = ""

    return logging.Formatter(
        f"%(asctime)s - {component_prefix}%(name)s - %(levelname)s - %(message)s"
    )


def parse_log_level(level_name: str) -> int:
    """Convert a level name such as 'info' into a logging level."""
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {level_name}")
    return level


def _setup_console_logging(component_name: Optional[str] = None, stream=None) -> None:
    formatter = create_formatter(component_name)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)

    logging.getLogger().addHandler(handler)
