"""
Configuration constants for the amqp-cli application.

This module contains centralized defaults for connection options, publish
and consume behaviour, and other constants used throughout the application.
"""

from datetime import timedelta

# Global service name for logging
SERVICE_NAME = "amqp-cli"


class AmqpCliConfig:
    """Centralized defaults for amqp-cli commands."""

    # CLI component names, used as the logging prefix
    PUBLISH = "publish"
    CONSUME = "consume"

    # Connection defaults
    DEFAULT_HOST = "localhost"
    DEFAULT_PORT = 5672
    DEFAULT_USERNAME = "guest"
    DEFAULT_PASSWORD = "guest"
    DEFAULT_VHOST = ""

    # Publish submission is bounded by this deadline
    PUBLISH_TIMEOUT: timedelta = timedelta(seconds=5)
    PUBLISH_CONTENT_TYPE = "text/plain"

    # Only one unacknowledged delivery is held by the client at a time
    CONSUME_PREFETCH_COUNT = 1
    # How long the consume loop may go without re-checking for cancellation
    CONSUME_IDLE_INTERVAL: timedelta = timedelta(milliseconds=100)
    # How long an interrupted consume waits for the in-flight delivery
    CONSUME_SHUTDOWN_GRACE: timedelta = timedelta(seconds=5)

    # Environment variable names for the root options
    ENV_HOST = "AMQP_CLI_HOST"
    ENV_PORT = "AMQP_CLI_PORT"
    ENV_USERNAME = "AMQP_CLI_USERNAME"
    ENV_PASSWORD = "AMQP_CLI_PASSWORD"
    ENV_VHOST = "AMQP_CLI_VHOST"
    ENV_SSL = "AMQP_CLI_ENABLE_SSL"
    ENV_LOG_LEVEL = "AMQP_CLI_LOG_LEVEL"

