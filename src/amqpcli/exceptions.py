"""
Custom exceptions for the amqp-cli application.

Broker failures carry the operation that failed, its target and the
underlying transport error, so setup failures can be told apart from
per-message failures.
"""

from typing import Optional


class AmqpCliError(Exception):
    """Base class for all amqp-cli errors."""


class UsageError(AmqpCliError):
    """Raised when command input is invalid. Never involves the network."""


class OperationError(AmqpCliError):
    """Raised when a broker operation fails."""

    operation = "broker operation"

    def __init__(
        self,
        target: Optional[str] = None,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
    ):
        self.target = target
        self.cause = cause
        if message is None:
            message = f"failed to {self.operation}"
            if target:
                message += f" '{target}'"
            if cause is not None:
                message += f": {cause}"
        super().__init__(message)


class BrokerConnectionError(OperationError):
    """Raised when the connection or its channel cannot be opened."""

    operation = "connect to"


class DeclareError(OperationError):
    """Raised when a queue declaration fails."""

    operation = "declare queue"


class SubscribeError(OperationError):
    """Raised when a consumer cannot be registered on a queue."""

    operation = "register consumer on queue"


class PublishError(OperationError):
    """Raised when a message cannot be published."""

    operation = "publish to"


class PublishTimeoutError(PublishError):
    """Raised when publish submission exceeds its deadline."""

    def __init__(self, target: Optional[str] = None, timeout: Optional[float] = None):
        self.timeout = timeout
        super().__init__(
            target=target,
            message=f"failed to publish to '{target}': timed out after {timeout}s",
        )


class ConsumeLoopError(OperationError):
    """Raised when a subscription ends abnormally while consuming."""

    operation = "consume from queue"
