"""
RabbitMQ messaging implementation.

Public API:
    - SessionConfig, QueueConfig: Connection and queue parameters
    - Session: One connection and one channel, with publish and consume
    - RabbitPublisher: Publish path
    - RabbitConsumer, ConsumeResult, StopReason: Consume loop
"""

from .config import QueueConfig, SessionConfig
from .connection import Session
from .publisher import RabbitPublisher
from .subscriber import ConsumeResult, RabbitConsumer, StopReason

__all__ = [
    # Configuration
    "QueueConfig",
    "SessionConfig",
    # Session
    "Session",
    # Publish / consume
    "RabbitPublisher",
    "RabbitConsumer",
    "ConsumeResult",
    "StopReason",
]
