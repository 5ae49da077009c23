import datetime
from typing import Any, Optional

from amqpstorm import Message
from pydantic import BaseModel, ConfigDict, Field


def _text(value: Any) -> str:
    """Best-effort conversion of a wire field to text."""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _decode_header_value(value: Any) -> Any:
    """Decode byte strings in a header value, including nested tables and arrays."""
    if isinstance(value, (bytes, bytearray)):
        return _text(value)
    if isinstance(value, dict):
        return _decode_headers(value)
    if isinstance(value, (list, tuple)):
        return [_decode_header_value(item) for item in value]
    return value


def _decode_headers(headers: Optional[dict]) -> dict[str, Any]:
    if not headers:
        return {}
    return {_text(key): _decode_header_value(value) for key, value in headers.items()}


class Delivery(BaseModel):
    """
    One received message, decoupled from the transport representation.

    Immutable once built. The transport handle used to acknowledge the
    message is not part of the model.
    """

    model_config = ConfigDict(
        frozen=True,
        ser_json_bytes="base64",
    )

    # Method frame (Basic.Deliver)
    consumer_tag: str = ""
    delivery_tag: int = 0
    redelivered: bool = False
    exchange: str = ""
    routing_key: str = ""

    # Header frame (content header)
    content_type: str = ""
    content_encoding: str = ""
    headers: dict[str, Any] = Field(default_factory=dict)
    delivery_mode: int = 0
    priority: int = 0
    correlation_id: str = ""
    reply_to: str = ""
    expiration: str = ""
    message_id: str = ""
    timestamp: Optional[datetime.datetime] = None
    type: str = ""
    user_id: str = ""
    app_id: str = ""

    # Body frame
    body: str = ""
    raw_body: bytes = b""

    @property
    def size(self) -> int:
        return len(self.raw_body)

    @property
    def is_persistent(self) -> bool:
        return self.delivery_mode == 2

    @property
    def delivery_mode_label(self) -> str:
        if self.delivery_mode == 1:
            return "1 (Non-persistent)"
        if self.delivery_mode == 2:
            return "2 (Persistent)"
        return f"{self.delivery_mode} (Unknown)"

    @classmethod
    def from_message(cls, message: Message) -> "Delivery":
        """
        Normalize an inbound amqpstorm message.

        The message is expected to be built with auto_decode disabled so the
        body arrives as raw bytes. The text body is decoded without
        validation; invalid sequences are replaced since raw_body keeps the
        original bytes.
        """
        method = message.method or {}
        properties = message.properties or {}

        raw_body = message.body
        if raw_body is None:
            raw_body = b""
        elif isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        else:
            raw_body = bytes(raw_body)

        return cls(
            consumer_tag=_text(method.get("consumer_tag")),
            delivery_tag=method.get("delivery_tag") or 0,
            redelivered=bool(method.get("redelivered")),
            exchange=_text(method.get("exchange")),
            routing_key=_text(method.get("routing_key")),
            content_type=_text(properties.get("content_type")),
            content_encoding=_text(properties.get("content_encoding")),
            headers=_decode_headers(properties.get("headers")),
            delivery_mode=properties.get("delivery_mode") or 0,
            priority=properties.get("priority") or 0,
            correlation_id=_text(properties.get("correlation_id")),
            reply_to=_text(properties.get("reply_to")),
            expiration=_text(properties.get("expiration")),
            message_id=_text(properties.get("message_id")),
            timestamp=properties.get("timestamp"),
            type=_text(properties.get("message_type")),
            user_id=_text(properties.get("user_id")),
            app_id=_text(properties.get("app_id")),
            body=raw_body.decode("utf-8", errors="replace"),
            raw_body=raw_body,
        )
