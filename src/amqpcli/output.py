"""
Rendering of consumed deliveries for the terminal.

Every renderer returns text; printing is left to the CLI.
"""

import datetime
from enum import Enum
from typing import Optional

from amqpcli.models import Delivery

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
NOT_SET = "(not set)"
HEX_DUMP_WIDTH = 16


class OutputMode(Enum):
    SIMPLE = "simple"
    VERBOSE = "verbose"
    JSON = "json"


def format_timestamp(timestamp: Optional[datetime.datetime]) -> str:
    """Format a broker timestamp in local time. Naive values are UTC."""
    if timestamp is None:
        return ""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
    return timestamp.astimezone().strftime(TIMESTAMP_FORMAT)


def _default(value: str, default: str = NOT_SET) -> str:
    return value if value else default


def render_banner(number: int) -> str:
    return f"\n=== Message #{number} ==="


def render_simple(delivery: Delivery) -> str:
    """Routing information, timestamp and body."""
    lines = []
    if delivery.exchange:
        lines.append(f"Exchange: {delivery.exchange}")
    if delivery.routing_key:
        lines.append(f"Routing Key: {delivery.routing_key}")
    if delivery.timestamp is not None:
        lines.append(f"Timestamp: {format_timestamp(delivery.timestamp)}")
    lines.append("Body:")
    lines.append(delivery.body)
    return "\n".join(lines)


def render_verbose(delivery: Delivery) -> str:
    """Full dump of the method, header and body frames."""
    lines = [
        "",
        "[Method Frame] Basic.Deliver",
        f"  ConsumerTag:  {delivery.consumer_tag}",
        f"  DeliveryTag:  {delivery.delivery_tag}",
        f"  Redelivered:  {str(delivery.redelivered).lower()}",
        f"  Exchange:     {delivery.exchange}",
        f"  RoutingKey:   {delivery.routing_key}",
        "",
        "[Header Frame] Content Header",
        f"  ContentType:     {_default(delivery.content_type)}",
        f"  ContentEncoding: {_default(delivery.content_encoding)}",
        f"  DeliveryMode:    {delivery.delivery_mode_label}",
        f"  Priority:        {delivery.priority}",
    ]

    optional_fields = [
        ("CorrelationId", delivery.correlation_id),
        ("ReplyTo", delivery.reply_to),
        ("Expiration", delivery.expiration),
        ("MessageId", delivery.message_id),
        ("Timestamp", format_timestamp(delivery.timestamp)),
        ("Type", delivery.type),
        ("UserId", delivery.user_id),
        ("AppId", delivery.app_id),
    ]
    for label, value in optional_fields:
        if value:
            lines.append(f"  {label + ':':<17}{value}")

    if delivery.headers:
        lines.append("  Headers:")
        for key in sorted(delivery.headers):
            lines.append(f"    {key}: {delivery.headers[key]}")

    lines.extend(
        [
            "",
            "[Body Frame] Content Body",
            f"  Size: {delivery.size} bytes",
            "  Data:",
            delivery.body,
        ]
    )
    return "\n".join(lines)


def hex_dump(data: bytes) -> str:
    """
    Canonical hex dump: offset, sixteen bytes split in two groups of eight,
    then the printable ASCII column. Empty input yields an empty string.
    """
    lines = []
    for offset in range(0, len(data), HEX_DUMP_WIDTH):
        chunk = data[offset : offset + HEX_DUMP_WIDTH]
        hex_part = ""
        for i in range(HEX_DUMP_WIDTH):
            hex_part += f"{chunk[i]:02x} " if i < len(chunk) else "   "
            if i == 7:
                hex_part += " "
        ascii_part = "".join(chr(b) if 32 <= b <= 126 else "." for b in chunk)
        lines.append(f"{offset:08x}  {hex_part} |{ascii_part}|\n")
    return "".join(lines)


def render_hex(delivery: Delivery) -> str:
    return "\n[Hex Dump]\n" + hex_dump(delivery.raw_body)


def render_json(delivery: Delivery) -> str:
    return delivery.model_dump_json()


def render_delivery(
    delivery: Delivery,
    number: int,
    mode: OutputMode = OutputMode.SIMPLE,
    show_hex: bool = False,
) -> str:
    """Render one delivery, numbered from 1, in the chosen mode."""
    if mode is OutputMode.JSON:
        return render_json(delivery)

    parts = [render_banner(number)]
    if mode is OutputMode.VERBOSE:
        parts.append(render_verbose(delivery))
    else:
        parts.append(render_simple(delivery))
    text = "\n".join(parts)

    if show_hex:
        # hex dump lines already end with a newline
        text += "\n" + render_hex(delivery).rstrip("\n")
    return text
