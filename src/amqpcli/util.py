import concurrent.futures
import io
import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class NamedThreadPool(concurrent.futures.ThreadPoolExecutor):
    def submit(
        self, fn, /, name: Optional[str] = None, *args, **kwargs
    ) -> concurrent.futures.Future:  # type: ignore
        def rename_thread(*args, **kwargs):
            if name is not None and len(name) > 0:
                threading.current_thread().name = name
            return fn(*args, **kwargs)

        return super().submit(rename_thread, *args, **kwargs)


def read_message_from_stream(stream: Optional[io.TextIOBase]) -> str:
    """
    Read a message body from a piped stream.

    Lines are joined with a newline, without a trailing newline and without
    carriage returns. Bytes that are not valid UTF-8 are replaced rather than
    rejected. An interactive terminal yields an empty message so the command
    never blocks waiting for keyboard input.
    """
    if stream is None:
        return ""

    try:
        if stream.isatty():
            return ""
    except (AttributeError, ValueError):
        pass

    # prefer the byte buffer; decoding happens here, with replacement
    buffer = getattr(stream, "buffer", None)
    data = buffer.read() if buffer is not None else stream.read()
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    if not data:
        return ""

    lines = data.split("\n")
    if lines[-1] == "":
        lines.pop()
    message = "\n".join(line.removesuffix("\r") for line in lines)
    logger.debug("read %d line(s) from stdin", len(lines))
    return message
