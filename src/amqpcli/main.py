import concurrent.futures
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass

import typer
from typing_extensions import Annotated, Optional

from amqpcli.config import SERVICE_NAME, AmqpCliConfig
from amqpcli.exceptions import AmqpCliError, UsageError
from amqpcli.logging_config import parse_log_level, setup_logging
from amqpcli.models import Delivery
from amqpcli.output import OutputMode, render_delivery
from amqpcli.repository.rabbitmq.config import SessionConfig
from amqpcli.repository.rabbitmq.connection import Session
from amqpcli.util import NamedThreadPool, read_message_from_stream

app = typer.Typer(
    name=SERVICE_NAME,
    help="A command line tool for publishing and consuming messages to/from "
    "RabbitMQ queues and exchanges.",
    no_args_is_help=True,
)
logger = logging.getLogger(__name__)

EXIT_OPERATION_ERROR = 1
EXIT_USAGE_ERROR = 2


@dataclass
class CliState:
    session_config: Optional[SessionConfig] = None
    log_level: int = logging.WARNING


_state = CliState()


def _fail(error: AmqpCliError) -> typer.Exit:
    typer.echo(f"Error: {error}", err=True)
    code = EXIT_USAGE_ERROR if isinstance(error, UsageError) else EXIT_OPERATION_ERROR
    return typer.Exit(code=code)


def _session_config() -> SessionConfig:
    if _state.session_config is None:
        raise RuntimeError("session config not defined - root callback did not run")
    return _state.session_config


def resolve_message(message: Optional[str], stdin=None) -> str:
    """
    Pick the message body: the --message flag, else piped stdin.

    :raises UsageError: If the resolved body is empty.
    """
    if not message:
        message = read_message_from_stream(sys.stdin if stdin is None else stdin)
    if not message:
        raise UsageError("message cannot be empty")
    return message


def validate_publish_target(queue: Optional[str], exchange: Optional[str]) -> None:
    if not queue and not exchange:
        raise UsageError("either --queue or --exchange must be specified")


@app.command()
def publish(
    exchange: Annotated[
        Optional[str], typer.Option("--exchange", "-e", help="Exchange name")
    ] = None,
    routing_key: Annotated[
        str, typer.Option("--routing-key", "-r", help="Routing key")
    ] = "",
    queue: Annotated[
        Optional[str],
        typer.Option(
            "--queue", "-q", help="Queue name (publishes directly to queue)"
        ),
    ] = None,
    message: Annotated[
        Optional[str], typer.Option("--message", "-m", help="Message body")
    ] = None,
):
    """
    Publish a message to a RabbitMQ queue or exchange.

    \b
    Examples:
      amqp-cli publish -q myqueue -m "Hello World"
      amqp-cli publish -e myexchange -r mykey -m "Hello World"
      echo "Hello World" | amqp-cli publish -q myqueue
    """
    setup_logging(level=_state.log_level, component_name=AmqpCliConfig.PUBLISH)

    # validate before touching the network
    try:
        validate_publish_target(queue, exchange)
        body = resolve_message(message)
    except UsageError as e:
        raise _fail(e)

    try:
        with Session.open(_session_config()) as session:
            if queue:
                session.publish_to_queue(queue, body)
                typer.echo(f"Message published to queue '{queue}'")
            else:
                session.publish(exchange, routing_key, body)
                typer.echo(
                    f"Message published to exchange '{exchange}' with routing key '{routing_key}'"
                )
    except AmqpCliError as e:
        raise _fail(e)


@app.command()
def consume(
    queue: Annotated[
        Optional[str],
        typer.Option("--queue", "-q", help="Queue name to consume from"),
    ] = None,
    auto_ack: Annotated[
        bool,
        typer.Option(
            "--auto-ack",
            help="Auto-acknowledge messages. Lossy: a message is removed from "
            "the queue on delivery, even if it cannot be processed.",
        ),
    ] = False,
    count: Annotated[
        int,
        typer.Option(
            "--count", "-n", help="Number of messages to consume (0 = unlimited)"
        ),
    ] = 0,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose", "-V", help="Show detailed Method/Header/Body frame info"
        ),
    ] = False,
    hex_dump: Annotated[
        bool, typer.Option("--hex", help="Show body as hex dump")
    ] = False,
    json_output: Annotated[
        bool, typer.Option("--json", help="Print one JSON object per message")
    ] = False,
):
    """
    Consume messages from a RabbitMQ queue.

    \b
    Examples:
      amqp-cli consume -q myqueue
      amqp-cli consume -q myqueue --auto-ack
      amqp-cli consume -q myqueue -n 10
      amqp-cli consume -q myqueue -V
      amqp-cli consume -q myqueue --hex
    """
    setup_logging(level=_state.log_level, component_name=AmqpCliConfig.CONSUME)

    try:
        if not queue:
            raise UsageError("--queue is required")
        if count < 0:
            raise UsageError("--count must be zero (unlimited) or positive")
    except UsageError as e:
        raise _fail(e)

    if json_output:
        mode = OutputMode.JSON
    elif verbose:
        mode = OutputMode.VERBOSE
    else:
        mode = OutputMode.SIMPLE

    try:
        session = Session.open(_session_config())
    except AmqpCliError as e:
        raise _fail(e)

    try:
        outcome = run_consume(
            session, queue, auto_ack=auto_ack, count=count, mode=mode, show_hex=hex_dump
        )
    finally:
        session.close()

    if outcome.error is not None:
        raise typer.Exit(code=EXIT_OPERATION_ERROR)


@dataclass
class ConsumeOutcome:
    received: int
    cancelled: bool
    error: Optional[AmqpCliError] = None


def run_consume(
    session: Session,
    queue: str,
    auto_ack: bool = False,
    count: int = 0,
    mode: OutputMode = OutputMode.SIMPLE,
    show_hex: bool = False,
    stop_event: Optional[threading.Event] = None,
) -> ConsumeOutcome:
    """
    Run the consume loop on its own thread and wait for the first of: the
    loop finishing, or an interrupt (SIGINT/SIGTERM) in this thread.

    Only the branch that resolves first reports; the summary is printed once.
    Status lines go to stderr in JSON mode so stdout stays machine readable.
    """
    stop_event = stop_event or threading.Event()
    status_to_stderr = mode is OutputMode.JSON
    received = 0

    def handle(delivery: Delivery) -> None:
        nonlocal received
        received += 1
        typer.echo(render_delivery(delivery, received, mode=mode, show_hex=show_hex))

    typer.echo(
        f"Consuming from queue '{queue}'... (Press Ctrl+C to stop)",
        err=status_to_stderr,
    )

    pool = NamedThreadPool(max_workers=1)
    future = pool.submit(
        session.consume,
        f"rmq-consumer-{queue}",
        queue,
        handle,
        auto_ack=auto_ack,
        count=count,
        stop_event=stop_event,
    )

    outcome = ConsumeOutcome(received=0, cancelled=False)
    with _interrupts_as_keyboard_interrupt():
        try:
            future.result()
        except KeyboardInterrupt:
            logger.info("Interrupt received, stopping consumer")
            outcome.cancelled = True
            stop_event.set()
            # let the in-flight delivery finish its ack/nack before the session closes
            _wait_quietly(future, AmqpCliConfig.CONSUME_SHUTDOWN_GRACE.total_seconds())
        except AmqpCliError as e:
            outcome.error = e
            typer.echo(f"Error consuming: {e}", err=True)
        finally:
            pool.shutdown(wait=False)

    outcome.received = received
    typer.echo(f"\nReceived {received} message(s)", err=status_to_stderr)
    return outcome


def _wait_quietly(future: concurrent.futures.Future, timeout: float) -> None:
    """Wait for a loop that lost the race; its result is discarded."""
    try:
        future.result(timeout=timeout)
    except AmqpCliError as e:
        logger.debug("Consume loop ended with error after interrupt: %s", e)
    except concurrent.futures.TimeoutError:
        logger.warning("Consume loop did not stop within %ss", timeout)
    except KeyboardInterrupt:
        logger.warning("Second interrupt received, not waiting for the consume loop")


@contextmanager
def _interrupts_as_keyboard_interrupt():
    """Map SIGTERM onto KeyboardInterrupt, like SIGINT, while active."""
    # signal handlers can only be installed from the main thread
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.signal(signal.SIGTERM, signal.default_int_handler)
    try:
        yield
    finally:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)


@app.callback()
def callback(
    host: Annotated[
        str,
        typer.Option(
            "--host", "-H", envvar=AmqpCliConfig.ENV_HOST, help="RabbitMQ host"
        ),
    ] = AmqpCliConfig.DEFAULT_HOST,
    port: Annotated[
        int,
        typer.Option(
            "--port", "-P", envvar=AmqpCliConfig.ENV_PORT, help="RabbitMQ port"
        ),
    ] = AmqpCliConfig.DEFAULT_PORT,
    username: Annotated[
        str,
        typer.Option(
            "--username",
            "-u",
            envvar=AmqpCliConfig.ENV_USERNAME,
            help="RabbitMQ username",
        ),
    ] = AmqpCliConfig.DEFAULT_USERNAME,
    password: Annotated[
        str,
        typer.Option(
            "--password",
            "-p",
            envvar=AmqpCliConfig.ENV_PASSWORD,
            help="RabbitMQ password",
        ),
    ] = AmqpCliConfig.DEFAULT_PASSWORD,
    vhost: Annotated[
        str,
        typer.Option(
            "--vhost",
            "-v",
            envvar=AmqpCliConfig.ENV_VHOST,
            help="RabbitMQ virtual host",
        ),
    ] = AmqpCliConfig.DEFAULT_VHOST,
    enable_ssl: Annotated[
        bool, typer.Option("--ssl", envvar=AmqpCliConfig.ENV_SSL, help="Use amqps")
    ] = False,
    log_level: Annotated[
        str,
        typer.Option(envvar=AmqpCliConfig.ENV_LOG_LEVEL, help="Logging level"),
    ] = "WARNING",
):
    try:
        _state.log_level = parse_log_level(log_level)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--log-level")

    _state.session_config = SessionConfig(
        host=host,
        port=port,
        username=username,
        password=password,
        vhost=vhost,
        ssl_enabled=enable_ssl,
    )
