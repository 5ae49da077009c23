import logging
import ssl

from amqpstorm import Channel

from amqpcli.repository.rabbitmq.config import QueueConfig

logger = logging.getLogger(__name__)


def declare_queue(channel: Channel, queue_config: QueueConfig) -> None:
    """
    Declare a queue, creating it if it does not already exist.

    Declaring an existing queue with matching parameters is a no-op on the broker.

    :param channel: The AMQP channel to use for declaration.
    :param queue_config: Queue name and flags.
    """
    logger.debug("declaring queue with config: %s", queue_config)
    channel.queue.declare(
        queue=queue_config.name,
        durable=queue_config.durable,
        exclusive=queue_config.exclusive,
        auto_delete=queue_config.auto_delete,
        arguments=queue_config.arguments,
    )

    logger.info("Queue declared: %s", queue_config.name)


def get_rabbitmq_ssl_options(hostname: str) -> dict:
    """Create SSL options for an amqps connection."""
    if hostname is None or len(hostname) == 0:
        raise RuntimeError("SSL is enabled but no hostname provided")

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.load_default_certs(purpose=ssl.Purpose.SERVER_AUTH)

    # Set minimum TLS version to 1.2
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    context.check_hostname = True
    context.verify_mode = ssl.CERT_REQUIRED

    ssl_options = {
        "context": context,
        "server_hostname": hostname,
    }

    logger.debug("Created SSL context for hostname: %s", hostname)
    return ssl_options
