"""Command line client for publishing to and consuming from RabbitMQ."""
