"""Broker access for amqp-cli."""
