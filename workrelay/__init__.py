"""
workrelay: durable background-work dispatch over RabbitMQ.

Front ends publish work items (email, SMS, analytics, image processing) into
durable queues; worker processes consume them with at-least-once delivery.
"""

__version__ = "0.1.0"
