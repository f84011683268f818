"""Delivery channels.

Channels:
- CommandQueueChannel: enqueue a robot ``send_private_message`` command
- ConsoleChannel: print to stdout (development)
"""

from botwatch.alerting.channels.base import (
    HIGH_PRIORITY,
    NORMAL_PRIORITY,
    BaseChannel,
    DeliveryChannel,
    priority_for,
)
from botwatch.alerting.channels.command_queue import CommandQueueChannel
from botwatch.alerting.channels.console import ConsoleChannel

__all__ = [
    "DeliveryChannel",
    "BaseChannel",
    "CommandQueueChannel",
    "ConsoleChannel",
    "priority_for",
    "HIGH_PRIORITY",
    "NORMAL_PRIORITY",
]
