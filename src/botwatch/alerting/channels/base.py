"""
Delivery channel contract and shared base class.

A channel accepts one rendered notification for one recipient and returns
a delivery id. Retries and priority queueing belong to the channel (or the
system behind it); the pipeline submits exactly once.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from botwatch.alerting.models import AlertLevel, Recipient

__all__ = [
    "DeliveryChannel",
    "BaseChannel",
    "priority_for",
    "HIGH_PRIORITY",
    "NORMAL_PRIORITY",
]

HIGH_PRIORITY = 10
NORMAL_PRIORITY = 5


def priority_for(level: AlertLevel) -> int:
    """Critical alerts jump the delivery queue."""
    return HIGH_PRIORITY if level is AlertLevel.CRITICAL else NORMAL_PRIORITY


@runtime_checkable
class DeliveryChannel(Protocol):
    """Outbound channel that pushes a message to a human operator."""

    @property
    def method(self) -> str:
        """Short method name recorded on each notification."""
        ...

    async def submit(
        self,
        recipient: Recipient,
        priority: int,
        body: str,
        max_retries: int,
        *,
        robot_id: str | None = None,
    ) -> str:
        """Hand the message over and return its delivery id.

        Raises:
            DeliveryError: The channel rejected the message.
        """
        ...


class BaseChannel(ABC):
    """
    Base class for delivery channels.

    Provides the method name and an enable switch; a disabled channel
    rejects submissions with ``DeliveryError``.
    """

    def __init__(self, method: str, *, enabled: bool = True):
        self._method = method
        self._enabled = enabled

    @property
    def method(self) -> str:
        return self._method

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        """Enable the channel."""
        self._enabled = True

    def disable(self) -> None:
        """Disable the channel."""
        self._enabled = False

    @abstractmethod
    async def submit(
        self,
        recipient: Recipient,
        priority: int,
        body: str,
        max_retries: int,
        *,
        robot_id: str | None = None,
    ) -> str:
        """Submit one message."""
        ...
