"""Console delivery channel for development and testing."""

from __future__ import annotations

from typing import Any

from botwatch.alerting.channels.base import HIGH_PRIORITY, BaseChannel
from botwatch.alerting.models import Recipient
from botwatch.core.errors import DeliveryError, ErrorContext
from botwatch.core.logging import get_logger
from botwatch.core.timestamps import generate_ulid

logger = get_logger(__name__)


class ConsoleChannel(BaseChannel):
    """
    Console output channel for development.

    Prints each notification to stdout and returns a generated id.
    """

    def __init__(self, method: str = "console", *, color: bool = True, **kwargs: Any):
        super().__init__(method, **kwargs)
        self._color = color

    async def submit(
        self,
        recipient: Recipient,
        priority: int,
        body: str,
        max_retries: int,
        *,
        robot_id: str | None = None,
    ) -> str:
        """Print the notification."""
        if not self.enabled:
            raise DeliveryError(
                "Console channel is disabled",
                context=ErrorContext(recipient_id=recipient.id, channel=self.method),
            )

        if self._color:
            color = "\033[31m" if priority >= HIGH_PRIORITY else "\033[33m"
            reset = "\033[0m"
        else:
            color = reset = ""

        delivery_id = generate_ulid()
        print(f"{color}[to {recipient.name}] priority={priority}{reset}")
        print(body)
        print()

        logger.debug("console_delivery", delivery_id=delivery_id, recipient_id=recipient.id)
        return delivery_id
