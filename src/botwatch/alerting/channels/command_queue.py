"""
Robot command queue delivery channel.

Notifications reach operators as private WeChat messages sent by a robot.
This channel does not talk to WeChat; it enqueues a ``send_private_message``
row into ``robot_commands`` and the robot worker picks it up, honouring
``priority`` and retrying up to ``max_retries`` times on its own.
"""

from __future__ import annotations

import asyncio
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from botwatch.alerting.channels.base import BaseChannel
from botwatch.alerting.models import Recipient
from botwatch.core.errors import DeliveryError, ErrorContext
from botwatch.core.logging import get_logger
from botwatch.core.orm.session import botwatch_session_factory
from botwatch.core.orm.tables import RobotCommandTable
from botwatch.core.timestamps import Clock, generate_ulid, utc_now

logger = get_logger(__name__)

SEND_PRIVATE_MESSAGE = "send_private_message"
# Private text message type understood by the robot worker
PRIVATE_TEXT_MESSAGE = 203


class CommandQueueChannel(BaseChannel):
    """
    Enqueues robot commands that deliver the message.

    Args:
        engine: Engine bound to the database holding ``robot_commands``
        default_robot_id: Sending robot when the caller does not name one
        clock: Timestamp source for ``created_at``
    """

    def __init__(
        self,
        engine: Engine,
        *,
        default_robot_id: str | None = None,
        clock: Clock = utc_now,
        **kwargs: Any,
    ):
        super().__init__("robot_command", **kwargs)
        self._session_factory = botwatch_session_factory(engine)
        self._default_robot_id = default_robot_id
        self._clock = clock

    def _enqueue(self, robot_id: str, recipient: Recipient, priority: int, body: str, max_retries: int) -> str:
        command_id = generate_ulid()
        with self._session_factory.begin() as session:
            session.add(
                RobotCommandTable(
                    id=command_id,
                    robot_id=robot_id,
                    command_type=SEND_PRIVATE_MESSAGE,
                    payload={
                        "list": [
                            {
                                "type": PRIVATE_TEXT_MESSAGE,
                                "titleList": [recipient.name],
                                "receivedContent": body,
                            }
                        ]
                    },
                    priority=priority,
                    max_retries=max_retries,
                    retry_count=0,
                    status="pending",
                    created_at=self._clock(),
                )
            )
        return command_id

    async def submit(
        self,
        recipient: Recipient,
        priority: int,
        body: str,
        max_retries: int,
        *,
        robot_id: str | None = None,
    ) -> str:
        context = ErrorContext(recipient_id=recipient.id, channel=self.method)
        if not self.enabled:
            raise DeliveryError("Command queue channel is disabled", context=context)

        sender = robot_id or self._default_robot_id
        if sender is None:
            raise DeliveryError("No robot available to send the message", context=context)

        try:
            command_id = await asyncio.to_thread(self._enqueue, sender, recipient, priority, body, max_retries)
        except SQLAlchemyError as e:
            raise DeliveryError(f"Failed to enqueue robot command: {e}", context=context, cause=e) from e

        logger.info(
            "robot_command_enqueued",
            command_id=command_id,
            robot_id=sender,
            recipient_id=recipient.id,
            priority=priority,
        )
        return command_id
