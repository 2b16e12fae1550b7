"""Queued prompt records."""

import logging
from pathlib import Path

from agor_orchestrator.config import settings
from agor_orchestrator.core.exceptions import QueuedMessageNotFoundError
from agor_orchestrator.models.queue import (
    QueuedMessage,
    QueuedMessageMetadata,
    QueuedMessageStatus,
)
from agor_orchestrator.persistence.records import JsonRecordStore

logger = logging.getLogger(__name__)


class MessageQueueRepository(JsonRecordStore[QueuedMessage]):
    """Stores queued prompts.

    Positions are monotonic per session: a new message always gets one more
    than the highest position ever handed out for that session in this
    process, or than the highest still stored after a restart.
    """

    model = QueuedMessage
    id_field = "message_id"

    def __init__(self, base_dir: Path | None = None):
        super().__init__(base_dir or settings.queue_dir)
        self._last_position: dict[str, int] = {}

    def _not_found(self, record_id: str) -> QueuedMessageNotFoundError:
        return QueuedMessageNotFoundError(record_id)

    async def list_for_session(self, session_id: str) -> list[QueuedMessage]:
        """Queued messages of a session ordered by position."""
        messages = await self.find(
            lambda message: message.session_id == session_id
            and message.status == QueuedMessageStatus.QUEUED
        )
        return sorted(messages, key=lambda message: message.queue_position)

    async def oldest_for_session(self, session_id: str) -> QueuedMessage | None:
        messages = await self.list_for_session(session_id)
        return messages[0] if messages else None

    async def enqueue(
        self,
        message_id: str,
        session_id: str,
        prompt: str,
        metadata: QueuedMessageMetadata,
    ) -> QueuedMessage:
        """Store a prompt at the next position of its session's queue."""
        async with self._lock:
            stored = [
                message.queue_position
                for message in await self.list_all()
                if message.session_id == session_id
            ]
            position = max([self._last_position.get(session_id, 0), *stored]) + 1
            self._last_position[session_id] = position
            message = QueuedMessage(
                message_id=message_id,
                session_id=session_id,
                prompt=prompt,
                queue_position=position,
                metadata=metadata,
            )
            await self._write(message)

        logger.debug(f"Queued message {message_id} at position {position} for {session_id}")
        return message
