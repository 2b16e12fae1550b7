"""Per-session prompt queue coordinator."""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable

from agor_orchestrator.core.background import BackgroundWorkPool
from agor_orchestrator.core.events import EventBus
from agor_orchestrator.core.exceptions import QueuedMessageNotFoundError
from agor_orchestrator.models.events import (
    QueueMessageAdded,
    QueueMessagePromoted,
    QueueMessageRemoved,
)
from agor_orchestrator.models.prompt import PromptResult
from agor_orchestrator.models.queue import (
    QueuedMessage,
    QueuedMessageMetadata,
    QueuedMessageStatus,
)
from agor_orchestrator.models.session import SessionStatus
from agor_orchestrator.models.user import RequestContext
from agor_orchestrator.persistence.queue import MessageQueueRepository
from agor_orchestrator.persistence.sessions import SessionRepository
from agor_orchestrator.persistence.users import UserRepository

logger = logging.getLogger(__name__)

# Runs a promoted message; returns None if the session was claimed meanwhile
QueuedPromptRunner = Callable[[QueuedMessage, RequestContext], Awaitable[PromptResult | None]]


class QueueCoordinator:
    """Drains each session queue in FIFO order, one prompt at a time.

    A drain is only ever started by ``trigger``, which the session state
    machine calls after writing ``idle, ready_for_prompt=true``. Drains run
    on the background pool and never raise into the triggering operation.
    """

    def __init__(
        self,
        queue: MessageQueueRepository,
        sessions: SessionRepository,
        users: UserRepository,
        bus: EventBus,
        pool: BackgroundWorkPool,
    ):
        self.queue = queue
        self.sessions = sessions
        self.users = users
        self.bus = bus
        self.pool = pool
        self._runner: QueuedPromptRunner | None = None
        self._drain_locks: dict[str, asyncio.Lock] = {}

    def set_runner(self, runner: QueuedPromptRunner) -> None:
        self._runner = runner

    def _drain_lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._drain_locks:
            self._drain_locks[session_id] = asyncio.Lock()
        return self._drain_locks[session_id]

    async def enqueue(
        self,
        session_id: str,
        prompt: str,
        context: RequestContext,
        permission_mode: str | None = None,
    ) -> QueuedMessage:
        """Append a prompt to the session queue.

        If the session is already idle the queue is drained right away, so
        a prompt queued against an idle session is never stranded.
        """
        session = await self.sessions.get(session_id)
        message = await self.queue.enqueue(
            message_id=f"msg_{uuid.uuid4().hex[:12]}",
            session_id=session_id,
            prompt=prompt,
            metadata=QueuedMessageMetadata(
                queued_by_user_id=context.user_id,
                permission_mode=permission_mode,
            ),
        )
        self.bus.publish(
            QueueMessageAdded(
                session_id=session_id,
                message_id=message.message_id,
                queue_position=message.queue_position,
            )
        )
        logger.info(
            f"Queued prompt {message.message_id} for session {session_id} "
            f"at position {message.queue_position}"
        )

        refreshed = await self.sessions.find_one(session.session_id)
        if refreshed is not None and refreshed.status == SessionStatus.IDLE:
            if refreshed.ready_for_prompt:
                self.trigger(session_id, context)
        return message

    async def list_messages(self, session_id: str) -> list[QueuedMessage]:
        """Queued prompts of a session in execution order."""
        await self.sessions.get(session_id)
        return await self.queue.list_for_session(session_id)

    async def cancel(self, session_id: str, message_id: str) -> None:
        """Remove a queued prompt before it runs.

        Raises:
            QueuedMessageNotFoundError: If the message is not queued for this session
        """
        message = await self.queue.find_one(message_id)
        if message is None or message.session_id != session_id:
            raise QueuedMessageNotFoundError(message_id)
        if not await self.queue.delete(message_id):
            raise QueuedMessageNotFoundError(message_id)

        self.bus.publish(QueueMessageRemoved(session_id=session_id, message_id=message_id))
        logger.info(f"Cancelled queued prompt {message_id} of session {session_id}")

    def trigger(self, session_id: str, context: RequestContext) -> None:
        """Schedule a drain of one message and return immediately."""
        self.pool.spawn(
            self.process_next(session_id, context),
            name=f"queue-drain-{session_id}",
        )

    async def process_next(
        self,
        session_id: str,
        context: RequestContext,
    ) -> PromptResult | None:
        """Promote the oldest queued prompt of an idle session.

        Args:
            session_id: Session whose queue to drain
            context: Identity of whatever triggered the drain, used only when
                the original submitter no longer resolves

        Returns:
            The submission result, or None when nothing was promoted
        """
        try:
            async with self._drain_lock(session_id):
                return await self._process_next(session_id, context)
        except Exception as e:
            logger.exception(f"Queue drain for session {session_id} failed: {e}")
            return None

    async def _process_next(
        self,
        session_id: str,
        context: RequestContext,
    ) -> PromptResult | None:
        session = await self.sessions.find_one(session_id)
        if session is None or session.status != SessionStatus.IDLE:
            logger.debug(f"Session {session_id} not idle, skipping queue drain")
            return None

        message = await self.queue.oldest_for_session(session_id)
        if message is None:
            return None

        identity = await self._resolve_identity(message, context)

        current = await self.queue.find_one(message.message_id)
        if current is None or current.status != QueuedMessageStatus.QUEUED:
            logger.debug(f"Queued prompt {message.message_id} vanished before promotion")
            return None

        if not await self.queue.delete(message.message_id):
            return None

        if self._runner is None:
            raise RuntimeError("QueueCoordinator has no prompt runner")
        result = await self._runner(current, identity)
        if result is None or result.task_id is None:
            return result

        self.bus.publish(
            QueueMessagePromoted(
                session_id=session_id,
                message_id=message.message_id,
                task_id=result.task_id,
            )
        )
        logger.info(
            f"Promoted queued prompt {message.message_id} to task {result.task_id} "
            f"(user={identity.user_id})"
        )
        return result

    async def _resolve_identity(
        self,
        message: QueuedMessage,
        fallback: RequestContext,
    ) -> RequestContext:
        user_id = message.metadata.queued_by_user_id
        if user_id is None:
            return fallback
        user = await self.users.find_one(user_id)
        if user is None:
            logger.warning(
                f"User {user_id} who queued {message.message_id} no longer exists, "
                f"running as {fallback.user_id}"
            )
            return fallback
        return RequestContext(user_id=user.user_id)

    async def resume_pending(self, context: RequestContext | None = None) -> list[str]:
        """Trigger every idle session that still has queued prompts.

        Returns:
            IDs of the triggered sessions
        """
        pending = {message.session_id for message in await self.queue.list_all()}
        triggered: list[str] = []
        for session_id in sorted(pending):
            session = await self.sessions.find_one(session_id)
            if session is None:
                continue
            if session.status == SessionStatus.IDLE and session.ready_for_prompt:
                self.trigger(session_id, context or RequestContext())
                triggered.append(session_id)
        if triggered:
            logger.info(f"Resumed queue drain for {len(triggered)} session(s)")
        return triggered
