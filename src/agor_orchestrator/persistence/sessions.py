"""Session records."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from agor_orchestrator.config import settings
from agor_orchestrator.core.exceptions import SessionNotFoundError
from agor_orchestrator.models.session import Session, SessionStatus
from agor_orchestrator.persistence.records import ChangeFn, JsonRecordStore

logger = logging.getLogger(__name__)


class SessionRepository(JsonRecordStore[Session]):
    """Stores sessions, stamping ``last_updated`` on every write."""

    model = Session
    id_field = "session_id"

    def __init__(self, base_dir: Path | None = None):
        super().__init__(base_dir or settings.sessions_dir)

    def _not_found(self, record_id: str) -> SessionNotFoundError:
        return SessionNotFoundError(record_id)

    async def update(self, record_id: str, change: ChangeFn[Session]) -> Session | None:
        def stamped(current: Session) -> dict[str, Any] | None:
            fields = change(current)
            if fields is None:
                return None
            return {**fields, "last_updated": datetime.now(timezone.utc)}

        return await super().update(record_id, stamped)

    async def find_by_status(self, *statuses: SessionStatus) -> list[Session]:
        """Sessions whose status is one of ``statuses``."""
        wanted = set(statuses)
        return await self.find(lambda session: session.status in wanted)
