"""User and worktree records.

The orchestrator reads them to resolve executor environments and working
directories. They are registered through the users and worktrees routes
(or written as ``<data_dir>/users/<user_id>.json`` and
``<data_dir>/worktrees/<worktree_id>.json`` by whatever provisions them).
"""

from pathlib import Path

from agor_orchestrator.config import settings
from agor_orchestrator.core.exceptions import WorktreeNotFoundError
from agor_orchestrator.models.user import User, Worktree
from agor_orchestrator.persistence.records import JsonRecordStore


class UserRepository(JsonRecordStore[User]):
    model = User
    id_field = "user_id"

    def __init__(self, base_dir: Path | None = None):
        super().__init__(base_dir or settings.users_dir)


class WorktreeRepository(JsonRecordStore[Worktree]):
    model = Worktree
    id_field = "worktree_id"

    def __init__(self, base_dir: Path | None = None):
        super().__init__(base_dir or settings.worktrees_dir)

    def _not_found(self, record_id: str) -> WorktreeNotFoundError:
        return WorktreeNotFoundError(record_id)
