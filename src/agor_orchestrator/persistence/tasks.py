"""Task records."""

from pathlib import Path

from agor_orchestrator.config import settings
from agor_orchestrator.core.exceptions import TaskNotFoundError
from agor_orchestrator.models.task import ACTIVE_TASK_STATUSES, Task, TaskStatus
from agor_orchestrator.persistence.records import JsonRecordStore


class TaskRepository(JsonRecordStore[Task]):
    model = Task
    id_field = "task_id"

    def __init__(self, base_dir: Path | None = None):
        super().__init__(base_dir or settings.tasks_dir)

    def _not_found(self, record_id: str) -> TaskNotFoundError:
        return TaskNotFoundError(record_id)

    async def find_by_session(
        self,
        session_id: str,
        statuses: frozenset[TaskStatus] | None = None,
    ) -> list[Task]:
        """Tasks of one session in creation order, optionally filtered by status."""
        tasks = await self.find(
            lambda task: task.session_id == session_id
            and (statuses is None or task.status in statuses)
        )
        return sorted(tasks, key=lambda task: task.created_at)

    async def find_orphaned(self) -> list[Task]:
        """Every task in a non-terminal status."""
        return await self.find(lambda task: task.status in ACTIVE_TASK_STATUSES)
