"""Generic JSON-document record store."""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from agor_orchestrator.core.exceptions import RecordNotFoundError
from agor_orchestrator.persistence.storage import (
    atomic_write,
    list_json_files,
    record_path,
    safe_delete,
    safe_read,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Returns the fields to write, or None to leave the record untouched
ChangeFn = Callable[[ModelT], dict[str, Any] | None]


class JsonRecordStore(Generic[ModelT]):
    """One JSON file per record, keyed by the model's id field.

    Read-modify-write cycles are serialized by a store-wide lock so that
    ``update`` behaves as an atomic compare-and-set within one event loop.
    Reads always go to disk; nothing is cached between calls.
    """

    model: type[ModelT]
    id_field: str

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        self._lock = asyncio.Lock()

    def _not_found(self, record_id: str) -> RecordNotFoundError:
        return RecordNotFoundError(
            code="RECORD_NOT_FOUND",
            message=f"{self.model.__name__} '{record_id}' not found",
            details={"record_id": record_id},
        )

    def _get_path(self, record_id: str) -> Path:
        return record_path(self.base_dir, record_id)

    async def _read(self, record_id: str) -> ModelT | None:
        data = await safe_read(self._get_path(record_id))
        if data is None:
            return None
        return self.model.model_validate(data)

    async def _write(self, record: ModelT) -> None:
        record_id = getattr(record, self.id_field)
        await atomic_write(self._get_path(record_id), record.model_dump(mode="json"))

    async def find_one(self, record_id: str) -> ModelT | None:
        """Load a record, or None if it does not exist."""
        return await self._read(record_id)

    async def get(self, record_id: str) -> ModelT:
        """Load a record.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        record = await self._read(record_id)
        if record is None:
            raise self._not_found(record_id)
        return record

    async def create(self, record: ModelT) -> ModelT:
        """Persist a new record."""
        async with self._lock:
            await self._write(record)
        return record

    async def update(self, record_id: str, change: ChangeFn[ModelT]) -> ModelT | None:
        """Atomically apply ``change`` to the current stored record.

        Args:
            record_id: Record to update
            change: Receives the current record, returns fields to write
                or None to skip the write

        Returns:
            The updated record, or None if ``change`` declined

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        async with self._lock:
            current = await self._read(record_id)
            if current is None:
                raise self._not_found(record_id)
            fields = change(current)
            if fields is None:
                return None
            updated = self.model.model_validate({**current.model_dump(), **fields})
            await self._write(updated)
            return updated

    async def patch(self, record_id: str, fields: dict[str, Any]) -> ModelT:
        """Unconditionally write ``fields`` into a record."""
        updated = await self.update(record_id, lambda _current: fields)
        if updated is None:
            raise self._not_found(record_id)
        return updated

    async def delete(self, record_id: str) -> bool:
        """Delete a record.

        Returns:
            True if deleted, False if it didn't exist
        """
        async with self._lock:
            return await safe_delete(self._get_path(record_id))

    async def list_all(self) -> list[ModelT]:
        """Load every record in the collection."""
        records: list[ModelT] = []
        for file_path in await list_json_files(self.base_dir):
            data = await safe_read(file_path)
            if not data:
                continue
            try:
                records.append(self.model.model_validate(data))
            except ValueError as e:
                logger.warning(f"Failed to parse {file_path}: {e}")
        return records

    async def find(self, predicate: Callable[[ModelT], bool]) -> list[ModelT]:
        """Load every record matching ``predicate``."""
        return [record for record in await self.list_all() if predicate(record)]
