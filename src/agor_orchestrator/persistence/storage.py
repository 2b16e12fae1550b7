"""Atomic JSON file storage operations."""

import contextlib
import json
import os
import re
import uuid
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from agor_orchestrator.core.exceptions import PersistenceError

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


def record_path(base_dir: Path, record_id: str) -> Path:
    """Path of the JSON document holding one record.

    Args:
        base_dir: Directory of the record collection
        record_id: Record identifier (used as file stem)

    Returns:
        Path to ``<base_dir>/<record_id>.json``
    """
    if not _SAFE_ID.match(record_id) or record_id in {".", ".."}:
        raise PersistenceError(
            code="INVALID_RECORD_ID",
            message=f"Invalid record id: {record_id!r}",
            details={"record_id": record_id},
        )
    return base_dir / f"{record_id}.json"


async def atomic_write(path: Path, data: dict[str, Any]) -> None:
    """Write JSON data atomically using temp file + rename.

    Readers see either the previous document or the new one, never a
    partial write. The temp file lives beside the target so the rename
    stays on one filesystem.

    Args:
        path: Target file path
        data: Dictionary to serialize as JSON
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    # Unique per write so concurrent writers never share a temp file
    temp_path = path.with_name(f".{path.stem}.{uuid.uuid4().hex[:8]}.tmp")

    try:
        content = json.dumps(data, indent=2, default=str)

        async with aiofiles.open(temp_path, "w") as f:
            await f.write(content)
            await f.flush()
            os.fsync(f.fileno())

        # Atomic rename (on POSIX systems)
        await aiofiles.os.rename(temp_path, path)

    except Exception as e:
        with contextlib.suppress(FileNotFoundError):
            await aiofiles.os.remove(temp_path)

        raise PersistenceError(
            code="WRITE_FAILED",
            message=f"Failed to write {path}: {e}",
            details={"path": str(path), "error": str(e)},
        )


async def safe_read(path: Path) -> dict[str, Any] | None:
    """Read JSON data, returning None if file doesn't exist.

    Args:
        path: File path to read

    Returns:
        Parsed JSON data or None if file doesn't exist
    """
    try:
        async with aiofiles.open(path) as f:
            content = await f.read()
            data: dict[str, Any] = json.loads(content)
            return data
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        raise PersistenceError(
            code="INVALID_JSON",
            message=f"Invalid JSON in {path}: {e}",
            details={"path": str(path), "error": str(e)},
        )


async def safe_delete(path: Path) -> bool:
    """Delete a file if it exists.

    Returns:
        True if file was deleted, False if it didn't exist
    """
    try:
        await aiofiles.os.remove(path)
        return True
    except FileNotFoundError:
        return False


async def list_json_files(directory: Path) -> list[Path]:
    """List all .json files in a directory, sorted by name."""
    if not directory.exists():
        return []

    return sorted(directory / name for name in os.listdir(directory) if name.endswith(".json"))
