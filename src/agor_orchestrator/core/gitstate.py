"""Git state snapshots of a worktree."""

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


@dataclass(slots=True)
class GitSnapshot:
    ref: str = UNKNOWN
    sha: str = UNKNOWN


async def _git(cwd: str, *args: str, timeout: float = 5.0) -> str | None:
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, NotADirectoryError, PermissionError) as e:
        logger.debug(f"git {' '.join(args)} unavailable in {cwd}: {e}")
        return None

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.warning(f"git {' '.join(args)} timed out in {cwd}")
        return None

    if process.returncode != 0:
        return None
    return stdout.decode("utf-8", errors="replace").strip() or None


async def capture_git_state(path: str | None) -> GitSnapshot:
    """Read the checked-out ref and HEAD commit of ``path``.

    Any failure (no path, not a repository, git missing) yields
    ``unknown`` values instead of an error.
    """
    if not path:
        return GitSnapshot()

    sha = await _git(path, "rev-parse", "HEAD")
    ref = await _git(path, "rev-parse", "--abbrev-ref", "HEAD")
    return GitSnapshot(ref=ref or UNKNOWN, sha=sha or UNKNOWN)
