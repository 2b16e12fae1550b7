"""Abstract base class for executor launchers.

A launcher starts one executor process per prompt. The executor receives
its parameters as JSON on stdin (never on argv), reports progress back
through the daemon's HTTP surface, and exits. The launcher only relays
stdout/stderr into the logs and reports the exit code.
"""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from pydantic import BaseModel

from agor_orchestrator.core.exceptions import SpawnError

logger = logging.getLogger(__name__)

ExitCallback = Callable[[int | None], Awaitable[None]]


class ExecutorParams(BaseModel):
    """Task parameters handed to the executor."""

    session_id: str
    task_id: str
    prompt: str
    tool: str
    permission_mode: str
    cwd: str | None = None


class ExecutorPayload(BaseModel):
    """Document written to the executor's stdin."""

    command: str = "prompt"
    session_token: str
    daemon_url: str
    params: ExecutorParams


@dataclass
class LaunchRequest:
    """Everything a launcher needs to start one executor."""

    payload: ExecutorPayload
    env: dict[str, str] = field(default_factory=dict)
    unix_user: str | None = None
    worktree_id: str | None = None
    on_exit: ExitCallback | None = None

    @property
    def session_id(self) -> str:
        return self.payload.params.session_id

    @property
    def task_id(self) -> str:
        return self.payload.params.task_id

    @property
    def log_prefix(self) -> str:
        return f"[{self.session_id[:13]}]"


class ExecutorLauncher(ABC):
    """Starts executor subprocesses and supervises them until exit."""

    def __init__(self) -> None:
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._watchers: set[asyncio.Task[None]] = set()

    @property
    @abstractmethod
    def mode(self) -> str:
        """Launch mode name this launcher is registered under."""
        ...

    @abstractmethod
    def build_command(self, request: LaunchRequest) -> tuple[list[str], dict[str, str] | None]:
        """Command line and environment for the executor process.

        Raises:
            SpawnError: If no command can be built (missing binary, bad config)
        """
        ...

    def working_directory(self, request: LaunchRequest) -> str | None:
        return None

    @property
    def running_count(self) -> int:
        return len(self._processes)

    async def launch(self, request: LaunchRequest) -> int:
        """Start the executor and return its PID without waiting for it.

        Raises:
            SpawnError: If the process could not be created
        """
        cmd, env = self.build_command(request)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=self.working_directory(request),
                env=env,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SpawnError(
                code="EXECUTOR_SPAWN_FAILED",
                message=f"Failed to start executor: {e}",
                details={"command": cmd[0], "error": str(e)},
            )

        self._processes[request.task_id] = process
        logger.info(f"{request.log_prefix} Spawned executor pid={process.pid} ({self.mode})")

        watcher = asyncio.create_task(self._supervise(process, request))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        return process.pid

    async def _supervise(self, process: asyncio.subprocess.Process, request: LaunchRequest) -> None:
        assert process.stdin is not None
        try:
            process.stdin.write(request.payload.model_dump_json().encode())
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"{request.log_prefix} Executor closed stdin early: {e}")
        finally:
            process.stdin.close()

        await asyncio.gather(
            self._relay(process.stdout, request.log_prefix, logging.INFO),
            self._relay(process.stderr, request.log_prefix, logging.WARNING),
        )
        exit_code = await process.wait()
        self._processes.pop(request.task_id, None)

        if exit_code == 0:
            logger.info(f"{request.log_prefix} Executor completed successfully")
        else:
            logger.error(f"{request.log_prefix} Executor exited with code {exit_code}")

        if request.on_exit is not None:
            try:
                await request.on_exit(exit_code)
            except Exception as e:
                logger.exception(f"{request.log_prefix} Exit handler failed: {e}")

    async def _relay(
        self,
        stream: asyncio.StreamReader | None,
        prefix: str,
        level: int,
    ) -> None:
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.log(level, f"{prefix} {text}")

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Terminate running executors and wait for their supervisors."""
        for process in list(self._processes.values()):
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.terminate()
        if self._watchers:
            _, pending = await asyncio.wait(set(self._watchers), timeout=timeout)
            for watcher in pending:
                watcher.cancel()
