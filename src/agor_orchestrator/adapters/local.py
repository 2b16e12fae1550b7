"""Local subprocess launcher, optionally impersonating a Unix user."""

import logging
import os
import shutil
from pathlib import Path

from agor_orchestrator.adapters.base import ExecutorLauncher, LaunchRequest
from agor_orchestrator.adapters.factory import register_launcher
from agor_orchestrator.config import Settings
from agor_orchestrator.core.exceptions import ExecutorNotFoundError

logger = logging.getLogger(__name__)

EXECUTOR_BINARY = "agor-executor"

# Variables forwarded when running as another user; everything else is dropped
ESSENTIAL_ENV_KEYS = (
    "PATH",
    "HOME",
    "LANG",
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "GOOGLE_API_KEY",
    "GEMINI_API_KEY",
)

_SCRIPT_INTERPRETERS = {".js": "node", ".mjs": "node", ".py": "python3"}


def find_executor_path(explicit: Path | None = None) -> Path:
    """Locate the executor binary.

    Searches the configured path, then ``PATH``, then the usual install
    locations.

    Raises:
        ExecutorNotFoundError: Listing every location tried
    """
    candidates: list[Path] = []
    if explicit is not None:
        candidates.append(Path(explicit).expanduser())
    else:
        which = shutil.which(EXECUTOR_BINARY)
        if which is not None:
            candidates.append(Path(which))
        candidates.extend(
            [
                Path.home() / ".agor" / "bin" / EXECUTOR_BINARY,
                Path("/usr/local/bin") / EXECUTOR_BINARY,
                Path("/usr/local/lib/agor/executor/cli.js"),
            ]
        )

    for candidate in candidates:
        if candidate.is_file():
            return candidate

    searched = [str(path) for path in candidates] or [f"{EXECUTOR_BINARY} on PATH"]
    raise ExecutorNotFoundError(searched)


def executor_argv(executor_path: Path) -> list[str]:
    interpreter = _SCRIPT_INTERPRETERS.get(executor_path.suffix)
    if interpreter is not None:
        return [interpreter, str(executor_path), "--stdin"]
    return [str(executor_path), "--stdin"]


@register_launcher("local")
class LocalLauncher(ExecutorLauncher):
    """Runs the executor as a child process of the daemon.

    With a Unix user the command is wrapped in ``sudo -n -u <user>`` and
    only the essential environment plus the per-user variables are passed
    along.
    """

    def __init__(self, config: Settings):
        super().__init__()
        self.config = config

    @property
    def mode(self) -> str:
        return "local"

    def build_command(self, request: LaunchRequest) -> tuple[list[str], dict[str, str] | None]:
        executor_path = find_executor_path(self.config.executor_path)
        argv = executor_argv(executor_path)
        daemon_url = request.payload.daemon_url
        unix_user = request.unix_user or self.config.executor_unix_user

        if not unix_user:
            env = {**os.environ, **request.env, "DAEMON_URL": daemon_url}
            return argv, env

        essential = {key: os.environ[key] for key in ESSENTIAL_ENV_KEYS if key in os.environ}
        essential.setdefault("PATH", "/usr/local/bin:/usr/bin:/bin")
        passed = {**essential, **request.env, "DAEMON_URL": daemon_url}
        logger.info(
            f"{request.log_prefix} Spawning executor as {unix_user} "
            f"(env: {', '.join(sorted(passed))})"
        )
        # Values travel in the environment, only names appear on argv
        preserve = ",".join(sorted(passed))
        return ["sudo", "-n", "-u", unix_user, f"--preserve-env={preserve}", *argv], passed

    def working_directory(self, request: LaunchRequest) -> str | None:
        cwd = request.payload.params.cwd
        if cwd and Path(cwd).is_dir():
            return cwd
        return None
