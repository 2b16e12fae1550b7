"""Launcher that runs a configured shell command template.

Used for containerized or remote execution (``docker run``,
``kubectl run``...). The template receives placeholders; the payload is
still written to the command's stdin.

Example:
    AGOR_EXECUTOR_LAUNCH_MODE=template
    AGOR_EXECUTOR_COMMAND_TEMPLATE="kubectl run agor-{task_id} -i --rm \\
        --image=agor-executor --overrides='...uid {unix_user_uid}...'"
"""

import logging
import os
import pwd
import re
import shlex

from agor_orchestrator.adapters.base import ExecutorLauncher, LaunchRequest
from agor_orchestrator.adapters.factory import register_launcher
from agor_orchestrator.config import Settings
from agor_orchestrator.core.exceptions import SpawnError

logger = logging.getLogger(__name__)

TEMPLATE_VARIABLES = (
    "task_id",
    "command",
    "unix_user",
    "unix_user_uid",
    "unix_user_gid",
    "session_id",
    "worktree_id",
)

_PLACEHOLDER = re.compile(r"\{(" + "|".join(TEMPLATE_VARIABLES) + r")\}")


def substitute_template_variables(template: str, variables: dict[str, object | None]) -> str:
    """Replace ``{name}`` placeholders with shell-quoted values.

    Placeholders without a value, and unknown placeholders, are left as-is.
    """

    def replace(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        if value is None:
            return match.group(0)
        return shlex.quote(str(value))

    return _PLACEHOLDER.sub(replace, template)


def unix_identity(username: str | None) -> tuple[int | None, int | None]:
    """UID and GID of a local user, or (None, None) if unknown."""
    if not username:
        return None, None
    try:
        entry = pwd.getpwnam(username)
    except KeyError:
        logger.warning(f"Unix user {username} not found, uid/gid placeholders left unset")
        return None, None
    return entry.pw_uid, entry.pw_gid


@register_launcher("template")
class TemplateLauncher(ExecutorLauncher):
    def __init__(self, config: Settings):
        super().__init__()
        self.config = config

    @property
    def mode(self) -> str:
        return "template"

    def template_variables(self, request: LaunchRequest) -> dict[str, object | None]:
        unix_user = request.unix_user or self.config.executor_unix_user
        uid, gid = unix_identity(unix_user)
        return {
            "task_id": request.task_id,
            "command": request.payload.command,
            "unix_user": unix_user,
            "unix_user_uid": uid,
            "unix_user_gid": gid,
            "session_id": request.session_id,
            "worktree_id": request.worktree_id,
        }

    def build_command(self, request: LaunchRequest) -> tuple[list[str], dict[str, str] | None]:
        template = self.config.executor_command_template
        if not template:
            raise SpawnError(
                code="EXECUTOR_TEMPLATE_MISSING",
                message="Launch mode 'template' requires executor_command_template",
            )
        command = substitute_template_variables(template, self.template_variables(request))
        logger.info(f"{request.log_prefix} Executor command: {command}")
        env = {**os.environ, **request.env, "DAEMON_URL": request.payload.daemon_url}
        return ["sh", "-c", command], env
