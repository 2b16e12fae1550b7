"""User and worktree models consumed by the orchestrator."""

from dataclasses import dataclass

from pydantic import BaseModel, Field


class User(BaseModel):
    """Identity that submits prompts, with its executor environment."""

    user_id: str
    name: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    unix_username: str | None = None


class Worktree(BaseModel):
    """Git working directory a session is bound to."""

    worktree_id: str
    name: str = ""
    path: str


@dataclass(frozen=True)
class RequestContext:
    """Authorization identity an orchestrator operation runs under."""

    user_id: str | None = None


class WorktreeConfig(BaseModel):
    """Body of a worktree registration."""

    name: str = ""
    path: str = Field(min_length=1)


class UserConfig(BaseModel):
    """Body of a user registration."""

    name: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    unix_username: str | None = None


class UserInfo(BaseModel):
    """User for API responses; environment values are never echoed."""

    user_id: str
    name: str
    env_keys: list[str]
    unix_username: str | None = None
