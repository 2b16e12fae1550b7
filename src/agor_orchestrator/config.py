"""Application configuration using Pydantic Settings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AGOR_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Server settings
    host: str = "127.0.0.1"
    port: int = 3030
    debug: bool = False
    log_level: str = "INFO"

    # URL executors use to reach this daemon (override for containers/k8s)
    daemon_url: str | None = None

    # Persistence
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".agor")

    # Executor launching
    executor_path: Path | None = None
    executor_launch_mode: str = Field(default="local", pattern="^(local|template)$")
    executor_command_template: str | None = None
    executor_unix_user: str | None = None

    # Session tokens
    token_ttl_seconds: int = Field(default=86400, ge=30)
    token_max_uses: int = Field(default=-1, ge=-1)

    # Stop protocol
    stop_ack_timeout_seconds: float = Field(default=5.0, gt=0, le=120.0)
    stop_confirm_timeout_seconds: float = Field(default=30.0, gt=0, le=600.0)

    # Message bus
    event_queue_max_size: int = Field(default=1000, ge=10)

    # Pricing table: "tool:model:input_per_1m:output_per_1m,..." (wildcards allowed)
    model_pricing: str = ""

    @property
    def effective_daemon_url(self) -> str:
        """URL passed to executors in their payload."""
        return self.daemon_url or f"http://localhost:{self.port}"

    @property
    def sessions_dir(self) -> Path:
        """Directory for session records."""
        return self.data_dir / "sessions"

    @property
    def tasks_dir(self) -> Path:
        """Directory for task records."""
        return self.data_dir / "tasks"

    @property
    def queue_dir(self) -> Path:
        """Directory for queued prompt records."""
        return self.data_dir / "queue"

    @property
    def users_dir(self) -> Path:
        """Directory for user records (identity + executor environment)."""
        return self.data_dir / "users"

    @property
    def worktrees_dir(self) -> Path:
        """Directory for worktree records."""
        return self.data_dir / "worktrees"

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        for directory in (
            self.sessions_dir,
            self.tasks_dir,
            self.queue_dir,
            self.users_dir,
            self.worktrees_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
