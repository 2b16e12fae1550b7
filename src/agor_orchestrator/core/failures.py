"""Executor failure classification.

Decides whether a failed task left the session's SDK resume handle
unusable. A structured ``error_kind`` reported by the executor wins; the
text patterns are a best-effort fallback and can misclassify configuration
errors as stale-session errors.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from agor_orchestrator.models.session import Session

STALE_RESUME_MAX_AGE = timedelta(hours=24)

_STALE_SESSION_PATTERNS: tuple[str, ...] = (
    "no conversation found",
    "conversation not found",
    "session not found",
    "thread not found",
    "invalid session id",
    "could not resume",
    "failed to resume",
    "resume session",
)
_CONFIGURATION_PATTERNS: tuple[str, ...] = (
    "invalid api key",
    "api key not found",
    "unauthorized",
    "authentication",
    "permission denied",
    "command not found",
    "enoent",
)


class FailureKind(str, Enum):
    """Coarse classes of executor failures."""

    STALE_SESSION = "stale_session"
    CONFIGURATION = "configuration"
    EXECUTION = "execution"


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    kind: FailureKind
    matched_rule: str
    matched_pattern: str | None = None

    @property
    def clears_resume_handle(self) -> bool:
        """Configuration failures keep the handle; it resumes once fixed."""
        return self.kind == FailureKind.STALE_SESSION


def classify_executor_failure(
    error_message: str | None,
    error_kind: str | None = None,
) -> FailureClassification:
    """Classify a failure reported by an executor."""
    if error_kind:
        try:
            return FailureClassification(kind=FailureKind(error_kind), matched_rule="error_kind")
        except ValueError:
            pass

    haystack = (error_message or "").lower()

    # Configuration patterns take precedence over stale-session patterns
    pattern = _first_match(haystack, _CONFIGURATION_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            kind=FailureKind.CONFIGURATION,
            matched_rule="configuration",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _STALE_SESSION_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            kind=FailureKind.STALE_SESSION,
            matched_rule="stale_session",
            matched_pattern=pattern,
        )

    return FailureClassification(kind=FailureKind.EXECUTION, matched_rule="fallback")


def is_resume_likely_stale(session: Session, now: datetime | None = None) -> bool:
    """Whether resuming the session's SDK conversation is unlikely to work.

    A resume handle is treated as stale when the session has not been
    updated for a day, or when the session has no worktree to resume in.
    """
    if not session.sdk_session_id:
        return False
    if not session.worktree_id:
        return True
    now = now or datetime.now(timezone.utc)
    return now - session.last_updated > STALE_RESUME_MAX_AGE


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
