"""Session tokens that authorize one executor to act for one session."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from agor_orchestrator.core.exceptions import (
    InvalidTokenError,
    TokenExhaustedError,
    TokenExpiredError,
    TokenScopeError,
)

logger = logging.getLogger(__name__)

UNLIMITED_USES = -1


@dataclass
class SessionToken:
    """Issued credential. ``uses_remaining`` of -1 means unlimited."""

    token: str
    session_id: str
    user_id: str | None
    expires_at: datetime
    uses_remaining: int = UNLIMITED_USES

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class SessionTokenIssuer:
    """In-memory token map owned by the orchestrator.

    Tokens never outlive the process: a restarted daemon has no live
    executors to authorize.
    """

    def __init__(self, ttl_seconds: int = 86400, max_uses: int = UNLIMITED_USES):
        self.ttl_seconds = ttl_seconds
        self.max_uses = max_uses
        self._tokens: dict[str, SessionToken] = {}

    def generate_token(
        self,
        session_id: str,
        user_id: str | None,
        ttl_seconds: int | None = None,
        max_uses: int | None = None,
    ) -> SessionToken:
        """Mint a token for one executor invocation.

        Args:
            session_id: Session the executor acts on
            user_id: User on whose behalf the executor runs
            ttl_seconds: Lifetime override
            max_uses: Use limit override (-1 = unlimited)

        Returns:
            The issued token record
        """
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        issued = SessionToken(
            token=secrets.token_urlsafe(32),
            session_id=session_id,
            user_id=user_id,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl),
            uses_remaining=max_uses if max_uses is not None else self.max_uses,
        )
        self._tokens[issued.token] = issued
        logger.debug(f"Issued session token for {session_id} (user={user_id})")
        return issued

    def validate(self, token: str, session_id: str | None = None) -> SessionToken:
        """Check a token and consume one use.

        Args:
            token: Bearer token value
            session_id: If given, the token must be scoped to this session

        Raises:
            InvalidTokenError: Unknown or revoked token
            TokenExpiredError: Token lifetime elapsed (the token is dropped)
            TokenExhaustedError: No uses remaining
            TokenScopeError: Token belongs to another session
        """
        issued = self._tokens.get(token)
        if issued is None:
            raise InvalidTokenError()

        if issued.is_expired(datetime.now(timezone.utc)):
            self._tokens.pop(token, None)
            raise TokenExpiredError(issued.session_id)

        if session_id is not None and issued.session_id != session_id:
            raise TokenScopeError(issued.session_id, session_id)

        if issued.uses_remaining == 0:
            raise TokenExhaustedError(issued.session_id)
        if issued.uses_remaining > 0:
            issued.uses_remaining -= 1

        return issued

    def revoke_token(self, token: str) -> bool:
        """Revoke a token. Revoking an unknown token is a no-op.

        Returns:
            True if the token was live
        """
        issued = self._tokens.pop(token, None)
        if issued is not None:
            logger.debug(f"Revoked session token for {issued.session_id}")
        return issued is not None

    @property
    def active_count(self) -> int:
        return len(self._tokens)
