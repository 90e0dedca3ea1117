"""
对局错误类型
"""
from typing import Optional


class DuelError(RuntimeError):
    """Base class for duel failures."""


class CommitmentError(DuelError):
    """Raised when a commitment cannot be produced or fails local verification."""


class EntropyUnavailableError(CommitmentError):
    """Raised when no cryptographically secure random source is available."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"secure random source unavailable: {detail}")


class NonceReuseError(CommitmentError):
    """Raised when a nonce would be issued twice within the same scope."""

    def __init__(self, scope: str) -> None:
        self.scope = scope
        super().__init__(f"nonce already used in scope {scope!r}")


class CommitmentMismatchError(CommitmentError):
    """Raised when revealed material does not open the stored commitment."""

    def __init__(self, session_id: int, player_id: str) -> None:
        self.session_id = session_id
        self.player_id = player_id
        super().__init__(
            f"revealed plot does not match commitment (session={session_id}, player={player_id})"
        )


class InvalidPhaseTransitionError(DuelError):
    """Raised on an illegal state machine call. Never retried."""

    def __init__(self, operation: str, phase: str, detail: Optional[str] = None) -> None:
        self.operation = operation
        self.phase = phase
        self.detail = detail
        message = f"cannot {operation} while in phase {phase}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class BackendUnavailableError(DuelError):
    """Raised when the execution backend is not configured or unreachable."""

    def __init__(self, endpoint: str, detail: str) -> None:
        self.endpoint = endpoint
        self.detail = detail
        super().__init__(
            f"execution backend unavailable at {endpoint or '<unset>'}: {detail}"
        )


class SessionNotFoundError(DuelError, LookupError):
    """Raised when a session id is unknown to the registry."""

    def __init__(self, session_id: int) -> None:
        self.session_id = session_id
        super().__init__(f"session {session_id} not found")


class SessionExistsError(DuelError):
    """Raised when a session id is registered twice."""

    def __init__(self, session_id: int) -> None:
        self.session_id = session_id
        super().__init__(f"session {session_id} already exists")
