"""
Execution backend protocol and the explicit handle the orchestrator is built on.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from intrigue.duel.errors import BackendUnavailableError

from .contract import (
    AccountMeta,
    SessionSnapshot,
    SignedTx,
    SimulationResult,
    SubmitReceipt,
    TxRequest,
    TxStatusReport,
)

logger = logging.getLogger(__name__)


class ExecutionBackend(Protocol):
    """Submit/query primitives consumed from the execution backend."""

    endpoint: str

    async def simulate(self, request: TxRequest) -> SimulationResult:
        ...

    async def submit(self, signed: SignedTx) -> SubmitReceipt:
        ...

    async def poll_status(self, tx_hash: str) -> TxStatusReport:
        ...

    async def get_account(self, identity: str) -> AccountMeta:
        ...

    async def fetch_session_state(self, session_id: int) -> Optional[SessionSnapshot]:
        ...


class BackendState(str, Enum):
    UNCONFIGURED = "unconfigured"
    READY = "ready"
    UNAVAILABLE = "unavailable"


@dataclass
class BackendHandle:
    """
    Explicit backend value passed into the orchestrator.

    Replaces a lazily-initialised module-wide client: callers can always tell
    whether the backend is usable without touching the network.
    """

    backend: Optional[ExecutionBackend] = None
    state: BackendState = BackendState.UNCONFIGURED
    detail: str = ""

    @classmethod
    def ready(cls, backend: ExecutionBackend) -> "BackendHandle":
        return cls(backend=backend, state=BackendState.READY)

    @classmethod
    def unconfigured(cls, detail: str = "no backend configured") -> "BackendHandle":
        return cls(state=BackendState.UNCONFIGURED, detail=detail)

    @property
    def is_ready(self) -> bool:
        return self.state is BackendState.READY and self.backend is not None

    @property
    def endpoint(self) -> str:
        return getattr(self.backend, "endpoint", "") if self.backend else ""

    def require(self) -> ExecutionBackend:
        if not self.is_ready:
            raise BackendUnavailableError(self.endpoint, self.detail or self.state.value)
        return self.backend

    def mark_unavailable(self, detail: str) -> None:
        if self.state is not BackendState.UNAVAILABLE:
            logger.warning(
                "[Backend] %s marked unavailable: %s",
                self.endpoint or "<unset>",
                detail,
            )
        self.state = BackendState.UNAVAILABLE
        self.detail = detail
