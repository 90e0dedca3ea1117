"""
FastAPI dependencies.
"""
import logging
from functools import lru_cache
from typing import Any, Optional

from intrigue.chain.backend import BackendHandle
from intrigue.chain.jsonrpc import JsonRpcBackend
from intrigue.chain.memory import InMemoryBackend
from intrigue.duel.rules import ResolutionRules
from intrigue.services.event_bus import EventBus
from intrigue.services.session_registry import SessionRegistry
from intrigue.services.transaction_orchestrator import build_orchestrator

logger = logging.getLogger(__name__)


def build_backend_handle(settings: Optional[Any] = None) -> BackendHandle:
    """Backend handle selected by DUEL_BACKEND."""
    if settings is None:
        from intrigue.config import settings

    kind = settings.backend_kind
    if kind == "auto":
        kind = "jsonrpc" if settings.backend_rpc_url and settings.contract_id else "memory"

    if kind == "none":
        return BackendHandle.unconfigured("DUEL_BACKEND=none")
    if kind == "memory":
        return BackendHandle.ready(InMemoryBackend(rules=ResolutionRules.from_settings(settings)))
    if not settings.backend_rpc_url or not settings.contract_id:
        return BackendHandle.unconfigured("BACKEND_RPC_URL / DUEL_CONTRACT_ID not set")
    return BackendHandle.ready(
        JsonRpcBackend(
            settings.backend_rpc_url,
            timeout_seconds=settings.backend_request_timeout_seconds,
        )
    )


@lru_cache()
def get_event_bus() -> EventBus:
    return EventBus()


@lru_cache()
def get_registry() -> SessionRegistry:
    from intrigue.config import settings

    handle = build_backend_handle(settings)
    logger.info("[Dependencies] execution backend %s (%s)", handle.state.value, handle.endpoint or handle.detail)
    return SessionRegistry(
        orchestrator=build_orchestrator(handle, settings),
        rules=ResolutionRules.from_settings(settings),
        event_bus=get_event_bus(),
        enforce_unique_nonces=settings.enforce_unique_nonces,
    )
