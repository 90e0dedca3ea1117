"""Session services: orchestration, control, registry, events and ledger."""

from .event_bus import EventBus
from .ledger import LedgerEntry, SessionLedger
from .session_controller import ReconcileReport, SessionController, new_session_id
from .session_registry import SessionRegistry
from .transaction_orchestrator import (
    OperationKey,
    OperationKind,
    OrchestratorOptions,
    TransactionOrchestrator,
    TxCall,
    TxOutcome,
    TxOutcomeStatus,
    build_orchestrator,
)

__all__ = [
    "EventBus",
    "LedgerEntry",
    "SessionLedger",
    "ReconcileReport",
    "SessionController",
    "new_session_id",
    "SessionRegistry",
    "OperationKey",
    "OperationKind",
    "OrchestratorOptions",
    "TransactionOrchestrator",
    "TxCall",
    "TxOutcome",
    "TxOutcomeStatus",
    "build_orchestrator",
]
