"""Execution backend contract, handle and adapters."""

from .backend import BackendHandle, BackendState, ExecutionBackend
from .contract import (
    AccountMeta,
    ContractCall,
    SessionSnapshot,
    SignedTx,
    SimulationResult,
    SubmitReceipt,
    SubmitStatus,
    TxRequest,
    TxStatus,
    TxStatusReport,
)
from .jsonrpc import JsonRpcBackend
from .memory import ContractError, DuelContract, InMemoryBackend
from .signer import KeySigner

__all__ = [
    "BackendHandle",
    "BackendState",
    "ExecutionBackend",
    "AccountMeta",
    "ContractCall",
    "SessionSnapshot",
    "SignedTx",
    "SimulationResult",
    "SubmitReceipt",
    "SubmitStatus",
    "TxRequest",
    "TxStatus",
    "TxStatusReport",
    "JsonRpcBackend",
    "ContractError",
    "DuelContract",
    "InMemoryBackend",
    "KeySigner",
]
