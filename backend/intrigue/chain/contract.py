"""
Execution backend contract.

Every backend adapter normalizes its transport shape into these models; nothing
above the adapter ever probes raw response fields.
"""
from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SubmitStatus(str, Enum):
    """Result of handing a signed request to the backend."""

    PENDING = "pending"
    DUPLICATE = "duplicate"
    TRY_AGAIN_LATER = "try_again_later"
    ERROR = "error"


class TxStatus(str, Enum):
    """Terminal or non-terminal status of a submitted request."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class ContractCall(BaseModel):
    """A single contract method invocation."""

    method: str
    args: Dict[str, Any] = Field(default_factory=dict)


class TxRequest(BaseModel):
    """Unsigned request built from an account snapshot."""

    source: str
    sequence: int
    contract_id: str = ""
    network: str = ""
    call: ContractCall
    signers: List[str] = Field(default_factory=list)
    fee: int = 0
    resource_fee: int = 0
    timeout_seconds: int = 30

    def digest(self) -> bytes:
        """Canonical digest that signers sign and the backend hashes."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).digest()

    def assemble(self, simulation: "SimulationResult") -> "TxRequest":
        """Attach the resource fee reported by simulation."""
        return self.model_copy(update={"resource_fee": simulation.min_resource_fee})


class SignedTx(BaseModel):
    """Assembled request plus signatures keyed by signer identity."""

    request: TxRequest
    signatures: Dict[str, str] = Field(default_factory=dict)

    @property
    def tx_hash(self) -> str:
        return self.request.digest().hex()


class SimulationResult(BaseModel):
    ok: bool
    reason: Optional[str] = None
    return_value: Any = None
    min_resource_fee: int = 0


class SubmitReceipt(BaseModel):
    hash: str
    status: SubmitStatus
    reason: Optional[str] = None


class TxStatusReport(BaseModel):
    hash: str
    status: TxStatus
    return_value: Any = None
    reason: Optional[str] = None


class AccountMeta(BaseModel):
    identity: str
    sequence: int = 0


class SessionSnapshot(BaseModel):
    """Backend-confirmed view of a session."""

    session_id: int
    player1: str
    player2: str
    player1_prestige: int
    player2_prestige: int
    player1_plot_hash: Optional[str] = None
    player2_plot_hash: Optional[str] = None
    player1_plot_verified: bool = False
    player2_plot_verified: bool = False
    player1_action: Optional[int] = None
    player2_action: Optional[int] = None
    round: int = 1
    ended: bool = False
    winner: Optional[str] = None

    def plot_hash_of(self, identity: str) -> Optional[str]:
        if identity == self.player1:
            return self.player1_plot_hash
        if identity == self.player2:
            return self.player2_plot_hash
        return None

    def plot_verified_of(self, identity: str) -> bool:
        if identity == self.player1:
            return self.player1_plot_verified
        if identity == self.player2:
            return self.player2_plot_verified
        return False
