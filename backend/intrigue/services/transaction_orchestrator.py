"""
Transaction Orchestrator - carries one logical session operation across the
execution backend.

Pipeline per attempt: get_account -> build -> simulate -> assemble -> sign ->
submit -> poll. Each call is classified, retried when the failure is
retryable, and cached by operation key so re-issuing is safe.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from intrigue.chain.backend import BackendHandle, ExecutionBackend
from intrigue.chain.contract import (
    ContractCall,
    SessionSnapshot,
    SignedTx,
    SubmitStatus,
    TxRequest,
    TxStatus,
)
from intrigue.chain.signer import KeySigner
from intrigue.duel.errors import BackendUnavailableError
from intrigue.duel.models.commitment import PlotCommitment

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class OperationKind(str, Enum):
    START = "start_session"
    COMMIT = "commit_plot"
    VERIFY = "verify_plot"
    RESOLVE = "resolve_round"


class TxOutcomeStatus(str, Enum):
    SUCCESS = "success"
    SIMULATION_REJECTED = "simulation_rejected"
    SUBMISSION_REJECTED = "submission_rejected"
    TIMED_OUT_PENDING = "timed_out_pending"
    SIGNED_UNCONFIRMED = "signed_unconfirmed"
    FAILED = "failed"


RETRYABLE = {
    TxOutcomeStatus.SIMULATION_REJECTED,
    TxOutcomeStatus.SUBMISSION_REJECTED,
    TxOutcomeStatus.SIGNED_UNCONFIRMED,
}
INDETERMINATE = {
    TxOutcomeStatus.TIMED_OUT_PENDING,
    TxOutcomeStatus.SIGNED_UNCONFIRMED,
}


@dataclass(frozen=True)
class OperationKey:
    """Idempotency key: one logical operation per (session, round, player, kind)."""

    session_id: int
    round_number: int
    player_id: str
    kind: OperationKind

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.session_id}:{self.round_number}:{self.player_id}"


@dataclass
class TxOutcome:
    key: OperationKey
    status: TxOutcomeStatus
    return_value: Any = None
    reason: Optional[str] = None
    tx_hash: Optional[str] = None
    attempts: int = 0
    cached: bool = False

    @property
    def is_success(self) -> bool:
        return self.status is TxOutcomeStatus.SUCCESS

    @property
    def is_indeterminate(self) -> bool:
        """Neither success nor failure: the operation may still land."""
        return self.status in INDETERMINATE

    @property
    def is_definitive(self) -> bool:
        return not self.is_indeterminate


@dataclass
class TxCall:
    """A logical operation ready to be executed."""

    key: OperationKey
    method: str
    args: Dict[str, Any]
    source: KeySigner
    cosigners: List[KeySigner] = field(default_factory=list)

    @property
    def signers(self) -> List[KeySigner]:
        seen: Dict[str, KeySigner] = {self.source.identity: self.source}
        for signer in self.cosigners:
            seen.setdefault(signer.identity, signer)
        return list(seen.values())


@dataclass
class OrchestratorOptions:
    contract_id: str = ""
    network: str = ""
    base_fee: int = 10_000_000
    tx_timeout_seconds: int = 30
    poll_interval_seconds: float = 1.0
    poll_max_attempts: int = 30
    max_attempts: int = 3
    retry_backoff_seconds: float = 0.5

    @classmethod
    def from_settings(cls, settings: Optional[Any] = None) -> "OrchestratorOptions":
        if settings is None:
            from intrigue.config import settings
        return cls(
            contract_id=settings.contract_id,
            network=settings.network_passphrase,
            base_fee=settings.base_fee,
            tx_timeout_seconds=settings.tx_timeout_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
            poll_max_attempts=settings.poll_max_attempts,
            max_attempts=settings.max_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
        )


class TransactionOrchestrator:
    """
    Executes session operations against the backend held by a BackendHandle.

    Features:
    - Bounded polling; exhaustion is reported as TIMED_OUT_PENDING
    - Bounded retries with linear backoff for rejected or unconfirmed attempts
    - Success cache keyed by OperationKey (re-issue never hits the backend)
    - Independent operations run concurrently via run_many
    """

    def __init__(
        self,
        handle: BackendHandle,
        options: Optional[OrchestratorOptions] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.handle = handle
        self.options = options or OrchestratorOptions()
        self._sleep: Sleep = sleep or asyncio.sleep
        self._completed: Dict[OperationKey, TxOutcome] = {}
        self._inflight: Dict[OperationKey, str] = {}
        self.pending_keys: Set[OperationKey] = set()

    @property
    def is_ready(self) -> bool:
        return self.handle.is_ready

    # ============================================
    # Generic execution
    # ============================================

    async def execute(self, call: TxCall) -> TxOutcome:
        """Run one logical operation to a classified outcome."""
        cached = self._completed.get(call.key)
        if cached is not None:
            logger.debug("[TxOrchestrator] %s already confirmed, reusing outcome", call.key)
            return TxOutcome(
                key=cached.key,
                status=cached.status,
                return_value=cached.return_value,
                tx_hash=cached.tx_hash,
                attempts=0,
                cached=True,
            )

        backend = self.handle.require()
        max_attempts = max(1, int(self.options.max_attempts))
        outcome: Optional[TxOutcome] = None

        for attempt in range(1, max_attempts + 1):
            outcome = await self._attempt(backend, call)
            outcome.attempts = attempt

            if outcome.is_success:
                self._completed[call.key] = outcome
                self.pending_keys.discard(call.key)
                self._inflight.pop(call.key, None)
                logger.info(
                    "[TxOrchestrator] %s confirmed (tx=%s, attempt %s/%s)",
                    call.key,
                    (outcome.tx_hash or "")[:12],
                    attempt,
                    max_attempts,
                )
                return outcome

            if outcome.status not in RETRYABLE:
                break

            logger.warning(
                "[TxOrchestrator] %s %s (attempt %s/%s): %s",
                call.key,
                outcome.status.value,
                attempt,
                max_attempts,
                outcome.reason,
            )
            if attempt < max_attempts:
                await self._sleep(self.options.retry_backoff_seconds * attempt)

        if outcome.is_indeterminate:
            self.pending_keys.add(call.key)
        else:
            self.pending_keys.discard(call.key)
        logger.warning(
            "[TxOrchestrator] %s gave up as %s: %s",
            call.key,
            outcome.status.value,
            outcome.reason,
        )
        return outcome

    async def run_many(self, calls: Sequence[TxCall]) -> List[TxOutcome]:
        """Issue independent operations concurrently and wait for all of them."""
        results = await asyncio.gather(
            *(self.execute(call) for call in calls), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    def is_confirmed(self, key: OperationKey) -> bool:
        return key in self._completed

    def clear_pending(self, key: OperationKey) -> None:
        self.pending_keys.discard(key)
        self._inflight.pop(key, None)

    def inflight_hash(self, key: OperationKey) -> Optional[str]:
        return self._inflight.get(key)

    async def fetch_session(self, session_id: int) -> Optional[SessionSnapshot]:
        """Read-only query of backend-confirmed session state."""
        backend = self.handle.require()
        return await backend.fetch_session_state(session_id)

    # ============================================
    # Session operations
    # ============================================

    async def start_session(
        self,
        session_id: int,
        player1: KeySigner,
        player2: KeySigner,
        player1_points: int = 1000,
        player2_points: int = 1000,
    ) -> TxOutcome:
        call = TxCall(
            key=OperationKey(session_id, 0, "*", OperationKind.START),
            method=OperationKind.START.value,
            args={
                "session_id": session_id,
                "player1": player1.identity,
                "player2": player2.identity,
                "player1_points": player1_points,
                "player2_points": player2_points,
            },
            source=player1,
            cosigners=[player2],
        )
        return await self.execute(call)

    def commit_call(
        self, session_id: int, round_number: int, player: KeySigner, commitment: PlotCommitment
    ) -> TxCall:
        return TxCall(
            key=OperationKey(session_id, round_number, player.identity, OperationKind.COMMIT),
            method=OperationKind.COMMIT.value,
            args={
                "session_id": session_id,
                "round": round_number,
                "player": player.identity,
                "plot_hash": commitment.digest_hex,
            },
            source=player,
        )

    def verify_call(
        self, session_id: int, round_number: int, player: KeySigner, commitment: PlotCommitment
    ) -> TxCall:
        return TxCall(
            key=OperationKey(session_id, round_number, player.identity, OperationKind.VERIFY),
            method=OperationKind.VERIFY.value,
            args={
                "session_id": session_id,
                "round": round_number,
                "player": player.identity,
                "action_type": int(commitment.action_type),
                "proof_data": commitment.proof_data.hex(),
                "target": commitment.target_hex,
                "commitment": commitment.digest_hex,
            },
            source=player,
        )

    def resolve_call(self, session_id: int, round_number: int, caller: KeySigner) -> TxCall:
        return TxCall(
            key=OperationKey(session_id, round_number, "*", OperationKind.RESOLVE),
            method=OperationKind.RESOLVE.value,
            args={"session_id": session_id, "round": round_number},
            source=caller,
        )

    async def commit_plot(
        self, session_id: int, round_number: int, player: KeySigner, commitment: PlotCommitment
    ) -> TxOutcome:
        return await self.execute(self.commit_call(session_id, round_number, player, commitment))

    async def verify_plot(
        self, session_id: int, round_number: int, player: KeySigner, commitment: PlotCommitment
    ) -> TxOutcome:
        return await self.execute(self.verify_call(session_id, round_number, player, commitment))

    async def resolve_round(
        self, session_id: int, round_number: int, caller: KeySigner
    ) -> TxOutcome:
        return await self.execute(self.resolve_call(session_id, round_number, caller))

    # ============================================
    # Internals
    # ============================================

    async def _attempt(self, backend: ExecutionBackend, call: TxCall) -> TxOutcome:
        key = call.key
        try:
            account = await backend.get_account(call.source.identity)
            request = TxRequest(
                source=call.source.identity,
                sequence=account.sequence + 1,
                contract_id=self.options.contract_id,
                network=self.options.network,
                call=ContractCall(method=call.method, args=call.args),
                signers=[signer.identity for signer in call.signers],
                fee=self.options.base_fee,
                timeout_seconds=self.options.tx_timeout_seconds,
            )
            simulation = await backend.simulate(request)
        except asyncio.CancelledError:
            raise
        except BackendUnavailableError as exc:
            # 传输层不可用：标记一次，后续会话直接以本地模式运行
            self.handle.mark_unavailable(exc.detail)
            raise
        except Exception as exc:
            return TxOutcome(
                key=key,
                status=TxOutcomeStatus.SIMULATION_REJECTED,
                reason=f"{type(exc).__name__}: {exc}",
            )

        if not simulation.ok:
            return TxOutcome(
                key=key,
                status=TxOutcomeStatus.SIMULATION_REJECTED,
                reason=simulation.reason or "simulation failed",
            )

        assembled = request.assemble(simulation)
        digest = assembled.digest()
        signed = SignedTx(
            request=assembled,
            signatures={signer.identity: signer.sign(digest) for signer in call.signers},
        )
        tx_hash = signed.tx_hash

        try:
            receipt = await backend.submit(signed)
        except asyncio.CancelledError:
            self._inflight[key] = tx_hash
            self.pending_keys.add(key)
            raise
        except Exception as exc:
            # 已签名但提交传输失败：请求可能已落地
            self._inflight[key] = tx_hash
            return TxOutcome(
                key=key,
                status=TxOutcomeStatus.SIGNED_UNCONFIRMED,
                reason=f"{type(exc).__name__}: {exc}",
                tx_hash=tx_hash,
            )

        if receipt.status in (SubmitStatus.ERROR, SubmitStatus.TRY_AGAIN_LATER):
            return TxOutcome(
                key=key,
                status=TxOutcomeStatus.SUBMISSION_REJECTED,
                reason=receipt.reason or receipt.status.value,
                tx_hash=receipt.hash,
            )

        return await self._poll(backend, key, receipt.hash)

    async def _poll(self, backend: ExecutionBackend, key: OperationKey, tx_hash: str) -> TxOutcome:
        self._inflight[key] = tx_hash
        try:
            for tick in range(self.options.poll_max_attempts):
                try:
                    report = await backend.poll_status(tx_hash)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.debug(
                        "[TxOrchestrator] poll %s failed (%s/%s): %r",
                        tx_hash[:12],
                        tick + 1,
                        self.options.poll_max_attempts,
                        exc,
                    )
                    report = None

                if report is not None and report.status is TxStatus.SUCCESS:
                    return TxOutcome(
                        key=key,
                        status=TxOutcomeStatus.SUCCESS,
                        return_value=report.return_value,
                        tx_hash=tx_hash,
                    )
                if report is not None and report.status is TxStatus.FAILED:
                    return TxOutcome(
                        key=key,
                        status=TxOutcomeStatus.FAILED,
                        reason=report.reason or "transaction failed",
                        tx_hash=tx_hash,
                    )
                if tick + 1 < self.options.poll_max_attempts:
                    await self._sleep(self.options.poll_interval_seconds)
        except asyncio.CancelledError:
            # 取消不是失败：留给调用方对账
            self.pending_keys.add(key)
            raise

        return TxOutcome(
            key=key,
            status=TxOutcomeStatus.TIMED_OUT_PENDING,
            reason=f"still pending after {self.options.poll_max_attempts} polls",
            tx_hash=tx_hash,
        )


def build_orchestrator(handle: BackendHandle, settings: Optional[Any] = None) -> TransactionOrchestrator:
    """Orchestrator configured from settings."""
    if not handle.is_ready:
        logger.info("[TxOrchestrator] backend %s; sessions run locally", handle.state.value)
    return TransactionOrchestrator(handle, OrchestratorOptions.from_settings(settings))


__all__ = [
    "OperationKey",
    "OperationKind",
    "OrchestratorOptions",
    "TransactionOrchestrator",
    "TxCall",
    "TxOutcome",
    "TxOutcomeStatus",
    "build_orchestrator",
]
