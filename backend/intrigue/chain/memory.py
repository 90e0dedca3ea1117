"""
In-memory execution backend.

Reference implementation of the duel contract rules with per-hash
deduplication, a configurable number of pending polls and fault injection.
Used for local development, the CLI and tests.
"""
from __future__ import annotations

import copy
import hashlib
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from intrigue.duel.models.action import PlotAction
from intrigue.duel.resolution import ResolutionEngine
from intrigue.duel.rules import ResolutionRules

from .contract import (
    AccountMeta,
    SessionSnapshot,
    SignedTx,
    SimulationResult,
    SubmitReceipt,
    SubmitStatus,
    TxRequest,
    TxStatus,
    TxStatusReport,
)

logger = logging.getLogger(__name__)


class ContractError(Exception):
    """Contract-level rejection (mirrors the on-chain error codes)."""

    def __init__(self, code: str, detail: str = "") -> None:
        self.code = code
        self.detail = detail
        super().__init__(f"{code}: {detail}" if detail else code)


@dataclass
class _Game:
    player1: str
    player2: str
    player1_points: int
    player2_points: int
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

    def seat(self, player: str) -> str:
        if player == self.player1:
            return "player1"
        if player == self.player2:
            return "player2"
        raise ContractError("NotPlayer", player)


class DuelContract:
    """Contract state and rules (start/commit/verify/resolve/get)."""

    def __init__(self, rules: Optional[ResolutionRules] = None):
        self.rules = rules or ResolutionRules()
        self.engine = ResolutionEngine(rules=self.rules)
        self.games: Dict[int, _Game] = {}

    def invoke(self, method: str, args: Dict[str, Any]) -> Any:
        handler = getattr(self, f"_m_{method}", None)
        if handler is None:
            raise ContractError("UnknownMethod", method)
        try:
            return handler(**args)
        except (TypeError, ValueError) as exc:
            raise ContractError("InvalidArgument", str(exc)) from exc

    @staticmethod
    def required_auth(method: str, args: Dict[str, Any]) -> List[str]:
        if method == "start_session":
            return [args.get("player1", ""), args.get("player2", "")]
        if method in {"commit_plot", "verify_plot"}:
            return [args.get("player", "")]
        return []

    def snapshot(self, session_id: int) -> Optional[SessionSnapshot]:
        game = self.games.get(session_id)
        if game is None:
            return None
        return SessionSnapshot(session_id=session_id, **game.__dict__)

    # ===== methods =====

    def _m_start_session(
        self,
        session_id: int,
        player1: str,
        player2: str,
        player1_points: int = 1000,
        player2_points: int = 1000,
    ) -> None:
        if player1 == player2:
            raise ContractError("SamePlayer")
        existing = self.games.get(session_id)
        if existing is not None:
            if existing.player1 == player1 and existing.player2 == player2:
                return None
            raise ContractError("SessionExists", str(session_id))
        self.games[session_id] = _Game(
            player1=player1,
            player2=player2,
            player1_points=player1_points,
            player2_points=player2_points,
            player1_prestige=self.rules.initial_prestige,
            player2_prestige=self.rules.initial_prestige,
        )
        return None

    def _m_commit_plot(self, session_id: int, round: int, player: str, plot_hash: str) -> None:
        game = self._live_game(session_id)
        seat = game.seat(player)
        if round < game.round:
            return None
        if round != game.round:
            raise ContractError("RoundMismatch", f"expected {game.round}, got {round}")
        stored = getattr(game, f"{seat}_plot_hash")
        if stored is not None:
            if stored == plot_hash:
                return None
            raise ContractError("AlreadyCommitted")
        if len(bytes.fromhex(plot_hash)) != 32:
            raise ContractError("InvalidCommitment")
        setattr(game, f"{seat}_plot_hash", plot_hash)
        return None

    def _m_verify_plot(
        self,
        session_id: int,
        round: int,
        player: str,
        action_type: int,
        proof_data: str,
        target: str,
        commitment: str,
    ) -> bool:
        game = self._live_game(session_id)
        seat = game.seat(player)
        if round < game.round:
            return True
        if round != game.round:
            raise ContractError("RoundMismatch", f"expected {game.round}, got {round}")
        if action_type not in (0, 1, 2):
            raise ContractError("InvalidAction", str(action_type))
        stored = getattr(game, f"{seat}_plot_hash")
        if stored is None:
            raise ContractError("PlotNotCommitted")
        if getattr(game, f"{seat}_plot_verified"):
            if getattr(game, f"{seat}_action") == action_type:
                return True
            raise ContractError("InvalidProof", "plot already verified with another action")

        proof = bytes.fromhex(proof_data)
        nonce, encoded_action = proof[:-4], proof[-4:]
        if int.from_bytes(encoded_action, "big") != action_type:
            raise ContractError("InvalidProof", "proof action mismatch")
        recomputed = hashlib.sha256(
            bytes.fromhex(target) + nonce + bytes([action_type])
        ).hexdigest()
        if stored != commitment or recomputed != stored:
            raise ContractError("InvalidProof")

        setattr(game, f"{seat}_plot_verified", True)
        setattr(game, f"{seat}_action", action_type)
        return True

    def _m_resolve_round(self, session_id: int, round: int) -> Dict[str, Any]:
        game = self.games.get(session_id)
        if game is None:
            raise ContractError("GameNotFound", str(session_id))
        if round < game.round or (game.ended and round == game.round):
            return self.snapshot(session_id).model_dump()
        if game.ended:
            raise ContractError("GameAlreadyEnded")
        if round != game.round:
            raise ContractError("RoundMismatch", f"expected {game.round}, got {round}")
        if not (game.player1_plot_verified and game.player2_plot_verified):
            raise ContractError("BothPlayersNotReady")

        result = self.engine.resolve(
            PlotAction(game.player1_action),
            PlotAction(game.player2_action),
            damage_roll=self.rules.damage_min,
        )
        cap = self.rules.max_prestige
        game.player1_prestige = max(0, min(cap, game.player1_prestige + result.prestige_delta[0]))
        game.player2_prestige = max(0, min(cap, game.player2_prestige + result.prestige_delta[1]))

        game.player1_plot_hash = None
        game.player2_plot_hash = None
        game.player1_plot_verified = False
        game.player2_plot_verified = False
        game.player1_action = None
        game.player2_action = None

        if (
            game.round >= self.rules.max_rounds
            or game.player1_prestige == 0
            or game.player2_prestige == 0
        ):
            game.ended = True
            player1_won = game.player1_prestige > game.player2_prestige or (
                game.player1_prestige == game.player2_prestige
                and self.rules.tie_break.value == "player1"
            )
            game.winner = game.player1 if player1_won else game.player2
        else:
            game.round += 1
        return self.snapshot(session_id).model_dump()

    def _m_get_game(self, session_id: int) -> Dict[str, Any]:
        snapshot = self.snapshot(session_id)
        if snapshot is None:
            raise ContractError("GameNotFound", str(session_id))
        return snapshot.model_dump()

    def _live_game(self, session_id: int) -> _Game:
        game = self.games.get(session_id)
        if game is None:
            raise ContractError("GameNotFound", str(session_id))
        if game.ended:
            raise ContractError("GameAlreadyEnded")
        return game


@dataclass
class _Submitted:
    status: TxStatus
    return_value: Any = None
    reason: Optional[str] = None
    polls_remaining: int = 0


@dataclass
class _Fault:
    times: int
    reason: str = ""
    landed: bool = False
    source: Optional[str] = None

    def matches(self, source: str) -> bool:
        return self.source is None or self.source == source


class InMemoryBackend:
    """Execution backend kept entirely in process memory."""

    def __init__(
        self,
        rules: Optional[ResolutionRules] = None,
        pending_polls: int = 0,
        endpoint: str = "memory://duel",
    ):
        self.endpoint = endpoint
        self.contract = DuelContract(rules=rules)
        self.pending_polls = pending_polls
        self.accounts: Dict[str, int] = {}
        self.transactions: Dict[str, _Submitted] = {}
        self.calls: Counter = Counter()
        self._simulation_faults: Dict[str, List[_Fault]] = defaultdict(list)
        self._submission_faults: Dict[str, List[_Fault]] = defaultdict(list)
        self._drop_faults: Dict[str, List[_Fault]] = defaultdict(list)

    # ===== fault injection =====

    def reject_simulation(
        self,
        method: str,
        times: int = 1,
        reason: str = "injected",
        source: Optional[str] = None,
    ) -> None:
        self._simulation_faults[method].append(_Fault(times=times, reason=reason, source=source))

    def reject_submission(
        self,
        method: str,
        times: int = 1,
        reason: str = "injected",
        source: Optional[str] = None,
    ) -> None:
        self._submission_faults[method].append(_Fault(times=times, reason=reason, source=source))

    def drop_submission(
        self,
        method: str,
        times: int = 1,
        landed: bool = False,
        source: Optional[str] = None,
    ) -> None:
        """Fail the submit transport; with landed=True the request is applied anyway."""
        self._drop_faults[method].append(_Fault(times=times, landed=landed, source=source))

    # ===== ExecutionBackend =====

    async def get_account(self, identity: str) -> AccountMeta:
        self.calls["get_account"] += 1
        return AccountMeta(identity=identity, sequence=self.accounts.get(identity, 0))

    async def simulate(self, request: TxRequest) -> SimulationResult:
        method = request.call.method
        self.calls[f"simulate:{method}"] += 1
        fault = self._take_fault(self._simulation_faults, method, request.source)
        if fault is not None:
            return SimulationResult(ok=False, reason=fault.reason)

        dry_run = copy.deepcopy(self.contract)
        try:
            value = dry_run.invoke(method, request.call.args)
        except ContractError as exc:
            return SimulationResult(ok=False, reason=str(exc))
        return SimulationResult(ok=True, return_value=value, min_resource_fee=100)

    async def submit(self, signed: SignedTx) -> SubmitReceipt:
        request = signed.request
        method = request.call.method
        tx_hash = signed.tx_hash
        self.calls[f"submit:{method}"] += 1

        if tx_hash in self.transactions:
            return SubmitReceipt(hash=tx_hash, status=SubmitStatus.DUPLICATE)

        drop = self._take_fault(self._drop_faults, method, request.source)
        if drop is not None and not drop.landed:
            raise ConnectionError(f"connection reset while submitting {method}")

        fault = self._take_fault(self._submission_faults, method, request.source)
        if fault is not None:
            return SubmitReceipt(hash=tx_hash, status=SubmitStatus.ERROR, reason=fault.reason)

        rejection = self._check_envelope(signed)
        if rejection:
            return SubmitReceipt(hash=tx_hash, status=SubmitStatus.ERROR, reason=rejection)

        self.accounts[request.source] = request.sequence
        try:
            value = self.contract.invoke(method, request.call.args)
            record = _Submitted(status=TxStatus.SUCCESS, return_value=value)
        except ContractError as exc:
            record = _Submitted(status=TxStatus.FAILED, reason=str(exc))
        record.polls_remaining = self.pending_polls
        self.transactions[tx_hash] = record
        logger.debug("[MemoryBackend] %s %s -> %s", method, tx_hash[:12], record.status.value)

        if drop is not None:
            raise ConnectionError(f"connection reset after submitting {method}")
        return SubmitReceipt(hash=tx_hash, status=SubmitStatus.PENDING)

    async def poll_status(self, tx_hash: str) -> TxStatusReport:
        self.calls["poll_status"] += 1
        record = self.transactions.get(tx_hash)
        if record is None:
            return TxStatusReport(hash=tx_hash, status=TxStatus.PENDING)
        if record.polls_remaining > 0:
            record.polls_remaining -= 1
            return TxStatusReport(hash=tx_hash, status=TxStatus.PENDING)
        return TxStatusReport(
            hash=tx_hash,
            status=record.status,
            return_value=record.return_value,
            reason=record.reason,
        )

    async def fetch_session_state(self, session_id: int) -> Optional[SessionSnapshot]:
        self.calls["fetch_session_state"] += 1
        return self.contract.snapshot(session_id)

    # ===== internals =====

    def _check_envelope(self, signed: SignedTx) -> Optional[str]:
        request = signed.request
        expected = self.accounts.get(request.source, 0) + 1
        if request.sequence != expected:
            return f"bad sequence: expected {expected}, got {request.sequence}"
        required = set(request.signers) | set(
            DuelContract.required_auth(request.call.method, request.call.args)
        )
        required.add(request.source)
        missing = sorted(identity for identity in required if identity not in signed.signatures)
        if missing:
            return f"missing signatures: {', '.join(missing)}"
        return None

    @staticmethod
    def _take_fault(
        faults: Dict[str, List[_Fault]], method: str, source: str
    ) -> Optional[_Fault]:
        queue = faults.get(method)
        if not queue:
            return None
        for fault in queue:
            if fault.matches(source):
                fault.times -= 1
                if fault.times <= 0:
                    queue.remove(fault)
                return fault
        return None
