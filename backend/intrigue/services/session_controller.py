"""
Session Controller - 会话控制器

协调状态机、交易编排器、事件总线与账本：
- backed 模式下把需要持久化的阶段经编排器提交到执行后端
- 后端失败时降级为本地模式，本回合记为未审计
- 未决/被取消的提交在下次使用前对账
"""
from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from intrigue.chain.contract import SessionSnapshot
from intrigue.chain.signer import KeySigner
from intrigue.duel.commitment import CommitmentScheme
from intrigue.duel.errors import BackendUnavailableError, InvalidPhaseTransitionError
from intrigue.duel.models.action import PlotAction
from intrigue.duel.models.commitment import PlotCommitment
from intrigue.duel.models.player import PlayerSlot, PlayerState
from intrigue.duel.models.round_result import RoundResult
from intrigue.duel.models.session import DuelEvent, DuelPhase, DuelSession, SessionMode
from intrigue.duel.opponent import OpponentAI
from intrigue.duel.resolution import ResolutionEngine
from intrigue.duel.rules import ResolutionRules
from intrigue.duel.state_machine import DuelStateMachine
from intrigue.services.event_bus import EventBus
from intrigue.services.ledger import LedgerEntry, SessionLedger
from intrigue.services.transaction_orchestrator import (
    TransactionOrchestrator,
    TxCall,
    TxOutcome,
)

logger = logging.getLogger(__name__)

SLOTS = (PlayerSlot.PLAYER1, PlayerSlot.PLAYER2)
SnapshotCheck = Callable[[SessionSnapshot], bool]


def new_session_id() -> int:
    """随机 u32 会话ID（与合约的会话ID类型一致）"""
    return secrets.randbelow(2**31 - 1) + 1


@dataclass
class ReconcileReport:
    """对账结果"""

    session_id: int
    snapshot: Optional[SessionSnapshot] = None
    divergences: List[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def consistent(self) -> bool:
        return not self.divergences

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "snapshot": self.snapshot.model_dump() if self.snapshot else None,
            "divergences": list(self.divergences),
            "skipped": self.skipped,
        }


class SessionController:
    """
    会话控制器

    一个控制器拥有一个 DuelSession。所有对外操作持有同一把 asyncio.Lock，
    同一时刻只有一个阶段转换在进行。
    """

    def __init__(
        self,
        session: DuelSession,
        signers: Dict[PlayerSlot, KeySigner],
        orchestrator: Optional[TransactionOrchestrator] = None,
        rules: Optional[ResolutionRules] = None,
        scheme: Optional[CommitmentScheme] = None,
        engine: Optional[ResolutionEngine] = None,
        opponent: Optional[OpponentAI] = None,
        event_bus: Optional[EventBus] = None,
        ledger: Optional[SessionLedger] = None,
    ):
        self.session = session
        self.signers = signers
        self.orchestrator = orchestrator
        self.rules = rules or (engine.rules if engine else ResolutionRules())
        self.machine = DuelStateMachine(
            session,
            scheme=scheme,
            engine=engine or ResolutionEngine(rules=self.rules),
            rules=self.rules,
        )
        self.opponent = opponent or OpponentAI()
        self.event_bus = event_bus or EventBus()
        self.ledger = ledger or SessionLedger(session.session_id)
        self.backend_session_id = session.session_id
        self.needs_reconcile = False
        self._lock = asyncio.Lock()
        self._outbox: List[DuelEvent] = []
        self._round_tx: Dict[int, Dict[str, str]] = {}
        # 后端验证失败、尚未在后端结算的回合（回合号, 揭示材料）
        self._unsettled: Optional[Tuple[int, Dict[PlayerSlot, PlotCommitment]]] = None
        self.final_report: Optional[ReconcileReport] = None
        session.set_event_sink(self._outbox.append)

    @classmethod
    def create(
        cls,
        session_id: Optional[int] = None,
        player1_name: str = "Player",
        player2_name: str = "Rival",
        orchestrator: Optional[TransactionOrchestrator] = None,
        rules: Optional[ResolutionRules] = None,
        signers: Optional[Dict[PlayerSlot, KeySigner]] = None,
        opponent: Optional[OpponentAI] = None,
        event_bus: Optional[EventBus] = None,
        scheme: Optional[CommitmentScheme] = None,
        engine: Optional[ResolutionEngine] = None,
    ) -> "SessionController":
        """创建新会话及其控制器"""
        rules = rules or (engine.rules if engine else ResolutionRules())
        if signers is None:
            signers = {slot: KeySigner.generate() for slot in SLOTS}
        if signers[PlayerSlot.PLAYER1].identity == signers[PlayerSlot.PLAYER2].identity:
            raise ValueError("players must use distinct identities")

        def _player(slot: PlayerSlot, name: str) -> PlayerState:
            return PlayerState.initial(
                identity=signers[slot].identity,
                name=name,
                hp=rules.initial_hp,
                mana=rules.initial_mana,
                prestige=rules.initial_prestige,
                max_prestige=rules.max_prestige,
            )

        session = DuelSession(
            session_id=session_id if session_id is not None else new_session_id(),
            player1=_player(PlayerSlot.PLAYER1, player1_name),
            player2=_player(PlayerSlot.PLAYER2, player2_name),
            max_rounds=rules.max_rounds,
        )
        return cls(
            session,
            signers=signers,
            orchestrator=orchestrator,
            rules=rules,
            scheme=scheme,
            engine=engine,
            opponent=opponent,
            event_bus=event_bus,
        )

    @property
    def session_id(self) -> int:
        return self.session.session_id

    # ============================================
    # 对外操作
    # ============================================

    async def start(self) -> DuelSession:
        """LOBBY -> PLOTTING；backed 模式下在后端创建对局"""
        async with self._lock:
            backed = self.orchestrator is not None and self.orchestrator.is_ready
            self.machine.start(SessionMode.BACKED if backed else SessionMode.LOCAL)
            await self._flush()

            if backed:
                outcome = await self._execute_one(
                    lambda orch: orch.start_session(
                        self.backend_session_id,
                        self.signers[PlayerSlot.PLAYER1],
                        self.signers[PlayerSlot.PLAYER2],
                    )
                )
                self._remember_tx(1, "start", outcome)
                if not await self._settle(outcome, self._session_exists()):
                    self.machine.degrade_to_local(
                        f"session could not be started on backend: {self._reason(outcome)}"
                    )
                await self._flush()

            logger.info(
                "[SessionController] session=%s started in %s mode (%s vs %s)",
                self.session_id,
                self.session.mode.value,
                self.session.player1.name,
                self.session.player2.name,
            )
            return self.session

    async def play_round(
        self,
        player1_action: Optional[Any] = None,
        player2_action: Optional[Any] = None,
        damage_roll: Optional[int] = None,
    ) -> RoundResult:
        """
        推进一回合直到结算完成

        按当前阶段继续执行，因此被取消的回合可以用同一调用恢复
        （此时行动参数被忽略）。

        Args:
            player1_action: 玩家1行动（PLOTTING 阶段必填）
            player2_action: 玩家2行动，缺省时由对手AI决定
            damage_roll: 显式伤害点数

        Returns:
            RoundResult: 本回合结果
        """
        async with self._lock:
            try:
                if self.needs_reconcile:
                    await self._reconcile_locked()
                return await self._advance_round(player1_action, player2_action, damage_roll)
            except asyncio.CancelledError:
                self.needs_reconcile = True
                logger.warning(
                    "[SessionController] session=%s round=%s cancelled in phase %s; reconcile pending",
                    self.session_id,
                    self.session.round_number,
                    self.session.phase.value,
                )
                raise
            finally:
                await self._flush()

    async def reconcile(self) -> ReconcileReport:
        """查询后端确认状态并与本地镜像比较"""
        async with self._lock:
            return await self._reconcile_locked()

    async def restart(self) -> DuelSession:
        """GAME_OVER -> LOBBY；后端对局ID换新，账本清空"""
        async with self._lock:
            self.machine.restart()
            self.machine.scheme.forget_scope(str(self.session_id))
            self.ledger.clear()
            self._round_tx.clear()
            self._unsettled = None
            self.final_report = None
            self.backend_session_id = new_session_id()
            await self._flush()
            return self.session

    def state(self) -> Dict[str, Any]:
        """会话公开状态（不含秘密材料）"""
        data = self.session.to_dict()
        data["needs_reconcile"] = self.needs_reconcile
        data["degraded_reason"] = self.session.degraded_reason
        data["ledger"] = [entry.model_dump(mode="json") for entry in self.ledger.entries()]
        return data

    # ============================================
    # 回合推进
    # ============================================

    async def _advance_round(
        self,
        player1_action: Optional[Any],
        player2_action: Optional[Any],
        damage_roll: Optional[int],
    ) -> RoundResult:
        session = self.session
        if session.phase is DuelPhase.PLOTTING:
            if player1_action is None:
                raise InvalidPhaseTransitionError(
                    "play round", session.phase.value, "player1 action is required"
                )
            action1 = PlotAction.parse(player1_action)
            if player2_action is None:
                action2 = self.opponent.decide_action(session)
            else:
                action2 = PlotAction.parse(player2_action)
            self.machine.submit_plots(action1, action2)
            await self._flush()

        if session.phase is DuelPhase.COMMITTING:
            await self._commit_plots()
            await self._flush()

        if session.phase is DuelPhase.REVEALING:
            await self._verify_plots()
            self.machine.resolve(damage_roll)
            await self._flush()

        if session.phase is DuelPhase.RESOLVING:
            return await self._finish_round()

        raise InvalidPhaseTransitionError("play round", session.phase.value)

    async def _commit_plots(self) -> None:
        session = self.session
        if session.is_backed and self._unsettled is not None:
            await self._settle_held_round()
        if not session.is_backed:
            self.machine.confirm_commitments(all_recorded=True)
            return

        round_number = session.round_number
        outcomes = await self._execute_many(
            lambda orch: [
                orch.commit_call(
                    self.backend_session_id,
                    round_number,
                    self.signers[slot],
                    session.commitments[slot],
                )
                for slot in SLOTS
            ]
        )

        recorded = True
        for slot, outcome in zip(SLOTS, outcomes):
            self._remember_tx(round_number, f"commit:{slot.value}", outcome)
            landed = self._plot_committed(round_number, slot, session.commitments[slot])
            if not await self._settle(outcome, landed):
                logger.warning(
                    "[SessionController] session=%s round=%s commit for %s not recorded: %s",
                    self.session_id,
                    round_number,
                    slot.value,
                    self._reason(outcome),
                )
                recorded = False
        self.machine.confirm_commitments(all_recorded=recorded)

    async def _verify_plots(self) -> None:
        session = self.session
        revealed = self.machine.reveal()
        if not session.is_backed:
            return

        round_number = session.round_number
        verified = await self._verify_on_backend(round_number, revealed, record=True)
        failures = [f"{slot.value}: {reason}" for slot, reason in verified.items() if reason]
        if failures:
            # 只影响本回合：后端结算推迟到下一回合提交承诺之前
            self._unsettled = (round_number, dict(revealed))
            logger.warning(
                "[SessionController] session=%s round=%s plot verification failed (%s); "
                "backend resolution held back",
                self.session_id,
                round_number,
                "; ".join(failures),
            )

    async def _verify_on_backend(
        self,
        round_number: int,
        revealed: Dict[PlayerSlot, PlotCommitment],
        record: bool = False,
    ) -> Dict[PlayerSlot, Optional[str]]:
        """提交双方揭示材料，返回每个席位的失败原因（成功为 None）"""
        outcomes = await self._execute_many(
            lambda orch: [
                orch.verify_call(
                    self.backend_session_id, round_number, self.signers[slot], revealed[slot]
                )
                for slot in SLOTS
            ]
        )

        reasons: Dict[PlayerSlot, Optional[str]] = {}
        for slot, outcome in zip(SLOTS, outcomes):
            self._remember_tx(round_number, f"verify:{slot.value}", outcome)
            verified = await self._settle(outcome, self._plot_verified(round_number, slot))
            if record:
                self.machine.record_verification(slot, verified)
            reasons[slot] = None if verified else self._reason(outcome)
        return reasons

    async def _resolve_on_backend(self, round_number: int) -> Optional[str]:
        """在后端结算回合，返回失败原因（成功为 None）"""
        outcome = await self._execute_one(
            lambda orch: orch.resolve_round(
                self.backend_session_id, round_number, self.signers[PlayerSlot.PLAYER1]
            )
        )
        self._remember_tx(round_number, "resolve", outcome)
        if await self._settle(outcome, self._round_resolved(round_number)):
            return None
        return self._reason(outcome)

    async def _settle_held_round(self) -> None:
        """
        补做上一回合的后端验证与结算

        合约在结算前不接受下一回合的承诺，补做失败则本局余下回合降级为本地模式。
        """
        round_number, revealed = self._unsettled
        reasons = await self._verify_on_backend(round_number, revealed)
        failures = [f"{slot.value}: {reason}" for slot, reason in reasons.items() if reason]
        if not failures:
            reason = await self._resolve_on_backend(round_number)
            self._attach_late_hashes(round_number)
            if reason is None:
                self._unsettled = None
                logger.info(
                    "[SessionController] session=%s round=%s settled on backend late",
                    self.session_id,
                    round_number,
                )
                return
            failures.append(f"resolve: {reason}")
        self._unsettled = None
        self._attach_late_hashes(round_number)
        self.machine.degrade_to_local(
            f"round {round_number} could not be settled on backend ({'; '.join(failures)})"
        )

    def _attach_late_hashes(self, round_number: int) -> None:
        late = self._round_tx.pop(round_number, {})
        entry = self.ledger.get(round_number)
        if entry is not None and late:
            entry.tx_hashes.update(late)

    async def _finish_round(self) -> RoundResult:
        session = self.session
        round_number = session.round_number
        commitments = dict(session.commitments)
        held_back = self._unsettled is not None and self._unsettled[0] == round_number

        if session.is_backed and not held_back:
            reason = await self._resolve_on_backend(round_number)
            if reason is not None:
                self.machine.degrade_to_local(f"round could not be resolved on backend: {reason}")

        audited = session.is_backed and round_number not in session.unaudited_rounds
        result = self.machine.apply_result()
        self._record_ledger(round_number, commitments, result, audited)
        if session.is_over:
            logger.info(
                "[SessionController] session=%s over, winner=%s (unaudited rounds: %s)",
                self.session_id,
                session.winner.value if session.winner else None,
                sorted(session.unaudited_rounds) or "none",
            )
            if session.is_backed:
                await self._check_final_state()
        return result

    async def _check_final_state(self) -> None:
        # 后端只跟踪声望：本地因生命归零结束时后端对局仍未结束
        report = await self._reconcile_locked()
        if not report.consistent:
            logger.warning(
                "[SessionController] session=%s ended locally but backend state differs: %s",
                self.session_id,
                "; ".join(report.divergences),
            )
        self.final_report = report

    def _record_ledger(
        self,
        round_number: int,
        commitments: Dict[PlayerSlot, PlotCommitment],
        result: RoundResult,
        audited: bool,
    ) -> None:
        def _digest(slot: PlayerSlot) -> Optional[str]:
            commitment = commitments.get(slot)
            return commitment.digest_hex if commitment else None

        self.ledger.record(
            LedgerEntry(
                session_id=self.session_id,
                round_number=round_number,
                player1_digest=_digest(PlayerSlot.PLAYER1),
                player2_digest=_digest(PlayerSlot.PLAYER2),
                player1_action=result.player1_action.name.lower(),
                player2_action=result.player2_action.name.lower(),
                result=result.to_dict(),
                tx_hashes=self._round_tx.pop(round_number, {}),
                audited=audited,
            )
        )

    # ============================================
    # 后端交互
    # ============================================

    async def _execute_one(
        self, build: Callable[[TransactionOrchestrator], Any]
    ) -> Optional[TxOutcome]:
        try:
            return await build(self.orchestrator)
        except BackendUnavailableError as exc:
            logger.warning("[SessionController] session=%s %s", self.session_id, exc)
            return None

    async def _execute_many(
        self, build: Callable[[TransactionOrchestrator], List[TxCall]]
    ) -> List[Optional[TxOutcome]]:
        calls = build(self.orchestrator)
        try:
            return await self.orchestrator.run_many(calls)
        except BackendUnavailableError as exc:
            logger.warning("[SessionController] session=%s %s", self.session_id, exc)
            return [None] * len(calls)

    async def _settle(self, outcome: Optional[TxOutcome], landed: SnapshotCheck) -> bool:
        """
        判定一次提交是否已被后端确认

        成功直接确认；未决结果立即查询一次后端状态，查询不到落地则视为失败
        并留待对账。
        """
        if outcome is None:
            return False
        if outcome.is_success:
            return True
        if not outcome.is_indeterminate:
            return False

        snapshot = await self._query_snapshot()
        if snapshot is not None and landed(snapshot):
            self.orchestrator.clear_pending(outcome.key)
            logger.info(
                "[SessionController] session=%s %s confirmed by state query",
                self.session_id,
                outcome.key,
            )
            return True
        self.needs_reconcile = True
        return False

    async def _query_snapshot(self) -> Optional[SessionSnapshot]:
        try:
            return await self.orchestrator.fetch_session(self.backend_session_id)
        except asyncio.CancelledError:
            raise
        except BackendUnavailableError as exc:
            logger.warning("[SessionController] session=%s state query failed: %s", self.session_id, exc)
            return None

    async def _reconcile_locked(self) -> ReconcileReport:
        session = self.session
        report = ReconcileReport(session_id=self.session_id)
        if not session.is_backed or self.orchestrator is None:
            report.skipped = True
            self.needs_reconcile = False
            return report

        snapshot = await self._query_snapshot()
        report.snapshot = snapshot
        if snapshot is None:
            report.divergences.append("session missing on backend")
        else:
            mirror = {
                "player1_prestige": session.player1.prestige,
                "player2_prestige": session.player2.prestige,
                "round": session.round_number,
                "ended": session.is_over,
            }
            for name, local_value in mirror.items():
                remote_value = getattr(snapshot, name)
                if remote_value != local_value:
                    report.divergences.append(f"{name}: local={local_value} backend={remote_value}")

        for divergence in report.divergences:
            logger.warning(
                "[SessionController] session=%s diverges from backend: %s",
                self.session_id,
                divergence,
            )
        if report.consistent:
            for key in list(self.orchestrator.pending_keys):
                if key.session_id == self.backend_session_id:
                    self.orchestrator.clear_pending(key)
        self.needs_reconcile = False
        return report

    def _session_exists(self) -> SnapshotCheck:
        player1 = self.session.player1.identity
        player2 = self.session.player2.identity
        return lambda snap: snap.player1 == player1 and snap.player2 == player2

    def _plot_committed(
        self, round_number: int, slot: PlayerSlot, commitment: PlotCommitment
    ) -> SnapshotCheck:
        identity = self.session.get_player(slot).identity
        return lambda snap: snap.round > round_number or (
            snap.round == round_number and snap.plot_hash_of(identity) == commitment.digest_hex
        )

    def _plot_verified(self, round_number: int, slot: PlayerSlot) -> SnapshotCheck:
        identity = self.session.get_player(slot).identity
        return lambda snap: snap.round > round_number or (
            snap.round == round_number and snap.plot_verified_of(identity)
        )

    def _round_resolved(self, round_number: int) -> SnapshotCheck:
        return lambda snap: snap.round > round_number or (snap.round == round_number and snap.ended)

    # ============================================
    # 私有方法
    # ============================================

    def _remember_tx(self, round_number: int, name: str, outcome: Optional[TxOutcome]) -> None:
        if outcome is not None and outcome.tx_hash:
            self._round_tx.setdefault(round_number, {})[name] = outcome.tx_hash

    @staticmethod
    def _reason(outcome: Optional[TxOutcome]) -> str:
        if outcome is None:
            return "backend unavailable"
        return f"{outcome.status.value} ({outcome.reason or 'no detail'})"

    async def _flush(self) -> None:
        while self._outbox:
            events = list(self._outbox)
            self._outbox.clear()
            await self.event_bus.publish_many(events)
