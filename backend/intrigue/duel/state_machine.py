"""
对局状态机

LOBBY -> PLOTTING -> COMMITTING -> REVEALING -> RESOLVING -> (PLOTTING | GAME_OVER)

COMMITTING 仅在 backed 模式存在。状态机同步执行、不可重入；
需要后端持久化的步骤由会话控制器在两次调用之间完成。
"""
import contextlib
import logging
from typing import Dict, Optional

from .commitment import CommitmentScheme
from .errors import CommitmentMismatchError, InvalidPhaseTransitionError
from .models.action import PlotAction
from .models.commitment import PlotCommitment
from .models.player import PlayerSlot
from .models.round_result import RoundResult
from .models.session import DuelEventType, DuelPhase, DuelSession, SessionMode
from .resolution import ResolutionEngine
from .rules import ResolutionRules

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    DuelPhase.LOBBY: {DuelPhase.PLOTTING},
    DuelPhase.PLOTTING: {DuelPhase.COMMITTING, DuelPhase.REVEALING},
    DuelPhase.COMMITTING: {DuelPhase.REVEALING},
    DuelPhase.REVEALING: {DuelPhase.RESOLVING},
    DuelPhase.RESOLVING: {DuelPhase.PLOTTING, DuelPhase.GAME_OVER},
    DuelPhase.GAME_OVER: {DuelPhase.LOBBY},
}


class DuelStateMachine:
    """
    对局状态机

    职责：
    - 校验阶段转换
    - 生成并本地校验承诺
    - 调用结算引擎并应用结果（钳制）
    - 判定终局
    """

    def __init__(
        self,
        session: DuelSession,
        scheme: Optional[CommitmentScheme] = None,
        engine: Optional[ResolutionEngine] = None,
        rules: Optional[ResolutionRules] = None,
    ):
        self.session = session
        self.rules = rules or (engine.rules if engine else ResolutionRules())
        self.scheme = scheme or CommitmentScheme()
        self.engine = engine or ResolutionEngine(rules=self.rules)
        self._busy = False
        self._revealed = False
        self._pending_result: Optional[RoundResult] = None
        self._verification: Dict[PlayerSlot, bool] = {}

    @property
    def phase(self) -> DuelPhase:
        return self.session.phase

    @property
    def pending_result(self) -> Optional[RoundResult]:
        return self._pending_result

    # ============================================
    # 阶段操作
    # ============================================

    def start(self, mode: Optional[SessionMode] = None) -> None:
        """LOBBY -> PLOTTING：重置双方属性，回合归 1"""
        with self._step("start", DuelPhase.LOBBY):
            session = self.session
            rules = self.rules
            if mode is not None:
                session.mode = mode
            session.max_rounds = rules.max_rounds
            session.round_number = 1
            session.commitments.clear()
            session.results.clear()
            session.unaudited_rounds.clear()
            session.degraded_reason = None
            session.winner = None
            for player in (session.player1, session.player2):
                player.max_prestige = rules.max_prestige
                player.reset(rules.initial_hp, rules.initial_mana, rules.initial_prestige)
            self._reset_round()
            self._transition(DuelPhase.PLOTTING)

    def submit_plots(
        self,
        player1_action: Optional[PlotAction],
        player2_action: Optional[PlotAction],
    ) -> Dict[PlayerSlot, PlotCommitment]:
        """PLOTTING -> COMMITTING（backed）或 REVEALING（local）"""
        with self._step("submit plots", DuelPhase.PLOTTING):
            if player1_action is None or player2_action is None:
                raise InvalidPhaseTransitionError(
                    "submit plots", self.phase.value, "both players must choose an action"
                )
            session = self.session
            actions = {
                PlayerSlot.PLAYER1: PlotAction.parse(player1_action),
                PlayerSlot.PLAYER2: PlotAction.parse(player2_action),
            }

            commitments: Dict[PlayerSlot, PlotCommitment] = {}
            for slot, action in actions.items():
                target = session.get_player(slot.other).identity
                commitments[slot] = self.scheme.commit(
                    target, action, scope=str(session.session_id)
                )

            for slot, action in actions.items():
                session.get_player(slot).pending_action = action
                session.commitments[slot] = commitments[slot]
                session.add_event(
                    DuelEventType.COMMITMENT_GENERATED,
                    {"player": slot.value, **commitments[slot].to_public_dict()},
                )

            if session.is_backed:
                self._transition(DuelPhase.COMMITTING)
            else:
                self._transition(DuelPhase.REVEALING)
            return commitments

    def confirm_commitments(self, all_recorded: bool = True) -> None:
        """COMMITTING -> REVEALING；任一承诺未能记录时降级为本地模式"""
        with self._step("confirm commitments", DuelPhase.COMMITTING):
            if not all_recorded:
                self.degrade_to_local("commitment could not be recorded")
            self._transition(DuelPhase.REVEALING)

    def reveal(self) -> Dict[PlayerSlot, PlotCommitment]:
        """
        揭示：本地校验双方承诺，返回揭示材料（阶段保持 REVEALING）

        本地校验失败意味着秘密材料被篡改，属于 CommitmentError。
        """
        with self._step("reveal", DuelPhase.REVEALING):
            session = self.session
            if len(session.commitments) != 2:
                raise InvalidPhaseTransitionError(
                    "reveal", self.phase.value, "both commitments are required"
                )
            for slot, commitment in session.commitments.items():
                action = session.get_player(slot).pending_action
                if action is None or not self.scheme.verify(
                    commitment, action, commitment.secret_nonce, commitment.target_tag
                ):
                    raise CommitmentMismatchError(session.session_id, slot.value)
            self._revealed = True
            return dict(session.commitments)

    def record_verification(self, slot: PlayerSlot, verified: bool) -> None:
        """记录后端验证结果；失败只影响本回合的审计状态"""
        with self._step("record verification", DuelPhase.REVEALING):
            self._verification[slot] = verified
            if not verified:
                self.mark_unaudited(f"backend verification failed for {slot.value}")

    def resolve(self, damage_roll: Optional[int] = None) -> RoundResult:
        """REVEALING -> RESOLVING：计算结果（尚不修改玩家状态）"""
        with self._step("resolve", DuelPhase.REVEALING):
            if not self._revealed:
                raise InvalidPhaseTransitionError(
                    "resolve", self.phase.value, "plots have not been revealed"
                )
            session = self.session
            # 本地已知行动为准
            result = self.engine.resolve(
                session.player1.pending_action,
                session.player2.pending_action,
                damage_roll=damage_roll,
            )
            self._pending_result = result
            self._transition(DuelPhase.RESOLVING)
            return result

    def apply_result(self) -> RoundResult:
        """RESOLVING -> PLOTTING | GAME_OVER：应用结果并判定终局"""
        with self._step("apply result", DuelPhase.RESOLVING):
            result = self._pending_result
            if result is None:
                raise InvalidPhaseTransitionError(
                    "apply result", self.phase.value, "no pending result"
                )
            session = self.session
            cost = self.rules.mana_cost_per_round
            session.player1.apply(result.prestige_delta[0], result.hp_damage[0], cost)
            session.player2.apply(result.prestige_delta[1], result.hp_damage[1], cost)
            session.results.append(result)
            session.add_event(
                DuelEventType.ROUND_RESOLVED,
                {
                    "result": result.to_dict(),
                    "player1": session.player1.to_dict(),
                    "player2": session.player2.to_dict(),
                    "audited": session.is_backed
                    and session.round_number not in session.unaudited_rounds,
                },
            )
            logger.info(
                "[Duel] session=%s round=%s %s (prestige %s/%s, hp %s/%s)",
                session.session_id,
                session.round_number,
                result.summary(),
                session.player1.prestige,
                session.player2.prestige,
                session.player1.hp,
                session.player2.hp,
            )

            if self._is_terminal():
                session.winner = self._decide_winner()
                self._transition(DuelPhase.GAME_OVER)
                session.add_event(
                    DuelEventType.GAME_OVER,
                    {
                        "winner": session.winner.value,
                        "player1": session.player1.to_dict(),
                        "player2": session.player2.to_dict(),
                    },
                )
            else:
                session.round_number += 1
                self._reset_round()
                self._transition(DuelPhase.PLOTTING)
            return result

    def restart(self) -> None:
        """GAME_OVER -> LOBBY"""
        with self._step("restart", DuelPhase.GAME_OVER):
            self._reset_round()
            self._transition(DuelPhase.LOBBY)

    # ============================================
    # 模式与审计
    # ============================================

    def degrade_to_local(self, reason: str) -> bool:
        """
        在本局剩余时间内降级为本地模式

        Returns:
            bool: 本次调用是否发生了降级
        """
        session = self.session
        self.mark_unaudited(reason)
        if session.mode is SessionMode.LOCAL:
            return False
        session.mode = SessionMode.LOCAL
        session.degraded_reason = reason
        logger.warning(
            "[Duel] session=%s degraded to local mode at round %s: %s",
            session.session_id,
            session.round_number,
            reason,
        )
        session.add_event(DuelEventType.MODE_DEGRADED, {"reason": reason})
        return True

    def mark_unaudited(self, reason: str) -> None:
        session = self.session
        if session.phase in (DuelPhase.LOBBY, DuelPhase.GAME_OVER):
            return
        if session.round_number not in session.unaudited_rounds:
            logger.info(
                "[Duel] session=%s round=%s unaudited: %s",
                session.session_id,
                session.round_number,
                reason,
            )
        session.unaudited_rounds.add(session.round_number)

    # ============================================
    # 私有方法
    # ============================================

    @contextlib.contextmanager
    def _step(self, operation: str, required: DuelPhase):
        if self._busy:
            raise InvalidPhaseTransitionError(
                operation, self.phase.value, "another transition is in flight"
            )
        if self.phase is not required:
            raise InvalidPhaseTransitionError(operation, self.phase.value)
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def _transition(self, target: DuelPhase) -> None:
        current = self.session.phase
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidPhaseTransitionError(f"enter {target.value}", current.value)
        self.session.phase = target
        self.session.add_event(
            DuelEventType.PHASE_CHANGED,
            {"from": current.value, "to": target.value, "mode": self.session.mode.value},
        )

    def _reset_round(self) -> None:
        self.session.commitments.clear()
        self.session.player1.pending_action = None
        self.session.player2.pending_action = None
        self._revealed = False
        self._pending_result = None
        self._verification = {}

    def _is_terminal(self) -> bool:
        session = self.session
        if session.round_number >= session.max_rounds:
            return True
        return session.player1.is_defeated or session.player2.is_defeated

    def _decide_winner(self) -> PlayerSlot:
        p1 = self.session.player1.prestige
        p2 = self.session.player2.prestige
        if p1 > p2:
            return PlayerSlot.PLAYER1
        if p2 > p1:
            return PlayerSlot.PLAYER2
        return self.rules.tie_break
