"""
对局会话数据模型
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .commitment import PlotCommitment
from .player import PlayerSlot, PlayerState
from .round_result import RoundResult


class DuelPhase(str, Enum):
    """对局阶段"""

    LOBBY = "lobby"  # 大厅（未开始）
    PLOTTING = "plotting"  # 选择密谋
    COMMITTING = "committing"  # 承诺上链（仅 backed 模式）
    REVEALING = "revealing"  # 揭示与验证
    RESOLVING = "resolving"  # 结算
    GAME_OVER = "game_over"  # 已结束


class SessionMode(str, Enum):
    """会话模式"""

    LOCAL = "local"  # 无后端持久化
    BACKED = "backed"  # 经执行后端持久化


class DuelEventType(str, Enum):
    """对外事件类型"""

    PHASE_CHANGED = "phase_changed"
    COMMITMENT_GENERATED = "commitment_generated"
    ROUND_RESOLVED = "round_resolved"
    GAME_OVER = "game_over"
    MODE_DEGRADED = "mode_degraded"


@dataclass(frozen=True)
class DuelEvent:
    """结构化对局事件"""

    seq: int
    session_id: int
    round: int
    event_type: DuelEventType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "session_id": self.session_id,
            "round": self.round,
            "event_type": self.event_type.value,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class DuelSession:
    """
    对局会话

    包含一场对局的全部可变状态，仅由会话控制器经状态机修改。
    """

    # ===== 基础信息 =====
    session_id: int
    player1: PlayerState
    player2: PlayerState
    max_rounds: int = 3
    mode: SessionMode = SessionMode.LOCAL
    phase: DuelPhase = DuelPhase.LOBBY
    round_number: int = 1

    # ===== 本回合承诺 =====
    commitments: Dict[PlayerSlot, PlotCommitment] = field(default_factory=dict)

    # ===== 历史 =====
    results: List[RoundResult] = field(default_factory=list)
    unaudited_rounds: set = field(default_factory=set)
    degraded_reason: Optional[str] = None

    # ===== 终局 =====
    winner: Optional[PlayerSlot] = None

    # ===== 事件 =====
    event_log: List[DuelEvent] = field(default_factory=list)
    event_seq: int = 0
    event_sink: Optional[Callable[[DuelEvent], None]] = field(
        default=None, repr=False, compare=False
    )

    # ===== 便捷方法 =====

    def get_player(self, slot: PlayerSlot) -> PlayerState:
        return self.player1 if slot is PlayerSlot.PLAYER1 else self.player2

    @property
    def is_backed(self) -> bool:
        return self.mode is SessionMode.BACKED

    @property
    def is_over(self) -> bool:
        return self.phase is DuelPhase.GAME_OVER

    def set_event_sink(self, sink: Optional[Callable[[DuelEvent], None]]):
        """设置事件输出回调（用于推送展示层）"""
        self.event_sink = sink

    def add_event(
        self,
        event_type: DuelEventType,
        payload: Optional[Dict[str, Any]] = None,
    ) -> DuelEvent:
        """添加结构化事件"""
        self.event_seq += 1
        event = DuelEvent(
            seq=self.event_seq,
            session_id=self.session_id,
            round=self.round_number,
            event_type=event_type,
            payload=payload or {},
        )
        self.event_log.append(event)
        if self.event_sink:
            self.event_sink(event)
        return event

    def get_event_log_since(self, since_seq: int = 0, limit: int = 100) -> List[DuelEvent]:
        """获取事件日志"""
        events = [event for event in self.event_log if event.seq > since_seq]
        return events[:limit]

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（不含秘密材料）"""
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "mode": self.mode.value,
            "round": self.round_number,
            "max_rounds": self.max_rounds,
            "player1": self.player1.to_dict(),
            "player2": self.player2.to_dict(),
            "commitments": {
                slot.value: commitment.to_public_dict()
                for slot, commitment in self.commitments.items()
            },
            "results": [result.to_dict() for result in self.results],
            "unaudited_rounds": sorted(self.unaudited_rounds),
            "winner": self.winner.value if self.winner else None,
        }
