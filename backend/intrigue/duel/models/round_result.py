"""
回合结算结果数据模型
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple

from .action import PlotAction


class RoundWinner(str, Enum):
    """回合胜者"""

    NONE = "none"  # 平局
    PLAYER1 = "player1"
    PLAYER2 = "player2"


@dataclass(frozen=True)
class RoundResult:
    """
    回合结算结果

    只由两个揭示后的行动推导，与身份、历史无关。
    """

    player1_action: PlotAction
    player2_action: PlotAction
    winner: RoundWinner
    prestige_delta: Tuple[int, int]  # (p1, p2)
    hp_damage: Tuple[int, int]  # (p1, p2)

    @property
    def is_draw(self) -> bool:
        return self.winner is RoundWinner.NONE

    def summary(self) -> str:
        """简短描述（日志用）"""
        p1 = self.player1_action.display_name
        p2 = self.player2_action.display_name
        if self.is_draw:
            return f"Draw: both plotted {p1}"
        if self.winner is RoundWinner.PLAYER1:
            return f"{p1} beats {p2}: player1 prevails"
        return f"{p2} beats {p1}: player2 prevails"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player1_action": int(self.player1_action),
            "player2_action": int(self.player2_action),
            "winner": self.winner.value,
            "prestige_delta": list(self.prestige_delta),
            "hp_damage": list(self.hp_damage),
        }
