"""
玩家状态数据模型
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .action import PlotAction


class PlayerSlot(str, Enum):
    """对局席位"""

    PLAYER1 = "player1"
    PLAYER2 = "player2"

    @property
    def other(self) -> "PlayerSlot":
        return PlayerSlot.PLAYER2 if self is PlayerSlot.PLAYER1 else PlayerSlot.PLAYER1


def _clamp(value: int, upper: int) -> int:
    return max(0, min(upper, value))


@dataclass
class PlayerState:
    """
    玩家状态

    仅由状态机在应用结算结果时修改，所有数值钳制在 [0, max]。
    """

    # ===== 基础信息 =====
    identity: str  # 签名身份（地址）
    name: str  # 显示名称

    # ===== 属性 =====
    hp: int
    max_hp: int
    mana: int
    max_mana: int
    prestige: int
    max_prestige: int

    # ===== 本回合 =====
    pending_action: Optional[PlotAction] = None

    @classmethod
    def initial(
        cls,
        identity: str,
        name: str,
        hp: int = 100,
        mana: int = 50,
        prestige: int = 50,
        max_prestige: int = 100,
    ) -> "PlayerState":
        return cls(
            identity=identity,
            name=name,
            hp=hp,
            max_hp=hp,
            mana=mana,
            max_mana=mana,
            prestige=prestige,
            max_prestige=max_prestige,
        )

    def reset(self, hp: int, mana: int, prestige: int) -> None:
        """重置为开局属性"""
        self.max_hp = max(self.max_hp, hp)
        self.max_mana = max(self.max_mana, mana)
        self.hp = _clamp(hp, self.max_hp)
        self.mana = _clamp(mana, self.max_mana)
        self.prestige = _clamp(prestige, self.max_prestige)
        self.pending_action = None

    def apply(self, prestige_delta: int, damage: int, mana_cost: int = 0) -> None:
        """应用结算结果（钳制）"""
        self.prestige = _clamp(self.prestige + prestige_delta, self.max_prestige)
        self.hp = _clamp(self.hp - damage, self.max_hp)
        self.mana = _clamp(self.mana - mana_cost, self.max_mana)

    @property
    def is_defeated(self) -> bool:
        return self.hp <= 0 or self.prestige <= 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "name": self.name,
            "hp": self.hp,
            "max_hp": self.max_hp,
            "mana": self.mana,
            "max_mana": self.max_mana,
            "prestige": self.prestige,
            "max_prestige": self.max_prestige,
        }
