"""
对局规则

定义结算常量与对手性格。常量均为策略选择，可由配置覆盖。
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .models.action import PlotAction
from .models.player import PlayerSlot


# ============================================
# 规则常量
# ============================================


@dataclass(frozen=True)
class ResolutionRules:
    """结算与终局规则"""

    draw_prestige: int = 5
    failed_plot_penalty: int = 10
    damage_min: int = 15
    damage_max: int = 24
    win_prestige: Dict[PlotAction, int] = field(
        default_factory=lambda: {
            PlotAction.ASSASSINATION: 30,
            PlotAction.REBELLION: 20,
            PlotAction.BRIBERY: 15,
        }
    )
    mana_cost_per_round: int = 10
    max_rounds: int = 3
    initial_hp: int = 100
    initial_mana: int = 50
    initial_prestige: int = 50
    max_prestige: int = 100
    tie_break: PlayerSlot = PlayerSlot.PLAYER1

    def __post_init__(self):
        if self.damage_min < 0 or self.damage_min > self.damage_max:
            raise ValueError(
                f"invalid damage range [{self.damage_min}, {self.damage_max}]"
            )
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        if self.draw_prestige < 0:
            raise ValueError("draw_prestige must be non-negative")

    def prestige_for(self, action: PlotAction) -> int:
        return self.win_prestige[action]

    @classmethod
    def from_settings(cls, settings: Optional[Any] = None) -> "ResolutionRules":
        if settings is None:
            from intrigue.config import settings
        return cls(
            draw_prestige=settings.draw_prestige,
            failed_plot_penalty=settings.failed_plot_penalty,
            damage_min=settings.damage_min,
            damage_max=settings.damage_max,
            win_prestige={
                PlotAction.ASSASSINATION: settings.assassination_prestige,
                PlotAction.REBELLION: settings.rebellion_prestige,
                PlotAction.BRIBERY: settings.bribery_prestige,
            },
            mana_cost_per_round=settings.mana_cost_per_round,
            max_rounds=settings.max_rounds,
            initial_hp=settings.initial_hp,
            initial_mana=settings.initial_mana,
            initial_prestige=settings.initial_prestige,
            max_prestige=settings.max_prestige,
            tie_break=PlayerSlot(settings.tie_break),
        )


# ============================================
# 对手性格
# ============================================

OPPONENT_PERSONALITIES: Dict[str, Dict[str, Any]] = {
    "random": {
        "counter_bias": 0.0,  # 针对对手上回合行动的倾向（0-1）
        "repeat_bias": 0.0,  # 重复自己上回合行动的倾向
    },
    "cunning": {
        "counter_bias": 0.6,  # 倾向于克制对手上回合的选择
        "repeat_bias": 0.0,
    },
    "stubborn": {
        "counter_bias": 0.0,
        "repeat_bias": 0.7,  # 倾向于坚持原计划
    },
}
