"""
回合结算引擎

纯函数：两个揭示后的行动 -> RoundResult。不修改玩家状态。
"""
from typing import Optional

from .dice import DamageRoller, clamp_roll, roll_damage
from .models.action import PlotAction
from .models.round_result import RoundResult, RoundWinner
from .rules import ResolutionRules


class ResolutionEngine:
    """
    结算引擎

    伤害是唯一的非确定来源：通过构造参数注入骰子，或在 resolve 中直接给出点数。
    """

    def __init__(
        self,
        rules: Optional[ResolutionRules] = None,
        roller: Optional[DamageRoller] = None,
    ):
        self.rules = rules or ResolutionRules()
        self.roller: DamageRoller = roller or roll_damage

    def resolve(
        self,
        a1: PlotAction,
        a2: PlotAction,
        damage_roll: Optional[int] = None,
    ) -> RoundResult:
        """
        结算一回合

        Args:
            a1: 玩家1行动
            a2: 玩家2行动
            damage_roll: 显式伤害点数（钳制到配置区间），为 None 时投骰

        Returns:
            RoundResult: 结算结果
        """
        a1 = PlotAction.parse(a1)
        a2 = PlotAction.parse(a2)
        rules = self.rules

        if a1 is a2:
            return RoundResult(
                player1_action=a1,
                player2_action=a2,
                winner=RoundWinner.NONE,
                prestige_delta=(rules.draw_prestige, rules.draw_prestige),
                hp_damage=(0, 0),
            )

        damage = self._damage(damage_roll)
        if a1.beats(a2):
            return RoundResult(
                player1_action=a1,
                player2_action=a2,
                winner=RoundWinner.PLAYER1,
                prestige_delta=(rules.prestige_for(a1), -rules.failed_plot_penalty),
                hp_damage=(0, damage),
            )

        return RoundResult(
            player1_action=a1,
            player2_action=a2,
            winner=RoundWinner.PLAYER2,
            prestige_delta=(-rules.failed_plot_penalty, rules.prestige_for(a2)),
            hp_damage=(damage, 0),
        )

    def _damage(self, damage_roll: Optional[int]) -> int:
        low, high = self.rules.damage_min, self.rules.damage_max
        if damage_roll is not None:
            return clamp_roll(damage_roll, low, high)
        return clamp_roll(self.roller(low, high), low, high)


def resolve(
    a1: PlotAction,
    a2: PlotAction,
    damage_roll: Optional[int] = None,
    rules: Optional[ResolutionRules] = None,
) -> RoundResult:
    """便捷函数：使用默认规则结算"""
    return ResolutionEngine(rules=rules).resolve(a1, a2, damage_roll=damage_roll)
