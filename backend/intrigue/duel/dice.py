"""
伤害骰

结算中唯一的随机来源，需要完全确定性的调用方应注入自己的骰子。
"""
import random
from typing import Callable, Optional

DamageRoller = Callable[[int, int], int]


def roll_damage(low: int, high: int) -> int:
    """投掷 [low, high] 区间内的伤害"""
    return random.randint(low, high)


def seeded_roller(seed: int) -> DamageRoller:
    """可复现的伤害骰（测试与回放用）"""
    rng = random.Random(seed)

    def _roll(low: int, high: int) -> int:
        return rng.randint(low, high)

    return _roll


def fixed_roller(value: int) -> DamageRoller:
    """固定点数的伤害骰（超出区间时钳制）"""

    def _roll(low: int, high: int) -> int:
        return clamp_roll(value, low, high)

    return _roll


def clamp_roll(value: Optional[int], low: int, high: int) -> int:
    if value is None:
        return low
    return max(low, min(high, int(value)))
