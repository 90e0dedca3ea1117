"""
对手AI

为玩家2选择密谋行动。状态机把它当作不透明的行动来源。
"""
import random
from typing import Optional

from .models.action import PlotAction
from .models.session import DuelSession
from .rules import OPPONENT_PERSONALITIES


class OpponentAI:
    """
    对手AI

    设计原则：
    - 只读取已结算回合的公开结果，从不读取本回合的承诺
    - 性格决定针对/坚持的倾向，其余情况随机
    """

    def __init__(
        self,
        personality: str = "random",
        rng: Optional[random.Random] = None,
    ):
        self.personality_name = personality
        self.personality = OPPONENT_PERSONALITIES.get(
            personality, OPPONENT_PERSONALITIES["random"]
        )
        self.rng = rng or random.Random()

    def decide_action(self, session: DuelSession) -> PlotAction:
        """
        为对手决定行动

        Args:
            session: 当前对局会话

        Returns:
            PlotAction: 选择的行动
        """
        last = session.results[-1] if session.results else None

        # 1. 针对对手上回合的行动
        if last and self._roll(self.personality.get("counter_bias", 0.0)):
            return last.player1_action.counter

        # 2. 坚持自己上回合的行动
        if last and self._roll(self.personality.get("repeat_bias", 0.0)):
            return last.player2_action

        # 3. 随机
        return self.rng.choice(list(PlotAction))

    def _roll(self, chance: float) -> bool:
        if chance <= 0:
            return False
        return self.rng.random() < chance
