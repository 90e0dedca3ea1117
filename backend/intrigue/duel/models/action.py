"""
密谋行动数据模型
"""
from enum import IntEnum


class PlotAction(IntEnum):
    """密谋行动（数值即链上编码）"""

    ASSASSINATION = 0  # 刺杀
    BRIBERY = 1  # 贿赂
    REBELLION = 2  # 叛乱

    @classmethod
    def parse(cls, value) -> "PlotAction":
        """从编码或名称解析行动"""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key.isdigit():
                return cls(int(key))
            try:
                return cls[key]
            except KeyError:
                raise ValueError(f"Invalid plot action: {value}") from None
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid plot action: {value}") from None

    @property
    def victim(self) -> "PlotAction":
        """被本行动克制的行动"""
        return _BEATS[self]

    @property
    def counter(self) -> "PlotAction":
        """克制本行动的行动"""
        return _COUNTERED_BY[self]

    def beats(self, other: "PlotAction") -> bool:
        return _BEATS[self] is other

    def to_byte(self) -> bytes:
        return bytes([int(self)])

    @property
    def display_name(self) -> str:
        return self.name.capitalize()


# 刺杀 > 贿赂 > 叛乱 > 刺杀
_BEATS = {
    PlotAction.ASSASSINATION: PlotAction.BRIBERY,
    PlotAction.BRIBERY: PlotAction.REBELLION,
    PlotAction.REBELLION: PlotAction.ASSASSINATION,
}
_COUNTERED_BY = {victim: attacker for attacker, victim in _BEATS.items()}
