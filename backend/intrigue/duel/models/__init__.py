"""Data models for the duel core."""

from .action import PlotAction
from .commitment import DIGEST_SIZE, PlotCommitment
from .player import PlayerSlot, PlayerState
from .round_result import RoundResult, RoundWinner
from .session import (
    DuelEvent,
    DuelEventType,
    DuelPhase,
    DuelSession,
    SessionMode,
)

__all__ = [
    "PlotAction",
    "DIGEST_SIZE",
    "PlotCommitment",
    "PlayerSlot",
    "PlayerState",
    "RoundResult",
    "RoundWinner",
    "DuelEvent",
    "DuelEventType",
    "DuelPhase",
    "DuelSession",
    "SessionMode",
]
