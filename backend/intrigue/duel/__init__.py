"""Duel core package: commitments, resolution and the session state machine."""

from .commitment import CommitmentScheme
from .opponent import OpponentAI
from .resolution import ResolutionEngine, resolve
from .rules import ResolutionRules
from .state_machine import DuelStateMachine

__all__ = [
    "CommitmentScheme",
    "OpponentAI",
    "ResolutionEngine",
    "resolve",
    "ResolutionRules",
    "DuelStateMachine",
]
