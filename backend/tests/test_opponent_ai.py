import random

from intrigue.duel.models.action import PlotAction
from intrigue.duel.models.player import PlayerState
from intrigue.duel.models.round_result import RoundResult, RoundWinner
from intrigue.duel.models.session import DuelSession
from intrigue.duel.opponent import OpponentAI


def _session(last=None):
    session = DuelSession(
        session_id=1,
        player1=PlayerState.initial("GALICE", "Alice"),
        player2=PlayerState.initial("GBOB", "Bob"),
    )
    if last is not None:
        a1, a2 = last
        session.results.append(
            RoundResult(
                player1_action=a1,
                player2_action=a2,
                winner=RoundWinner.NONE,
                prestige_delta=(5, 5),
                hp_damage=(0, 0),
            )
        )
    return session


def test_first_round_choice_is_a_valid_action():
    opponent = OpponentAI(personality="cunning", rng=random.Random(3))
    assert opponent.decide_action(_session()) in set(PlotAction)


def test_cunning_opponent_counters_last_player_action():
    opponent = OpponentAI(personality="cunning", rng=random.Random(0))
    opponent.personality = {"counter_bias": 1.0, "repeat_bias": 0.0}

    action = opponent.decide_action(_session((PlotAction.BRIBERY, PlotAction.REBELLION)))

    assert action is PlotAction.ASSASSINATION


def test_stubborn_opponent_repeats_own_action():
    opponent = OpponentAI(personality="stubborn", rng=random.Random(0))
    opponent.personality = {"counter_bias": 0.0, "repeat_bias": 1.0}

    action = opponent.decide_action(_session((PlotAction.BRIBERY, PlotAction.REBELLION)))

    assert action is PlotAction.REBELLION


def test_unknown_personality_falls_back_to_random():
    opponent = OpponentAI(personality="reckless", rng=random.Random(1))

    assert opponent.personality["counter_bias"] == 0.0
    picks = {opponent.decide_action(_session()) for _ in range(50)}
    assert picks == set(PlotAction)
