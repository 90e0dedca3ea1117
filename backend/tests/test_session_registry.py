import pytest

from intrigue.chain.backend import BackendHandle
from intrigue.chain.memory import InMemoryBackend
from intrigue.chain.signer import KeySigner
from intrigue.duel.errors import SessionExistsError, SessionNotFoundError
from intrigue.duel.models.action import PlotAction
from intrigue.duel.models.player import PlayerSlot
from intrigue.duel.models.session import DuelEventType, SessionMode
from intrigue.services.event_bus import EventBus
from intrigue.services.ledger import LedgerEntry, SessionLedger
from intrigue.services.session_controller import SessionController
from intrigue.services.session_registry import SessionRegistry
from intrigue.services.transaction_orchestrator import TransactionOrchestrator


def _registry(**kwargs):
    orchestrator = TransactionOrchestrator(BackendHandle.ready(InMemoryBackend()))
    return SessionRegistry(orchestrator=orchestrator, **kwargs)


def test_registry_holds_one_controller_per_session():
    registry = _registry()

    controller = registry.create(session_id=3, player1_name="Wei")

    assert registry.get(3) is controller
    assert 3 in registry and len(registry) == 1
    with pytest.raises(SessionExistsError):
        registry.create(session_id=3)

    generated = registry.create()
    assert generated.session_id != 3
    assert {c.session_id for c in registry.list()} == {3, generated.session_id}

    assert registry.remove(3) is controller
    with pytest.raises(SessionNotFoundError):
        registry.get(3)


def test_registry_shares_bus_and_builds_local_sessions():
    bus = EventBus()
    registry = _registry(event_bus=bus)

    local = registry.create(session_id=4, backed=False, opponent="cunning")

    assert local.event_bus is bus
    assert local.orchestrator is None
    assert local.opponent.personality_name == "cunning"
    assert registry.backend_handle.is_ready


def test_same_identity_for_both_players_is_rejected():
    signer = KeySigner.generate()
    with pytest.raises(ValueError):
        SessionController.create(signers={PlayerSlot.PLAYER1: signer, PlayerSlot.PLAYER2: signer})


@pytest.mark.asyncio
async def test_registry_without_backend_plays_locally():
    registry = SessionRegistry(orchestrator=TransactionOrchestrator(BackendHandle.unconfigured()))
    controller = registry.create(session_id=5)

    await controller.start()
    await controller.play_round(PlotAction.BRIBERY, PlotAction.BRIBERY)

    assert controller.session.mode is SessionMode.LOCAL
    assert controller.ledger.unaudited_rounds == [1]


@pytest.mark.asyncio
async def test_event_bus_dispatches_typed_and_wildcard_handlers():
    bus = EventBus()
    typed, everything, awaited = [], [], []

    async def _async_handler(event):
        awaited.append(event.seq)

    bus.subscribe(DuelEventType.GAME_OVER, typed.append)

    def _collect(event):
        everything.append(event)

    bus.subscribe_all(_collect)
    bus.subscribe_all(_async_handler)

    controller = SessionController.create(session_id=6, event_bus=bus)
    await controller.start()
    for _ in range(3):
        await controller.play_round(PlotAction.REBELLION, PlotAction.ASSASSINATION, damage_roll=15)

    assert len(typed) == 1
    assert typed[0].payload["winner"] == "player1"
    assert [e.seq for e in everything] == awaited

    bus.unsubscribe(_collect)
    count = len(everything)
    await bus.publish(typed[0])
    assert len(everything) == count


def test_ledger_records_each_round_once():
    ledger = SessionLedger(session_id=1)
    first = LedgerEntry(session_id=1, round_number=1, player1_action="bribery", player2_action="rebellion")
    replacement = first.model_copy(update={"audited": False})

    ledger.record(first)
    ledger.record(replacement)

    assert len(ledger.entries()) == 1
    assert ledger.unaudited_rounds == [1]
    with pytest.raises(ValueError):
        ledger.record(LedgerEntry(session_id=2, round_number=1, player1_action="a", player2_action="b"))
