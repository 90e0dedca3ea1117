import pytest
from fastapi import HTTPException

from intrigue.chain.backend import BackendHandle
from intrigue.chain.memory import InMemoryBackend
from intrigue.routers.duel import (
    CreateDuelRequest,
    PlayRoundRequest,
    create_session,
    delete_session,
    get_events,
    get_ledger,
    get_session,
    list_actions,
    list_sessions,
    play_round,
    reconcile_session,
    restart_session,
)
from intrigue.services.session_controller import SessionController
from intrigue.services.session_registry import SessionRegistry
from intrigue.services.transaction_orchestrator import (
    OrchestratorOptions,
    TransactionOrchestrator,
)


async def _no_sleep(delay: float) -> None:
    return None


def _registry(backend=None):
    handle = BackendHandle.ready(backend or InMemoryBackend())
    orchestrator = TransactionOrchestrator(
        handle,
        OrchestratorOptions(poll_interval_seconds=0, retry_backoff_seconds=0),
        sleep=_no_sleep,
    )
    return SessionRegistry(orchestrator=orchestrator)


@pytest.mark.asyncio
async def test_list_actions_describes_cycle():
    response = await list_actions()

    beats = {item["name"]: item["beats"] for item in response["actions"]}
    assert beats == {
        "assassination": "bribery",
        "bribery": "rebellion",
        "rebellion": "assassination",
    }


@pytest.mark.asyncio
async def test_create_and_play_backed_duel():
    registry = _registry()

    state = await create_session(CreateDuelRequest(session_id=7, player1_name="Wei"), registry=registry)
    assert state["phase"] == "plotting"
    assert state["mode"] == "backed"

    response = await play_round(
        7,
        PlayRoundRequest(player1_action="assassination", player2_action="1", damage_roll=15),
        registry=registry,
    )
    assert response["result"]["winner"] == "player1"
    assert response["session"]["round"] == 2
    assert response["session"]["player1"]["prestige"] == 80
    assert response["session"]["ledger"][0]["audited"] is True

    sessions = await list_sessions(registry=registry)
    assert sessions["sessions"] == [{"session_id": 7, "phase": "plotting", "mode": "backed", "round": 2}]

    report = await reconcile_session(7, registry=registry)
    assert report["divergences"] == []

    ledger = await get_ledger(7, registry=registry)
    assert ledger["unaudited_rounds"] == []
    assert "tx_hashes" in ledger["entries"][0]


@pytest.mark.asyncio
async def test_session_state_never_exposes_nonces():
    registry = _registry()
    await create_session(CreateDuelRequest(session_id=8), registry=registry)
    await play_round(8, PlayRoundRequest(player1_action="bribery"), registry=registry)

    state = await get_session(8, registry=registry)
    events = await get_events(8, since=0, limit=100, registry=registry)

    assert "nonce" not in str(state)
    assert "nonce" not in str(events)
    assert events["last_seq"] == events["events"][-1]["seq"]
    later = await get_events(8, since=events["last_seq"] - 1, limit=100, registry=registry)
    assert len(later["events"]) == 1


@pytest.mark.asyncio
async def test_unknown_session_maps_to_404():
    registry = _registry()
    with pytest.raises(HTTPException) as exc_info:
        await get_session(404, registry=registry)
    assert exc_info.value.status_code == 404

    with pytest.raises(HTTPException) as exc_info:
        await delete_session(404, registry=registry)
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_duplicate_session_and_phase_errors_map_to_409():
    registry = _registry()
    await create_session(CreateDuelRequest(session_id=9, backed=False), registry=registry)

    with pytest.raises(HTTPException) as exc_info:
        await create_session(CreateDuelRequest(session_id=9), registry=registry)
    assert exc_info.value.status_code == 409
    assert "already exists" in exc_info.value.detail

    with pytest.raises(HTTPException) as exc_info:
        await restart_session(9, registry=registry)
    assert exc_info.value.status_code == 409
    assert "cannot restart" in exc_info.value.detail

    with pytest.raises(HTTPException) as exc_info:
        await play_round(9, PlayRoundRequest(), registry=registry)
    assert exc_info.value.status_code == 409
    assert "player1 action is required" in exc_info.value.detail


@pytest.mark.asyncio
async def test_invalid_action_maps_to_400():
    registry = _registry()
    await create_session(CreateDuelRequest(session_id=10, backed=False), registry=registry)

    with pytest.raises(HTTPException) as exc_info:
        await play_round(10, PlayRoundRequest(player1_action="poison"), registry=registry)

    assert exc_info.value.status_code == 400
    assert "poison" in exc_info.value.detail


@pytest.mark.asyncio
async def test_restart_after_game_over_starts_fresh_round():
    registry = _registry()
    await create_session(CreateDuelRequest(session_id=12, backed=False), registry=registry)
    for _ in range(3):
        await play_round(
            12,
            PlayRoundRequest(player1_action="rebellion", player2_action="rebellion"),
            registry=registry,
        )
    assert (await get_session(12, registry=registry))["phase"] == "game_over"

    state = await restart_session(12, registry=registry)

    assert state["phase"] == "plotting"
    assert state["round"] == 1
    assert state["player1"]["prestige"] == 50
    assert state["ledger"] == []

    assert (await delete_session(12, registry=registry)) == {"success": True}
    assert 12 not in registry


@pytest.mark.asyncio
async def test_failed_start_releases_session_id(monkeypatch):
    registry = _registry()

    async def _broken_start(self):
        raise RuntimeError("signer offline")

    monkeypatch.setattr(SessionController, "start", _broken_start)
    with pytest.raises(HTTPException) as exc_info:
        await create_session(CreateDuelRequest(session_id=13), registry=registry)
    assert exc_info.value.status_code == 500
    assert 13 not in registry

    monkeypatch.undo()
    state = await create_session(CreateDuelRequest(session_id=13), registry=registry)
    assert state["phase"] == "plotting"
