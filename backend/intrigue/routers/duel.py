"""
Duel API routes.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from intrigue.dependencies import get_registry
from intrigue.duel.errors import (
    InvalidPhaseTransitionError,
    SessionExistsError,
    SessionNotFoundError,
)
from intrigue.duel.models.action import PlotAction
from intrigue.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/duel", tags=["Duel"])


def _map_exception_to_http(exc: Exception) -> HTTPException:
    if isinstance(exc, SessionNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidPhaseTransitionError, SessionExistsError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    logger.exception("[DuelAPI] unexpected failure: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


class CreateDuelRequest(BaseModel):
    """创建对局请求"""

    session_id: Optional[int] = Field(default=None, ge=1, le=2**32 - 1)
    player1_name: str = "Player"
    player2_name: str = "Rival"
    opponent: str = "random"  # random | cunning | stubborn
    backed: bool = True


class PlayRoundRequest(BaseModel):
    """出招请求：行动可为名称或编码"""

    player1_action: Optional[str] = None
    player2_action: Optional[str] = None
    damage_roll: Optional[int] = None


@router.get("/actions")
async def list_actions():
    """列出可选行动与克制关系"""
    return {
        "actions": [
            {
                "code": int(action),
                "name": action.name.lower(),
                "display_name": action.display_name,
                "beats": action.victim.name.lower(),
            }
            for action in PlotAction
        ]
    }


@router.post("/sessions")
async def create_session(
    payload: CreateDuelRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """创建并开始对局"""
    controller = None
    try:
        controller = registry.create(
            session_id=payload.session_id,
            player1_name=payload.player1_name,
            player2_name=payload.player2_name,
            opponent=payload.opponent,
            backed=payload.backed,
        )
        await controller.start()
        return controller.state()
    except Exception as exc:
        if controller is not None and controller.session_id in registry:
            # 启动失败的会话不保留，同一ID可以重新创建
            registry.remove(controller.session_id)
        raise _map_exception_to_http(exc) from exc


@router.get("/sessions")
async def list_sessions(registry: SessionRegistry = Depends(get_registry)):
    return {
        "sessions": [
            {
                "session_id": controller.session_id,
                "phase": controller.session.phase.value,
                "mode": controller.session.mode.value,
                "round": controller.session.round_number,
            }
            for controller in registry.list()
        ]
    }


@router.get("/sessions/{session_id}")
async def get_session(session_id: int, registry: SessionRegistry = Depends(get_registry)):
    try:
        return registry.get(session_id).state()
    except Exception as exc:
        raise _map_exception_to_http(exc) from exc


@router.post("/sessions/{session_id}/rounds")
async def play_round(
    session_id: int,
    payload: PlayRoundRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """推进一回合（提交 -> 揭示 -> 结算）"""
    try:
        controller = registry.get(session_id)
        result = await controller.play_round(
            payload.player1_action,
            payload.player2_action,
            damage_roll=payload.damage_roll,
        )
        return {"result": result.to_dict(), "session": controller.state()}
    except Exception as exc:
        raise _map_exception_to_http(exc) from exc


@router.post("/sessions/{session_id}/reconcile")
async def reconcile_session(session_id: int, registry: SessionRegistry = Depends(get_registry)):
    try:
        report = await registry.get(session_id).reconcile()
        return report.to_dict()
    except Exception as exc:
        raise _map_exception_to_http(exc) from exc


@router.post("/sessions/{session_id}/restart")
async def restart_session(session_id: int, registry: SessionRegistry = Depends(get_registry)):
    """GAME_OVER 后重新开始"""
    try:
        controller = registry.get(session_id)
        await controller.restart()
        await controller.start()
        return controller.state()
    except Exception as exc:
        raise _map_exception_to_http(exc) from exc


@router.get("/sessions/{session_id}/events")
async def get_events(
    session_id: int,
    since: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    registry: SessionRegistry = Depends(get_registry),
):
    try:
        session = registry.get(session_id).session
        return {
            "events": [event.to_dict() for event in session.get_event_log_since(since, limit)],
            "last_seq": session.event_seq,
        }
    except Exception as exc:
        raise _map_exception_to_http(exc) from exc


@router.get("/sessions/{session_id}/ledger")
async def get_ledger(session_id: int, registry: SessionRegistry = Depends(get_registry)):
    try:
        ledger = registry.get(session_id).ledger
        return {
            "session_id": session_id,
            "entries": [entry.model_dump(mode="json") for entry in ledger.entries()],
            "unaudited_rounds": ledger.unaudited_rounds,
        }
    except Exception as exc:
        raise _map_exception_to_http(exc) from exc


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: int, registry: SessionRegistry = Depends(get_registry)):
    try:
        registry.remove(session_id)
        return {"success": True}
    except Exception as exc:
        raise _map_exception_to_http(exc) from exc
