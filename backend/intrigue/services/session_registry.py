"""
Session registry - exactly one controller per session id.
"""
import logging
from typing import Dict, List, Optional

from intrigue.chain.backend import BackendHandle
from intrigue.chain.signer import KeySigner
from intrigue.duel.commitment import CommitmentScheme
from intrigue.duel.errors import SessionExistsError, SessionNotFoundError
from intrigue.duel.models.player import PlayerSlot
from intrigue.duel.opponent import OpponentAI
from intrigue.duel.rules import ResolutionRules
from intrigue.services.event_bus import EventBus
from intrigue.services.session_controller import SessionController, new_session_id
from intrigue.services.transaction_orchestrator import TransactionOrchestrator

logger = logging.getLogger(__name__)


class SessionRegistry:
    """In-process registry of session controllers."""

    def __init__(
        self,
        orchestrator: Optional[TransactionOrchestrator] = None,
        rules: Optional[ResolutionRules] = None,
        event_bus: Optional[EventBus] = None,
        enforce_unique_nonces: bool = True,
    ) -> None:
        self.orchestrator = orchestrator
        self.rules = rules or ResolutionRules()
        self.event_bus = event_bus or EventBus()
        self.enforce_unique_nonces = enforce_unique_nonces
        self._controllers: Dict[int, SessionController] = {}

    @property
    def backend_handle(self) -> Optional[BackendHandle]:
        return self.orchestrator.handle if self.orchestrator else None

    def create(
        self,
        session_id: Optional[int] = None,
        player1_name: str = "Player",
        player2_name: str = "Rival",
        opponent: str = "random",
        backed: bool = True,
        signers: Optional[Dict[PlayerSlot, KeySigner]] = None,
    ) -> SessionController:
        """创建并登记新会话；ID 重复时抛出 SessionExistsError"""
        if session_id is None:
            session_id = new_session_id()
            while session_id in self._controllers:
                session_id = new_session_id()
        elif session_id in self._controllers:
            raise SessionExistsError(session_id)

        controller = SessionController.create(
            session_id=session_id,
            player1_name=player1_name,
            player2_name=player2_name,
            orchestrator=self.orchestrator if backed else None,
            rules=self.rules,
            signers=signers,
            opponent=OpponentAI(personality=opponent),
            event_bus=self.event_bus,
            scheme=CommitmentScheme(enforce_unique_nonces=self.enforce_unique_nonces),
        )
        self._controllers[session_id] = controller
        logger.info("[SessionRegistry] session=%s created (backed=%s)", session_id, backed)
        return controller

    def get(self, session_id: int) -> SessionController:
        controller = self._controllers.get(session_id)
        if controller is None:
            raise SessionNotFoundError(session_id)
        return controller

    def list(self) -> List[SessionController]:
        return list(self._controllers.values())

    def remove(self, session_id: int) -> SessionController:
        controller = self._controllers.pop(session_id, None)
        if controller is None:
            raise SessionNotFoundError(session_id)
        controller.machine.scheme.forget_scope(str(session_id))
        logger.info("[SessionRegistry] session=%s removed", session_id)
        return controller

    def __contains__(self, session_id: int) -> bool:
        return session_id in self._controllers

    def __len__(self) -> int:
        return len(self._controllers)
