"""
Session ledger - one audit entry per resolved round.
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class LedgerEntry(BaseModel):
    """Audit record of one round."""

    session_id: int
    round_number: int
    player1_digest: Optional[str] = None
    player2_digest: Optional[str] = None
    player1_action: str
    player2_action: str
    result: Dict[str, Any] = Field(default_factory=dict)
    tx_hashes: Dict[str, str] = Field(default_factory=dict)
    audited: bool = True
    recorded_at: datetime = Field(default_factory=datetime.now)


class SessionLedger:
    """Append-only round ledger of a single session."""

    def __init__(self, session_id: int):
        self.session_id = session_id
        self._entries: List[LedgerEntry] = []

    def record(self, entry: LedgerEntry) -> LedgerEntry:
        if entry.session_id != self.session_id:
            raise ValueError(
                f"ledger of session {self.session_id} cannot record session {entry.session_id}"
            )
        # 同一回合只记录一次
        for index, existing in enumerate(self._entries):
            if existing.round_number == entry.round_number:
                self._entries[index] = entry
                return entry
        self._entries.append(entry)
        return entry

    def entries(self) -> List[LedgerEntry]:
        return list(self._entries)

    def get(self, round_number: int) -> Optional[LedgerEntry]:
        for entry in self._entries:
            if entry.round_number == round_number:
                return entry
        return None

    def clear(self) -> None:
        self._entries.clear()

    @property
    def unaudited_rounds(self) -> List[int]:
        return [entry.round_number for entry in self._entries if not entry.audited]

    def to_json(self) -> str:
        return json.dumps(
            {
                "session_id": self.session_id,
                "entries": [entry.model_dump(mode="json") for entry in self._entries],
            },
            ensure_ascii=False,
            indent=2,
        )

    def export(self, directory: Optional[str] = None) -> Path:
        """Write the ledger as JSON and return the file path."""
        if directory is None:
            from intrigue.config import settings

            directory = settings.ledger_dir
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / f"session_{self.session_id}.json"
        path.write_text(self.to_json(), encoding="utf-8")
        logger.info("[Ledger] session=%s exported %s rounds to %s", self.session_id, len(self._entries), path)
        return path
