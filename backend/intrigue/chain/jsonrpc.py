"""
JSON-RPC execution backend adapter.

Speaks JSON-RPC 2.0 over httpx to a gateway exposing getAccount,
simulateTransaction, sendTransaction, getTransaction and getGame. All of the
gateway's response quirks are normalized here into the typed contract models.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from intrigue.duel.errors import BackendUnavailableError

from .contract import (
    AccountMeta,
    SessionSnapshot,
    SignedTx,
    SimulationResult,
    SubmitReceipt,
    SubmitStatus,
    TxRequest,
    TxStatus,
    TxStatusReport,
)

logger = logging.getLogger(__name__)

_SUBMIT_STATUS = {
    "PENDING": SubmitStatus.PENDING,
    "DUPLICATE": SubmitStatus.DUPLICATE,
    "TRY_AGAIN_LATER": SubmitStatus.TRY_AGAIN_LATER,
    "ERROR": SubmitStatus.ERROR,
}

_TX_STATUS = {
    "NOT_FOUND": TxStatus.PENDING,
    "PENDING": TxStatus.PENDING,
    "SUCCESS": TxStatus.SUCCESS,
    "FAILED": TxStatus.FAILED,
    "ERROR": TxStatus.FAILED,
}


class JsonRpcError(RuntimeError):
    """JSON-RPC level error returned by the gateway."""

    def __init__(self, method: str, code: int, message: str) -> None:
        self.method = method
        self.code = code
        self.message = message
        super().__init__(f"{method} failed ({code}): {message}")


class JsonRpcBackend:
    """httpx-based adapter for a JSON-RPC execution gateway."""

    def __init__(
        self,
        endpoint: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint = endpoint
        self._timeout = httpx.Timeout(max(0.5, float(timeout_seconds)))
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ===== ExecutionBackend =====

    async def get_account(self, identity: str) -> AccountMeta:
        result = await self._call("getAccount", {"identity": identity})
        return AccountMeta(identity=identity, sequence=int((result or {}).get("sequence", 0)))

    async def simulate(self, request: TxRequest) -> SimulationResult:
        try:
            result = await self._call(
                "simulateTransaction", {"transaction": request.model_dump(mode="json")}
            )
        except JsonRpcError as exc:
            return SimulationResult(ok=False, reason=exc.message)
        result = result or {}
        if result.get("error"):
            return SimulationResult(ok=False, reason=str(result["error"]))
        retval = result.get("retval")
        if retval is None and result.get("results"):
            retval = (result["results"][0] or {}).get("retval")
        return SimulationResult(
            ok=True,
            return_value=retval,
            min_resource_fee=int(result.get("minResourceFee", 0) or 0),
        )

    async def submit(self, signed: SignedTx) -> SubmitReceipt:
        try:
            result = await self._call(
                "sendTransaction", {"transaction": signed.model_dump(mode="json")}
            )
        except JsonRpcError as exc:
            return SubmitReceipt(hash=signed.tx_hash, status=SubmitStatus.ERROR, reason=exc.message)
        result = result or {}
        status = _SUBMIT_STATUS.get(str(result.get("status", "")).upper(), SubmitStatus.ERROR)
        reason = result.get("errorResult") or result.get("error")
        return SubmitReceipt(
            hash=str(result.get("hash") or signed.tx_hash),
            status=status,
            reason=str(reason) if reason else None,
        )

    async def poll_status(self, tx_hash: str) -> TxStatusReport:
        result = await self._call("getTransaction", {"hash": tx_hash}) or {}
        status = _TX_STATUS.get(str(result.get("status", "NOT_FOUND")).upper(), TxStatus.PENDING)
        reason = None
        if status is TxStatus.FAILED:
            reason = str(result.get("resultXdr") or result.get("error") or "transaction failed")
        return TxStatusReport(
            hash=tx_hash,
            status=status,
            return_value=result.get("returnValue"),
            reason=reason,
        )

    async def fetch_session_state(self, session_id: int) -> Optional[SessionSnapshot]:
        try:
            result = await self._call("getGame", {"sessionId": session_id})
        except JsonRpcError as exc:
            if "GameNotFound" in exc.message:
                return None
            raise BackendUnavailableError(self.endpoint, str(exc)) from exc
        if not result:
            return None
        if not isinstance(result, dict):
            raise BackendUnavailableError(
                self.endpoint, f"getGame returned {type(result).__name__}, expected an object"
            )
        try:
            return SessionSnapshot.model_validate({**result, "session_id": session_id})
        except ValidationError as exc:
            raise BackendUnavailableError(
                self.endpoint, f"malformed getGame result: {exc.error_count()} invalid fields"
            ) from exc

    # ===== transport =====

    async def _call(self, method: str, params: Dict[str, Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            client = self._get_client()
            response = await client.post(self.endpoint, json=payload)
            response.raise_for_status()
            body = response.json()
        except asyncio.CancelledError:
            raise
        except (httpx.HTTPError, ValueError) as exc:
            raise BackendUnavailableError(
                self.endpoint, f"{type(exc).__name__}: {exc}"
            ) from exc

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            raise JsonRpcError(
                method,
                int(error.get("code", -1)),
                str(error.get("message", error)),
            )
        return body.get("result") if isinstance(body, dict) else None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client
