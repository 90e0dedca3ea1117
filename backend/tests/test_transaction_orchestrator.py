import asyncio

import pytest

from intrigue.chain.backend import BackendHandle, BackendState
from intrigue.chain.contract import (
    AccountMeta,
    SimulationResult,
    SubmitReceipt,
    SubmitStatus,
    TxStatus,
    TxStatusReport,
)
from intrigue.chain.memory import InMemoryBackend
from intrigue.chain.signer import KeySigner
from intrigue.duel.commitment import CommitmentScheme
from intrigue.duel.errors import BackendUnavailableError
from intrigue.duel.models.action import PlotAction
from intrigue.services.transaction_orchestrator import (
    OperationKey,
    OperationKind,
    OrchestratorOptions,
    TransactionOrchestrator,
    TxOutcomeStatus,
)


class _RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class _StuckPollBackend:
    endpoint = "fake://stuck"

    def __init__(self):
        self.polled = asyncio.Event()

    async def get_account(self, identity):
        return AccountMeta(identity=identity, sequence=0)

    async def simulate(self, request):
        return SimulationResult(ok=True)

    async def submit(self, signed):
        return SubmitReceipt(hash=signed.tx_hash, status=SubmitStatus.PENDING)

    async def poll_status(self, tx_hash):
        self.polled.set()
        await asyncio.sleep(3600)

    async def fetch_session_state(self, session_id):
        return None


class _FailingExecutionBackend(_StuckPollBackend):
    endpoint = "fake://failing"

    async def poll_status(self, tx_hash):
        return TxStatusReport(hash=tx_hash, status=TxStatus.FAILED, reason="InvalidProof")


class _BrokenTransportBackend(_StuckPollBackend):
    endpoint = "fake://broken"

    def __init__(self):
        super().__init__()
        self.account_calls = 0

    async def get_account(self, identity):
        self.account_calls += 1
        raise ConnectionError("connection refused")


def _orchestrator(backend, sleep=None, **overrides):
    options = OrchestratorOptions(
        poll_interval_seconds=0.01,
        poll_max_attempts=overrides.pop("poll_max_attempts", 5),
        max_attempts=overrides.pop("max_attempts", 3),
        retry_backoff_seconds=0.5,
    )
    return TransactionOrchestrator(BackendHandle.ready(backend), options, sleep=sleep or _RecordingSleep())


async def _started(backend, sleep=None, **overrides):
    p1, p2 = KeySigner.generate(), KeySigner.generate()
    orchestrator = _orchestrator(backend, sleep=sleep, **overrides)
    outcome = await orchestrator.start_session(1, p1, p2)
    assert outcome.is_success
    return orchestrator, p1, p2


def _commitment(target: str, action=PlotAction.BRIBERY):
    return CommitmentScheme().commit(target, action)


@pytest.mark.asyncio
async def test_start_session_is_signed_by_both_players():
    backend = InMemoryBackend()
    orchestrator, p1, p2 = await _started(backend)

    game = backend.contract.games[1]
    assert (game.player1, game.player2) == (p1.identity, p2.identity)
    assert backend.accounts[p1.identity] == 1


@pytest.mark.asyncio
async def test_successful_operation_is_cached_by_key():
    backend = InMemoryBackend()
    orchestrator, p1, p2 = await _started(backend)
    commitment = _commitment(p2.identity)

    first = await orchestrator.commit_plot(1, 1, p1, commitment)
    submits = backend.calls["submit:commit_plot"]
    second = await orchestrator.commit_plot(1, 1, p1, commitment)

    assert first.is_success and first.attempts == 1
    assert second.is_success and second.cached
    assert second.tx_hash == first.tx_hash
    assert backend.calls["submit:commit_plot"] == submits
    assert orchestrator.is_confirmed(OperationKey(1, 1, p1.identity, OperationKind.COMMIT))


@pytest.mark.asyncio
async def test_simulation_rejections_are_retried_with_backoff():
    backend = InMemoryBackend()
    sleep = _RecordingSleep()
    orchestrator, p1, p2 = await _started(backend, sleep=sleep)
    backend.reject_simulation("commit_plot", times=2, reason="resource limit")

    outcome = await orchestrator.commit_plot(1, 1, p1, _commitment(p2.identity))

    assert outcome.status is TxOutcomeStatus.SUCCESS
    assert outcome.attempts == 3
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_submission_rejected_after_exhausting_attempts():
    backend = InMemoryBackend()
    orchestrator, p1, p2 = await _started(backend)
    backend.reject_submission("commit_plot", times=3, reason="txBadSeq")

    outcome = await orchestrator.commit_plot(1, 1, p1, _commitment(p2.identity))

    assert outcome.status is TxOutcomeStatus.SUBMISSION_REJECTED
    assert outcome.reason == "txBadSeq"
    assert outcome.attempts == 3
    assert not outcome.is_indeterminate
    assert not orchestrator.pending_keys
    assert backend.contract.games[1].player1_plot_hash is None


@pytest.mark.asyncio
async def test_contract_rejection_surfaces_as_simulation_rejected():
    backend = InMemoryBackend()
    orchestrator = _orchestrator(backend)
    p1, p2 = KeySigner.generate(), KeySigner.generate()

    outcome = await orchestrator.commit_plot(99, 1, p1, _commitment(p2.identity))

    assert outcome.status is TxOutcomeStatus.SIMULATION_REJECTED
    assert "GameNotFound" in outcome.reason
    assert outcome.attempts == 3
    assert backend.calls["submit:commit_plot"] == 0


@pytest.mark.asyncio
async def test_poll_exhaustion_is_timed_out_pending_and_not_retried():
    backend = InMemoryBackend(pending_polls=10)
    p1, p2 = KeySigner.generate(), KeySigner.generate()
    orchestrator = _orchestrator(backend, poll_max_attempts=3)

    outcome = await orchestrator.start_session(1, p1, p2)

    assert outcome.status is TxOutcomeStatus.TIMED_OUT_PENDING
    assert outcome.is_indeterminate
    assert outcome.attempts == 1
    assert outcome.tx_hash
    assert backend.calls["poll_status"] == 3
    assert outcome.key in orchestrator.pending_keys


@pytest.mark.asyncio
async def test_dropped_submission_is_signed_unconfirmed_then_retried():
    backend = InMemoryBackend()
    orchestrator, p1, p2 = await _started(backend)
    backend.drop_submission("commit_plot")

    outcome = await orchestrator.commit_plot(1, 1, p1, _commitment(p2.identity))

    assert outcome.is_success
    assert outcome.attempts == 2


@pytest.mark.asyncio
async def test_retry_after_landed_submission_is_idempotent():
    backend = InMemoryBackend()
    orchestrator, p1, p2 = await _started(backend)
    backend.drop_submission("commit_plot", landed=True)
    commitment = _commitment(p2.identity)

    outcome = await orchestrator.commit_plot(1, 1, p1, commitment)

    assert outcome.is_success
    assert outcome.attempts == 2
    assert backend.contract.games[1].player1_plot_hash == commitment.digest_hex


@pytest.mark.asyncio
async def test_failed_execution_is_definitive():
    orchestrator = _orchestrator(_FailingExecutionBackend())
    p1, p2 = KeySigner.generate(), KeySigner.generate()

    outcome = await orchestrator.verify_plot(1, 1, p1, _commitment(p2.identity))

    assert outcome.status is TxOutcomeStatus.FAILED
    assert outcome.reason == "InvalidProof"
    assert outcome.attempts == 1
    assert outcome.is_definitive


@pytest.mark.asyncio
async def test_transport_failure_before_signing_is_retried_then_rejected():
    backend = _BrokenTransportBackend()
    orchestrator = _orchestrator(backend)
    p1, p2 = KeySigner.generate(), KeySigner.generate()

    outcome = await orchestrator.resolve_round(1, 1, p1)

    assert outcome.status is TxOutcomeStatus.SIMULATION_REJECTED
    assert "ConnectionError" in outcome.reason
    assert backend.account_calls == 3


@pytest.mark.asyncio
async def test_cancelled_poll_is_recorded_as_pending_and_reraised():
    backend = _StuckPollBackend()
    orchestrator = TransactionOrchestrator(BackendHandle.ready(backend), OrchestratorOptions())
    p1, p2 = KeySigner.generate(), KeySigner.generate()

    task = asyncio.create_task(orchestrator.commit_plot(5, 2, p1, _commitment(p2.identity)))
    await backend.polled.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    key = OperationKey(5, 2, p1.identity, OperationKind.COMMIT)
    assert key in orchestrator.pending_keys
    assert orchestrator.inflight_hash(key)
    assert not orchestrator.is_confirmed(key)


@pytest.mark.asyncio
async def test_unready_handle_raises_backend_unavailable():
    orchestrator = TransactionOrchestrator(BackendHandle.unconfigured())
    p1 = KeySigner.generate()

    assert not orchestrator.is_ready
    with pytest.raises(BackendUnavailableError):
        await orchestrator.resolve_round(1, 1, p1)


@pytest.mark.asyncio
async def test_run_many_settles_independent_calls():
    backend = InMemoryBackend()
    orchestrator, p1, p2 = await _started(backend)
    backend.reject_submission("commit_plot", times=3, source=p2.identity)

    outcomes = await orchestrator.run_many(
        [
            orchestrator.commit_call(1, 1, p1, _commitment(p2.identity)),
            orchestrator.commit_call(1, 1, p2, _commitment(p1.identity)),
        ]
    )

    assert [outcome.status for outcome in outcomes] == [
        TxOutcomeStatus.SUCCESS,
        TxOutcomeStatus.SUBMISSION_REJECTED,
    ]
    game = backend.contract.games[1]
    assert game.player1_plot_hash is not None
    assert game.player2_plot_hash is None


class _UnreachableBackend(_StuckPollBackend):
    endpoint = "http://gateway.test/rpc"

    def __init__(self):
        super().__init__()
        self.account_calls = 0

    async def get_account(self, identity):
        self.account_calls += 1
        raise BackendUnavailableError(self.endpoint, "ConnectError: All connection attempts failed")


@pytest.mark.asyncio
async def test_unreachable_backend_marks_handle_once_and_raises():
    backend = _UnreachableBackend()
    sleep = _RecordingSleep()
    orchestrator = _orchestrator(backend, sleep=sleep)
    p1, p2 = KeySigner.generate(), KeySigner.generate()

    with pytest.raises(BackendUnavailableError):
        await orchestrator.start_session(1, p1, p2)

    assert backend.account_calls == 1
    assert sleep.delays == []
    assert orchestrator.handle.state is BackendState.UNAVAILABLE
    assert "ConnectError" in orchestrator.handle.detail
    assert not orchestrator.is_ready

    with pytest.raises(BackendUnavailableError):
        await orchestrator.commit_plot(1, 1, p1, _commitment(p2.identity))
    assert backend.account_calls == 1


@pytest.mark.asyncio
async def test_run_many_surfaces_unavailable_backend_once():
    backend = _UnreachableBackend()
    orchestrator = _orchestrator(backend)
    p1, p2 = KeySigner.generate(), KeySigner.generate()

    with pytest.raises(BackendUnavailableError):
        await orchestrator.run_many(
            [
                orchestrator.commit_call(1, 1, p1, _commitment(p2.identity)),
                orchestrator.commit_call(1, 1, p2, _commitment(p1.identity)),
            ]
        )
    assert backend.account_calls == 1
    assert not orchestrator.pending_keys
