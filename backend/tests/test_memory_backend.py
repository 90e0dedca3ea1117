import pytest

from intrigue.chain.contract import ContractCall, SignedTx, SubmitStatus, TxRequest, TxStatus
from intrigue.chain.memory import ContractError, DuelContract, InMemoryBackend
from intrigue.chain.signer import KeySigner, identity_for
from intrigue.duel.commitment import CommitmentScheme
from intrigue.duel.models.action import PlotAction
from intrigue.duel.rules import ResolutionRules

P1 = "GPLAYERONE"
P2 = "GPLAYERTWO"


def _contract(**rules):
    contract = DuelContract(rules=ResolutionRules(**rules))
    contract.invoke("start_session", {"session_id": 1, "player1": P1, "player2": P2})
    return contract


def _commit(contract, player, target, action, round_number=1):
    commitment = CommitmentScheme().commit(target, action)
    contract.invoke(
        "commit_plot",
        {"session_id": 1, "round": round_number, "player": player, "plot_hash": commitment.digest_hex},
    )
    return commitment


def _verify_args(player, commitment, round_number=1):
    return {
        "session_id": 1,
        "round": round_number,
        "player": player,
        "action_type": int(commitment.action_type),
        "proof_data": commitment.proof_data.hex(),
        "target": commitment.target_hex,
        "commitment": commitment.digest_hex,
    }


def _play_round(contract, a1, a2, round_number):
    c1 = _commit(contract, P1, P2, a1, round_number)
    c2 = _commit(contract, P2, P1, a2, round_number)
    contract.invoke("verify_plot", _verify_args(P1, c1, round_number))
    contract.invoke("verify_plot", _verify_args(P2, c2, round_number))
    return contract.invoke("resolve_round", {"session_id": 1, "round": round_number})


def _code(excinfo):
    return excinfo.value.code


def test_start_session_rules():
    contract = _contract()

    contract.invoke("start_session", {"session_id": 1, "player1": P1, "player2": P2})
    with pytest.raises(ContractError) as exc:
        contract.invoke("start_session", {"session_id": 1, "player1": P2, "player2": P1})
    assert _code(exc) == "SessionExists"
    with pytest.raises(ContractError) as exc:
        contract.invoke("start_session", {"session_id": 2, "player1": P1, "player2": P1})
    assert _code(exc) == "SamePlayer"

    snapshot = contract.snapshot(1)
    assert (snapshot.player1_prestige, snapshot.player2_prestige, snapshot.round) == (50, 50, 1)


def test_commit_plot_rules():
    contract = _contract()
    commitment = _commit(contract, P1, P2, PlotAction.BRIBERY)

    # 同一摘要重复提交是空操作
    contract.invoke(
        "commit_plot",
        {"session_id": 1, "round": 1, "player": P1, "plot_hash": commitment.digest_hex},
    )
    with pytest.raises(ContractError) as exc:
        _commit(contract, P1, P2, PlotAction.REBELLION)
    assert _code(exc) == "AlreadyCommitted"
    with pytest.raises(ContractError) as exc:
        _commit(contract, "GSTRANGER", P2, PlotAction.REBELLION)
    assert _code(exc) == "NotPlayer"
    with pytest.raises(ContractError) as exc:
        _commit(contract, P2, P1, PlotAction.REBELLION, round_number=2)
    assert _code(exc) == "RoundMismatch"


def test_verify_plot_rules():
    contract = _contract()
    c2 = CommitmentScheme().commit(P1, PlotAction.ASSASSINATION)
    with pytest.raises(ContractError) as exc:
        contract.invoke("verify_plot", _verify_args(P2, c2))
    assert _code(exc) == "PlotNotCommitted"

    c1 = _commit(contract, P1, P2, PlotAction.BRIBERY)
    forged = _verify_args(P1, c1)
    forged["proof_data"] = (bytes(32) + b"\x00\x00\x00\x01").hex()
    with pytest.raises(ContractError) as exc:
        contract.invoke("verify_plot", forged)
    assert _code(exc) == "InvalidProof"

    wrong_action = _verify_args(P1, c1)
    wrong_action["action_type"] = 2
    with pytest.raises(ContractError) as exc:
        contract.invoke("verify_plot", wrong_action)
    assert _code(exc) == "InvalidProof"

    invalid = _verify_args(P1, c1)
    invalid["action_type"] = 5
    with pytest.raises(ContractError) as exc:
        contract.invoke("verify_plot", invalid)
    assert _code(exc) == "InvalidAction"

    assert contract.invoke("verify_plot", _verify_args(P1, c1)) is True
    assert contract.invoke("verify_plot", _verify_args(P1, c1)) is True
    assert contract.snapshot(1).player1_action == int(PlotAction.BRIBERY)


def test_resolve_requires_both_verified_plots():
    contract = _contract()
    c1 = _commit(contract, P1, P2, PlotAction.ASSASSINATION)
    contract.invoke("verify_plot", _verify_args(P1, c1))

    with pytest.raises(ContractError) as exc:
        contract.invoke("resolve_round", {"session_id": 1, "round": 1})
    assert _code(exc) == "BothPlayersNotReady"


def test_resolve_round_applies_prestige_and_is_idempotent():
    contract = _contract()
    snapshot = _play_round(contract, PlotAction.ASSASSINATION, PlotAction.BRIBERY, 1)

    assert (snapshot["player1_prestige"], snapshot["player2_prestige"]) == (80, 40)
    assert snapshot["round"] == 2
    assert snapshot["player1_plot_hash"] is None

    again = contract.invoke("resolve_round", {"session_id": 1, "round": 1})
    assert again == snapshot


def test_game_ends_after_max_rounds_with_tie_going_to_player1():
    contract = _contract()
    for round_number in (1, 2, 3):
        snapshot = _play_round(contract, PlotAction.BRIBERY, PlotAction.BRIBERY, round_number)

    assert snapshot["ended"] is True
    assert snapshot["round"] == 3
    assert snapshot["winner"] == P1
    assert contract.invoke("resolve_round", {"session_id": 1, "round": 3})["ended"] is True
    with pytest.raises(ContractError) as exc:
        _commit(contract, P1, P2, PlotAction.BRIBERY, round_number=3)
    assert _code(exc) == "GameAlreadyEnded"


def test_invalid_arguments_and_unknown_methods():
    contract = _contract()
    with pytest.raises(ContractError) as exc:
        contract.invoke(
            "commit_plot", {"session_id": 1, "round": 1, "player": P1, "plot_hash": "zz"}
        )
    assert _code(exc) == "InvalidArgument"
    with pytest.raises(ContractError) as exc:
        contract.invoke("drain_treasury", {})
    assert _code(exc) == "UnknownMethod"
    with pytest.raises(ContractError) as exc:
        contract.invoke("get_game", {"session_id": 404})
    assert _code(exc) == "GameNotFound"


def _signed(request: TxRequest, *signers: KeySigner) -> SignedTx:
    digest = request.digest()
    return SignedTx(request=request, signatures={s.identity: s.sign(digest) for s in signers})


@pytest.mark.asyncio
async def test_backend_checks_envelope_and_deduplicates():
    backend = InMemoryBackend()
    p1, p2 = KeySigner.generate(), KeySigner.generate()
    call = ContractCall(
        method="start_session",
        args={"session_id": 3, "player1": p1.identity, "player2": p2.identity},
    )
    request = TxRequest(source=p1.identity, sequence=1, call=call, signers=[p1.identity, p2.identity])

    missing = await backend.submit(_signed(request, p1))
    assert missing.status is SubmitStatus.ERROR
    assert p2.identity in missing.reason

    bad_sequence = request.model_copy(update={"sequence": 5})
    rejected = await backend.submit(_signed(bad_sequence, p1, p2))
    assert rejected.status is SubmitStatus.ERROR
    assert "bad sequence" in rejected.reason

    signed = _signed(request, p1, p2)
    receipt = await backend.submit(signed)
    duplicate = await backend.submit(signed)
    assert receipt.status is SubmitStatus.PENDING
    assert duplicate.status is SubmitStatus.DUPLICATE
    assert (await backend.poll_status(receipt.hash)).status is TxStatus.SUCCESS
    assert (await backend.fetch_session_state(3)).player2 == p2.identity


@pytest.mark.asyncio
async def test_backend_pending_polls_and_simulation_is_dry_run():
    backend = InMemoryBackend(pending_polls=2)
    p1, p2 = KeySigner.generate(), KeySigner.generate()
    request = TxRequest(
        source=p1.identity,
        sequence=1,
        call=ContractCall(
            method="start_session",
            args={"session_id": 3, "player1": p1.identity, "player2": p2.identity},
        ),
        signers=[p1.identity, p2.identity],
    )

    simulation = await backend.simulate(request)
    assert simulation.ok
    assert await backend.fetch_session_state(3) is None

    receipt = await backend.submit(_signed(request, p1, p2))
    statuses = [(await backend.poll_status(receipt.hash)).status for _ in range(3)]
    assert statuses == [TxStatus.PENDING, TxStatus.PENDING, TxStatus.SUCCESS]
    assert (await backend.poll_status("unknown")).status is TxStatus.PENDING


def test_signer_identity_and_signatures():
    signer = KeySigner.generate()
    same = KeySigner.from_hex(signer.secret.hex())
    digest = b"\x01" * 32

    assert signer.identity == same.identity == identity_for(signer.secret)
    assert signer.identity.startswith("G") and len(signer.identity) == 56
    assert signer.verify(digest, same.sign(digest))
    assert not KeySigner.generate().verify(digest, signer.sign(digest))
    assert signer.secret.hex() not in repr(signer)
