from __future__ import annotations

import pytest

from conftest import Wallet, complete, lock, money, new_match, place_prediction, signed
from strikerate.core.errors import AuthorizationError, PayoutError, StateConflictError
from strikerate.core.time import lease_expiry
from strikerate.models.models import Prediction
from strikerate.services import claims
from strikerate.services.scoring import ScoreLine
from strikerate.services.stats import get_stats

FINAL = ScoreLine(180, 6, 150, 8)


@pytest.fixture
def settled(db_session, admin, treasury, rail):
    """A completed match with one winner (alice) and one loser (bob)."""
    match = new_match(db_session, admin)
    alice, bob = Wallet(), Wallet()
    winner = place_prediction(db_session, alice, match.id, FINAL, rail)
    loser = place_prediction(db_session, bob, match.id, ScoreLine(100, 2, 90, 1), rail)
    lock(db_session, admin, match.id)
    complete(db_session, admin, match.id, FINAL)
    return {"match_id": match.id, "alice": alice, "bob": bob, "winner_id": winner.id, "loser_id": loser.id}


def _claim(db, wallet, match_id, prediction_id, rail):
    return claims.claim_prize(
        db,
        match_id=match_id,
        prediction_id=prediction_id,
        rail=rail,
        **signed(db, wallet, "CLAIM_PRIZE", {"matchId": match_id, "predictionId": prediction_id}),
    )


def test_winner_claims_once(db_session, rail, settled):
    result = _claim(db_session, settled["alice"], settled["match_id"], settled["winner_id"], rail)

    assert result == {"txSignature": "payout-1", "amount": 3.6}
    assert rail.payouts == [
        {
            "recipient": settled["alice"].address,
            "amount": money("3.6"),
            "idempotency_key": f"claim:{settled['winner_id']}",
        }
    ]
    db_session.expire_all()
    prediction = db_session.get(Prediction, settled["winner_id"])
    assert prediction.has_claimed is True
    assert prediction.payout_reference == "payout-1"
    assert prediction.claim_lease_expires_at is None

    stats = get_stats(db_session)
    assert stats.winnings.total == 3.6
    assert stats.winnings.total_claims == 1
    assert stats.winnings.pending_claims == 0

    with pytest.raises(StateConflictError, match="Prize already claimed"):
        _claim(db_session, settled["alice"], settled["match_id"], settled["winner_id"], rail)
    db_session.rollback()

    assert len(rail.payouts) == 1
    assert get_stats(db_session).winnings.total_claims == 1


def test_failed_payout_leaves_prediction_claimable(db_session, rail, settled):
    rail.fail_payouts = 1

    with pytest.raises(PayoutError):
        _claim(db_session, settled["alice"], settled["match_id"], settled["winner_id"], rail)

    db_session.expire_all()
    prediction = db_session.get(Prediction, settled["winner_id"])
    assert prediction.has_claimed is False
    assert prediction.claim_lease_expires_at is None
    assert get_stats(db_session).winnings.pending_claims == 3.6

    result = _claim(db_session, settled["alice"], settled["match_id"], settled["winner_id"], rail)
    assert result["txSignature"] == "payout-1"


def test_claim_in_flight_blocks_a_concurrent_claim(db_session, rail, settled):
    prediction = db_session.get(Prediction, settled["winner_id"])
    prediction.claim_lease_expires_at = lease_expiry(300)
    db_session.commit()

    with pytest.raises(StateConflictError, match="already in progress"):
        _claim(db_session, settled["alice"], settled["match_id"], settled["winner_id"], rail)
    db_session.rollback()

    assert rail.payouts == []


def test_only_the_owner_can_claim(db_session, rail, settled):
    with pytest.raises(AuthorizationError, match="does not match prediction owner"):
        _claim(db_session, settled["bob"], settled["match_id"], settled["winner_id"], rail)


def test_loser_cannot_claim(db_session, rail, settled):
    with pytest.raises(StateConflictError, match="not a winner"):
        _claim(db_session, settled["bob"], settled["match_id"], settled["loser_id"], rail)


def test_claim_before_completion_is_rejected(db_session, admin, treasury, rail):
    match = new_match(db_session, admin)
    wallet = Wallet()
    prediction = place_prediction(db_session, wallet, match.id, FINAL, rail)

    with pytest.raises(StateConflictError, match="not completed"):
        _claim(db_session, wallet, match.id, prediction.id, rail)
