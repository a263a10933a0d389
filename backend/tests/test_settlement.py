from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import Wallet, complete, lock, money, new_match, place_prediction, signed
from strikerate.core.config import settings
from strikerate.core.errors import RequestValidationError, StateConflictError
from strikerate.models.models import Market, MarketSettlement, Match, Prediction, User
from strikerate.services import match_lifecycle, settlement
from strikerate.services.scoring import ScoreLine
from strikerate.services.settlement import PredictionEntry, compute_market_settlement
from strikerate.services.stats import get_stats, reconcile_stats

FINAL = ScoreLine(180, 6, 150, 8)


def test_tied_winners_split_the_prize_pool():
    points = {"a": 80.0, "b": 95.5, "c": 95.5}
    entries = [PredictionEntry(pid, f"user-{pid}", ScoreLine(0, 0, 0, 0)) for pid in points]
    lookup = iter(points.values())

    outcome = compute_market_settlement(
        entries,
        total_pool=Decimal("30"),
        final_score=FINAL,
        scorer=lambda predicted, actual: next(lookup),
    )

    assert outcome.highest_score == 95.5
    assert outcome.winner_count == 2
    assert outcome.prize_pool == money(27)
    assert outcome.prize_per_winner == money("13.5")
    by_id = {s.prediction_id: s for s in outcome.scored}
    assert by_id["a"].is_winner is False and by_id["a"].amount_won == 0
    assert by_id["b"].amount_won == money("13.5")
    assert by_id["c"].amount_won == money("13.5")


def test_prize_split_never_exceeds_the_pool():
    entries = [PredictionEntry(str(i), f"user-{i}", FINAL) for i in range(3)]

    outcome = compute_market_settlement(entries, total_pool=Decimal("10"), final_score=FINAL)

    assert outcome.winner_count == 3
    assert outcome.prize_per_winner == money("3")
    assert outcome.total_owed <= outcome.prize_pool


def test_pending_owed_is_rounded_down_share_times_winners():
    entries = [PredictionEntry(str(i), f"user-{i}", FINAL) for i in range(7)]

    outcome = compute_market_settlement(entries, total_pool=Decimal("1"), final_score=FINAL)

    assert outcome.prize_pool == money("0.9")
    assert outcome.prize_per_winner == money("0.128571")
    assert outcome.total_owed == money("0.899997")
    assert outcome.prize_pool - outcome.total_owed < Decimal("0.000001") * outcome.winner_count


def test_empty_market_settles_to_nothing():
    outcome = compute_market_settlement([], total_pool=0, final_score=FINAL)
    assert outcome.winner_count == 0
    assert outcome.scored == []


def test_final_score_is_validated():
    with pytest.raises(RequestValidationError):
        settlement.validate_final_score(ScoreLine(180, 11, 150, 8))
    with pytest.raises(RequestValidationError):
        settlement.validate_final_score(ScoreLine(-1, 6, 150, 8))
    with pytest.raises(RequestValidationError):
        settlement.validate_final_score(ScoreLine(180.5, 6, 150, 8))


def test_complete_match_settles_end_to_end(db_session, admin, treasury, rail):
    match = new_match(db_session, admin)
    alice, bob = Wallet(), Wallet()
    perfect = place_prediction(db_session, alice, match.id, FINAL, rail)
    partial = place_prediction(db_session, bob, match.id, ScoreLine(150, 5, 140, 7), rail)
    lock(db_session, admin, match.id)

    summary = complete(db_session, admin, match.id, FINAL)

    assert summary["status"] == "COMPLETED"
    assert summary["winnerCount"] == 1
    assert summary["prizePool"] == 3.6
    assert summary["failedMarkets"] == []

    db_session.expire_all()
    a = db_session.get(Prediction, perfect.id)
    b = db_session.get(Prediction, partial.id)
    assert a.is_winner is True
    assert a.points_earned == 100.0
    assert a.amount_won == money("3.6")
    assert b.is_winner is False
    assert b.points_earned == 86.666
    assert b.amount_won == 0
    assert a.has_claimed is False and a.settled_at is not None

    completed = db_session.get(Match, match.id)
    assert completed.status == "COMPLETED"
    assert completed.final_team1_score == 180
    assert completed.final_team2_wickets == 8

    winner = db_session.get(User, alice.address)
    assert winner.total_wins == 1
    assert winner.total_amount_won == money("3.6")
    assert winner.total_points == 100.0

    stats = get_stats(db_session)
    assert stats.winnings.pending_claims == 3.6
    assert stats.matches.live == 0
    assert stats.matches.completed == 1


def test_completing_twice_is_rejected(db_session, admin, treasury, rail):
    match = new_match(db_session, admin)
    place_prediction(db_session, Wallet(), match.id, FINAL, rail)
    lock(db_session, admin, match.id)
    complete(db_session, admin, match.id, FINAL)

    with pytest.raises(StateConflictError, match="Match is not in LOCKED status"):
        complete(db_session, admin, match.id, FINAL)
    db_session.rollback()

    stats = get_stats(db_session)
    assert stats.matches.completed == 1
    assert stats.winnings.pending_claims == 1.8


def test_completing_upcoming_match_is_rejected(db_session, admin):
    match = new_match(db_session, admin)
    with pytest.raises(StateConflictError):
        complete(db_session, admin, match.id, FINAL)


def test_market_without_predictions_settles_as_noop(db_session, admin):
    match = new_match(db_session, admin)
    lock(db_session, admin, match.id)

    summary = complete(db_session, admin, match.id, FINAL)

    assert summary["winnerCount"] == 0
    [record] = db_session.query(MarketSettlement).all()
    assert record.status == "SETTLED"
    assert record.prediction_count == 0
    assert get_stats(db_session).winnings.pending_claims == 0


def test_failed_market_is_isolated_and_resettled(db_session, admin, treasury, rail, monkeypatch, caplog):
    match = new_match(db_session, admin)
    first = db_session.query(Market).filter(Market.match_id == match.id).one()
    second = match_lifecycle.create_market(
        db_session,
        match_id=match.id,
        market_type="SCORE",
        **signed(db_session, admin, "CREATE_MARKET", {"matchId": match.id, "marketType": "SCORE"}),
    )
    alice, bob = Wallet(), Wallet()
    place_prediction(db_session, alice, match.id, FINAL, rail, market_id=first.id)
    place_prediction(db_session, bob, match.id, FINAL, rail, market_id=second.id)
    lock(db_session, admin, match.id)

    original_load = settlement._load_entries

    def _flaky_load(db, market):
        if market.id == second.id:
            raise RuntimeError("store unavailable")
        return original_load(db, market)

    monkeypatch.setattr(settlement, "_load_entries", _flaky_load)
    summary = complete(db_session, admin, match.id, FINAL)

    assert summary["failedMarkets"] == [second.id]
    assert "Settlement failed" in caplog.text
    db_session.expire_all()
    assert db_session.get(Match, match.id).status == "COMPLETED"
    settled = {p.market_id: p for p in db_session.query(Prediction).all()}
    assert settled[first.id].settled_at is not None
    assert settled[second.id].settled_at is None
    failed = db_session.query(MarketSettlement).filter(MarketSettlement.market_id == second.id).one()
    assert failed.status == "FAILED"
    assert "store unavailable" in failed.error
    assert get_stats(db_session).winnings.pending_claims == 1.8

    monkeypatch.setattr(settlement, "_load_entries", original_load)
    resettled = settlement.resettle_match(
        db_session,
        match_id=match.id,
        **signed(db_session, admin, "RESETTLE_MATCH", {"matchId": match.id}),
    )

    assert resettled["failedMarkets"] == []
    assert [m["marketId"] for m in resettled["markets"]] == [second.id]
    db_session.expire_all()
    assert db_session.get(Prediction, settled[second.id].id).amount_won == money("1.8")
    record = db_session.query(MarketSettlement).filter(MarketSettlement.market_id == second.id).one()
    assert record.status == "SETTLED"
    assert record.attempts == 2
    assert get_stats(db_session).winnings.pending_claims == 3.6

    with pytest.raises(StateConflictError, match="already settled"):
        settlement.resettle_match(
            db_session,
            match_id=match.id,
            **signed(db_session, admin, "RESETTLE_MATCH", {"matchId": match.id}),
        )


def test_settle_market_skips_already_settled_market(db_session, admin, treasury, rail):
    match = new_match(db_session, admin)
    place_prediction(db_session, Wallet(), match.id, FINAL, rail)
    lock(db_session, admin, match.id)
    complete(db_session, admin, match.id, FINAL)

    match = db_session.get(Match, match.id)
    market = db_session.query(Market).filter(Market.match_id == match.id).one()
    result = settlement.settle_market(db_session, match, market, FINAL)
    db_session.commit()

    assert result["skipped"] is True
    assert get_stats(db_session).winnings.pending_claims == 1.8


def test_settlement_writes_span_multiple_batches(db_session, admin, treasury, rail, monkeypatch):
    monkeypatch.setattr(settings, "SETTLEMENT_BATCH_SIZE", 2)
    batch_sizes = []
    original_chunked = settlement._chunked

    def _recording_chunked(items, size):
        for batch in original_chunked(items, size):
            batch_sizes.append(len(batch))
            yield batch

    monkeypatch.setattr(settlement, "_chunked", _recording_chunked)

    match = new_match(db_session, admin)
    winners = [Wallet() for _ in range(3)]
    losers = [Wallet() for _ in range(4)]
    for wallet in winners:
        place_prediction(db_session, wallet, match.id, FINAL, rail)
    for offset, wallet in enumerate(losers, start=1):
        place_prediction(db_session, wallet, match.id, ScoreLine(180 - 10 * offset, 6, 150, 8), rail)
    lock(db_session, admin, match.id)

    summary = complete(db_session, admin, match.id, FINAL)

    assert summary["winnerCount"] == 3
    assert summary["prizePool"] == 12.6
    assert batch_sizes and max(batch_sizes) <= 2
    assert sum(batch_sizes) >= 7 + 7

    db_session.expire_all()
    stamped = db_session.query(Prediction).filter(Prediction.match_id == match.id).all()
    assert len(stamped) == 7
    assert all(p.settled_at is not None and p.points_earned is not None for p in stamped)
    assert sorted(p.amount_won for p in stamped) == [0] * 4 + [money("4.2")] * 3

    for wallet in winners:
        user = db_session.get(User, wallet.address)
        assert user.total_wins == 1
        assert user.total_amount_won == money("4.2")
    for wallet in losers:
        user = db_session.get(User, wallet.address)
        assert user.total_wins == 0
        assert user.total_amount_won == 0

    assert get_stats(db_session).winnings.pending_claims == 12.6
    assert reconcile_stats(db_session)["drift"] == {}
