from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import Wallet, complete, lock, new_match, place_prediction
from strikerate.models.models import GlobalStats, STATS_DOC_ID
from strikerate.services import stats
from strikerate.services.scoring import ScoreLine


def test_apply_stats_delta_adds_to_existing_counters(db_session):
    stats.apply_stats_delta(db_session, {"matches": {"total": 2, "upcoming": 2}})
    stats.apply_stats_delta(db_session, {"matches": {"upcoming": -1, "live": 1}})
    db_session.commit()

    current = stats.get_stats(db_session)
    assert current.matches.total == 2
    assert current.matches.upcoming == 1
    assert current.matches.live == 1
    assert current.last_updated is not None


def test_apply_stats_delta_rejects_unknown_fields(db_session):
    with pytest.raises(ValueError):
        stats.apply_stats_delta(db_session, {"matches": {"cancelled": 1}})


def test_merge_stats_overwrites_only_named_fields(db_session):
    stats.apply_stats_delta(db_session, {"predictions": {"total": 5, "total_amount": Decimal("10")}})
    stats.merge_stats(db_session, {"predictions": {"total": 7}})
    db_session.commit()

    current = stats.get_stats(db_session)
    assert current.predictions.total == 7
    assert current.predictions.total_amount == 10.0


def test_stats_serialize_with_camel_case_keys(db_session):
    payload = stats.get_stats(db_session).model_dump(by_alias=True)

    assert set(payload) == {"matches", "predictions", "users", "winnings", "lastUpdated"}
    assert "totalAmount" in payload["predictions"]
    assert {"total", "totalClaims", "pendingClaims"} == set(payload["winnings"])


def test_reconcile_reports_no_drift_after_normal_flow(db_session, admin, treasury, rail):
    match = new_match(db_session, admin)
    final = ScoreLine(200, 4, 190, 9)
    place_prediction(db_session, Wallet(), match.id, final, rail)
    place_prediction(db_session, Wallet(), match.id, ScoreLine(120, 2, 100, 3), rail)
    lock(db_session, admin, match.id)
    complete(db_session, admin, match.id, final)
    new_match(db_session, admin, team1="England", team2="Pakistan")

    result = stats.reconcile_stats(db_session)

    assert result["drift"] == {}
    assert result["applied"] is False


def test_reconcile_repairs_drift_when_applied(db_session, admin, caplog):
    new_match(db_session, admin)
    row = db_session.get(GlobalStats, STATS_DOC_ID)
    row.matches_total = 9
    db_session.commit()

    report = stats.reconcile_stats(db_session)
    assert report["drift"]["matches"]["total"] == {"recorded": 9, "expected": 1}
    assert "Stats drift detected" in caplog.text

    repaired = stats.reconcile_stats(db_session, apply=True)
    assert repaired["applied"] is True
    assert stats.get_stats(db_session).matches.total == 1
    assert stats.reconcile_stats(db_session)["drift"] == {}
