"""
Global statistics maintenance.

The singleton stats row is denormalized from the ledgers. Request handlers
never recompute it; each mutation applies an additive delta in the same
transaction as the ledger change it mirrors. ``reconcile_stats`` rebuilds the
expected values from the ledgers out of band and reports drift.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from strikerate.core.time import now_utc
from strikerate.models.models import (
    STATS_DOC_ID,
    GlobalStats,
    Match,
    MatchStatus,
    Prediction,
    User,
)

logger = logging.getLogger(__name__)

# (group, field) -> column attribute name
STATS_FIELDS: dict[tuple[str, str], str] = {
    ("matches", "total"): "matches_total",
    ("matches", "upcoming"): "matches_upcoming",
    ("matches", "live"): "matches_live",
    ("matches", "completed"): "matches_completed",
    ("matches", "abandoned"): "matches_abandoned",
    ("predictions", "total"): "predictions_total",
    ("predictions", "total_amount"): "predictions_total_amount",
    ("users", "total"): "users_total",
    ("winnings", "total"): "winnings_total",
    ("winnings", "total_claims"): "winnings_total_claims",
    ("winnings", "pending_claims"): "winnings_pending_claims",
}

StatsDelta = Mapping[str, Mapping[str, Any]]


class _StatsGroup(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MatchStats(_StatsGroup):
    total: int = 0
    upcoming: int = 0
    live: int = 0
    completed: int = 0
    abandoned: int = 0


class PredictionStats(_StatsGroup):
    total: int = 0
    total_amount: float = 0.0


class UserStats(_StatsGroup):
    total: int = 0


class WinningsStats(_StatsGroup):
    total: float = 0.0
    total_claims: int = 0
    pending_claims: float = 0.0


class Stats(_StatsGroup):
    matches: MatchStats
    predictions: PredictionStats
    users: UserStats
    winnings: WinningsStats
    last_updated: str | None = None


def _column_name(group: str, field: str) -> str:
    try:
        return STATS_FIELDS[(group, field)]
    except KeyError:
        raise ValueError(f"unknown stats field: {group}.{field}") from None


def _ensure_stats_row(db: Session) -> None:
    if db.get(GlobalStats, STATS_DOC_ID) is None:
        db.add(GlobalStats(id=STATS_DOC_ID))
        db.flush()


def apply_stats_delta(db: Session, delta: StatsDelta) -> None:
    """Add ``delta`` to the stats row inside the caller's transaction.

    Each column is incremented in SQL (``col = col + :delta``) so concurrent
    deltas commute. Does not commit.
    """
    values: dict[str, Any] = {}
    for group, fields in (delta or {}).items():
        for field, amount in (fields or {}).items():
            name = _column_name(group, field)
            if not amount:
                continue
            values[name] = getattr(GlobalStats, name) + amount
    if not values:
        return

    _ensure_stats_row(db)
    values["last_updated"] = now_utc()
    db.execute(
        update(GlobalStats)
        .where(GlobalStats.id == STATS_DOC_ID)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def merge_stats(db: Session, partial: StatsDelta) -> None:
    """Shallow-merge absolute values into each stats group. Does not commit."""
    row = (
        db.query(GlobalStats)
        .filter(GlobalStats.id == STATS_DOC_ID)
        .with_for_update()
        .first()
    )
    if row is None:
        row = GlobalStats(id=STATS_DOC_ID)
        db.add(row)
    for group, fields in (partial or {}).items():
        for field, value in (fields or {}).items():
            setattr(row, _column_name(group, field), value)
    row.last_updated = now_utc()
    db.flush()


def _row_to_groups(row: GlobalStats | None) -> dict[str, dict[str, Any]]:
    groups: dict[str, dict[str, Any]] = {
        "matches": {},
        "predictions": {},
        "users": {},
        "winnings": {},
    }
    for (group, field), name in STATS_FIELDS.items():
        value = getattr(row, name, None) if row is not None else None
        groups[group][field] = value if value is not None else 0
    return groups


def get_stats(db: Session) -> Stats:
    row = db.get(GlobalStats, STATS_DOC_ID)
    groups = _row_to_groups(row)
    last_updated = row.last_updated.isoformat() if row is not None and row.last_updated else None
    return Stats(
        matches=MatchStats(**groups["matches"]),
        predictions=PredictionStats(
            total=groups["predictions"]["total"],
            total_amount=float(groups["predictions"]["total_amount"]),
        ),
        users=UserStats(**groups["users"]),
        winnings=WinningsStats(
            total=float(groups["winnings"]["total"]),
            total_claims=groups["winnings"]["total_claims"],
            pending_claims=float(groups["winnings"]["pending_claims"]),
        ),
        last_updated=last_updated,
    )


def _count(db: Session, *criteria) -> int:
    return int(db.query(func.count()).select_from(Match).filter(*criteria).scalar() or 0)


def _expected_from_ledgers(db: Session, current: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
    prediction_total, prediction_amount = db.query(
        func.count(Prediction.id), func.coalesce(func.sum(Prediction.amount), 0)
    ).one()
    claimed_total, claim_count = (
        db.query(func.coalesce(func.sum(Prediction.amount_won), 0), func.count(Prediction.id))
        .filter(Prediction.has_claimed.is_(True))
        .one()
    )
    pending_total = (
        db.query(func.coalesce(func.sum(Prediction.amount_won), 0))
        .filter(Prediction.is_winner.is_(True), Prediction.has_claimed.is_(False))
        .scalar()
    )
    return {
        "matches": {
            "total": _count(db),
            "upcoming": _count(db, Match.status == MatchStatus.UPCOMING.value),
            "live": _count(db, Match.status == MatchStatus.LOCKED.value),
            "completed": _count(db, Match.status == MatchStatus.COMPLETED.value),
            # No ledger tracks abandoned matches; keep whatever was recorded.
            "abandoned": current["matches"]["abandoned"],
        },
        "predictions": {
            "total": int(prediction_total or 0),
            "total_amount": Decimal(str(prediction_amount or 0)),
        },
        "users": {"total": int(db.query(func.count(User.wallet_address)).scalar() or 0)},
        "winnings": {
            "total": Decimal(str(claimed_total or 0)),
            "total_claims": int(claim_count or 0),
            "pending_claims": Decimal(str(pending_total or 0)),
        },
    }


def reconcile_stats(db: Session, *, apply: bool = False) -> dict[str, Any]:
    """Compare the stats row with the ledgers; optionally overwrite it.

    Meant for scripts and scheduled jobs, never the request path. Commits only
    when ``apply`` is set and drift was found.
    """
    current = _row_to_groups(db.get(GlobalStats, STATS_DOC_ID))
    expected = _expected_from_ledgers(db, current)

    drift: dict[str, dict[str, Any]] = {}
    for group, fields in expected.items():
        for field, value in fields.items():
            recorded = current[group][field]
            if Decimal(str(recorded)) != Decimal(str(value)):
                drift.setdefault(group, {})[field] = {"recorded": recorded, "expected": value}

    if drift:
        logger.warning("Stats drift detected: %s", drift)
        if apply:
            merge_stats(db, expected)
            db.commit()
            logger.info("Stats overwritten from ledgers")
    return {"expected": expected, "recorded": current, "drift": drift, "applied": bool(apply and drift)}
