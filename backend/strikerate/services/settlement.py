"""
Settlement Engine

Completing a match scores every prediction in each of its markets against the
final result, picks the highest-scoring predictions as winners (ties split the
prize equally), and writes the outcome fields, user totals and statistics.

Each market settles inside its own SAVEPOINT, so a failing market leaves none
of its writes behind while sibling markets proceed. Prediction and user writes
are chunked into batches of ``SETTLEMENT_BATCH_SIZE`` rows. A per-market
settlement record makes resettlement skip markets that already settled, so
counters are never applied twice.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Any, Callable, Iterable, Iterator, Sequence

from sqlalchemy import bindparam, select, update
from sqlalchemy.orm import Session

from strikerate.core.config import settings
from strikerate.core.errors import RequestValidationError, StateConflictError
from strikerate.core.time import now_utc
from strikerate.models.models import (
    Market,
    MarketSettlement,
    MarketType,
    Match,
    MatchStatus,
    Prediction,
    SettlementStatus,
    User,
)
from strikerate.services.match_lifecycle import get_match, require_status, transition_match
from strikerate.services.scoring import ScoreLine, calculate_match_score
from strikerate.services.signed_actions import ActionType, verify_signed_action
from strikerate.services.stats import apply_stats_delta

logger = logging.getLogger(__name__)

MONEY_QUANTUM = Decimal("0.000001")
MAX_WICKETS = 10

Scorer = Callable[[ScoreLine, ScoreLine], float]

SCORERS: dict[str, Scorer] = {
    MarketType.SCORE.value: calculate_match_score,
}


@dataclass(frozen=True)
class PredictionEntry:
    prediction_id: str
    user_id: str
    predicted: ScoreLine


@dataclass(frozen=True)
class ScoredPrediction:
    prediction_id: str
    user_id: str
    points: float
    is_winner: bool
    amount_won: Decimal


@dataclass
class MarketOutcome:
    scored: list[ScoredPrediction] = field(default_factory=list)
    highest_score: float | None = None
    winner_count: int = 0
    prize_pool: Decimal = Decimal("0")
    prize_per_winner: Decimal = Decimal("0")

    @property
    def total_owed(self) -> Decimal:
        return self.prize_per_winner * self.winner_count

    def user_deltas(self) -> dict[str, dict[str, Any]]:
        """Per-user wins, winnings and points earned in this settlement."""
        deltas: dict[str, dict[str, Any]] = {}
        for entry in self.scored:
            delta = deltas.setdefault(entry.user_id, {"wins": 0, "amount": Decimal("0"), "points": 0.0})
            delta["points"] += entry.points
            if entry.is_winner:
                delta["wins"] += 1
                delta["amount"] += entry.amount_won
        return deltas


def validate_final_score(final_score: ScoreLine) -> ScoreLine:
    values = list(final_score)
    if any(isinstance(value, bool) or not isinstance(value, int) for value in values):
        raise RequestValidationError("Invalid scores or wickets")
    if final_score.team1_score < 0 or final_score.team2_score < 0:
        raise RequestValidationError("Scores must be non-negative")
    if not all(0 <= wickets <= MAX_WICKETS for wickets in (final_score.team1_wickets, final_score.team2_wickets)):
        raise RequestValidationError("Wickets must be between 0 and 10")
    return final_score


def compute_prize_pool(total_pool: Any, share: float | None = None) -> Decimal:
    share = settings.PRIZE_POOL_SHARE if share is None else share
    pool = Decimal(str(total_pool or 0)) * Decimal(str(share))
    return pool.quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)


def compute_market_settlement(
    entries: Sequence[PredictionEntry],
    *,
    total_pool: Any,
    final_score: ScoreLine,
    scorer: Scorer = calculate_match_score,
    prize_share: float | None = None,
) -> MarketOutcome:
    """Score a market's predictions and split its prize pool.

    Pure: the same inputs always produce the same outcome, which is what makes
    a retried settlement overwrite rather than accumulate.
    """
    if not entries:
        return MarketOutcome()

    points = [(entry, scorer(entry.predicted, final_score)) for entry in entries]
    highest = max(score for _, score in points)
    winner_count = sum(1 for _, score in points if score == highest)

    prize_pool = compute_prize_pool(total_pool, prize_share)
    # Rounded down so the sum of payouts never exceeds the prize pool.
    per_winner = (prize_pool / winner_count).quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)

    scored = [
        ScoredPrediction(
            prediction_id=entry.prediction_id,
            user_id=entry.user_id,
            points=score,
            is_winner=score == highest,
            amount_won=per_winner if score == highest else Decimal("0"),
        )
        for entry, score in points
    ]
    return MarketOutcome(
        scored=scored,
        highest_score=highest,
        winner_count=winner_count,
        prize_pool=prize_pool,
        prize_per_winner=per_winner,
    )


def _chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    size = max(1, int(size or 1))
    for start in range(0, len(items), size):
        yield items[start:start + size]


_predictions = Prediction.__table__
_users = User.__table__

_STAMP_PREDICTION = (
    update(_predictions)
    .where(_predictions.c.id == bindparam("b_id"))
    .where(_predictions.c.settled_at.is_(None))
    .values(
        points_earned=bindparam("b_points"),
        is_winner=bindparam("b_is_winner"),
        amount_won=bindparam("b_amount_won"),
        has_claimed=False,
        settled_at=bindparam("b_settled_at"),
        updated_at=bindparam("b_settled_at"),
    )
)

_CREDIT_USER = (
    update(_users)
    .where(_users.c.wallet_address == bindparam("b_wallet"))
    .values(
        total_wins=_users.c.total_wins + bindparam("b_wins"),
        total_amount_won=_users.c.total_amount_won + bindparam("b_amount"),
        total_points=_users.c.total_points + bindparam("b_points"),
        updated_at=bindparam("b_updated_at"),
    )
)


def _load_entries(db: Session, market: Market) -> list[PredictionEntry]:
    rows = db.execute(
        select(
            Prediction.id,
            Prediction.user_id,
            Prediction.team1_score,
            Prediction.team1_wickets,
            Prediction.team2_score,
            Prediction.team2_wickets,
        )
        .where(Prediction.market_id == market.id, Prediction.settled_at.is_(None))
        .order_by(Prediction.created_at.asc(), Prediction.id.asc())
    ).all()
    return [PredictionEntry(row.id, row.user_id, ScoreLine.from_row(row)) for row in rows]


def _ensure_users(db: Session, wallets: Iterable[str]) -> int:
    wanted = set(wallets)
    if not wanted:
        return 0
    existing = {
        wallet
        for (wallet,) in db.query(User.wallet_address).filter(User.wallet_address.in_(wanted)).all()
    }
    missing = sorted(wanted - existing)
    for wallet in missing:
        db.add(User(wallet_address=wallet))
    if missing:
        db.flush()
    return len(missing)


def _write_outcome(db: Session, outcome: MarketOutcome, batch_size: int) -> None:
    stamped_at = now_utc()
    connection = db.connection()

    prediction_rows = [
        {
            "b_id": entry.prediction_id,
            "b_points": entry.points,
            "b_is_winner": entry.is_winner,
            "b_amount_won": entry.amount_won,
            "b_settled_at": stamped_at,
        }
        for entry in outcome.scored
    ]
    for batch in _chunked(prediction_rows, batch_size):
        connection.execute(_STAMP_PREDICTION, list(batch))

    user_rows = [
        {
            "b_wallet": wallet,
            "b_wins": delta["wins"],
            "b_amount": delta["amount"],
            "b_points": delta["points"],
            "b_updated_at": stamped_at,
        }
        for wallet, delta in sorted(outcome.user_deltas().items())
    ]
    for batch in _chunked(user_rows, batch_size):
        connection.execute(_CREDIT_USER, list(batch))


def _settlement_record(db: Session, match_id: str, market_id: str) -> MarketSettlement | None:
    return (
        db.query(MarketSettlement)
        .filter(MarketSettlement.match_id == match_id, MarketSettlement.market_id == market_id)
        .first()
    )


def _settlement_payload(record: MarketSettlement) -> dict[str, Any]:
    return {
        "marketId": record.market_id,
        "status": record.status,
        "predictionCount": int(record.prediction_count or 0),
        "winnerCount": int(record.winner_count or 0),
        "highestScore": record.highest_score,
        "prizePool": float(record.prize_pool or 0),
        "prizePerWinner": float(record.prize_per_winner or 0),
        "error": record.error,
    }


def _apply_market(db: Session, match: Match, market: Market, final_score: ScoreLine, batch_size: int) -> tuple[MarketOutcome, int]:
    scorer = SCORERS.get(market.market_type)
    if scorer is None:
        raise ValueError(f"no scorer for market type {market.market_type}")

    entries = _load_entries(db, market)
    outcome = compute_market_settlement(
        entries,
        total_pool=market.total_pool,
        final_score=final_score,
        scorer=scorer,
    )
    created_users = _ensure_users(db, (entry.user_id for entry in outcome.scored))
    _write_outcome(db, outcome, batch_size)

    record = _settlement_record(db, match.id, market.id)
    if record is None:
        record = MarketSettlement(match_id=match.id, market_id=market.id, attempts=0)
        db.add(record)
    record.status = SettlementStatus.SETTLED.value
    record.prediction_count = len(outcome.scored)
    record.winner_count = outcome.winner_count
    record.highest_score = outcome.highest_score
    record.prize_pool = outcome.prize_pool
    record.prize_per_winner = outcome.prize_per_winner
    record.error = None
    record.attempts = int(record.attempts or 0) + 1
    db.flush()
    return outcome, created_users


def _record_failure(db: Session, match: Match, market: Market, exc: Exception) -> MarketSettlement:
    record = _settlement_record(db, match.id, market.id)
    if record is None:
        record = MarketSettlement(match_id=match.id, market_id=market.id, attempts=0)
        db.add(record)
    record.status = SettlementStatus.FAILED.value
    record.error = f"{type(exc).__name__}: {exc}"[:1000]
    record.attempts = int(record.attempts or 0) + 1
    db.flush()
    return record


def settle_market(
    db: Session,
    match: Match,
    market: Market,
    final_score: ScoreLine,
    *,
    batch_size: int | None = None,
) -> dict[str, Any]:
    """Settle one market inside a SAVEPOINT; failures are recorded, not raised."""
    existing = _settlement_record(db, match.id, market.id)
    if existing is not None and existing.status == SettlementStatus.SETTLED.value:
        logger.info("Market %s already settled; skipping", market.id)
        return {**_settlement_payload(existing), "skipped": True}

    batch_size = batch_size or settings.SETTLEMENT_BATCH_SIZE
    try:
        with db.begin_nested():
            outcome, created_users = _apply_market(db, match, market, final_score, batch_size)
            # Owed winnings and any newly created users are counted with the
            # market's writes so a failed market leaves no partial deltas.
            # Pending claims grow by the rounded-down shares actually owed, so
            # they can sit below the prize pool by up to one micro-USDC per winner.
            apply_stats_delta(
                db,
                {
                    "winnings": {"pending_claims": outcome.total_owed},
                    "users": {"total": created_users},
                },
            )
    except Exception as exc:
        logger.exception("Settlement failed for match %s market %s", match.id, market.id)
        record = _record_failure(db, match, market, exc)
        return {**_settlement_payload(record), "skipped": False}

    logger.info(
        "Settled market %s of match %s: %s predictions, %s winners, %s each",
        market.id,
        match.id,
        len(outcome.scored),
        outcome.winner_count,
        outcome.prize_per_winner,
    )
    record = _settlement_record(db, match.id, market.id)
    return {**_settlement_payload(record), "skipped": False}


def _summarize(match: Match, results: list[dict[str, Any]]) -> dict[str, Any]:
    settled = [r for r in results if r["status"] == SettlementStatus.SETTLED.value]
    return {
        "matchId": match.id,
        "status": MatchStatus.COMPLETED.value,
        "winnerCount": sum(r["winnerCount"] for r in settled),
        "prizePool": float(sum(Decimal(str(r["prizePool"])) for r in settled)),
        "failedMarkets": [r["marketId"] for r in results if r["status"] == SettlementStatus.FAILED.value],
        "markets": results,
    }


def complete_match(
    db: Session,
    *,
    actor: str,
    match_id: str,
    final_score: ScoreLine,
    nonce: Any,
    signature: str,
    message: str | None = None,
) -> dict[str, Any]:
    """Mark a LOCKED match COMPLETED and settle every one of its markets.

    The LOCKED -> COMPLETED flip is a conditional UPDATE in the same
    transaction as the settlement writes, so a concurrent second completion
    fails its status check instead of settling again.
    """
    final_score = validate_final_score(final_score)
    verify_signed_action(
        db,
        actor=actor,
        action=ActionType.COMPLETE_MATCH,
        params={"matchId": match_id, **final_score.as_params()},
        nonce=nonce,
        signature=signature,
        message=message,
    )
    match = get_match(db, match_id)
    transition_match(
        db,
        match.id,
        from_status=MatchStatus.LOCKED,
        values={
            "final_team1_score": final_score.team1_score,
            "final_team1_wickets": final_score.team1_wickets,
            "final_team2_score": final_score.team2_score,
            "final_team2_wickets": final_score.team2_wickets,
            "completed_at": now_utc(),
        },
    )

    markets = db.query(Market).filter(Market.match_id == match.id).order_by(Market.created_at.asc(), Market.id.asc()).all()
    results = [settle_market(db, match, market, final_score) for market in markets]

    apply_stats_delta(db, {"matches": {"live": -1, "completed": 1}})
    db.commit()

    summary = _summarize(match, results)
    if summary["failedMarkets"]:
        logger.error("Match %s completed with failed markets: %s", match.id, summary["failedMarkets"])
    return summary


def resettle_match(
    db: Session,
    *,
    actor: str,
    match_id: str,
    nonce: Any,
    signature: str,
    message: str | None = None,
) -> dict[str, Any]:
    """Retry settlement for the FAILED markets of a COMPLETED match."""
    verify_signed_action(
        db,
        actor=actor,
        action=ActionType.RESETTLE_MATCH,
        params={"matchId": match_id},
        nonce=nonce,
        signature=signature,
        message=message,
    )
    match = get_match(db, match_id, for_update=True)
    require_status(match, MatchStatus.COMPLETED)
    final_score = ScoreLine(
        match.final_team1_score,
        match.final_team1_wickets,
        match.final_team2_score,
        match.final_team2_wickets,
    )

    settled_ids = {
        market_id
        for (market_id,) in db.query(MarketSettlement.market_id)
        .filter(
            MarketSettlement.match_id == match.id,
            MarketSettlement.status == SettlementStatus.SETTLED.value,
        )
        .all()
    }
    pending = [
        market
        for market in db.query(Market).filter(Market.match_id == match.id).order_by(Market.created_at.asc(), Market.id.asc()).all()
        if market.id not in settled_ids
    ]
    if not pending:
        raise StateConflictError("All markets are already settled")

    results = [settle_market(db, match, market, final_score) for market in pending]
    db.commit()
    return _summarize(match, results)
