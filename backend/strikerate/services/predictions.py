"""
Prediction ledger.

Creating a prediction is a two-stage flow. Stage one is a signed request that
checks the match still accepts predictions and returns what to pay and where.
Stage two verifies the stake payment on the payment rail and appends the
prediction, bumping the match, market, user and global counters in the same
transaction.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import desc, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from strikerate.core.config import settings
from strikerate.core.errors import PaymentError, RequestValidationError, StateConflictError
from strikerate.core.time import now_utc
from strikerate.models.models import Market, Match, MatchStatus, Prediction, User
from strikerate.services.match_lifecycle import get_market, get_match, require_status
from strikerate.services.payment_rail import PaymentRail
from strikerate.services.scoring import ScoreLine
from strikerate.services.settlement import MONEY_QUANTUM, validate_final_score
from strikerate.services.signed_actions import ActionType, verify_signed_action
from strikerate.services.stats import apply_stats_delta
from strikerate.services.users import ensure_user

logger = logging.getLogger(__name__)

NOT_ACCEPTING = "Match is not accepting predictions"


def stake_amount() -> Decimal:
    return Decimal(str(settings.PREDICTION_STAKE_AMOUNT)).quantize(MONEY_QUANTUM)


def _already_predicted(db: Session, market: Market, wallet_address: str) -> bool:
    return (
        db.query(Prediction.id)
        .filter(Prediction.market_id == market.id, Prediction.user_id == wallet_address)
        .first()
        is not None
    )


def prepare_prediction(
    db: Session,
    *,
    actor: str,
    match_id: str,
    predicted: ScoreLine,
    nonce: Any,
    signature: str,
    message: str | None = None,
    market_id: str | None = None,
) -> Dict[str, Any]:
    """Stage one: authorize the prediction and describe the required payment."""
    predicted = validate_final_score(predicted)
    match = get_match(db, match_id)
    require_status(match, MatchStatus.UPCOMING, NOT_ACCEPTING)
    market = get_market(db, match, market_id)

    verify_signed_action(
        db,
        actor=actor,
        action=ActionType.CREATE_PREDICTION,
        params=predicted.as_params(),
        nonce=nonce,
        signature=signature,
        message=message,
    )
    if _already_predicted(db, market, actor):
        raise StateConflictError("You have already made a prediction for this market")
    db.commit()

    return {
        "requiresPayment": True,
        "amount": float(stake_amount()),
        "recipient": settings.TREASURY_WALLET_ADDRESS,
        "matchId": match.id,
        "marketId": market.id,
    }


def confirm_prediction(
    db: Session,
    *,
    actor: str,
    match_id: str,
    predicted: ScoreLine,
    payment_reference: str,
    rail: PaymentRail,
    market_id: str | None = None,
) -> Prediction:
    """Stage two: verify the stake payment and record the prediction."""
    predicted = validate_final_score(predicted)
    payment_reference = str(payment_reference or "").strip()
    if not payment_reference:
        raise RequestValidationError("Payment reference is required")

    match = get_match(db, match_id)
    require_status(match, MatchStatus.UPCOMING, NOT_ACCEPTING)
    market = get_market(db, match, market_id)
    if db.query(Prediction.id).filter(Prediction.payment_reference == payment_reference).first() is not None:
        raise PaymentError("Payment has already been used for a prediction")
    if _already_predicted(db, market, actor):
        raise StateConflictError("You have already made a prediction for this market")

    amount = stake_amount()
    rail.verify_payment(
        payment_reference,
        sender=actor,
        recipient=settings.TREASURY_WALLET_ADDRESS,
        amount=amount,
    )

    # Pool counters only grow while the match is UPCOMING; a lock that raced
    # the payment check makes this update miss.
    bumped = db.execute(
        update(Match)
        .where(Match.id == match.id, Match.status == MatchStatus.UPCOMING.value)
        .values(
            total_pool=Match.total_pool + amount,
            total_predictions=Match.total_predictions + 1,
            updated_at=now_utc(),
        )
        .execution_options(synchronize_session=False)
    )
    if bumped.rowcount != 1:
        raise StateConflictError(NOT_ACCEPTING)
    db.execute(
        update(Market)
        .where(Market.id == market.id)
        .values(
            total_pool=Market.total_pool + amount,
            total_predictions=Market.total_predictions + 1,
            updated_at=now_utc(),
        )
        .execution_options(synchronize_session=False)
    )

    prediction = Prediction(
        match_id=match.id,
        market_id=market.id,
        user_id=actor,
        team1_score=predicted.team1_score,
        team1_wickets=predicted.team1_wickets,
        team2_score=predicted.team2_score,
        team2_wickets=predicted.team2_wickets,
        amount=amount,
        payment_reference=payment_reference,
        is_winner=False,
        has_claimed=False,
    )
    try:
        db.add(prediction)
        db.flush()
        ensure_user(db, actor)
        db.execute(
            update(User)
            .where(User.wallet_address == actor)
            .values(total_predictions=User.total_predictions + 1, updated_at=now_utc())
            .execution_options(synchronize_session=False)
        )
        apply_stats_delta(db, {"predictions": {"total": 1, "total_amount": amount}})
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Duplicate prediction rejected for %s on match %s: %s", actor, match_id, exc)
        raise StateConflictError("Prediction already recorded for this market or payment") from exc

    db.refresh(prediction)
    logger.info("Recorded prediction %s for %s on match %s", prediction.id, actor, match.id)
    return prediction


def prediction_payload(prediction: Prediction) -> Dict[str, Any]:
    settled = prediction.settled_at is not None
    return {
        "id": prediction.id,
        "matchId": prediction.match_id,
        "marketId": prediction.market_id,
        "userId": prediction.user_id,
        "team1Score": prediction.team1_score,
        "team1Wickets": prediction.team1_wickets,
        "team2Score": prediction.team2_score,
        "team2Wickets": prediction.team2_wickets,
        "amount": float(prediction.amount or 0),
        "isWinner": bool(prediction.is_winner),
        "amountWon": float(prediction.amount_won) if settled and prediction.amount_won is not None else None,
        "pointsEarned": prediction.points_earned if settled else None,
        "hasClaimed": bool(prediction.has_claimed),
        "createdAt": prediction.created_at.isoformat() if prediction.created_at else None,
    }


def list_match_predictions(db: Session, match_id: str) -> List[Prediction]:
    match = get_match(db, match_id)
    return (
        db.query(Prediction)
        .filter(Prediction.match_id == match.id)
        .order_by(desc(Prediction.points_earned), Prediction.created_at.asc())
        .all()
    )


def list_user_predictions(db: Session, wallet_address: str, limit: int = 50) -> List[Prediction]:
    return (
        db.query(Prediction)
        .filter(Prediction.user_id == str(wallet_address or "").strip())
        .order_by(desc(Prediction.created_at))
        .limit(limit)
        .all()
    )
