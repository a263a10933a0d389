"""
Prize claims.

A claim runs in three steps so the payout transfer never happens while a
database transaction is open:

1. Verify ownership, nonce, signature and eligibility, then take a short claim
   lease with a conditional UPDATE and commit. A second concurrent claim finds
   the lease held and fails.
2. Ask the payment rail to transfer ``amount_won``. The idempotency key is
   derived from the prediction id, so a retry after a lost confirmation
   cannot pay twice.
3. Flip ``has_claimed`` with a conditional UPDATE and apply the winnings
   statistics delta in one transaction. If the payout failed instead, the
   lease is released and the prediction stays claimable.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from strikerate.core.config import settings
from strikerate.core.errors import AuthorizationError, NotFoundError, StateConflictError
from strikerate.core.time import lease_expiry, now_utc
from strikerate.models.models import Match, MatchStatus, Prediction
from strikerate.services.payment_rail import PaymentRail
from strikerate.services.signed_actions import ActionType, verify_signed_action
from strikerate.services.stats import apply_stats_delta

logger = logging.getLogger(__name__)


def idempotency_key(prediction_id: str) -> str:
    return f"claim:{prediction_id}"


def _load_claimable(db: Session, match_id: str, prediction_id: str, actor: str) -> Prediction:
    prediction = db.get(Prediction, str(prediction_id or ""))
    if prediction is None or prediction.match_id != str(match_id or ""):
        raise NotFoundError("Prediction not found")
    if prediction.user_id != actor:
        raise AuthorizationError("Wallet address does not match prediction owner")

    match = db.get(Match, prediction.match_id)
    if match is None or match.status != MatchStatus.COMPLETED.value:
        raise StateConflictError("Match not found or not completed")
    return prediction


def _check_eligible(prediction: Prediction) -> None:
    if prediction.has_claimed:
        raise StateConflictError("Prize already claimed")
    if not prediction.is_winner:
        raise StateConflictError("Prediction is not a winner")


def _take_lease(db: Session, prediction_id: str) -> None:
    now = now_utc()
    result = db.execute(
        update(Prediction)
        .where(
            Prediction.id == prediction_id,
            Prediction.is_winner.is_(True),
            Prediction.has_claimed.is_(False),
            or_(
                Prediction.claim_lease_expires_at.is_(None),
                Prediction.claim_lease_expires_at < now,
            ),
        )
        .values(claim_lease_expires_at=lease_expiry(settings.CLAIM_LEASE_SECONDS), updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StateConflictError("A claim for this prediction is already in progress")


def _release_lease(db: Session, prediction_id: str) -> None:
    db.execute(
        update(Prediction)
        .where(Prediction.id == prediction_id, Prediction.has_claimed.is_(False))
        .values(claim_lease_expires_at=None, updated_at=now_utc())
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _mark_claimed(db: Session, prediction_id: str, amount: Decimal, payout_reference: str) -> None:
    now = now_utc()
    result = db.execute(
        update(Prediction)
        .where(Prediction.id == prediction_id, Prediction.has_claimed.is_(False))
        .values(
            has_claimed=True,
            payout_reference=payout_reference,
            claimed_at=now,
            claim_lease_expires_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # The payout was keyed by prediction, so this is the same transfer.
        logger.error("Prediction %s was already marked claimed (payout %s)", prediction_id, payout_reference)
        raise StateConflictError("Prize already claimed")
    apply_stats_delta(
        db,
        {"winnings": {"total": amount, "total_claims": 1, "pending_claims": -amount}},
    )
    db.commit()


def claim_prize(
    db: Session,
    *,
    actor: str,
    match_id: str,
    prediction_id: str,
    nonce: Any,
    signature: str,
    rail: PaymentRail,
    message: str | None = None,
) -> Dict[str, Any]:
    """Pay out a winning prediction to its owner, at most once."""
    prediction = _load_claimable(db, match_id, prediction_id, actor)
    amount = Decimal(str(prediction.amount_won or 0))

    verify_signed_action(
        db,
        actor=actor,
        action=ActionType.CLAIM_PRIZE,
        params={"matchId": prediction.match_id, "predictionId": prediction.id, "amount": amount},
        nonce=nonce,
        signature=signature,
        message=message,
    )
    _check_eligible(prediction)
    _take_lease(db, prediction.id)
    db.commit()

    try:
        payout_reference = rail.send_payout(
            recipient=actor,
            amount=amount,
            idempotency_key=idempotency_key(prediction.id),
        )
    except Exception:
        logger.warning("Payout for prediction %s failed; releasing claim lease", prediction.id)
        db.rollback()
        _release_lease(db, prediction.id)
        raise

    _mark_claimed(db, prediction.id, amount, payout_reference)
    logger.info("Prediction %s claimed by %s: %s USDC (%s)", prediction.id, actor, amount, payout_reference)
    return {"txSignature": payout_reference, "amount": float(amount)}
